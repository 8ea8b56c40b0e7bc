# src/reposettings/cli.py: Command-Line Interface (CLI) entry point.
# Implemented using Typer, this module provides the 'reposettings' command. The
# 'apply' subcommand collects run settings and credentials and runs the
# configurator over the workspace; 'show-rules' validates and prints the rule
# documents.

from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from .client import BitbucketCloudClient
from .config import RunSettings, build_settings, load_settings
from .configurator import RepoSettingsConfigurator
from .rules import DEFAULT_ACCESS_RULES, DEFAULT_BRANCH_RULES, RulesReader
from .util.errors import PARTIAL_FAILURE_EXIT_CODE, CredentialsError, RepoSettingsError
from .util.log import setup_logging

app = typer.Typer(
    name="reposettings",
    help="Align Bitbucket repository access, branch restrictions and webhooks with rule files.",
    add_completion=False,
)
console = Console(stderr=True)


def _split(values: Optional[List[str]]) -> List[str]:
    """Flattens repeated and comma separated option values."""
    return [v.strip() for value in values or [] for v in value.split(",") if v.strip()]


def _credentials(
    username: Optional[str],
    password: Optional[str],
    client_id: Optional[str],
    client_secret: Optional[str],
) -> Optional[dict]:
    if client_id and client_secret:
        return {"username": client_id, "password": client_secret, "oauth2": True}
    if username:
        while not password:
            password = Prompt.ask("Password", password=True, console=console)
        return {"username": username, "password": password, "oauth2": False}
    return None


def _fail(e: RepoSettingsError) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {e}")
    raise typer.Exit(code=e.exit_code)


@app.command()
def apply(
    workspace: Optional[str] = typer.Option(None, "--workspace", "-w", help="The Bitbucket workspace (also called owner)."),
    filters: Optional[List[str]] = typer.Option(None, "--filter", "-f", help="Repository slug globs, repeatable or separated by ','."),
    projects: Optional[List[str]] = typer.Option(None, "--project", "--prj", help="Project keys the repositories belong to, repeatable or separated by ','."),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Username to access Bitbucket."),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="App password to access Bitbucket."),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="OAuth2 consumer key."),
    client_secret: Optional[str] = typer.Option(None, "--client-secret", help="OAuth2 consumer secret."),
    access_rules: Optional[str] = typer.Option(None, "--access-rules", help="JSON file or URL with repository access rules."),
    branch_rules: Optional[str] = typer.Option(None, "--branch-rules", help="JSON file or URL with branch permission rules."),
    webhook: Optional[str] = typer.Option(None, "--webhook", help="Jenkins hostname used to register the repository webhook."),
    approvals: Optional[int] = typer.Option(None, "--approvals", min=0, help="Default number of approvals required to merge a pull request."),
    success_builds: Optional[int] = typer.Option(None, "--success-builds", min=0, help="Default number of successful builds required to merge a pull request."),
    only_branches: bool = typer.Option(False, "--only-branches", help="Update only branch restrictions."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log the changes instead of applying them."),
    debug: bool = typer.Option(False, "--debug", help="Print debugging information."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines."),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="YAML settings file."),
):
    """Apply access rules, branch restrictions and webhook to the selected repositories."""
    try:
        settings = build_settings(load_settings(config_path), {
            "workspace": workspace,
            "filter": _split(filters),
            "projects": _split(projects),
            "access_rules": access_rules,
            "branch_rules": branch_rules,
            "webhook_hostname": webhook,
            "approvals": approvals,
            "success_builds": success_builds,
            "only_branches": only_branches or None,
            "dry_run": dry_run or None,
            "debug": debug or None,
            "json_logs": json_logs or None,
            "credentials": _credentials(username, password, client_id, client_secret),
        })
        if settings.credentials is None:
            raise CredentialsError(
                "Missing required option: username/password or client-id/client-secret"
            )
    except RepoSettingsError as e:
        _fail(e)

    setup_logging(settings.log_level, settings.json_logs)
    try:
        with BitbucketCloudClient(settings.credentials) as client:
            report = RepoSettingsConfigurator(settings, client).run()
    except RepoSettingsError as e:
        _fail(e)

    if not report.success:
        console.print(f"[bold yellow]Completed with failures:[/bold yellow] {report.summary}")
        raise typer.Exit(code=PARTIAL_FAILURE_EXIT_CODE)
    console.print(f"[bold green]Done:[/bold green] {report.summary}")


@app.command("show-rules")
def show_rules(
    access_rules: str = typer.Option(DEFAULT_ACCESS_RULES, "--access-rules", help="JSON file or URL with repository access rules."),
    branch_rules: str = typer.Option(DEFAULT_BRANCH_RULES, "--branch-rules", help="JSON file or URL with branch permission rules."),
):
    """Validate the rule documents and print them."""
    defaults = RunSettings(workspace="-")
    reader = RulesReader(access_rules, branch_rules, defaults.approvals, defaults.success_builds)
    try:
        repository_rules = reader.repository_rules()
        branch_permission_rules = reader.branch_rules()
    except RepoSettingsError as e:
        _fail(e)

    out = Console()
    table = Table("Repositories", "Inherited", "Users", "Groups", "Comment", title="Access rules")
    for rule in repository_rules:
        table.add_row(
            rule.repository_patterns,
            "yes" if rule.inherited else "no",
            "\n".join(str(r) for r in rule.users),
            "\n".join(str(r) for r in rule.groups),
            rule.comment or "",
        )
    out.print(table)

    table = Table("Repositories", "Branch", "Approvals", "Builds", "Users", "Groups", title="Branch rules")
    for rule in branch_permission_rules:
        table.add_row(
            rule.repository_patterns,
            rule.branch_pattern,
            str(rule.min_approvals),
            str(rule.success_builds),
            "\n".join(str(r) for r in rule.users),
            "\n".join(str(r) for r in rule.groups),
        )
    out.print(table)


if __name__ == "__main__":
    app()

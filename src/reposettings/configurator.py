# src/reposettings/configurator.py: Repository settings orchestration.
# This module drives a run: it selects the repositories of the workspace,
# validates the access rules against all of them before touching anything,
# then for each repository applies the access changes, the branch
# restrictions and the CI webhook through the Bitbucket client.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from . import permissions, restrictions, webhooks
from .client import DryRunClient
from .config import RunSettings
from .models import Permission, Principal, Repository
from .rules import RulesReader
from .selector import match
from .util.errors import ClientError, CredentialsError
from .util.log import get_logger, repository_scope

logger = get_logger(__name__)


@dataclass
class RunReport:
    processed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    operation_failures: int = 0

    @property
    def success(self) -> bool:
        return not self.failed and self.operation_failures == 0

    @property
    def summary(self) -> str:
        return (
            f"{len(self.processed)} processed, {len(self.skipped)} skipped, "
            f"{len(self.failed)} failed, {self.operation_failures} failed operations"
        )


class RepoSettingsConfigurator:
    """
    Applies the access rules, branch rules and webhook to every repository
    selected by the run settings.
    """

    def __init__(self, settings: RunSettings, client, rules: RulesReader | None = None):
        self.settings = settings
        self.client = DryRunClient(client) if settings.dry_run else client
        self.workspace = settings.workspace
        self.rules = rules or RulesReader(
            settings.access_rules,
            settings.branch_rules,
            approvals=settings.approvals,
            success_builds=settings.success_builds,
        )

    def run(self) -> RunReport:
        """
        Processes every selected repository.

        Raises:
            CredentialsError: If the client is not authenticated.
            ConfigError: If a rule document cannot be loaded.
            RuleConflictError: If the access rules conflict on any selected
                repository.

        Nothing is modified when one of these is raised.
        """
        if self.client.get_user() is None:
            username = self.settings.credentials.username if self.settings.credentials else None
            raise CredentialsError(f"Bad credentials for user {username}")

        report = RunReport()
        repositories = self.select_repositories()
        if not repositories:
            logger.error("No repository matches filter & project")
            return report

        self._check_rules(repositories)

        for repo in repositories:
            with repository_scope(repo):
                logger.info(f"Processing repository {repo}")
                try:
                    if not self._can_setup(repo):
                        logger.error(f"Cannot setup repository {repo}. Missing admin permission")
                        report.skipped.append(repo)
                        continue
                    authorized = self.process_repository_permission(repo)
                    report.operation_failures += self.process_branch_permissions(repo, authorized)
                    report.operation_failures += self.process_webhook(repo)
                    report.processed.append(repo)
                except ClientError as e:
                    logger.error(f"Failed to configure repository '{repo}': {e}")
                    report.failed.append(repo)

        logger.info(f"Run completed: {report.summary}")
        return report

    def select_repositories(self) -> List[str]:
        """Slugs of the workspace repositories matching the filters, sorted."""
        return sorted({
            repo.slug
            for repo in self.client.get_repositories(self.workspace)
            if self._is_selected(repo)
        })

    def _is_selected(self, repo: Repository) -> bool:
        if not any(match(f, repo.slug) for f in self.settings.filter):
            return False
        return not self.settings.projects or repo.project_key in self.settings.projects

    def _check_rules(self, repositories: List[str]) -> None:
        """Loads both rule documents and checks access rule conflicts before any change."""
        self.rules.branch_rules()
        if self.settings.only_branches:
            return
        access_rules = self.rules.repository_rules()
        for repo in repositories:
            permissions.select_access_rules(repo, access_rules)

    def _can_setup(self, repo: str) -> bool:
        return self.client.get_permission(self.workspace, repo) == Permission.ADMIN

    def process_repository_permission(self, repo: str) -> List[Principal]:
        """Applies the "User and group access" section, returns who has access."""
        observed = self.client.get_groups_permissions(self.workspace, repo)
        if self.settings.only_branches:
            plan = permissions.reconcile(repo, [], observed, [], None, branches_only=True)
            return plan.authorized

        plan = permissions.reconcile(
            repo,
            self.rules.repository_rules(),
            observed,
            self.client.get_groups(self.workspace),
            permissions.WorkspaceUsers(self.client, self.workspace),
        )
        for change in plan.changes:
            logger.info(f"Applying: {change.description}")
            principal = change.principal
            if principal.type == "user":
                self.client.update_user_permission(self.workspace, repo, principal.uuid, change.permission)
            elif change.is_revoke:
                self.client.delete_group_permission(self.workspace, repo, principal.slug)
            else:
                self.client.update_group_permission(self.workspace, repo, principal.slug, change.permission)
        return plan.authorized

    def process_branch_permissions(self, repo: str, authorized: List[Principal]) -> int:
        """Applies the branch restrictions, returns how many failed."""
        branch_rules = [rule for rule in self.rules.branch_rules() if rule.accept(repo)]
        observed = self.client.get_branch_restrictions(self.workspace, repo)
        batch = restrictions.merge(branch_rules, observed, authorized)
        return restrictions.apply_restrictions(
            lambda r: self.client.update_branch_restriction(self.workspace, repo, r), batch
        )

    def process_webhook(self, repo: str) -> int:
        """Keeps a single Jenkins webhook, returns how many deletions failed."""
        if not self.settings.webhook_hostname:
            logger.debug("No webhook hostname configured, skipping webhook")
            return 0
        desired = webhooks.jenkins_webhook(self.settings.webhook_hostname)
        existing = self.client.get_webhooks(self.workspace, repo, webhooks.JENKINS_WEBHOOKS_NAMES)
        plan = webhooks.plan_webhooks(existing, desired)
        return webhooks.apply_webhooks(self.client, self.workspace, repo, plan)

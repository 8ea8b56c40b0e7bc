# src/reposettings/util/errors.py: Typed exceptions and exit codes.
# This module defines the exception hierarchy of the application. Each error
# class carries the process exit code the CLI reports when it aborts a run, so
# callers can map failures to exit statuses without inspecting messages.

class RepoSettingsError(Exception):
    """Base exception for the application."""
    exit_code = 1

class ConfigError(RepoSettingsError):
    """Run settings or rule document errors."""
    exit_code = 2

class RuleConflictError(ConfigError):
    """More than one non-inherited access rule matches a repository."""
    exit_code = 3

    def __init__(self, repository: str, rules):
        self.repository = repository
        self.rules = list(rules)
        names = ", ".join(str(rule) for rule in self.rules)
        super().__init__(
            f"Repository '{repository}' matches multiple independent access rules: {names}"
        )

class CredentialsError(RepoSettingsError):
    """Missing or rejected credentials."""
    exit_code = 4

class ClientError(RepoSettingsError):
    """Bitbucket API call failures."""
    exit_code = 5

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code

PARTIAL_FAILURE_EXIT_CODE = 6

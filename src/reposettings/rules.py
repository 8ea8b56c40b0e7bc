# src/reposettings/rules.py: Policy rule documents.
# This module defines the pydantic models for the two JSON rule documents
# (repository access rules and branch permission rules) and the reader that
# loads them from a URL, a local file or a document bundled with the package.
# Models are frozen: the rule set is read once and never changes during a run.

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any, List, Optional

import requests
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from .models import Group, Permission, User
from .selector import match, match_any, split_patterns
from .util.errors import ConfigError

DEFAULT_ACCESS_RULES = "repository-permissions.json"
DEFAULT_BRANCH_RULES = "branch-permissions.json"
URL_TIMEOUT = 10


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class AccessRule(_Rule):
    """A user or group entry of the "User and group access" section."""
    pattern: str
    privilege: Permission

    @field_validator("privilege", mode="before")
    @classmethod
    def _parse_privilege(cls, value: Any) -> Permission:
        return Permission.parse(value)

    def accept(self, name: str) -> bool:
        # every comma separated term must match
        return all(match(p, name) for p in split_patterns(self.pattern))

    def __str__(self) -> str:
        return f"{self.pattern} {self.privilege.name}"


class RepositoryAccessRule(_Rule):
    repository_patterns: str = Field(alias="repositoryPatterns")
    users: List[AccessRule] = Field(default_factory=list)
    groups: List[AccessRule] = Field(default_factory=list)
    inherited: bool = True
    comment: Optional[str] = None

    def accept(self, repository: str) -> bool:
        return match_any(split_patterns(self.repository_patterns), repository)

    def __str__(self) -> str:
        return self.repository_patterns


class BranchPermissionUserRule(_Rule):
    uuid: Optional[str] = None
    username: Optional[str] = None
    write_access: bool = Field(default=False, alias="writeAccess")
    merge_pr: bool = Field(default=False, alias="mergePR")

    @model_validator(mode="after")
    def _require_identity(self) -> "BranchPermissionUserRule":
        if not self.uuid and not self.username:
            raise ValueError("a branch user rule needs a uuid or a username")
        return self

    def accept(self, user: User) -> bool:
        if self.uuid:
            return self.uuid == user.uuid
        return self.username == user.nickname

    def __str__(self) -> str:
        return f"{self.username or self.uuid} write:{self.write_access} merge:{self.merge_pr}"


class BranchPermissionGroupRule(_Rule):
    pattern: str
    write_access: bool = Field(default=False, alias="writeAccess")
    merge_pr: bool = Field(default=False, alias="mergePR")

    def accept(self, group: Group) -> bool:
        return match(self.pattern, group.display_name)

    def __str__(self) -> str:
        return f"{self.pattern} write:{self.write_access} merge:{self.merge_pr}"


class BranchPermissionRule(_Rule):
    repository_patterns: str = Field(alias="repositoryPatterns")
    branch_pattern: str = Field(
        validation_alias=AliasChoices("branchPattern", "branchPatterns", "branch_pattern")
    )
    min_approvals: Optional[int] = Field(default=None, alias="minApprovals", ge=0)
    success_builds: Optional[int] = Field(default=None, alias="successBuilds", ge=0)
    users: List[BranchPermissionUserRule] = Field(default_factory=list)
    groups: List[BranchPermissionGroupRule] = Field(default_factory=list)

    def accept(self, repository: str) -> bool:
        return match(self.repository_patterns, repository)

    def with_defaults(self, approvals: int, success_builds: int) -> "BranchPermissionRule":
        """Fills unset thresholds with the run-level defaults."""
        return self.model_copy(update={
            "min_approvals": approvals if self.min_approvals is None else self.min_approvals,
            "success_builds": success_builds if self.success_builds is None else self.success_builds,
        })

    def write_users(self) -> List[BranchPermissionUserRule]:
        return [rule for rule in self.users if rule.write_access]

    def write_groups(self) -> List[BranchPermissionGroupRule]:
        return [rule for rule in self.groups if rule.write_access]

    def __str__(self) -> str:
        return f"{self.repository_patterns} -> {self.branch_pattern}"


_access_rules = TypeAdapter(List[RepositoryAccessRule])
_branch_rules = TypeAdapter(List[BranchPermissionRule])


def read_document(source: str) -> Any:
    """
    Reads a JSON document from a URL, a file path or the bundled defaults.

    Raises:
        ConfigError: If the source cannot be found, fetched or decoded.
    """
    try:
        if source.startswith(("http://", "https://")):
            response = requests.get(source, timeout=URL_TIMEOUT)
            response.raise_for_status()
            return response.json()

        path = Path(source).expanduser()
        if path.is_file():
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)

        bundled = resources.files("reposettings.data").joinpath(source.lstrip("/"))
        if bundled.is_file():
            return json.loads(bundled.read_text(encoding="utf-8"))
    except requests.RequestException as e:
        raise ConfigError(f"Failed to fetch rules from '{source}': {e}")
    except (json.JSONDecodeError, ValueError) as e:
        raise ConfigError(f"Rules document '{source}' is not valid JSON: {e}")
    except OSError as e:
        raise ConfigError(f"Rules document '{source}' cannot be read: {e}")

    raise ConfigError(f"Rules document '{source}' not found")


class RulesReader:
    """Loads and validates both rule documents once per run."""

    def __init__(
        self,
        access_rules: str = DEFAULT_ACCESS_RULES,
        branch_rules: str = DEFAULT_BRANCH_RULES,
        approvals: int = 2,
        success_builds: int = 1,
    ):
        self.access_source = access_rules
        self.branch_source = branch_rules
        self.approvals = approvals
        self.success_builds = success_builds
        self._repository_rules: Optional[List[RepositoryAccessRule]] = None
        self._branch_rules: Optional[List[BranchPermissionRule]] = None

    def repository_rules(self) -> List[RepositoryAccessRule]:
        if self._repository_rules is None:
            document = read_document(self.access_source)
            try:
                self._repository_rules = _access_rules.validate_python(document)
            except ValidationError as e:
                raise ConfigError(f"Invalid access rules in '{self.access_source}': {e}")
        return self._repository_rules

    def branch_rules(self) -> List[BranchPermissionRule]:
        if self._branch_rules is None:
            document = read_document(self.branch_source)
            try:
                rules = _branch_rules.validate_python(document)
            except ValidationError as e:
                raise ConfigError(f"Invalid branch rules in '{self.branch_source}': {e}")
            self._branch_rules = [
                rule.with_defaults(self.approvals, self.success_builds) for rule in rules
            ]
        return self._branch_rules

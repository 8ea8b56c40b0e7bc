# src/reposettings/permissions.py: User and group access reconciliation.
# This module computes the "User and group access" section a repository
# should have according to the access rules, compares it with the grants
# observed on Bitbucket and returns the changes to apply together with the
# principals that end up authorized. It performs no remote mutation itself.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .models import Group, Permission, Principal, User
from .rules import RepositoryAccessRule
from .util.errors import RuleConflictError
from .util.log import get_logger

logger = get_logger(__name__)


class UserDirectory(Protocol):
    """Resolves user access rules against the remote service."""

    def resolve_user(self, name: str) -> Optional[User]:
        ...

    def user_permission(self, repo_name: str, user: User) -> Permission:
        ...


class WorkspaceUsers:
    """UserDirectory backed by a Bitbucket client for one workspace."""

    def __init__(self, client, workspace: str):
        self.client = client
        self.workspace = workspace

    def resolve_user(self, name: str) -> Optional[User]:
        return self.client.get_user_by_name(name)

    def user_permission(self, repo_name: str, user: User) -> Permission:
        return self.client.get_user_permission(self.workspace, repo_name, user.uuid)


@dataclass(frozen=True)
class PermissionChange:
    """A single grant, update or revocation on a repository."""
    principal: Principal
    permission: Permission
    current: Permission = Permission.NONE

    @property
    def is_revoke(self) -> bool:
        return self.permission == Permission.NONE

    @property
    def description(self) -> str:
        kind = self.principal.type
        if self.is_revoke:
            return f"revoke {kind} '{self.principal}' access ({self.current.name})"
        return f"grant {kind} '{self.principal}' {self.permission.name} (was {self.current.name})"


@dataclass
class PermissionPlan:
    changes: List[PermissionChange] = field(default_factory=list)
    authorized: List[Principal] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return len(self.changes) > 0

    @property
    def users(self) -> List[User]:
        return [p for p in self.authorized if isinstance(p, User)]

    @property
    def groups(self) -> List[Group]:
        return [p for p in self.authorized if isinstance(p, Group)]


def select_access_rules(
    repo_name: str, rules: Iterable[RepositoryAccessRule]
) -> List[RepositoryAccessRule]:
    """
    Returns the access rules that apply to a repository.

    When exactly one matching rule is not inherited it is the only one kept.

    Raises:
        RuleConflictError: If more than one non-inherited rule matches.
    """
    matching = [rule for rule in rules if rule.accept(repo_name)]
    independent = [rule for rule in matching if not rule.inherited]
    if len(independent) > 1:
        raise RuleConflictError(repo_name, independent)
    if len(independent) == 1:
        return independent
    return matching


def desired_group_permissions(
    rules: Sequence[RepositoryAccessRule],
    all_groups: Iterable[Group],
    observed: Mapping[Group, Permission],
) -> Dict[Group, Permission]:
    """Highest privilege granted to each group, NONE for grants to drop."""
    desired: Dict[Group, Permission] = {}
    for group in all_groups:
        for rule in rules:
            for group_rule in rule.groups:
                if group_rule.accept(group.display_name):
                    desired[group] = max(desired.get(group, Permission.NONE), group_rule.privilege)
        if group not in desired and group in observed:
            desired[group] = Permission.NONE
    return desired


def _group_changes(
    desired: Mapping[Group, Permission], observed: Mapping[Group, Permission]
) -> tuple[List[PermissionChange], List[Group]]:
    changes: List[PermissionChange] = []
    allowed: List[Group] = []
    for group, permission in desired.items():
        current = observed.get(group, Permission.NONE)
        if permission != Permission.NONE:
            if current != permission:
                changes.append(PermissionChange(group, permission, current))
            allowed.append(group)
        elif current != Permission.NONE:
            changes.append(PermissionChange(group, Permission.NONE, current))
    return changes, allowed


def _user_changes(
    repo_name: str, rules: Sequence[RepositoryAccessRule], users: UserDirectory
) -> tuple[List[PermissionChange], List[User]]:
    desired: Dict[User, Permission] = {}
    current: Dict[User, Permission] = {}
    for rule in rules:
        for user_rule in rule.users:
            user = users.resolve_user(user_rule.pattern)
            if user is None:
                logger.warning(f"User {user_rule.pattern} not found")
                continue
            if user not in current:
                current[user] = users.user_permission(repo_name, user)
            desired[user] = max(desired.get(user, Permission.NONE), user_rule.privilege)

    for user, permission in desired.items():
        if permission < current[user]:
            logger.warning(
                f"User {user} has higher permission ({current[user].name}) than configured "
                f"({permission.name})."
            )

    changes = [
        PermissionChange(user, permission, current[user])
        for user, permission in desired.items()
        if permission != current[user]
    ]
    allowed = [user for user, permission in desired.items() if permission != Permission.NONE]
    return changes, allowed


def reconcile(
    repo_name: str,
    access_rules: Sequence[RepositoryAccessRule],
    observed_group_grants: Mapping[Group, Permission],
    all_groups: Iterable[Group],
    users: UserDirectory,
    branches_only: bool = False,
) -> PermissionPlan:
    """
    Computes the access changes of a repository.

    Args:
        repo_name: The repository slug.
        access_rules: Every rule of the access rules document.
        observed_group_grants: Groups currently granted on the repository.
        all_groups: Every group of the workspace.
        users: Resolves user rules and their current permission.
        branches_only: Leave access untouched and report the observed groups
            as authorized.

    Returns:
        The changes to apply and the principals authorized afterwards.

    Raises:
        RuleConflictError: If several non-inherited rules match the repository.
    """
    if branches_only:
        logger.debug("Skip repository user/group access")
        return PermissionPlan(authorized=list(observed_group_grants.keys()))

    rules = select_access_rules(repo_name, access_rules)
    if not rules:
        return PermissionPlan()

    user_changes, allowed_users = _user_changes(repo_name, rules, users)
    desired_groups = desired_group_permissions(rules, all_groups, observed_group_grants)
    group_changes, allowed_groups = _group_changes(desired_groups, observed_group_grants)

    return PermissionPlan(
        changes=user_changes + group_changes,
        authorized=[*allowed_users, *allowed_groups],
    )

# src/reposettings/models.py: Domain objects exchanged with Bitbucket.
# This module defines the value types the reconciler reasons about: the
# ordered repository permission, users and groups, repositories, webhooks and
# branch restrictions. Principals compare by their stable identifier only, so
# objects decoded from different API endpoints describe the same entity.

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import FrozenSet, Optional, Union


class Permission(IntEnum):
    """Repository privilege, ordered from no access to administration."""
    NONE = 0
    READ = 1
    WRITE = 2
    ADMIN = 3

    @classmethod
    def parse(cls, value: Union[str, "Permission", None]) -> "Permission":
        """Parses rule ('WRITE') and API ('write') spellings."""
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown permission '{value}'") from None

    @property
    def api_value(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class User:
    uuid: str
    nickname: str = field(default="", compare=False)
    display_name: str = field(default="", compare=False)

    @property
    def type(self) -> str:
        return "user"

    def __str__(self) -> str:
        return self.nickname or self.display_name or self.uuid


@dataclass(frozen=True)
class Group:
    slug: str
    name: str = field(default="", compare=False)

    @property
    def type(self) -> str:
        return "group"

    @property
    def display_name(self) -> str:
        return self.name or self.slug

    def __str__(self) -> str:
        return self.display_name


Principal = Union[User, Group]


@dataclass(frozen=True)
class Repository:
    slug: str
    project_key: Optional[str] = None


class RestrictionKind(str, Enum):
    PUSH = "push"
    MERGE = "restrict_merges"
    DELETE = "delete"
    FORCE_PUSH = "force"
    MIN_SUCCESSFUL_BUILDS = "require_passing_builds_to_merge"
    MIN_APPROVALS = "require_approvals_to_merge"
    NO_CHANGES_REQUESTED = "require_no_changes_requested"
    RESET_APPROVALS_ON_CHANGE = "reset_pullrequest_changes_requested_on_change"
    REQUIRE_TASKS_COMPLETED = "require_tasks_to_be_completed"

    @property
    def has_principals(self) -> bool:
        return self in (RestrictionKind.PUSH, RestrictionKind.MERGE)

    @property
    def has_threshold(self) -> bool:
        return self in (RestrictionKind.MIN_SUCCESSFUL_BUILDS, RestrictionKind.MIN_APPROVALS)


@dataclass(frozen=True)
class BranchRestriction:
    """
    A branch protection rule, either observed on Bitbucket (``id`` set) or
    desired by the branch rules (``id`` unset until it must update an
    observed one).
    """
    kind: RestrictionKind
    pattern: str
    users: FrozenSet[User] = frozenset()
    groups: FrozenSet[Group] = frozenset()
    value: Optional[int] = None
    id: Optional[int] = None

    @property
    def slot(self) -> tuple[str, RestrictionKind]:
        return (self.pattern, self.kind)

    def same_slot(self, other: "BranchRestriction") -> bool:
        return self.slot == other.slot

    def is_equivalent(self, other: "BranchRestriction") -> bool:
        """Same slot, principals and threshold, regardless of remote id."""
        return (
            self.same_slot(other)
            and set(self.users) == set(other.users)
            and set(self.groups) == set(other.groups)
            and self.value == other.value
        )

    def with_id(self, restriction_id: Optional[int]) -> "BranchRestriction":
        return replace(self, id=restriction_id)

    def merged_with(self, other: "BranchRestriction") -> "BranchRestriction":
        """Union of both principal sets, keeping the strictest threshold."""
        values = [v for v in (self.value, other.value) if v is not None]
        return replace(
            self,
            users=self.users | other.users,
            groups=self.groups | other.groups,
            value=max(values) if values else None,
            id=self.id if self.id is not None else other.id,
        )

    def __str__(self) -> str:
        return f"{self.kind.value} on '{self.pattern}'"


@dataclass(frozen=True)
class Webhook:
    url: str
    description: str = ""
    events: FrozenSet[str] = frozenset()
    active: bool = True
    uuid: Optional[str] = field(default=None, compare=False)

    def is_equivalent(self, other: "Webhook") -> bool:
        return (
            self.url == other.url
            and set(self.events) == set(other.events)
            and self.active == other.active
        )

    def with_uuid(self, uuid: Optional[str]) -> "Webhook":
        return replace(self, uuid=uuid)

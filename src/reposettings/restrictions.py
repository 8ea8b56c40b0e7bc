# src/reposettings/restrictions.py: Branch restriction planning.
# This module derives the branch restrictions each branch rule asks for and
# folds them, rule after rule, into the smallest batch of restrictions that
# must be created or updated on Bitbucket. Several rules can target the same
# (pattern, kind) slot, e.g. 'support/*' and a more specific rule sharing its
# pattern; their principals are merged so that no rule overwrites another.

from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
from typing import Callable, Iterable, Optional, Sequence, Tuple

from .models import BranchRestriction, Group, Principal, RestrictionKind, User
from .rules import BranchPermissionRule
from .util.errors import ClientError
from .util.log import get_logger

logger = get_logger(__name__)

Batch = Tuple[BranchRestriction, ...]


def _authorized_users(authorized: Iterable[Principal], rules) -> frozenset[User]:
    return frozenset(
        user for user in authorized
        if isinstance(user, User) and any(rule.accept(user) for rule in rules)
    )


def _authorized_groups(authorized: Iterable[Principal], rules) -> frozenset[Group]:
    return frozenset(
        group for group in authorized
        if isinstance(group, Group) and any(rule.accept(group) for rule in rules)
    )


def desired_restrictions(
    rule: BranchPermissionRule, authorized: Sequence[Principal]
) -> list[BranchRestriction]:
    """
    Restrictions requested by a branch rule, in application order.

    Only principals that have access to the repository are placed in the push
    and merge restrictions. Thresholds must already be resolved on the rule.
    """
    pattern = rule.branch_pattern
    return [
        # write access
        BranchRestriction(
            RestrictionKind.PUSH, pattern,
            users=_authorized_users(authorized, rule.write_users()),
            groups=_authorized_groups(authorized, rule.write_groups()),
        ),
        # merge via pull request
        BranchRestriction(
            RestrictionKind.MERGE, pattern,
            users=_authorized_users(authorized, rule.users),
            groups=_authorized_groups(authorized, rule.groups),
        ),
        BranchRestriction(RestrictionKind.DELETE, pattern),
        BranchRestriction(RestrictionKind.FORCE_PUSH, pattern),
        BranchRestriction(RestrictionKind.MIN_SUCCESSFUL_BUILDS, pattern, value=rule.success_builds),
        BranchRestriction(RestrictionKind.MIN_APPROVALS, pattern, value=rule.min_approvals),
        BranchRestriction(RestrictionKind.NO_CHANGES_REQUESTED, pattern),
        BranchRestriction(RestrictionKind.RESET_APPROVALS_ON_CHANGE, pattern),
        BranchRestriction(RestrictionKind.REQUIRE_TASKS_COMPLETED, pattern),
    ]


@dataclass(frozen=True)
class RestrictionBatch:
    """
    State of the restriction fold.

    ``pending`` holds the restrictions to create or update. ``settled`` holds
    the slots the rules folded so far want exactly as they are observed; they
    are kept so that a later rule on the same slot still merges with them.
    A slot is never in both.
    """
    pending: Batch = ()
    settled: Batch = ()


def _find_pending(batch: Batch, restriction: BranchRestriction) -> Optional[int]:
    if restriction.id is not None:
        for index, pending in enumerate(batch):
            if pending.id == restriction.id:
                return index
    for index, pending in enumerate(batch):
        if pending.same_slot(restriction):
            return index
    return None


def _replace(batch: Batch, index: int, restriction: BranchRestriction) -> Batch:
    return batch[:index] + (restriction,) + batch[index + 1:]


def _remove(batch: Batch, index: int) -> Batch:
    return batch[:index] + batch[index + 1:]


def _observed_slot(
    observed: Sequence[BranchRestriction], restriction: BranchRestriction
) -> Optional[BranchRestriction]:
    return next((r for r in observed if r.same_slot(restriction)), None)


def plan_restriction(
    batch: RestrictionBatch,
    desired: BranchRestriction,
    observed: Sequence[BranchRestriction],
) -> RestrictionBatch:
    """
    Folds one desired restriction into the batch.

    A restriction whose slot is already defined on Bitbucket adopts the
    remote id so that applying it updates the existing one. When an entry
    for the same id or slot was folded before, both are merged (union of
    principals, highest threshold). The result stays pending unless it is
    equivalent to the observed restriction of its slot, in which case it is
    settled and nothing is sent for it.

    Args:
        batch: The fold state so far.
        desired: A freshly built restriction without remote id.
        observed: Restrictions currently defined on the repository.

    Returns:
        The new state. ``batch`` itself is never modified.
    """
    current = _observed_slot(observed, desired)
    if current is not None:
        desired = desired.with_id(current.id)

    pending, settled = batch.pending, batch.settled
    index = _find_pending(pending, desired)
    if index is not None:
        desired = pending[index].merged_with(desired)
    else:
        known = _find_pending(settled, desired)
        if known is not None:
            desired = settled[known].merged_with(desired)
            settled = _remove(settled, known)

    if current is not None and current.is_equivalent(desired):
        if index is not None:
            pending = _remove(pending, index)
        return RestrictionBatch(pending, settled + (desired,))
    if index is not None:
        return RestrictionBatch(_replace(pending, index, desired), settled)
    return RestrictionBatch(pending + (desired,), settled)


def merge(
    branch_rules: Iterable[BranchPermissionRule],
    observed: Sequence[BranchRestriction],
    authorized: Sequence[Principal],
) -> Batch:
    """Restrictions to create or update for all rules matching a repository."""
    desired = [
        restriction
        for rule in branch_rules
        for restriction in desired_restrictions(rule, authorized)
    ]
    batch = reduce(
        lambda state, r: plan_restriction(state, r, observed), desired, RestrictionBatch()
    )
    return batch.pending


def apply_restrictions(
    update: Callable[[BranchRestriction], object],
    batch: Batch,
) -> int:
    """
    Pushes every planned restriction, one call each.

    A failing call is logged and skipped, the others are still applied.

    Returns:
        The number of restrictions that failed.
    """
    failures = 0
    for restriction in batch:
        action = "Updating" if restriction.id is not None else "Adding"
        logger.debug(f"{action} restriction {restriction}")
        try:
            update(restriction)
        except ClientError as e:
            failures += 1
            logger.error(f"Failed to apply restriction {restriction}: {e}")
    return failures

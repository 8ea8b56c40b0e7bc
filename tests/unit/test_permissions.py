# tests/unit/test_permissions.py: Unit tests for user and group access reconciliation.

import logging

import pytest

from reposettings.models import Group, Permission, User
from reposettings.permissions import (
    PermissionChange,
    reconcile,
    select_access_rules,
)
from reposettings.rules import RepositoryAccessRule
from reposettings.util.errors import RuleConflictError

GROUP1 = Group("group1", "group1")
GROUP2 = Group("group2", "group2")
ADMINS = Group("administrators", "Administrators")
ALL_GROUPS = [GROUP1, GROUP2, ADMINS]

ALICE = User("{alice}", "alice")


class FakeUsers:
    """In-memory user directory."""

    def __init__(self, users=None, permissions=None):
        self.users = users or {}
        self.permissions = permissions or {}
        self.lookups = []

    def resolve_user(self, name):
        return self.users.get(name)

    def user_permission(self, repo_name, user):
        self.lookups.append((repo_name, user))
        return self.permissions.get(user, Permission.NONE)


def _rule(patterns, groups=(), users=(), inherited=True):
    return RepositoryAccessRule.model_validate({
        "repositoryPatterns": patterns,
        "inherited": inherited,
        "groups": [{"pattern": p, "privilege": v} for p, v in groups],
        "users": [{"pattern": p, "privilege": v} for p, v in users],
    })

def test_all_inherited_rules_apply(rules_reader):
    """Tests that every matching inherited rule is kept, in document order."""
    rules = rules_reader().repository_rules()
    selected = select_access_rules("prj1.prod.repo2", rules)
    assert [r.repository_patterns for r in selected] == ["*", "prj1.*"]

def test_most_specific_rule_wins(rules_reader):
    """Tests that a single non-inherited match replaces the inherited ones."""
    rules = rules_reader().repository_rules()
    selected = select_access_rules("repo3", rules)
    assert [r.repository_patterns for r in selected] == ["repo3*"]

def test_conflicting_rules_raise(rules_reader):
    """Tests that two non-inherited matches are refused."""
    rules = rules_reader("test-repository-permissions-conflict.json").repository_rules()

    with pytest.raises(RuleConflictError) as excinfo:
        select_access_rules("repo3-deploy", rules)

    assert excinfo.value.repository == "repo3-deploy"
    assert len(excinfo.value.rules) == 2
    assert "repo*" in str(excinfo.value)
    # one match only is fine
    assert len(select_access_rules("repo1", rules)) == 1

def test_highest_group_privilege_wins(rules_reader):
    """Tests that a group listed by several rules gets the highest privilege."""
    rules = rules_reader().repository_rules()
    plan = reconcile("prj1.prod.repo2", rules, {GROUP2: Permission.READ}, ALL_GROUPS, FakeUsers())

    assert plan.changes == [PermissionChange(GROUP2, Permission.WRITE, Permission.READ)]
    assert plan.authorized == [GROUP2]

def test_ungoverned_group_is_revoked(rules_reader):
    """Tests that observed grants not covered by the selected rules are revoked."""
    rules = rules_reader("test-repository-permissions-exclude.json").repository_rules()
    observed = {GROUP2: Permission.WRITE}

    plan = reconcile("repo3-deploy", rules, observed, ALL_GROUPS, FakeUsers())

    assert PermissionChange(GROUP2, Permission.NONE, Permission.WRITE) in plan.changes
    assert PermissionChange(GROUP1, Permission.READ, Permission.NONE) in plan.changes
    assert plan.authorized == [GROUP1]
    revoke = next(c for c in plan.changes if c.is_revoke)
    assert "revoke group 'group2'" in revoke.description

def test_unobserved_ungoverned_group_is_ignored(rules_reader):
    """Tests that groups neither granted nor governed produce no change."""
    rules = rules_reader().repository_rules()
    plan = reconcile("repo1", rules, {GROUP2: Permission.READ}, ALL_GROUPS, FakeUsers())
    assert not plan.has_changes
    assert plan.groups == [GROUP2]

def test_reconcile_is_idempotent(rules_reader):
    """Tests that applying a plan and reconciling again yields no change."""
    rules = rules_reader("test-repository-permissions-exclude.json").repository_rules()
    observed = {GROUP2: Permission.WRITE, ADMINS: Permission.ADMIN}

    plan = reconcile("repo3-deploy", rules, observed, ALL_GROUPS, FakeUsers())
    applied = dict(observed)
    for change in plan.changes:
        if change.is_revoke:
            applied.pop(change.principal)
        else:
            applied[change.principal] = change.permission

    assert applied == {GROUP1: Permission.READ}
    assert not reconcile("repo3-deploy", rules, applied, ALL_GROUPS, FakeUsers()).has_changes

def test_no_matching_rule_leaves_access_untouched():
    """Tests that a repository no rule selects gets an empty plan."""
    rules = [_rule("other*", groups=[("group1", "READ")])]
    plan = reconcile("repo1", rules, {GROUP2: Permission.WRITE}, ALL_GROUPS, FakeUsers())
    assert not plan.has_changes
    assert plan.authorized == []

def test_user_gets_max_privilege():
    """Tests that a user listed twice is granted the highest privilege."""
    rules = [
        _rule("*", users=[("alice", "READ")]),
        _rule("repo*", users=[("alice", "WRITE")]),
    ]
    users = FakeUsers(users={"alice": ALICE})

    plan = reconcile("repo1", rules, {}, ALL_GROUPS, users)

    assert plan.changes == [PermissionChange(ALICE, Permission.WRITE, Permission.NONE)]
    assert plan.users == [ALICE]
    # current permission is fetched once per user
    assert users.lookups == [("repo1", ALICE)]

def test_user_downgrade_is_warned(caplog):
    """Tests that lowering a user's permission is logged as a warning."""
    rules = [_rule("*", users=[("alice", "READ")])]
    users = FakeUsers(users={"alice": ALICE}, permissions={ALICE: Permission.ADMIN})

    with caplog.at_level(logging.WARNING, logger="reposettings"):
        plan = reconcile("repo1", rules, {}, ALL_GROUPS, users)

    assert plan.changes == [PermissionChange(ALICE, Permission.READ, Permission.ADMIN)]
    assert "has higher permission (ADMIN)" in caplog.text

def test_no_downgrade_warning_when_another_rule_keeps_privilege(caplog):
    """Tests that a lower rule is not reported when a higher one keeps the current level."""
    rules = [
        _rule("*", users=[("alice", "READ")]),
        _rule("repo*", users=[("alice", "ADMIN")]),
    ]
    users = FakeUsers(users={"alice": ALICE}, permissions={ALICE: Permission.ADMIN})

    with caplog.at_level(logging.WARNING, logger="reposettings"):
        plan = reconcile("repo1", rules, {}, ALL_GROUPS, users)

    assert not plan.has_changes
    assert "higher permission" not in caplog.text

def test_unknown_user_is_skipped(caplog):
    """Tests that a user that cannot be resolved is logged and skipped."""
    rules = [_rule("*", users=[("ghost", "WRITE")], groups=[("group1", "READ")])]

    with caplog.at_level(logging.WARNING, logger="reposettings"):
        plan = reconcile("repo1", rules, {}, ALL_GROUPS, FakeUsers())

    assert "User ghost not found" in caplog.text
    assert plan.changes == [PermissionChange(GROUP1, Permission.READ, Permission.NONE)]
    assert plan.users == []

def test_user_already_granted_is_authorized_without_change():
    """Tests that a user at the desired level is kept authorized silently."""
    rules = [_rule("*", users=[("alice", "WRITE")])]
    users = FakeUsers(users={"alice": ALICE}, permissions={ALICE: Permission.WRITE})
    plan = reconcile("repo1", rules, {}, ALL_GROUPS, users)
    assert not plan.has_changes
    assert plan.authorized == [ALICE]

def test_branches_only_reports_observed_groups():
    """Tests that branch-only runs skip access and keep observed groups authorized."""
    observed = {GROUP1: Permission.READ, GROUP2: Permission.WRITE}
    plan = reconcile("repo1", [], observed, [], None, branches_only=True)
    assert not plan.has_changes
    assert plan.authorized == [GROUP1, GROUP2]

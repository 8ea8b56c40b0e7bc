# tests/unit/test_webhooks.py: Unit tests for the Jenkins webhook reconciliation.

from unittest.mock import MagicMock

from reposettings.models import Webhook
from reposettings.util.errors import ClientError
from reposettings.webhooks import (
    JENKINS_WEBHOOK_ALIAS,
    JENKINS_WEBHOOK_NAME,
    apply_webhooks,
    jenkins_webhook,
    plan_webhooks,
)

DESIRED = jenkins_webhook("https://jenkins.example.com/")


def _hook(uuid, url="https://old.example.com/hook", description=JENKINS_WEBHOOK_NAME, events=None):
    return Webhook(url=url, description=description, events=frozenset(events or {"repo:push"}), uuid=uuid)

def test_jenkins_webhook():
    """Tests the URL and events of the Jenkins webhook."""
    assert DESIRED.url == "https://jenkins.example.com/bitbucket-scmsource-hook/notify"
    assert DESIRED.description == JENKINS_WEBHOOK_NAME
    assert DESIRED.active
    assert DESIRED.events == {
        "repo:push",
        "pullrequest:created",
        "pullrequest:updated",
        "pullrequest:fulfilled",
        "pullrequest:rejected",
    }

def test_create_when_missing():
    """Tests that the webhook is created when none is registered."""
    plan = plan_webhooks([], DESIRED)
    assert plan.create == DESIRED
    assert plan.update is None
    assert plan.delete == []

def test_duplicates_are_collapsed():
    """Tests that with three stale hooks the first is updated and the others deleted."""
    hooks = [_hook("{a}"), _hook("{b}", description=JENKINS_WEBHOOK_ALIAS), _hook("{c}")]

    plan = plan_webhooks(hooks, DESIRED)

    assert plan.create is None
    assert plan.update.uuid == "{a}"
    assert plan.update.is_equivalent(DESIRED)
    assert [h.uuid for h in plan.delete] == ["{b}", "{c}"]

def test_matching_hook_is_kept():
    """Tests that an already correct hook is kept even when it is not first."""
    good = DESIRED.with_uuid("{good}")
    hooks = [_hook("{a}"), good]

    plan = plan_webhooks(hooks, DESIRED)

    assert plan.update is None and plan.create is None
    assert [h.uuid for h in plan.delete] == ["{a}"]

def test_single_matching_hook_is_a_noop():
    """Tests that a repository already set up produces an empty plan."""
    plan = plan_webhooks([DESIRED.with_uuid("{good}")], DESIRED)
    assert not plan.has_changes

def test_apply_update_and_delete():
    """Tests the client calls made for a duplicate cleanup."""
    client = MagicMock()
    plan = plan_webhooks([_hook("{a}"), _hook("{b}")], DESIRED)

    failures = apply_webhooks(client, "ws", "repo1", plan)

    assert failures == 0
    client.update_webhook.assert_called_once_with("ws", "repo1", plan.update)
    client.add_webhook.assert_not_called()
    client.delete_webhook.assert_called_once_with("ws", "repo1", "{b}")

def test_apply_create():
    """Tests that a missing webhook is added."""
    client = MagicMock()
    apply_webhooks(client, "ws", "repo1", plan_webhooks([], DESIRED))
    client.add_webhook.assert_called_once_with("ws", "repo1", DESIRED)

def test_delete_failure_is_counted():
    """Tests that a failed deletion is logged and does not stop the others."""
    client = MagicMock()
    client.delete_webhook.side_effect = [ClientError("gone", status_code=404), None]
    plan = plan_webhooks([DESIRED.with_uuid("{good}"), _hook("{b}"), _hook("{c}")], DESIRED)

    failures = apply_webhooks(client, "ws", "repo1", plan)

    assert failures == 1
    assert client.delete_webhook.call_count == 2

def test_disabled_hook_is_reenabled():
    """Tests that a hook with the right URL and events but inactive is updated."""
    disabled = Webhook(
        url=DESIRED.url, description=JENKINS_WEBHOOK_NAME, events=DESIRED.events,
        active=False, uuid="{off}",
    )

    plan = plan_webhooks([disabled], DESIRED)

    assert plan.update is not None
    assert plan.update.uuid == "{off}"
    assert plan.update.active
    assert plan.delete == []

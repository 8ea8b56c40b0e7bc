# src/reposettings/webhooks.py: CI webhook reconciliation.
# This module keeps exactly one Jenkins notification webhook on a repository.
# Bitbucket does not enforce unique webhook URLs, so hooks registered under
# one of the known aliases beyond the one that is kept are deleted.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .models import Webhook
from .util.errors import ClientError
from .util.log import get_logger

logger = get_logger(__name__)

JENKINS_WEBHOOK_NAME = "Jenkins hook"
JENKINS_WEBHOOK_ALIAS = "Jenkins"
JENKINS_WEBHOOKS_NAMES = (JENKINS_WEBHOOK_NAME, JENKINS_WEBHOOK_ALIAS)
JENKINS_WEBHOOK_URL = "{hostname}/bitbucket-scmsource-hook/notify"

REPO_PUSH = "repo:push"
PULLREQUEST_CREATED = "pullrequest:created"
PULLREQUEST_UPDATED = "pullrequest:updated"
PULLREQUEST_FULFILLED = "pullrequest:fulfilled"
PULLREQUEST_REJECTED = "pullrequest:rejected"


def jenkins_webhook(hostname: str) -> Webhook:
    """The webhook Jenkins' Bitbucket branch source plugin listens to."""
    return Webhook(
        url=JENKINS_WEBHOOK_URL.format(hostname=hostname.rstrip("/")),
        description=JENKINS_WEBHOOK_NAME,
        events=frozenset({
            REPO_PUSH,
            PULLREQUEST_CREATED,
            PULLREQUEST_UPDATED,
            PULLREQUEST_FULFILLED,
            PULLREQUEST_REJECTED,
        }),
    )


@dataclass
class WebhookPlan:
    create: Optional[Webhook] = None
    update: Optional[Webhook] = None
    delete: List[Webhook] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.create is not None or self.update is not None or bool(self.delete)


def plan_webhooks(existing: Sequence[Webhook], desired: Webhook) -> WebhookPlan:
    """
    Decides which hook to keep, create or update, and which to delete.

    ``existing`` holds only the hooks registered under a known alias.
    """
    keeper = next((hook for hook in existing if hook.is_equivalent(desired)), None)
    plan = WebhookPlan()
    if keeper is None:
        if existing:
            keeper = existing[0]
            plan.update = desired.with_uuid(keeper.uuid)
        else:
            plan.create = desired
    plan.delete = [hook for hook in existing if hook is not keeper]
    return plan


def apply_webhooks(client, workspace: str, repo: str, plan: WebhookPlan) -> int:
    """
    Applies a webhook plan.

    Create and update failures propagate, delete failures are logged and
    counted.

    Returns:
        The number of deletions that failed.
    """
    if plan.update is not None:
        client.update_webhook(workspace, repo, plan.update)
        logger.info(f"Updated webhook {plan.update.description} id {plan.update.uuid}")
    elif plan.create is not None:
        client.add_webhook(workspace, repo, plan.create)
        logger.info(f"Set webhook {plan.create.description}")

    failures = 0
    for hook in plan.delete:
        try:
            client.delete_webhook(workspace, repo, hook.uuid)
            logger.info(f"Deleted duplicate webhook {hook.description} id {hook.uuid}")
        except ClientError as e:
            failures += 1
            logger.error(f"Failed to delete webhook {hook.uuid}: {e}")
    return failures

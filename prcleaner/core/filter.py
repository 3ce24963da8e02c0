"""Decides whether an Azure DevOps notification warrants a cleanup.

Only ``git.pullrequest.updated`` events are acted on. Every other kind,
known or not, is logged and ignored so new service hook subscriptions never
break the endpoint. For pull request updates only the PR *status* is
considered; merge status (e.g. ``conflicts``) is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError

from prcleaner.errors import MalformedResourceError, MissingResourceLinkError
from prcleaner.models import CleanupRequest
from prcleaner.utils.logging import get_logger
from prcleaner.webhooks.models import (
    AzureDevOpsEventType,
    PullRequestResource,
    WebhookNotification,
)

log = get_logger(__name__)

TARGET_STATUSES = frozenset({"completed", "abandoned", "draft"})


class FilterAction(str, Enum):
    SCHEDULE = "schedule"
    IGNORE = "ignore"


@dataclass(frozen=True)
class FilterResult:
    action: FilterAction
    request: CleanupRequest | None = None
    reason: str = ""

    @property
    def should_schedule(self) -> bool:
        return self.action is FilterAction.SCHEDULE


def filter_notification(notification: WebhookNotification) -> FilterResult:
    """Map a validated notification to a schedule/ignore decision.

    Raises MalformedResourceError or MissingResourceLinkError when a pull
    request update breaks the payload contract.
    """
    kind = notification.kind
    if kind is AzureDevOpsEventType.GIT_PULL_REQUEST_UPDATED:
        return _filter_pull_request_updated(notification)

    log.warning(
        "event_type_not_supported",
        event_type=notification.event_type,
        msg="Only git.pullrequest.updated notifications trigger cleanup.",
    )
    return FilterResult(FilterAction.IGNORE, reason=f"unsupported event type '{notification.event_type}'")


def _filter_pull_request_updated(notification: WebhookNotification) -> FilterResult:
    try:
        resource = PullRequestResource.model_validate(notification.resource)
    except ValidationError as exc:
        raise MalformedResourceError(
            f"resource is not a pull request: {exc.error_count()} validation error(s)"
        ) from exc

    pr_id = resource.pull_request_id
    status = resource.status
    if status is None or status.lower() not in TARGET_STATUSES:
        log.debug("pull_request_status_ignored", pull_request_id=pr_id, status=status)
        return FilterResult(FilterAction.IGNORE, reason=f"status '{status}' does not qualify")

    repository = resource.repository
    project = repository.project if repository else None
    raw_project_url = project.url if project else None
    remote_url = repository.remote_url if repository else None
    if not raw_project_url:
        raise MissingResourceLinkError(f"PR {pr_id}: project URL should not be empty")
    if not remote_url:
        raise MissingResourceLinkError(f"PR {pr_id}: remote URL should not be empty")

    request = CleanupRequest(
        pull_request_id=pr_id,
        remote_url=remote_url,
        raw_project_url=raw_project_url,
    )
    return FilterResult(FilterAction.SCHEDULE, request=request, reason=f"status '{status}'")

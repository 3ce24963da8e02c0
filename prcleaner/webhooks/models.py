"""Azure DevOps service hook payload models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class AzureDevOpsEventType(str, Enum):
    GIT_PUSH = "git.push"
    GIT_PULL_REQUEST_CREATED = "git.pullrequest.created"
    GIT_PULL_REQUEST_UPDATED = "git.pullrequest.updated"
    GIT_PULL_REQUEST_MERGED = "git.pullrequest.merged"
    BUILD_COMPLETE = "build.complete"
    RELEASE_DEPLOYMENT_COMPLETED = "ms.vss-release.deployment-completed-event"

    @classmethod
    def parse(cls, value: str) -> AzureDevOpsEventType | None:
        """Return the matching member, or None for kinds we don't know yet."""
        try:
            return cls(value)
        except ValueError:
            return None


class _AzdoModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class WebhookNotification(_AzdoModel):
    event_type: str
    resource: dict[str, Any]
    id: str | None = None
    notification_id: int | None = None
    subscription_id: str | None = None
    publisher_id: str | None = None
    resource_version: str | None = None
    created_date: datetime | None = None

    @property
    def kind(self) -> AzureDevOpsEventType | None:
        return AzureDevOpsEventType.parse(self.event_type)


class ProjectReference(_AzdoModel):
    id: str | None = None
    name: str | None = None
    url: str | None = None


class RepositoryReference(_AzdoModel):
    id: str | None = None
    name: str | None = None
    url: str | None = None
    remote_url: str | None = None
    project: ProjectReference | None = None


class PullRequestResource(_AzdoModel):
    pull_request_id: int
    status: str | None = None
    merge_status: str | None = None
    title: str | None = None
    repository: RepositoryReference | None = None

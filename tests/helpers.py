"""Test doubles and payload builders shared across test modules."""

from datetime import timedelta

from prcleaner.cleaner.providers import CleanupTarget, ResourceProvider
from prcleaner.core.bus import Handler
from prcleaner.errors import PublishError, ResourceNotFoundError
from prcleaner.models import CleanupRequest
from prcleaner.transports.base import Transport


class RecordingTransport(Transport):
    def __init__(self, fail: bool = False) -> None:
        self.published: list[tuple[CleanupRequest, timedelta]] = []
        self.fail = fail
        self.started = False

    @property
    def name(self) -> str:
        return "recording"

    async def start(self, handler: Handler) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def publish(self, request: CleanupRequest, delay: timedelta) -> str:
        if self.fail:
            raise PublishError("bus unavailable")
        self.published.append((request, delay))
        return f"msg-{len(self.published)}"


def pr_payload(status="completed", pr_id=42, project_url="https://dev.azure.com/org/proj",
               remote_url="https://dev.azure.com/org/proj/_git/repo", event_type="git.pullrequest.updated"):
    repository = {}
    if project_url is not None:
        repository["project"] = {"url": project_url}
    if remote_url is not None:
        repository["remoteUrl"] = remote_url
    return {
        "subscriptionId": "sub-1",
        "notificationId": 7,
        "eventType": event_type,
        "resource": {
            "pullRequestId": pr_id,
            "status": status,
            "repository": repository,
        },
    }


class FakeCleaner:
    """Removes PR ids from an in-memory set; a repeat call is a no-op."""

    def __init__(self, resources=(), error: Exception | None = None) -> None:
        self.calls: list[tuple[int, str | None, str | None]] = []
        self.resources = set(resources)
        self.error = error
        self.closed = False

    async def handle(self, pr_id, remote_url=None, raw_project_url=None) -> None:
        self.calls.append((pr_id, remote_url, raw_project_url))
        if self.error is not None:
            raise self.error
        self.resources.discard(pr_id)

    async def close(self) -> None:
        self.closed = True


class FakeProvider(ResourceProvider):
    """Deletes matching names from an in-memory inventory."""

    def __init__(self, inventory=(), error: Exception | None = None, name: str = "fake") -> None:
        self.inventory = set(inventory)
        self.error = error
        self.targets: list[CleanupTarget] = []
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def delete(self, target: CleanupTarget) -> int:
        self.targets.append(target)
        if self.error is not None:
            raise self.error
        matched = self.inventory.intersection(target.names)
        if not matched:
            raise ResourceNotFoundError(f"nothing left for PR {target.pr_id}")
        self.inventory -= matched
        return len(matched)

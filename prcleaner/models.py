"""Typed messages passed between the webhook, the bus and the cleaner."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CleanupRequest:
    """Scheduled on the bus once per qualifying pull request event."""

    pull_request_id: int
    remote_url: str
    raw_project_url: str

    def __post_init__(self) -> None:
        if not self.remote_url:
            raise ValueError("remote_url must not be empty")
        if not self.raw_project_url:
            raise ValueError("raw_project_url must not be empty")

    def to_dict(self) -> dict[str, Any]:
        return {
            "pullRequestId": self.pull_request_id,
            "remoteUrl": self.remote_url,
            "rawProjectUrl": self.raw_project_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CleanupRequest:
        return cls(
            pull_request_id=int(data["pullRequestId"]),
            remote_url=data["remoteUrl"],
            raw_project_url=data["rawProjectUrl"],
        )


@dataclass(frozen=True)
class CleanupInvocation:
    pr_id: int
    remote_url: str | None = None
    # Takes precedence over remote_url when resolving the owning project
    raw_project_url: str | None = None

    @classmethod
    def from_request(cls, request: CleanupRequest) -> CleanupInvocation:
        return cls(
            pr_id=request.pull_request_id,
            remote_url=request.remote_url,
            raw_project_url=request.raw_project_url,
        )

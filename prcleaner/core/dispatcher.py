"""Bus consumer that hands scheduled cleanup requests to the cleaner."""

from __future__ import annotations

from typing import Protocol

from prcleaner.core.bus import EventContext
from prcleaner.models import CleanupInvocation
from prcleaner.utils.logging import get_logger

log = get_logger(__name__)


class Cleaner(Protocol):
    async def handle(
        self,
        pr_id: int,
        remote_url: str | None = None,
        raw_project_url: str | None = None,
    ) -> None: ...


async def invoke(cleaner: Cleaner, invocation: CleanupInvocation) -> None:
    await cleaner.handle(
        pr_id=invocation.pr_id,
        remote_url=invocation.remote_url,
        raw_project_url=invocation.raw_project_url,
    )


class CleanupDispatcher:
    """Consumes cleanup requests from the bus.

    No retry loop here: errors propagate to the transport, whose retry and
    dead-letter policy applies. Task cancellation on shutdown aborts the
    in-flight cleanup and leaves the message for redelivery.
    """

    def __init__(self, cleaner: Cleaner) -> None:
        self._cleaner = cleaner

    async def __call__(self, context: EventContext) -> None:
        request = context.event
        log.info(
            "cleanup_dispatching",
            pull_request_id=request.pull_request_id,
            message_id=context.id,
            delivery_count=context.delivery_count,
        )
        await invoke(self._cleaner, CleanupInvocation.from_request(request))
        log.info("cleanup_dispatched", pull_request_id=request.pull_request_id, message_id=context.id)

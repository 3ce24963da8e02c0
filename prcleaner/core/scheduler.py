"""Puts qualifying cleanup requests on the bus with a settling delay."""

from __future__ import annotations

from datetime import timedelta

from prcleaner.core.bus import EventBus
from prcleaner.models import CleanupRequest
from prcleaner.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_DELAY = timedelta(minutes=1)


class CleanupScheduler:
    """Publishes cleanup requests; returns once the transport accepts them.

    If a PR closes right after its resources were created, the cloud provider
    may not have finished provisioning them. The delay gives those changes
    time to propagate. It is a heuristic only: the cleaner has to be correct
    for any delay, including zero.
    """

    def __init__(self, bus: EventBus, delay: timedelta = DEFAULT_DELAY) -> None:
        if delay < timedelta(0):
            raise ValueError("delay must not be negative")
        self._bus = bus
        self._delay = delay

    @property
    def delay(self) -> timedelta:
        return self._delay

    async def schedule(self, request: CleanupRequest) -> str:
        message_id = await self._bus.publish(request, delay=self._delay)
        log.info(
            "cleanup_scheduled",
            pull_request_id=request.pull_request_id,
            message_id=message_id,
            delay_seconds=self._delay.total_seconds(),
        )
        return message_id

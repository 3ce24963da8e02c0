"""Async message bus facade over a pluggable transport."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from uuid import uuid4

from prcleaner.models import CleanupRequest
from prcleaner.utils.logging import get_logger

if TYPE_CHECKING:
    from prcleaner.transports.base import Transport

log = get_logger(__name__)


@dataclass
class EventContext:
    event: CleanupRequest
    id: str = field(default_factory=lambda: uuid4().hex)
    delivery_count: int = 1
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Handler = Callable[[EventContext], Coroutine[Any, Any, None]]


class EventBus:
    """Publishes cleanup requests and feeds them to a single consumer."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._handler: Handler | None = None
        self._running = False

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, handler: Handler) -> None:
        if self._handler is not None:
            raise RuntimeError("a consumer is already registered")
        self._handler = handler

    async def publish(
        self, event: CleanupRequest, delay: timedelta = timedelta(0)
    ) -> str:
        if delay < timedelta(0):
            raise ValueError("delay must not be negative")
        message_id = await self._transport.publish(event, delay)
        log.debug(
            "event_published",
            transport=self._transport.name,
            message_id=message_id,
            delay_seconds=delay.total_seconds(),
        )
        return message_id

    async def start(self) -> None:
        if self._handler is None:
            raise RuntimeError("no consumer registered")
        await self._transport.start(self._handler)
        self._running = True
        log.info("bus_started", transport=self._transport.name)

    async def stop(self) -> None:
        self._running = False
        await self._transport.stop()
        log.info("bus_stopped", transport=self._transport.name)

    async def check_health(self) -> bool:
        if not self._running:
            return False
        return await self._transport.check_health()

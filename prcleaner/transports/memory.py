"""In-process transport backed by an asyncio queue."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta

from prcleaner.core.bus import EventContext, Handler
from prcleaner.errors import PublishError
from prcleaner.models import CleanupRequest
from prcleaner.transports.base import Transport
from prcleaner.utils.logging import get_logger

log = get_logger(__name__)


class InMemoryTransport(Transport):
    """Delivers within the current process.

    Delayed messages are parked on loop timers until they become visible.
    A failed delivery is retried after ``retry_delay`` until
    ``max_delivery_count`` is reached, then moved to :attr:`dead_letters`.
    Nothing survives a restart.
    """

    def __init__(
        self,
        max_concurrency: int = 4,
        max_delivery_count: int = 5,
        max_queue_size: int = 256,
        retry_delay: timedelta = timedelta(seconds=5),
    ) -> None:
        self._max_concurrency = max_concurrency
        self._max_delivery_count = max_delivery_count
        self._max_queue_size = max_queue_size
        self._retry_delay = retry_delay
        self._queue: asyncio.Queue[EventContext] = asyncio.Queue()
        self._timers: dict[str, tuple[asyncio.TimerHandle, EventContext]] = {}
        self._in_flight: dict[str, EventContext] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._handler: Handler | None = None
        self._running = False
        self.dead_letters: list[EventContext] = []

    @property
    def name(self) -> str:
        return "in_memory"

    @property
    def pending(self) -> int:
        """Messages accepted but not yet handed to a worker."""
        return self._queue.qsize() + len(self._timers)

    async def publish(self, request: CleanupRequest, delay: timedelta) -> str:
        if self.pending >= self._max_queue_size:
            log.warning("event_queue_full", size=self.pending)
            raise PublishError(f"in-memory queue is full ({self._max_queue_size} messages)")
        context = EventContext(event=request)
        self._enqueue(context, delay)
        return context.id

    async def start(self, handler: Handler) -> None:
        self._handler = handler
        self._running = True
        for i in range(self._max_concurrency):
            task = asyncio.create_task(self._worker(), name=f"bus-{self.name}-{i}")
            self._tasks.append(task)

    async def stop(self) -> None:
        self._running = False
        for timer, context in self._timers.values():
            timer.cancel()
            self._log_dropped(context, "scheduled")
        self._timers.clear()
        while not self._queue.empty():
            self._log_dropped(self._queue.get_nowait(), "queued")
        for context in self._in_flight.values():
            self._log_dropped(context, "in_flight")
        self._in_flight.clear()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def _log_dropped(self, context: EventContext, state: str) -> None:
        log.warning(
            "message_dropped",
            message_id=context.id,
            pull_request_id=context.event.pull_request_id,
            state=state,
        )

    async def check_health(self) -> bool:
        return self._running and all(not t.done() for t in self._tasks)

    def _enqueue(self, context: EventContext, delay: timedelta) -> None:
        seconds = delay.total_seconds()
        if seconds <= 0:
            self._queue.put_nowait(context)
            return
        loop = asyncio.get_running_loop()
        handle = loop.call_later(seconds, self._make_visible, context)
        self._timers[context.id] = (handle, context)

    def _make_visible(self, context: EventContext) -> None:
        self._timers.pop(context.id, None)
        self._queue.put_nowait(context)

    async def _worker(self) -> None:
        assert self._handler is not None
        while self._running:
            try:
                context = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            self._in_flight[context.id] = context
            try:
                await self._handler(context)
            except Exception:
                log.exception(
                    "handler_error",
                    message_id=context.id,
                    delivery_count=context.delivery_count,
                )
                self._retry(context)
            finally:
                self._in_flight.pop(context.id, None)

    def _retry(self, context: EventContext) -> None:
        if context.delivery_count >= self._max_delivery_count:
            self.dead_letters.append(context)
            log.error(
                "message_dead_lettered",
                message_id=context.id,
                pull_request_id=context.event.pull_request_id,
                delivery_count=context.delivery_count,
            )
            return
        self._enqueue(
            replace(context, delivery_count=context.delivery_count + 1),
            self._retry_delay,
        )

"""Azure Queue Storage transport."""

from __future__ import annotations

import asyncio
import json
import math
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from azure.core.exceptions import AzureError, ResourceExistsError
from azure.identity.aio import DefaultAzureCredential
from azure.storage.queue import QueueMessage
from azure.storage.queue.aio import QueueClient

from prcleaner.config import QueueStorageConfig
from prcleaner.core.bus import EventContext, Handler
from prcleaner.errors import PublishError
from prcleaner.models import CleanupRequest
from prcleaner.transports.base import Transport
from prcleaner.utils.logging import get_logger

log = get_logger(__name__)

# Queue Storage caps the initial visibility timeout at seven days
_MAX_VISIBILITY_SECONDS = 7 * 24 * 3600


class QueueStorageTransport(Transport):
    """Uses the initial visibility timeout as the publish delay.

    A message whose handler fails is left on the queue and reappears once
    its visibility timeout lapses. After ``max_delivery_count`` dequeues it
    is moved to ``<queue>-poison``.
    """

    def __init__(
        self,
        config: QueueStorageConfig,
        queue_name: str,
        max_concurrency: int = 4,
        max_delivery_count: int = 5,
        client: QueueClient | None = None,
        poison_client: QueueClient | None = None,
    ) -> None:
        self._config = config
        self._queue_name = queue_name
        self._max_concurrency = max_concurrency
        self._max_delivery_count = max_delivery_count
        self._credential: DefaultAzureCredential | None = None
        self._client = client or self._create_client(queue_name)
        self._poison_client = poison_client or self._create_client(f"{queue_name}-poison")
        self._handler: Handler | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def name(self) -> str:
        return "queue_storage"

    def _create_client(self, queue_name: str) -> QueueClient:
        if self._config.connection_string:
            return QueueClient.from_connection_string(self._config.connection_string, queue_name)
        if not self._config.account_url:
            raise ValueError("queue storage needs either a connection string or an account url")
        if self._credential is None:
            self._credential = DefaultAzureCredential()
        return QueueClient(self._config.account_url, queue_name, credential=self._credential)

    async def publish(self, request: CleanupRequest, delay: timedelta) -> str:
        seconds = min(math.ceil(delay.total_seconds()), _MAX_VISIBILITY_SECONDS)
        try:
            sent = await self._client.send_message(
                json.dumps(request.to_dict()),
                visibility_timeout=seconds or None,
            )
        except AzureError as exc:
            log.error("publish_failed", transport=self.name, error=str(exc))
            raise PublishError(f"queue storage rejected message: {exc}") from exc
        return sent.id

    async def start(self, handler: Handler) -> None:
        for client in (self._client, self._poison_client):
            try:
                await client.create_queue()
            except ResourceExistsError:
                pass
        self._handler = handler
        self._running = True
        self._task = asyncio.create_task(self._receive_loop(), name=f"bus-{self.name}")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self._client.close()
        await self._poison_client.close()
        if self._credential is not None:
            await self._credential.close()

    async def check_health(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def _receive_loop(self) -> None:
        while self._running:
            batch: list[QueueMessage] = []
            try:
                async for message in self._client.receive_messages(
                    messages_per_page=self._max_concurrency,
                    visibility_timeout=self._config.visibility_timeout,
                    max_messages=self._max_concurrency,
                ):
                    batch.append(message)
            except AzureError:
                log.exception("receive_failed", transport=self.name)
            if not batch:
                await asyncio.sleep(self._config.poll_interval)
                continue
            await asyncio.gather(*(self._process(m) for m in batch))

    async def _process(self, message: QueueMessage) -> None:
        assert self._handler is not None
        if message.dequeue_count > self._max_delivery_count:
            await self._poison(message, "delivery count exceeded")
            return

        try:
            request = CleanupRequest.from_dict(json.loads(message.content))
        except (ValueError, KeyError, TypeError) as exc:
            await self._poison(message, str(exc))
            return

        context = EventContext(
            event=request,
            id=message.id or uuid4().hex,
            delivery_count=message.dequeue_count or 1,
            enqueued_at=message.inserted_on or datetime.now(timezone.utc),
        )
        try:
            await self._handler(context)
        except Exception:
            log.exception(
                "handler_error",
                message_id=context.id,
                delivery_count=context.delivery_count,
            )
            return
        await self._delete(message)

    async def _poison(self, message: QueueMessage, reason: str) -> None:
        log.error(
            "message_dead_lettered",
            message_id=message.id,
            dequeue_count=message.dequeue_count,
            reason=reason,
        )
        try:
            await self._poison_client.send_message(message.content)
        except AzureError:
            # Left in place; the next dequeue retries the move
            log.exception("poison_send_failed", transport=self.name, message_id=message.id)
            return
        await self._delete(message)

    async def _delete(self, message: QueueMessage) -> None:
        try:
            await self._client.delete_message(message)
        except AzureError:
            log.exception("delete_failed", transport=self.name, message_id=message.id)

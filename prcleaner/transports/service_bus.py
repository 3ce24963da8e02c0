"""Azure Service Bus transport."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Awaitable
from uuid import uuid4

from azure.core.exceptions import AzureError
from azure.identity.aio import DefaultAzureCredential
from azure.servicebus import ServiceBusMessage, ServiceBusReceivedMessage
from azure.servicebus.aio import (
    AutoLockRenewer,
    ServiceBusClient,
    ServiceBusReceiver,
    ServiceBusSender,
)

from prcleaner.config import ServiceBusConfig
from prcleaner.core.bus import EventContext, Handler
from prcleaner.errors import PublishError
from prcleaner.models import CleanupRequest
from prcleaner.transports.base import Transport
from prcleaner.utils.logging import get_logger

log = get_logger(__name__)


class ServiceBusTransport(Transport):
    """Publishes with a scheduled enqueue time and leaves retries to the broker.

    Failed messages are abandoned, so the queue's MaxDeliveryCount decides
    when a message moves to the dead-letter sub-queue.
    """

    def __init__(
        self,
        config: ServiceBusConfig,
        queue_name: str,
        max_concurrency: int = 4,
        client: ServiceBusClient | None = None,
    ) -> None:
        self._config = config
        self._queue_name = queue_name
        self._max_concurrency = max_concurrency
        self._credential: DefaultAzureCredential | None = None
        self._client = client or self._create_client()
        self._sender: ServiceBusSender | None = None
        self._sender_lock = asyncio.Lock()
        self._handler: Handler | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def name(self) -> str:
        return "service_bus"

    def _create_client(self) -> ServiceBusClient:
        if self._config.connection_string:
            return ServiceBusClient.from_connection_string(self._config.connection_string)
        if not self._config.fully_qualified_namespace:
            raise ValueError(
                "service bus needs either a connection string or a fully qualified namespace"
            )
        self._credential = DefaultAzureCredential()
        return ServiceBusClient(self._config.fully_qualified_namespace, self._credential)

    async def _get_sender(self) -> ServiceBusSender:
        async with self._sender_lock:
            if self._sender is None:
                self._sender = self._client.get_queue_sender(queue_name=self._queue_name)
            return self._sender

    async def publish(self, request: CleanupRequest, delay: timedelta) -> str:
        message_id = uuid4().hex
        message = ServiceBusMessage(
            json.dumps(request.to_dict()),
            content_type="application/json",
            message_id=message_id,
        )
        sender = await self._get_sender()
        try:
            if delay > timedelta(0):
                await sender.schedule_messages(message, datetime.now(timezone.utc) + delay)
            else:
                await sender.send_messages(message)
        except AzureError as exc:
            log.error("publish_failed", transport=self.name, error=str(exc))
            raise PublishError(f"service bus rejected message: {exc}") from exc
        return message_id

    async def start(self, handler: Handler) -> None:
        self._handler = handler
        self._running = True
        self._task = asyncio.create_task(self._receive_loop(), name=f"bus-{self.name}")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._sender is not None:
            await self._sender.close()
            self._sender = None
        await self._client.close()
        if self._credential is not None:
            await self._credential.close()

    async def check_health(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def _receive_loop(self) -> None:
        # Keeps message locks alive while a slow cleanup runs
        renewer = AutoLockRenewer(
            max_lock_renewal_duration=self._config.max_lock_renewal_seconds
        )
        receiver = self._client.get_queue_receiver(
            queue_name=self._queue_name,
            auto_lock_renewer=renewer,
        )
        try:
            async with receiver:
                while self._running:
                    try:
                        messages = await receiver.receive_messages(
                            max_message_count=self._max_concurrency,
                            max_wait_time=5,
                        )
                    except AzureError:
                        log.exception("receive_failed", transport=self.name)
                        await asyncio.sleep(self._config.receive_retry_seconds)
                        continue
                    await asyncio.gather(*(self._process(receiver, m) for m in messages))
        finally:
            await renewer.close()

    async def _process(
        self, receiver: ServiceBusReceiver, message: ServiceBusReceivedMessage
    ) -> None:
        assert self._handler is not None
        try:
            request = CleanupRequest.from_dict(json.loads(str(message)))
        except (ValueError, KeyError, TypeError) as exc:
            log.error("message_malformed", message_id=message.message_id, error=str(exc))
            await self._settle(
                "dead_letter",
                receiver.dead_letter_message(
                    message, reason="MalformedMessage", error_description=str(exc)
                ),
                message,
            )
            return

        context = EventContext(
            event=request,
            id=message.message_id or uuid4().hex,
            delivery_count=message.delivery_count or 1,
            enqueued_at=message.enqueued_time_utc or datetime.now(timezone.utc),
        )
        try:
            await self._handler(context)
        except Exception:
            log.exception(
                "handler_error",
                message_id=context.id,
                delivery_count=context.delivery_count,
            )
            await self._settle("abandon", receiver.abandon_message(message), message)
            return
        await self._settle("complete", receiver.complete_message(message), message)

    async def _settle(
        self,
        action: str,
        settlement: Awaitable[None],
        message: ServiceBusReceivedMessage,
    ) -> None:
        """Await a settle call; on failure the broker redelivers once the lock lapses."""
        try:
            await settlement
        except AzureError:
            log.exception(
                "settle_failed",
                transport=self.name,
                action=action,
                message_id=message.message_id,
            )

"""Tests for the Azure Service Bus and Queue Storage transports with mocked clients."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from azure.core.exceptions import AzureError, ResourceExistsError

from prcleaner.config import QueueStorageConfig, ServiceBusConfig
from prcleaner.errors import PublishError
from prcleaner.models import CleanupRequest
from prcleaner.transports.queue_storage import QueueStorageTransport
from prcleaner.transports.service_bus import ServiceBusTransport

REQUEST = CleanupRequest(
    pull_request_id=42,
    remote_url="https://dev.azure.com/org/proj/_git/repo",
    raw_project_url="https://dev.azure.com/org/proj",
)


def received_message(body: str, delivery_count: int = 1) -> MagicMock:
    message = MagicMock()
    message.__str__.return_value = body
    message.message_id = "sb-1"
    message.delivery_count = delivery_count
    message.enqueued_time_utc = datetime.now(timezone.utc)
    return message


def queue_message(content: str, dequeue_count: int = 1) -> MagicMock:
    message = MagicMock()
    message.id = "q-1"
    message.content = content
    message.dequeue_count = dequeue_count
    message.inserted_on = datetime.now(timezone.utc)
    return message


# ---------------------------------------------------------------------------
# Service Bus
# ---------------------------------------------------------------------------

@pytest.fixture
def sender():
    sender = MagicMock()
    sender.schedule_messages = AsyncMock(return_value=[1])
    sender.send_messages = AsyncMock()
    sender.close = AsyncMock()
    return sender


@pytest.fixture
def sb_client(sender):
    client = MagicMock()
    client.get_queue_sender.return_value = sender
    client.close = AsyncMock()
    return client


@pytest.fixture
def receiver():
    receiver = MagicMock()
    receiver.complete_message = AsyncMock()
    receiver.abandon_message = AsyncMock()
    receiver.dead_letter_message = AsyncMock()
    return receiver


class TestServiceBusPublish:
    async def test_delay_uses_scheduled_enqueue(self, sb_client, sender):
        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        before = datetime.now(timezone.utc)

        message_id = await transport.publish(REQUEST, timedelta(minutes=1))

        sb_client.get_queue_sender.assert_called_once_with(queue_name="cleanup")
        message, scheduled_at = sender.schedule_messages.await_args.args
        assert json.loads(str(message)) == REQUEST.to_dict()
        assert message.message_id == message_id
        assert scheduled_at >= before + timedelta(minutes=1)
        sender.send_messages.assert_not_awaited()

    async def test_zero_delay_sends_immediately(self, sb_client, sender):
        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        await transport.publish(REQUEST, timedelta(0))
        sender.send_messages.assert_awaited_once()
        sender.schedule_messages.assert_not_awaited()

    async def test_sender_reused(self, sb_client):
        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        await transport.publish(REQUEST, timedelta(0))
        await transport.publish(REQUEST, timedelta(0))
        assert sb_client.get_queue_sender.call_count == 1

    async def test_failure_raises_publish_error(self, sb_client, sender):
        sender.schedule_messages.side_effect = AzureError("namespace unavailable")
        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        with pytest.raises(PublishError):
            await transport.publish(REQUEST, timedelta(minutes=1))


class TestServiceBusProcess:
    async def test_success_completes(self, sb_client, receiver):
        handled = []

        async def handler(context):
            handled.append(context)

        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        transport._handler = handler
        message = received_message(json.dumps(REQUEST.to_dict()), delivery_count=2)

        await transport._process(receiver, message)

        assert handled[0].event == REQUEST
        assert handled[0].delivery_count == 2
        assert handled[0].id == "sb-1"
        receiver.complete_message.assert_awaited_once_with(message)
        receiver.abandon_message.assert_not_awaited()

    async def test_failure_abandons(self, sb_client, receiver):
        async def handler(context):
            raise RuntimeError("boom")

        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        transport._handler = handler
        message = received_message(json.dumps(REQUEST.to_dict()))

        await transport._process(receiver, message)

        receiver.abandon_message.assert_awaited_once_with(message)
        receiver.complete_message.assert_not_awaited()

    async def test_malformed_dead_lettered(self, sb_client, receiver):
        handler = AsyncMock()
        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        transport._handler = handler

        await transport._process(receiver, received_message('{"pullRequestId": 1}'))

        receiver.dead_letter_message.assert_awaited_once()
        handler.assert_not_awaited()

    async def test_settle_failure_is_contained(self, sb_client, receiver):
        receiver.abandon_message.side_effect = AzureError("lock lost")
        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        transport._handler = AsyncMock(side_effect=RuntimeError("boom"))

        await transport._process(receiver, received_message(json.dumps(REQUEST.to_dict())))

        receiver.abandon_message.assert_awaited_once()

    async def test_dead_letter_failure_is_contained(self, sb_client, receiver):
        receiver.dead_letter_message.side_effect = AzureError("lock lost")
        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        transport._handler = AsyncMock()

        await transport._process(receiver, received_message("not json"))

        receiver.dead_letter_message.assert_awaited_once()

    async def test_stop_closes_clients(self, sb_client, sender):
        transport = ServiceBusTransport(ServiceBusConfig(), "cleanup", client=sb_client)
        await transport.publish(REQUEST, timedelta(0))
        await transport.stop()
        sender.close.assert_awaited_once()
        sb_client.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# Queue Storage
# ---------------------------------------------------------------------------

@pytest.fixture
def queue_client():
    client = MagicMock()
    client.send_message = AsyncMock(return_value=MagicMock(id="q-1"))
    client.delete_message = AsyncMock()
    client.create_queue = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def poison_client():
    client = MagicMock()
    client.send_message = AsyncMock()
    client.create_queue = AsyncMock(side_effect=ResourceExistsError("exists"))
    client.close = AsyncMock()
    return client


@pytest.fixture
def queue_transport(queue_client, poison_client):
    return QueueStorageTransport(
        QueueStorageConfig(poll_interval=0.01),
        "cleanup",
        max_delivery_count=5,
        client=queue_client,
        poison_client=poison_client,
    )


class TestQueueStoragePublish:
    async def test_delay_is_visibility_timeout(self, queue_transport, queue_client):
        message_id = await queue_transport.publish(REQUEST, timedelta(minutes=1))
        assert message_id == "q-1"
        content = queue_client.send_message.await_args.args[0]
        assert json.loads(content) == REQUEST.to_dict()
        assert queue_client.send_message.await_args.kwargs["visibility_timeout"] == 60

    async def test_zero_delay(self, queue_transport, queue_client):
        await queue_transport.publish(REQUEST, timedelta(0))
        assert queue_client.send_message.await_args.kwargs["visibility_timeout"] is None

    async def test_fractional_delay_rounds_up(self, queue_transport, queue_client):
        await queue_transport.publish(REQUEST, timedelta(seconds=0.2))
        assert queue_client.send_message.await_args.kwargs["visibility_timeout"] == 1

    async def test_failure_raises_publish_error(self, queue_transport, queue_client):
        queue_client.send_message.side_effect = AzureError("account unavailable")
        with pytest.raises(PublishError):
            await queue_transport.publish(REQUEST, timedelta(minutes=1))


class TestQueueStorageProcess:
    async def test_success_deletes(self, queue_transport, queue_client):
        handler = AsyncMock()
        queue_transport._handler = handler
        message = queue_message(json.dumps(REQUEST.to_dict()))

        await queue_transport._process(message)

        assert handler.await_args.args[0].event == REQUEST
        queue_client.delete_message.assert_awaited_once_with(message)

    async def test_failure_leaves_message(self, queue_transport, queue_client):
        queue_transport._handler = AsyncMock(side_effect=RuntimeError("boom"))

        await queue_transport._process(queue_message(json.dumps(REQUEST.to_dict())))

        queue_client.delete_message.assert_not_awaited()

    async def test_exhausted_goes_to_poison(self, queue_transport, queue_client, poison_client):
        handler = AsyncMock()
        queue_transport._handler = handler
        content = json.dumps(REQUEST.to_dict())
        message = queue_message(content, dequeue_count=6)

        await queue_transport._process(message)

        handler.assert_not_awaited()
        poison_client.send_message.assert_awaited_once_with(content)
        queue_client.delete_message.assert_awaited_once_with(message)

    async def test_malformed_goes_to_poison(self, queue_transport, poison_client):
        queue_transport._handler = AsyncMock()
        await queue_transport._process(queue_message("not json"))
        poison_client.send_message.assert_awaited_once_with("not json")

    async def test_receive_loop(self, queue_transport, queue_client):
        batches = [[queue_message(json.dumps(REQUEST.to_dict()))]]

        async def receive(**kwargs):
            for message in batches.pop() if batches else []:
                yield message

        queue_client.receive_messages = MagicMock(side_effect=receive)
        handled = []

        async def handler(context):
            handled.append(context)

        await queue_transport.start(handler)
        await asyncio.sleep(0.1)
        assert await queue_transport.check_health()
        await queue_transport.stop()

        assert len(handled) == 1
        queue_client.delete_message.assert_awaited_once()
        queue_client.close.assert_awaited_once()


def service_bus_batches(*batches):
    """Return a receive_messages side effect that yields the batches, then idles."""
    pending = list(batches)

    async def receive(**kwargs):
        if pending:
            batch = pending.pop(0)
            if isinstance(batch, Exception):
                raise batch
            return batch
        await asyncio.sleep(0.01)
        return []

    return receive


class TestServiceBusReceiveLoop:
    @pytest.fixture
    def loop_transport(self, sb_client, receiver):
        sb_client.get_queue_receiver.return_value = receiver
        return ServiceBusTransport(
            ServiceBusConfig(receive_retry_seconds=0.01),
            "cleanup",
            client=sb_client,
        )

    async def test_complete_failure_keeps_loop_alive(self, loop_transport, sb_client, receiver):
        first = received_message(json.dumps(REQUEST.to_dict()))
        second = received_message(json.dumps(REQUEST.to_dict()))
        second.message_id = "sb-2"
        receiver.receive_messages = AsyncMock(side_effect=service_bus_batches([first, second]))
        receiver.complete_message.side_effect = [AzureError("lock lost"), None]
        handled = []

        async def handler(context):
            handled.append(context.id)

        await loop_transport.start(handler)
        await asyncio.sleep(0.1)
        assert await loop_transport.check_health()
        await loop_transport.stop()

        assert sorted(handled) == ["sb-1", "sb-2"]
        assert receiver.complete_message.await_count == 2
        assert "auto_lock_renewer" in sb_client.get_queue_receiver.call_args.kwargs

    async def test_receive_error_backs_off_and_retries(self, loop_transport, receiver):
        message = received_message(json.dumps(REQUEST.to_dict()))
        receiver.receive_messages = AsyncMock(
            side_effect=service_bus_batches(AzureError("connection reset"), [message])
        )
        handler = AsyncMock()

        await loop_transport.start(handler)
        await asyncio.sleep(0.1)
        assert await loop_transport.check_health()
        await loop_transport.stop()

        handler.assert_awaited_once()
        receiver.complete_message.assert_awaited_once_with(message)


class TestQueueStorageFailures:
    async def test_delete_failure_keeps_loop_alive(self, queue_transport, queue_client):
        first = queue_message(json.dumps(REQUEST.to_dict()))
        second = queue_message(json.dumps(REQUEST.to_dict()))
        second.id = "q-2"
        batches = [[first, second]]

        async def receive(**kwargs):
            for message in batches.pop() if batches else []:
                yield message

        queue_client.receive_messages = MagicMock(side_effect=receive)
        queue_client.delete_message.side_effect = [AzureError("pop receipt mismatch"), None]
        handled = []

        async def handler(context):
            handled.append(context.id)

        await queue_transport.start(handler)
        await asyncio.sleep(0.1)
        assert await queue_transport.check_health()
        await queue_transport.stop()

        assert sorted(handled) == ["q-1", "q-2"]
        assert queue_client.delete_message.await_count == 2

    async def test_receive_error_backs_off_and_retries(self, queue_transport, queue_client):
        calls = []

        async def receive(**kwargs):
            calls.append(kwargs)
            if len(calls) == 1:
                raise AzureError("connection reset")
            if len(calls) == 2:
                yield queue_message(json.dumps(REQUEST.to_dict()))

        queue_client.receive_messages = MagicMock(side_effect=receive)
        handler = AsyncMock()

        await queue_transport.start(handler)
        await asyncio.sleep(0.1)
        assert await queue_transport.check_health()
        await queue_transport.stop()

        handler.assert_awaited_once()
        queue_client.delete_message.assert_awaited_once()

    async def test_poison_send_failure_leaves_message(
        self, queue_transport, queue_client, poison_client
    ):
        poison_client.send_message.side_effect = AzureError("poison queue unavailable")
        queue_transport._handler = AsyncMock()

        await queue_transport._process(queue_message("not json"))

        poison_client.send_message.assert_awaited_once_with("not json")
        queue_client.delete_message.assert_not_awaited()

    async def test_poison_delete_failure_is_contained(
        self, queue_transport, queue_client, poison_client
    ):
        queue_client.delete_message.side_effect = AzureError("pop receipt mismatch")
        queue_transport._handler = AsyncMock()

        await queue_transport._process(queue_message("not json"))

        poison_client.send_message.assert_awaited_once_with("not json")
        queue_client.delete_message.assert_awaited_once()

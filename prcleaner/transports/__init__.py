"""Message bus transports, selected once at startup from config."""

from datetime import timedelta

from prcleaner.config import EventBusConfig, TransportKind
from prcleaner.transports.base import Transport
from prcleaner.transports.memory import InMemoryTransport
from prcleaner.transports.queue_storage import QueueStorageTransport
from prcleaner.transports.service_bus import ServiceBusTransport

__all__ = [
    "Transport",
    "InMemoryTransport",
    "QueueStorageTransport",
    "ServiceBusTransport",
    "create_transport",
]


def create_transport(config: EventBusConfig) -> Transport:
    """Factory to create the configured transport."""
    if config.selected_transport is TransportKind.SERVICE_BUS:
        return ServiceBusTransport(
            config.service_bus,
            config.queue_name,
            max_concurrency=config.max_concurrency,
        )
    if config.selected_transport is TransportKind.QUEUE_STORAGE:
        return QueueStorageTransport(
            config.queue_storage,
            config.queue_name,
            max_concurrency=config.max_concurrency,
            max_delivery_count=config.max_delivery_count,
        )
    return InMemoryTransport(
        max_concurrency=config.max_concurrency,
        max_delivery_count=config.max_delivery_count,
        max_queue_size=config.max_queue_size,
        retry_delay=timedelta(seconds=config.retry_delay_seconds),
    )

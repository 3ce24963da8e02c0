"""Abstract message transport base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta

from prcleaner.core.bus import Handler
from prcleaner.models import CleanupRequest


class Transport(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def start(self, handler: Handler) -> None:
        """Begin delivering messages to ``handler``."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop delivery and cancel in-flight handler calls."""

    @abstractmethod
    async def publish(self, request: CleanupRequest, delay: timedelta) -> str:
        """Hand ``request`` to the broker, invisible for ``delay``. Returns the message id."""

    async def check_health(self) -> bool:
        return True

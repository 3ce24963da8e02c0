import pytest

from prcleaner.core.bus import EventBus

from helpers import RecordingTransport


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def recording_bus(transport):
    return EventBus(transport)

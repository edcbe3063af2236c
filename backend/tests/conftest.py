# tests/conftest.py
import asyncio

import pytest

from utilities import log
from transport import DeliveryTransport


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_logging():
    # configure once so the app lifespan does not replace pytest's handlers
    log.setup(level="DEBUG")
    yield


class RecordingTransport(DeliveryTransport):
    """Remembers every relay instead of delivering it."""

    def __init__(self, timeout: float = 5.0):
        super().__init__(timeout=timeout)
        self.calls = []

    async def _trigger(self, channel, event, data):
        self.calls.append((channel, event, data))
        return 1


class FailingTransport(DeliveryTransport):
    async def _trigger(self, channel, event, data):
        raise ConnectionError("upstream refused")


class SlowTransport(DeliveryTransport):
    def __init__(self, delay: float, timeout: float = 5.0):
        super().__init__(timeout=timeout)
        self.delay = delay

    async def _trigger(self, channel, event, data):
        await asyncio.sleep(self.delay)
        return 0


class FakeWebSocket:
    """Just enough of starlette's WebSocket for the hub's sender loop."""

    def __init__(self):
        self.sent = []

    async def send_text(self, text):
        self.sent.append(text)


@pytest.fixture
def recording_transport():
    return RecordingTransport()

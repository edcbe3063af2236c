import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from utilities import MESSAGE_EVENT, RELAY_TIMEOUT_SECONDS, message_event_data, topic_channel

log = logging.getLogger(__name__)


class RelayOutcome(str, enum.Enum):
    DELIVERED = "delivered"
    NOT_CONFIGURED = "not_configured"
    FAILED = "failed"


@dataclass
class RelayResult:
    outcome: RelayOutcome
    error: Optional[str] = None
    listeners: int = 0

    @property
    def success(self) -> bool:
        return self.outcome is RelayOutcome.DELIVERED


class DeliveryTransport:
    """
    Fan-out to live listeners, keyed by channel name.

    ``relay`` never raises: bad input, exceptions and timeouts all come back
    as ``RelayResult(FAILED)``. Subclasses implement ``_trigger`` and return
    how many listeners received the event.
    """

    configured = True

    def __init__(self, timeout: float = RELAY_TIMEOUT_SECONDS):
        self.timeout = timeout

    async def _trigger(self, channel: str, event: str, data: dict) -> int:
        raise NotImplementedError

    async def relay(self, channel: str, event: str, data: dict) -> RelayResult:
        if not channel or not isinstance(channel, str):
            return RelayResult(RelayOutcome.FAILED, "channel must be a non-empty string")
        if not isinstance(data, dict):
            return RelayResult(RelayOutcome.FAILED, "event data must be an object")
        try:
            listeners = await asyncio.wait_for(self._trigger(channel, event, data), timeout=self.timeout)
        except asyncio.TimeoutError:
            log.error("relay timed out after %.1fs: channel=%s event=%s", self.timeout, channel, event)
            return RelayResult(RelayOutcome.FAILED, f"relay timed out after {self.timeout}s")
        except Exception as e:
            log.error("relay failed: channel=%s event=%s: %s", channel, event, e)
            return RelayResult(RelayOutcome.FAILED, f"relay failed: {e}")
        log.debug("relayed: channel=%s event=%s listeners=%d", channel, event, listeners)
        return RelayResult(RelayOutcome.DELIVERED, listeners=listeners)

    async def relay_message(self, topic: str, message: dict) -> RelayResult:
        if not topic or not isinstance(topic, str):
            return RelayResult(RelayOutcome.FAILED, "topic must be a non-empty string")
        if not isinstance(message, dict):
            return RelayResult(RelayOutcome.FAILED, "message must be an object")
        if not message.get("id"):
            return RelayResult(RelayOutcome.FAILED, "message must have an id field")
        return await self.relay(topic_channel(topic), MESSAGE_EVENT, message_event_data(message))

    async def relay_batch(self, items: Iterable[Tuple[str, dict]]) -> Tuple[bool, List[RelayResult]]:
        """Relay many (topic, message) pairs concurrently."""
        items = list(items)
        if not items:
            return False, []
        results = await asyncio.gather(*(self.relay_message(t, m) for t, m in items))
        ok = sum(1 for r in results if r.success)
        log.info("batch relay: %d succeeded, %d failed", ok, len(results) - ok)
        return ok == len(results), list(results)

    async def close(self) -> None:
        pass


class NullTransport(DeliveryTransport):
    """Used when relaying is switched off: everything is stored, nothing is sent."""

    configured = False

    async def relay(self, channel: str, event: str, data: dict) -> RelayResult:
        return RelayResult(RelayOutcome.NOT_CONFIGURED, "delivery transport not configured")

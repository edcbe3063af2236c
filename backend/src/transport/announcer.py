import asyncio
import logging
from typing import Set

from transport.base import DeliveryTransport, RelayResult
from utilities import CONTROL_CHANNEL, SHUTDOWN_GRACE_SECONDS, now_ts

log = logging.getLogger(__name__)


class ControlAnnouncer:
    """
    Fire-and-forget lifecycle announcements on the control channel.

    ``announce`` schedules the relay as a background task and returns at once;
    the outcome is only logged, so a failed announcement never fails the
    create/delete that triggered it.
    """

    def __init__(self, transport: DeliveryTransport, channel: str = CONTROL_CHANNEL):
        self.transport = transport
        self.channel = channel
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def announce(self, event: str, topic: str) -> bool:
        if not self.transport.configured:
            log.debug("transport not configured, skipping %s for %s", event, topic)
            return False
        data = {"topic": topic, "ts": now_ts()}
        task = asyncio.create_task(self.transport.relay(self.channel, event, data))
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finished(t, event, topic))
        return True

    def _finished(self, task: asyncio.Task, event: str, topic: str):
        self._pending.discard(task)
        if task.cancelled():
            log.warning("%s announcement for '%s' cancelled", event, topic)
            return
        exc = task.exception()
        if exc is not None:
            log.error("%s announcement for '%s' raised: %s", event, topic, exc)
            return
        result: RelayResult = task.result()
        if result.success:
            log.info("emitted %s for '%s'", event, topic)
        else:
            log.warning("failed to emit %s for '%s': %s", event, topic, result.error)

    async def drain(self, timeout: float = SHUTDOWN_GRACE_SECONDS) -> None:
        """Wait for in-flight announcements, cancelling whatever outlives ``timeout``."""
        if not self._pending:
            return
        tasks = list(self._pending)
        _, not_done = await asyncio.wait(tasks, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            await asyncio.gather(*not_done, return_exceptions=True)
            log.warning("dropped %d pending announcements at shutdown", len(not_done))

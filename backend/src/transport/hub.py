import asyncio
import json
import logging
from typing import Dict, List, Tuple

from fastapi import WebSocket

from models import Subscriber
from transport.base import DeliveryTransport
from utilities import (
    MESSAGE_EVENT,
    RELAY_TIMEOUT_SECONDS,
    SUBSCRIBER_QUEUE_SIZE,
    channel_topic,
    make_error,
    make_event,
    make_info,
    message_event_data,
)

log = logging.getLogger(__name__)


async def subscriber_sender_loop(sub: Subscriber):
    """
    Background task per subscriber: read from queue and send over websocket.
    """
    websocket = sub.websocket
    try:
        while sub.connected:
            item = await sub.queue.get()
            # item should already be serializable dict
            try:
                await websocket.send_text(json.dumps(item))
            except Exception as e:
                # (broken pipe / closed) -> stop
                log.debug("sender for %s stopped: %s", sub.client_id, e)
                break
    except asyncio.CancelledError:
        # Graceful cancellation
        pass
    finally:
        sub.connected = False


class WebSocketHub(DeliveryTransport):
    """
    In-process delivery transport: channel -> {client_id: Subscriber}.

    Relaying only enqueues; each subscriber's sender task writes to its socket,
    so a slow client never holds up the publisher.
    """

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE, timeout: float = RELAY_TIMEOUT_SECONDS):
        super().__init__(timeout=timeout)
        if queue_size < 2:
            # an overflowing queue must hold the SLOW_CONSUMER error and the event
            raise ValueError(f"subscriber queue size must be at least 2, got {queue_size}")
        self.queue_size = queue_size
        self.channels: Dict[str, Dict[str, Subscriber]] = {}
        self.lock = asyncio.Lock()

    async def subscribe(self, channel: str, client_id: str, ws: WebSocket) -> Tuple[Subscriber, bool]:
        """Register ``client_id`` on ``channel``.

        Returns the new subscriber and whether it replaced an earlier one with
        the same client_id (in which case the old sender is stopped).
        """
        async with self.lock:
            subs = self.channels.setdefault(channel, {})
            old = subs.pop(client_id, None)
            sub = Subscriber(client_id, ws, queue_size=self.queue_size)
            subs[client_id] = sub
        if old is not None:
            await old.stop()
        # start sender loop
        sub.sender_task = asyncio.create_task(subscriber_sender_loop(sub))
        log.info("subscribed: channel=%s client=%s replaced=%s", channel, client_id, old is not None)
        return sub, old is not None

    async def unsubscribe(self, channel: str, client_id: str) -> bool:
        async with self.lock:
            subs = self.channels.get(channel, {})
            sub = subs.pop(client_id, None)
            if not subs:
                self.channels.pop(channel, None)
        if sub is None:
            return False
        await sub.stop()
        log.info("unsubscribed: channel=%s client=%s", channel, client_id)
        return True

    async def detach(self, ws: WebSocket) -> List[str]:
        """Drop every subscription held by ``ws``; returns one channel per removed subscription."""
        removed: List[Tuple[str, Subscriber]] = []
        async with self.lock:
            for channel in list(self.channels):
                subs = self.channels[channel]
                for cid in [cid for cid, s in subs.items() if s.websocket is ws]:
                    removed.append((channel, subs.pop(cid)))
                if not subs:
                    del self.channels[channel]
        for _, sub in removed:
            await sub.stop()
        return [channel for channel, _ in removed]

    async def drop_channel(self, channel: str, topic: str) -> int:
        """Tell everyone on ``channel`` the topic is gone and forget them."""
        async with self.lock:
            subs = list(self.channels.pop(channel, {}).values())
        info = make_info(topic, "topic_deleted")
        for sub in subs:
            try:
                sub.queue.put_nowait(info)
            except asyncio.QueueFull:
                pass
            # we don't forcefully close websockets here; the client decides
        return len(subs)

    def listener_count(self, channel: str) -> int:
        return len(self.channels.get(channel, {}))

    async def replay(self, sub: Subscriber, channel: str, messages: List[dict]) -> int:
        """Queue stored messages for one subscriber, waiting for room instead of dropping.

        Returns how many were queued; stops early if the subscriber goes away
        or cannot take a message within the relay timeout.
        """
        queued = 0
        for msg in messages:
            if not sub.connected:
                break
            ev = make_event(channel, MESSAGE_EVENT, message_event_data(msg))
            try:
                await asyncio.wait_for(sub.queue.put(ev), timeout=self.timeout)
            except asyncio.TimeoutError:
                log.warning("replay to %s stalled after %d of %d messages", sub.client_id, queued, len(messages))
                break
            queued += 1
        return queued

    def enqueue(self, sub: Subscriber, item: dict, topic: str = None):
        # try enqueue, if full drop oldest and enqueue SLOW_CONSUMER error for that subscriber
        if sub.queue.full():
            # drop oldest
            try:
                _ = sub.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            err = make_error(None, "SLOW_CONSUMER", "Subscriber queue overflow; oldest messages dropped", topic)
            sub.queue.put_nowait(err)
            if sub.queue.full():
                # make room for the event itself
                sub.queue.get_nowait()
        sub.queue.put_nowait(item)

    async def _trigger(self, channel: str, event: str, data: dict) -> int:
        async with self.lock:
            subscribers = list(self.channels.get(channel, {}).values())
        # fan-out outside lock
        ev = make_event(channel, event, data)
        topic = channel_topic(channel) or channel
        for sub in subscribers:
            self.enqueue(sub, ev, topic)
        return len(subscribers)

    async def close(self) -> None:
        async with self.lock:
            subs = [s for channel in self.channels.values() for s in channel.values()]
            self.channels.clear()
        for sub in subs:
            await sub.stop()
        log.info("hub closed, %d subscribers stopped", len(subs))

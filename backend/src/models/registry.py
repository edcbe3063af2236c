import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

from models.errors import AlreadyExists, HasSubscribers, InvalidInput, NotFound
from models.models import Topic
from utilities import REPLAY_BUFFER_SIZE, now_ts

log = logging.getLogger(__name__)


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInput("topic name must be a non-empty string")
    return name.strip()


class TopicRegistry:
    """
    Process-wide store of topics and their replay buffers.

    Every operation runs under one lock, so readers never observe a message
    appended without its counter (or the reverse). Nothing here awaits I/O;
    delivery to live listeners is the transport's job.
    """

    def __init__(self, default_capacity: int = REPLAY_BUFFER_SIZE):
        self.default_capacity = default_capacity
        self._topics: Dict[str, Topic] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._topics)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._topics

    def _require(self, name: Any) -> Topic:
        key = _clean_name(name)
        t = self._topics.get(key)
        if t is None:
            raise NotFound(key)
        return t

    # -------------- Topic lifecycle --------------
    async def create_topic(self, name: str, capacity: Optional[int] = None) -> Topic:
        key = _clean_name(name)
        if capacity is None:
            capacity = self.default_capacity
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise InvalidInput("capacity must be a positive integer", key)
        async with self._lock:
            existing = self._topics.get(key)
            if existing is not None:
                raise AlreadyExists(existing)
            t = Topic(key, capacity)
            self._topics[key] = t
        log.info("topic created: %s (capacity=%d)", key, capacity)
        return t

    async def delete_topic(self, name: str, if_idle: bool = False) -> None:
        """Remove a topic with its buffer and counters.

        By default the subscriber count is ignored. With ``if_idle=True`` a
        topic that still has subscribers raises HasSubscribers instead, checked
        under the same lock as the removal.
        """
        async with self._lock:
            t = self._require(name)
            if if_idle and t.subscribers > 0:
                raise HasSubscribers(t.name, t.subscribers)
            del self._topics[t.name]
        log.info("topic deleted: %s (messages=%d)", t.name, t.messages_published)

    async def get_topic(self, name: str) -> Optional[Topic]:
        if not isinstance(name, str):
            return None
        async with self._lock:
            return self._topics.get(name.strip())

    async def list_topics(self) -> List[Dict[str, Any]]:
        async with self._lock:
            return [{"name": t.name, "subscribers": t.subscribers} for t in self._topics.values()]

    # -------------- Messages --------------
    async def add_message(self, name: str, message: Dict[str, Any]) -> Dict[str, Any]:
        """Store a copy of ``message`` at the tail of the topic's buffer.

        A missing timestamp is filled in; one supplied by the caller is kept.
        A full buffer evicts its oldest entry instead of rejecting. Returns
        the stored copy.
        """
        if not isinstance(message, dict):
            raise InvalidInput("message must be an object", name if isinstance(name, str) else None)
        async with self._lock:
            t = self._require(name)
            record = copy.deepcopy(message)
            if not record.get("timestamp"):
                record["timestamp"] = now_ts()
            t.append(record)
            stored = copy.deepcopy(record)
        log.debug("message stored: topic=%s id=%s buffer=%d/%d", t.name, record.get("id"), len(t.history), t.capacity)
        return stored

    async def get_history(self, name: str, last_n: Optional[int] = None) -> List[Dict[str, Any]]:
        async with self._lock:
            t = self._require(name)
            messages = list(t.history)
        if isinstance(last_n, int) and not isinstance(last_n, bool) and last_n > 0:
            messages = messages[-last_n:]
        return copy.deepcopy(messages)

    # -------------- Subscriber bookkeeping --------------
    async def increment_subscriber(self, name: str) -> int:
        async with self._lock:
            t = self._require(name)
            t.subscribers += 1
            return t.subscribers

    async def decrement_subscriber(self, name: str) -> int:
        async with self._lock:
            t = self._require(name)
            if t.subscribers > 0:
                t.subscribers -= 1
            return t.subscribers

    async def total_subscribers(self) -> int:
        async with self._lock:
            return sum(t.subscribers for t in self._topics.values())

    # -------------- Stats --------------
    async def get_stats(self) -> Dict[str, Dict[str, int]]:
        async with self._lock:
            return {
                name: {
                    "messages": t.messages_published,
                    "subscribers": t.subscribers,
                    "buffer_length": len(t.history),
                    "buffer_capacity": t.capacity,
                }
                for name, t in self._topics.items()
            }

    async def clear(self) -> int:
        async with self._lock:
            dropped = len(self._topics)
            self._topics.clear()
        return dropped

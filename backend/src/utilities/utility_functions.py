import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from utilities.constants import TOPIC_CHANNEL_PREFIX

# relaxed: 8-4-4-4-12 hex digits, dashes optional, any version nibble
_UUIDISH = re.compile(r"^[0-9a-f]{8}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{12}$", re.IGNORECASE)


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    return str(uuid.uuid4())


def is_uuidish(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    return bool(_UUIDISH.match(value))


def topic_channel(topic: str) -> str:
    return f"{TOPIC_CHANNEL_PREFIX}{topic}"


def channel_topic(channel: str) -> Optional[str]:
    """Inverse of topic_channel; None for channels that are not topic channels."""
    if channel.startswith(TOPIC_CHANNEL_PREFIX):
        return channel[len(TOPIC_CHANNEL_PREFIX):]
    return None


# Server -> client messages are built as dicts
def make_ack(request_id: Optional[str], topic: Optional[str], status: str = "ok", **extra: Any):
    ack = {"type": "ack", "request_id": request_id, "topic": topic, "status": status, "ts": now_ts()}
    ack.update(extra)
    return ack

def make_pong(request_id: Optional[str]):
    return {"type": "pong", "request_id": request_id, "ts": now_ts()}

def make_event(channel: str, event: str, data: dict):
    return {"type": "event", "channel": channel, "event": event, "data": data, "ts": now_ts()}

def make_error(request_id: Optional[str], code: str, message: str, topic: Optional[str] = None):
    return {"type": "error", "request_id": request_id, "topic": topic, "error": {"code": code, "message": message}, "ts": now_ts()}

def make_info(topic: Optional[str], msg: str):
    return {"type": "info", "topic": topic, "msg": msg, "ts": now_ts()}

def message_event_data(message: dict):
    """What listeners receive for a stored message."""
    return {"id": message.get("id"), "payload": message.get("payload"), "timestamp": message.get("timestamp")}

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# ------------ Config ------------
SUBSCRIBER_QUEUE_SIZE = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "50"))   # bounded per-subscriber queue
REPLAY_BUFFER_SIZE = int(os.getenv("REPLAY_BUFFER_SIZE", "100"))        # last N messages to keep per topic
DEFAULT_LAST_N = int(os.getenv("DEFAULT_LAST_N", "10"))                 # history window when last_n is omitted
MAX_LAST_N = int(os.getenv("MAX_LAST_N", "100"))                        # upper bound for a history request

RELAY_ENABLED = _env_bool("RELAY_ENABLED", True)                        # False -> messages stored, never broadcast
RELAY_TIMEOUT_SECONDS = float(os.getenv("RELAY_TIMEOUT_SECONDS", "5.0"))
SHUTDOWN_GRACE_SECONDS = float(os.getenv("SHUTDOWN_GRACE_SECONDS", "2.0"))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _env_bool("LOG_JSON", False)
# --------------------------------

# ------------ Channels ------------
TOPIC_CHANNEL_PREFIX = "topic-"        # topic "orders" is relayed on channel "topic-orders"
CONTROL_CHANNEL = "control-topics"     # topic_created / topic_deleted announcements
MESSAGE_EVENT = "event-message"
# ----------------------------------

from utilities.constants import (  # noqa: F401
    CONTROL_CHANNEL,
    DEFAULT_LAST_N,
    HOST,
    LOG_JSON,
    LOG_LEVEL,
    MAX_LAST_N,
    MESSAGE_EVENT,
    PORT,
    RELAY_ENABLED,
    RELAY_TIMEOUT_SECONDS,
    REPLAY_BUFFER_SIZE,
    SHUTDOWN_GRACE_SECONDS,
    SUBSCRIBER_QUEUE_SIZE,
    TOPIC_CHANNEL_PREFIX,
)
from utilities.utility_functions import (  # noqa: F401
    channel_topic,
    generate_id,
    is_uuidish,
    make_ack,
    make_error,
    make_event,
    make_info,
    make_pong,
    message_event_data,
    now_ts,
    topic_channel,
)

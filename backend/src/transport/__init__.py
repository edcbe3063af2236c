from transport.base import DeliveryTransport, NullTransport, RelayOutcome, RelayResult  # noqa: F401
from transport.hub import WebSocketHub  # noqa: F401
from transport.announcer import ControlAnnouncer  # noqa: F401

import json
import logging
import sys
from typing import Optional

from utilities.constants import LOG_JSON, LOG_LEVEL

_configured = False


class JsonHandler(logging.StreamHandler):
    """One JSON object per line on stdout."""

    def __init__(self):
        super().__init__(stream=sys.stdout)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            obj = {
                "ts": record.created,
                "lvl": record.levelname,
                "name": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info:
                obj["exc"] = logging.Formatter().formatException(record.exc_info)
            self.stream.write(json.dumps(obj, ensure_ascii=False) + "\n")
            self.flush()
        except Exception:  # pragma: no cover
            self.handleError(record)


def setup(level: Optional[str] = None, json_mode: Optional[bool] = None, *, force: bool = False) -> None:
    """Configure the root logger.

    Falls back to LOG_LEVEL / LOG_JSON when arguments are None. A second call
    is a no-op unless force=True.
    """
    global _configured
    if _configured and not force:
        return

    lvl = (level or LOG_LEVEL).upper()
    py_level = getattr(logging, lvl, None)
    if not isinstance(py_level, int):
        py_level = logging.INFO

    json_flag = LOG_JSON if json_mode is None else json_mode

    root = logging.getLogger()
    # avoid duplicate handlers when uvicorn reloads or pytest re-runs
    root.handlers.clear()
    root.setLevel(py_level)

    if json_flag:
        root.addHandler(JsonHandler())
    else:
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(logging.Formatter(fmt="[%(asctime)s] %(levelname)s %(name)s | %(message)s"))
        root.addHandler(handler)

    _configured = True

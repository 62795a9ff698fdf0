import datetime as dt
import enum
import json
import logging
from typing import Any, Dict, Mapping, Optional

from helperapp.utils.logging_helpers import REQUIRED_LOG_KEYS
from helperapp.utils.time_utils import UTC

# Everything a bare LogRecord already carries, plus what formatters add.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}

_TOP_LEVEL_KEYS = frozenset(REQUIRED_LOG_KEYS) | {
    "status",
    "actor_id",
    "channel",
    "error_type",
    "attempt",
    "delay",
    "category",
    "action",
}


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)) and not isinstance(value, enum.Enum):
        return value
    if isinstance(value, enum.Enum):
        return _jsonable(value.value)
    if isinstance(value, str):
        return value
    if isinstance(value, dt.datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return repr(value)


class ContextJsonFormatter(logging.Formatter):
    """One JSON object per record.

    Schema keys and a handful of common ones sit at the top level; any other
    ``extra`` values are grouped under ``"extra"``.
    """

    def __init__(self, *, static_fields: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__()
        self._static = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": dt.datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **self._static,
        }
        extras: Dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in _TOP_LEVEL_KEYS:
                payload[key] = _jsonable(value)
            else:
                extras[key] = _jsonable(value)
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(
    level: int = logging.INFO,
    debug_mode: bool = False,
    *,
    service: str = "helperbot",
) -> None:
    """Send root logging through :class:`ContextJsonFormatter` on stderr."""

    root_logger = logging.getLogger()
    if not any(getattr(handler, "_helperbot", False) for handler in root_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(ContextJsonFormatter(static_fields={"service": service}))
        handler._helperbot = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)

    root_logger.setLevel(logging.DEBUG if debug_mode else level)

    for noisy in ("sqlalchemy.engine", "aiosqlite", "httpx", "httpcore", "telegram.ext"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

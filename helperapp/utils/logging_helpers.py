"""Structured logging context for the helper workers.

Every record a worker emits carries the same schema keys so log pipelines
can stitch one session's history together across workers. Keys without a
value are emitted as ``null``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple, Union

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

REQUIRED_LOG_KEYS: Tuple[str, ...] = (
    "session_id",
    "worker_id",
    "game_type",
    "event_type",
    "request_category",
)

STANDARD_CONTEXT_KEYS: Tuple[str, ...] = REQUIRED_LOG_KEYS


def _blank_context() -> Dict[str, Any]:
    return dict.fromkeys(REQUIRED_LOG_KEYS)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Adapter whose bound context sits underneath per-call ``extra`` values."""

    def __init__(self, logger: logging.Logger, extra: Optional[Mapping[str, Any]] = None):
        super().__init__(logger, dict(extra or {}))

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def getChild(self, suffix: str) -> "ContextLoggerAdapter":  # noqa: N802 - mirror logging API
        return ContextLoggerAdapter(self.logger.getChild(suffix), self.extra)

    def bind(self, **context: Any) -> "ContextLoggerAdapter":
        return ContextLoggerAdapter(self.logger, {**self.extra, **context})


def _split(logger: LoggerLike) -> Tuple[logging.Logger, Dict[str, Any]]:
    if isinstance(logger, logging.LoggerAdapter):
        return logger.logger, dict(logger.extra or {})
    return logger, {}


def add_context(logger: LoggerLike, **context: Any) -> ContextLoggerAdapter:
    """Wrap ``logger`` keeping whatever it already carries and layering ``context`` on top."""

    base, bound = _split(logger)
    return ContextLoggerAdapter(base, {**_blank_context(), **bound, **context})


def enforce_context(
    logger: LoggerLike, default_ctx: Optional[Mapping[str, Any]] = None
) -> ContextLoggerAdapter:
    """Adapter for a service boundary; used by :mod:`helperapp.bootstrap`."""

    base, bound = _split(logger)
    return ContextLoggerAdapter(base, {**_blank_context(), **bound, **dict(default_ctx or {})})


__all__ = [
    "ContextLoggerAdapter",
    "REQUIRED_LOG_KEYS",
    "STANDARD_CONTEXT_KEYS",
    "add_context",
    "enforce_context",
]

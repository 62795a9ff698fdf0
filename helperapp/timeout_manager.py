"""Per-session turn timers.

At most one timer exists per session. A timer remembers the session version
it was armed for, and the expiry callback receives that version so the
finalizer can ignore a timer that lost the race against a real turn.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from helperapp.metrics import TIMEOUT_COUNTER
from helperapp.utils.logging_helpers import ContextLoggerAdapter, add_context

ExpiryCallback = Callable[[str, int], Awaitable[None]]


@dataclass
class _Timer:
    task: asyncio.Task
    version: int
    deadline: float


class TurnTimeoutManager:
    """Registry of ``session_id -> pending timer task``."""

    def __init__(
        self,
        on_expire: ExpiryCallback,
        *,
        timeout_seconds: float,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._on_expire = on_expire
        self._timeout_seconds = float(timeout_seconds)
        self._timers: Dict[str, _Timer] = {}
        self._logger: ContextLoggerAdapter = add_context(
            logger or logging.getLogger(__name__),
            request_category="timeout",
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._timers

    def __len__(self) -> int:
        return len(self._timers)

    def armed_version(self, session_id: str) -> Optional[int]:
        timer = self._timers.get(session_id)
        return timer.version if timer is not None else None

    def remaining(self, session_id: str) -> Optional[float]:
        timer = self._timers.get(session_id)
        if timer is None:
            return None
        return max(timer.deadline - time.monotonic(), 0.0)

    def start(
        self, session_id: str, version: int, *, timeout: Optional[float] = None
    ) -> None:
        """Arm (or re-arm) the timer for ``session_id``."""

        self.cancel(session_id)
        delay = self._timeout_seconds if timeout is None else max(float(timeout), 0.0)
        task = asyncio.create_task(
            self._run(session_id, version, delay),
            name=f"turn-timeout:{session_id}",
        )
        self._timers[session_id] = _Timer(
            task=task, version=version, deadline=time.monotonic() + delay
        )

    def cancel(self, session_id: str) -> bool:
        timer = self._timers.pop(session_id, None)
        if timer is None:
            return False
        if timer.task is asyncio.current_task():
            return False
        if not timer.task.done():
            timer.task.cancel()
        return True

    async def shutdown(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.task.cancel()
        if timers:
            await asyncio.gather(*(timer.task for timer in timers), return_exceptions=True)

    async def _run(self, session_id: str, version: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return

        current = self._timers.get(session_id)
        if current is None or current.task is not asyncio.current_task():
            return
        del self._timers[session_id]

        TIMEOUT_COUNTER.inc()
        self._logger.info(
            "Turn timer expired",
            extra={
                "session_id": session_id,
                "event_type": "turn_timeout",
                "version": version,
            },
        )
        try:
            await self._on_expire(session_id, version)
        except Exception as exc:
            self._logger.error(
                "Turn timeout handler failed",
                extra={
                    "session_id": session_id,
                    "event_type": "turn_timeout_failed",
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )


__all__ = ["ExpiryCallback", "TurnTimeoutManager"]

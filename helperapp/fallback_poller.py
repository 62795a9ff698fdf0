"""
Fallback polling for missed bus notifications and abandoned sessions.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Awaitable, Callable, Dict, Optional

from helperapp.metrics import POLLER_REPUBLISHED_COUNTER
from helperapp.notification_bus import NotificationBus
from helperapp.session_store import SessionStore
from helperapp.utils.logging_helpers import ContextLoggerAdapter, add_context
from helperapp.utils.time_utils import idle_cutoff

OrphanHandler = Callable[[str, int], Awaitable[object]]


class FallbackPoller:
    """Periodically re-announce pending sessions and sweep orphaned ones.

    Re-announcing is idempotent: receivers race on the atomic claim, so a
    session announced twice is still claimed exactly once.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        bus: NotificationBus,
        claim_channel: str,
        interval_seconds: float = 2.5,
        batch_size: int = 5,
        orphan_after_seconds: Optional[float] = None,
        on_orphan: Optional[OrphanHandler] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self._claim_channel = claim_channel
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._orphan_after = orphan_after_seconds
        self._on_orphan = on_orphan
        self._logger: ContextLoggerAdapter = add_context(
            logger or logging.getLogger(__name__),
            request_category="poller",
        )
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop."""

        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        self._logger.info(
            "Started fallback poller",
            extra={
                "event_type": "poller_started",
                "interval_seconds": self._interval,
                "batch_size": self._batch_size,
            },
        )

    async def stop(self) -> None:
        """Stop the polling loop gracefully."""

        self._running = False
        task = self._task
        if task is None:
            return

        task.cancel()

        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
            self._logger.info("Stopped fallback poller", extra={"event_type": "poller_stopped"})

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                # The loop outlives any single failed cycle.
                self._logger.error(
                    "Fallback poll cycle failed",
                    extra={"event_type": "poller_cycle_failed", "error_type": type(exc).__name__},
                    exc_info=True,
                )

            if not self._running:
                break

            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break

    async def run_cycle(self, *, now: Optional[dt.datetime] = None) -> Dict[str, int]:
        """Run a single poll cycle and return counts for it."""

        stats = {"republished": 0, "orphans": 0}

        for session_id in await self._store.list_pending(self._batch_size):
            published = await self._bus.publish(
                self._claim_channel, {"session_id": session_id, "source": "poller"}
            )
            if published:
                stats["republished"] += 1
                POLLER_REPUBLISHED_COUNTER.inc()

        if self._orphan_after is not None and self._on_orphan is not None:
            cutoff = idle_cutoff(self._orphan_after, now=now)
            stale = await self._store.list_stale_in_progress(cutoff, self._batch_size)
            for session_id, version in stale:
                result = await self._on_orphan(session_id, version)
                if result is not None:
                    stats["orphans"] += 1

        if stats["republished"] or stats["orphans"]:
            self._logger.debug(
                "Fallback poll cycle completed",
                extra={"event_type": "poller_cycle", **stats},
            )
        return stats


__all__ = ["FallbackPoller", "OrphanHandler"]

"""Terminal transitions for interactive sessions.

A session leaves ``in_progress`` exactly once. Every caller (the turn
handler, the turn timer, the orphan sweep and the forced-error path) funnels
through :meth:`Finalizer.settle_locked`, which refuses to act on a row that
is no longer in progress, so concurrent finalizations collapse to one write.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from helperapp.entities import SessionSnapshot, SessionStatus
from helperapp.errors import GameLogicError
from helperapp.games.engine import GameEngine, Settlement
from helperapp.games.state import GameState
from helperapp.metrics import FINALIZE_COUNTER, FINALIZE_DURATION
from helperapp.notification_bus import NotificationBus
from helperapp.session_store import LockedSession, SessionStore
from helperapp.utils.logging_helpers import ContextLoggerAdapter, add_context


def completion_payload(snapshot: SessionSnapshot) -> Dict[str, Any]:
    return {
        "session_id": snapshot.session_id,
        "status": snapshot.status.value,
        "final_payout": snapshot.final_payout,
        "game_type": snapshot.game_type,
        "stake_amount": snapshot.stake_amount,
        "initiator_id": snapshot.initiator.actor_id,
        "opponent_id": snapshot.opponent.actor_id if snapshot.opponent else None,
        "channel_ref": snapshot.channel_ref,
        "helper_bot_id": snapshot.helper_bot_id,
        "timed_out_actor": snapshot.state.get("timed_out_actor"),
    }


class Finalizer:
    def __init__(
        self,
        *,
        store: SessionStore,
        engine: GameEngine,
        bus: NotificationBus,
        completed_channel: str,
        worker_id: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._bus = bus
        self._completed_channel = completed_channel
        self._worker_id = worker_id
        self._logger: ContextLoggerAdapter = add_context(
            logger or logging.getLogger(__name__),
            worker_id=worker_id,
            request_category="finalize",
        )

    async def finalize(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        state: Optional[GameState] = None,
        expected_version: Optional[int] = None,
    ) -> Optional[SessionSnapshot]:
        """Finalize ``session_id`` in its own transaction and announce it.

        Returns the terminal snapshot, or ``None`` when another path already
        finalized the session or it moved past ``expected_version``.
        """

        started = time.perf_counter()
        async with self._store.locked(session_id) as locked:
            final = self.settle_locked(
                locked, status, state=state, expected_version=expected_version
            )
        FINALIZE_DURATION.observe(time.perf_counter() - started)
        if final is not None:
            await self.announce(final)
        return final

    def settle_locked(
        self,
        locked: Optional[LockedSession],
        status: SessionStatus,
        *,
        state: Optional[GameState] = None,
        expected_version: Optional[int] = None,
    ) -> Optional[SessionSnapshot]:
        """Write the terminal status inside the caller's transaction.

        The caller must :meth:`announce` the returned snapshot after commit.
        """

        if locked is None:
            FINALIZE_COUNTER.labels(status="missing").inc()
            return None
        snapshot = locked.snapshot
        log = self._logger.bind(session_id=snapshot.session_id, game_type=snapshot.game_type)
        if snapshot.status is not SessionStatus.IN_PROGRESS:
            FINALIZE_COUNTER.labels(status="already_final").inc()
            log.debug(
                "Session already left in_progress; finalize skipped",
                extra={"event_type": "finalize_skipped", "status": snapshot.status.value},
            )
            return None
        if expected_version is not None and snapshot.version != expected_version:
            FINALIZE_COUNTER.labels(status="stale_version").inc()
            log.debug(
                "Session advanced since the finalize was requested; skipped",
                extra={"event_type": "finalize_skipped", "status": status.value},
            )
            return None

        try:
            settlement = self._engine.settle(snapshot, status, state)
        except GameLogicError as exc:
            log.error(
                "Settlement failed; forcing error status",
                extra={
                    "event_type": "finalize_forced_error",
                    "status": status.value,
                    "error_type": type(exc).__name__,
                },
            )
            settlement = Settlement(status=SessionStatus.ERROR, payout=0)

        final = locked.write_terminal(settlement.status, settlement.payout, settlement.state)
        FINALIZE_COUNTER.labels(status=final.status.value).inc()
        log.info(
            "Session finalized",
            extra={
                "event_type": "session_finalized",
                "status": final.status.value,
                "final_payout": final.final_payout,
            },
        )
        return final

    async def announce(self, snapshot: SessionSnapshot) -> bool:
        """Publish the completion event for a committed terminal snapshot."""

        published = await self._bus.publish(
            self._completed_channel, completion_payload(snapshot)
        )
        if not published:
            self._logger.warning(
                "Completion event not delivered; consumers must read the row",
                extra={
                    "session_id": snapshot.session_id,
                    "game_type": snapshot.game_type,
                    "event_type": "completion_publish_failed",
                    "status": snapshot.status.value,
                },
            )
        return published


__all__ = ["Finalizer", "completion_payload"]

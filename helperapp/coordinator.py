"""Per-worker session coordination.

The coordinator reacts to three triggers: a claimable-session notification,
a submitted turn and an expired turn timer. Each trigger runs the same shape
of work: lock the row, validate, mutate, commit, then talk to the outside
world (completion events, prompts, timers) only after the commit.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Dict, Optional

from helperapp.entities import SessionSnapshot, SessionStatus, TurnAction
from helperapp.errors import GameLogicError, InvalidTurnError
from helperapp.finalizer import Finalizer
from helperapp.games.engine import GameEngine
from helperapp.metrics import CLAIM_COUNTER, POLLER_ORPHANS_COUNTER, TURN_COUNTER
from helperapp.messaging import PromptSender
from helperapp.notification_bus import NotificationBus
from helperapp.session_store import SessionStore
from helperapp.timeout_manager import TurnTimeoutManager
from helperapp.utils.logging_helpers import ContextLoggerAdapter, add_context


class TurnOutcome(str, enum.Enum):
    ACCEPTED = "accepted"
    FINALIZED = "finalized"
    REJECTED = "rejected"
    IGNORED = "ignored"


class SessionCoordinator:
    def __init__(
        self,
        *,
        store: SessionStore,
        bus: NotificationBus,
        engine: GameEngine,
        finalizer: Finalizer,
        messenger: PromptSender,
        worker_id: str,
        turn_timeout_seconds: float,
        claim_channel: str,
        turn_channel: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self._engine = engine
        self._finalizer = finalizer
        self._messenger = messenger
        self._worker_id = worker_id
        self._claim_channel = claim_channel
        self._turn_channel = turn_channel
        self._logger: ContextLoggerAdapter = add_context(
            logger or logging.getLogger(__name__),
            worker_id=worker_id,
            request_category="coordinator",
        )
        self._timeouts = TurnTimeoutManager(
            self.handle_timeout,
            timeout_seconds=turn_timeout_seconds,
            logger=self._logger,
        )

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def timeouts(self) -> TurnTimeoutManager:
        return self._timeouts

    def register(self) -> None:
        self._bus.subscribe(self._claim_channel, self._on_claim_message)
        self._bus.subscribe(self._turn_channel, self._on_turn_message)

    async def shutdown(self) -> None:
        await self._timeouts.shutdown()

    # ------------------------------------------------------------------
    # Bus entry points
    # ------------------------------------------------------------------

    async def _on_claim_message(self, payload: Dict[str, Any]) -> None:
        session_id = payload.get("session_id")
        if not session_id:
            self._logger.warning(
                "Claim notification without session_id",
                extra={"event_type": "claim_message_malformed"},
            )
            return
        await self.handle_claimable(str(session_id))

    async def _on_turn_message(self, payload: Dict[str, Any]) -> None:
        try:
            action = TurnAction.from_payload(payload)
        except (TypeError, ValueError) as exc:
            self._logger.warning(
                "Malformed turn notification",
                extra={
                    "session_id": payload.get("session_id"),
                    "event_type": "turn_message_malformed",
                    "error_type": type(exc).__name__,
                },
            )
            return
        await self.handle_turn(action)

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def handle_claimable(self, session_id: str) -> Optional[SessionSnapshot]:
        """Try to claim ``session_id``; ``None`` means another worker won."""

        snapshot = await self._store.claim(
            session_id, self._worker_id, self._engine.initial_document
        )
        log = self._logger.bind(session_id=session_id)
        if snapshot is None:
            CLAIM_COUNTER.labels(outcome="lost").inc()
            log.debug("Session already claimed elsewhere", extra={"event_type": "claim_lost"})
            return None

        log = log.bind(game_type=snapshot.game_type)
        if snapshot.status is SessionStatus.ERROR:
            CLAIM_COUNTER.labels(outcome="error").inc()
            await self._finalizer.announce(snapshot)
            return snapshot

        CLAIM_COUNTER.labels(outcome="claimed").inc()
        log.info("Session claimed", extra={"event_type": "session_claimed"})
        await self._present(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def handle_turn(self, action: TurnAction) -> TurnOutcome:
        log = self._logger.bind(session_id=action.session_id, actor_id=action.actor_id)
        final: Optional[SessionSnapshot] = None
        updated: Optional[SessionSnapshot] = None
        previous_handle: Optional[str] = None
        label = ""
        game_type = "unknown"

        async with self._store.locked(action.session_id) as locked:
            if locked is None:
                log.warning("Turn for unknown session", extra={"event_type": "turn_rejected"})
                TURN_COUNTER.labels(game_type=game_type, outcome="unknown_session").inc()
                return TurnOutcome.REJECTED
            snapshot = locked.snapshot
            game_type = snapshot.game_type
            log = log.bind(game_type=game_type)
            if snapshot.status is not SessionStatus.IN_PROGRESS:
                log.info(
                    "Turn for a session that is not in progress",
                    extra={"event_type": "turn_rejected", "status": snapshot.status.value},
                )
                TURN_COUNTER.labels(game_type=game_type, outcome="not_in_progress").inc()
                return TurnOutcome.REJECTED
            if snapshot.helper_bot_id != self._worker_id:
                return TurnOutcome.IGNORED

            previous_handle = snapshot.state.get("prompt_handle")
            try:
                result = self._engine.advance(snapshot, action)
            except InvalidTurnError as exc:
                log.info(
                    "Turn rejected",
                    extra={"event_type": "turn_rejected", "category": exc.reason},
                )
                TURN_COUNTER.labels(game_type=game_type, outcome=exc.reason).inc()
                return TurnOutcome.REJECTED
            except GameLogicError as exc:
                log.error(
                    "Session cannot advance; forcing error status",
                    extra={"event_type": "turn_forced_error", "error_type": type(exc).__name__},
                )
                self._timeouts.cancel(action.session_id)
                final = self._finalizer.settle_locked(locked, SessionStatus.ERROR)
                TURN_COUNTER.labels(game_type=game_type, outcome="error").inc()
            else:
                self._timeouts.cancel(action.session_id)
                label = result.label
                if result.terminal is not None:
                    final = self._finalizer.settle_locked(
                        locked, result.terminal, state=result.state
                    )
                else:
                    updated = locked.write_state(result.state.to_document())
                TURN_COUNTER.labels(game_type=game_type, outcome="accepted").inc()

        if final is not None:
            await self._finalizer.announce(final)
            await self._retire_prompt(final)
            return TurnOutcome.FINALIZED
        if updated is not None:
            log.debug(
                "Turn accepted",
                extra={"event_type": "turn_accepted", "action": action.kind.value},
            )
            await self._present(updated, previous_handle=previous_handle, last_label=label)
        return TurnOutcome.ACCEPTED

    # ------------------------------------------------------------------
    # Timeouts, orphans and recovery
    # ------------------------------------------------------------------

    async def handle_timeout(self, session_id: str, version: int) -> Optional[SessionSnapshot]:
        final = await self._finalizer.finalize(
            session_id, SessionStatus.COMPLETED_TIMEOUT, expected_version=version
        )
        if final is not None:
            await self._retire_prompt(final)
        return final

    async def handle_orphan(self, session_id: str, version: int) -> Optional[SessionSnapshot]:
        """Time out a session whose owner stopped making progress."""

        if session_id in self._timeouts:
            # Still ours and ticking; the local timer will settle it.
            return None
        final = await self.handle_timeout(session_id, version)
        if final is not None:
            POLLER_ORPHANS_COUNTER.inc()
            self._logger.warning(
                "Orphaned session timed out",
                extra={
                    "session_id": session_id,
                    "game_type": final.game_type,
                    "event_type": "orphan_finalized",
                    "status": final.status.value,
                    "previous_owner": final.helper_bot_id,
                },
            )
        return final

    async def force_error(self, session_id: str) -> Optional[SessionSnapshot]:
        self._timeouts.cancel(session_id)
        final = await self._finalizer.finalize(session_id, SessionStatus.ERROR)
        if final is not None:
            await self._retire_prompt(final)
        return final

    async def recover_owned_sessions(self) -> Dict[str, int]:
        """Re-arm timers for in-progress sessions this worker id already owns."""

        stats = {"rearmed": 0, "errored": 0}
        for snapshot in await self._store.list_owned_in_progress(self._worker_id):
            try:
                self._engine.decode(snapshot)
            except GameLogicError:
                await self.force_error(snapshot.session_id)
                stats["errored"] += 1
                continue
            self._timeouts.start(snapshot.session_id, snapshot.version)
            stats["rearmed"] += 1
        self._logger.info(
            "Startup recovery finished",
            extra={"event_type": "startup_recovery", **stats},
        )
        return stats

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    async def _present(
        self,
        snapshot: SessionSnapshot,
        *,
        previous_handle: Optional[str] = None,
        last_label: str = "",
    ) -> None:
        """Replace the visible prompt and arm the turn timer for ``snapshot``."""

        if previous_handle:
            await self._delete_prompt(snapshot.channel_ref, previous_handle)
        self._timeouts.start(snapshot.session_id, snapshot.version)
        try:
            prompt = self._engine.prompt_for(
                snapshot,
                timeout_seconds=self._timeouts.timeout_seconds,
                last_label=last_label,
            )
        except GameLogicError:
            await self.force_error(snapshot.session_id)
            return
        if prompt is None:
            return
        try:
            handle = await self._messenger.send_prompt(snapshot.channel_ref, prompt)
        except Exception as exc:
            self._logger.warning(
                "Prompt sender raised; turn timer still armed",
                extra={
                    "session_id": snapshot.session_id,
                    "event_type": "prompt_send_failed",
                    "error_type": type(exc).__name__,
                },
            )
            return
        if handle:
            recorded = await self._store.attach_prompt_handle(
                snapshot.session_id, snapshot.version, handle
            )
            if not recorded:
                # The session moved on while the prompt was in flight.
                await self._delete_prompt(snapshot.channel_ref, handle)

    async def _retire_prompt(self, snapshot: SessionSnapshot) -> None:
        handle = snapshot.state.get("prompt_handle")
        if handle:
            await self._delete_prompt(snapshot.channel_ref, str(handle))

    async def _delete_prompt(self, destination: str, handle: str) -> None:
        try:
            await self._messenger.delete_prompt(destination, handle)
        except Exception as exc:
            self._logger.debug(
                "Prompt deletion failed",
                extra={"event_type": "prompt_delete_failed", "error_type": type(exc).__name__},
            )


__all__ = ["SessionCoordinator", "TurnOutcome"]

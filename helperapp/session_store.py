"""Transactional access to the shared session table.

Every state transition (claim, turn, finalize) goes through this module. The
store exposes exactly the three primitives the coordination layer relies on:

* a compare-and-set claim (``UPDATE ... WHERE status = 'pending_claim'``);
* a row-level exclusive lock for read-modify-write sequences
  (``SELECT ... FOR UPDATE`` inside one transaction);
* commit/rollback of the whole transaction as a unit.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import logging
from copy import deepcopy
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from sqlalchemy import event, select, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from helperapp.database_schema import Base, InteractiveGameSession
from helperapp.entities import (
    Money,
    Participant,
    SessionId,
    SessionSnapshot,
    SessionStatus,
)
from helperapp.errors import GameLogicError, HelperError
from helperapp.utils.time_utils import now_utc


logger = logging.getLogger(__name__)

StateInitialiser = Callable[[SessionSnapshot], Dict[str, Any]]


def _to_snapshot(row: InteractiveGameSession) -> SessionSnapshot:
    opponent: Optional[Participant] = None
    if row.opponent_id is not None:
        opponent = Participant(row.opponent_id, row.opponent_name or "")
    return SessionSnapshot(
        session_id=row.session_id,
        status=SessionStatus(row.status),
        game_type=row.game_type,
        stake_amount=int(row.stake_amount),
        final_payout=int(row.final_payout or 0),
        initiator=Participant(row.initiator_id, row.initiator_name or ""),
        opponent=opponent,
        channel_ref=row.channel_ref,
        helper_bot_id=row.helper_bot_id,
        version=int(row.version or 0),
        state=deepcopy(row.state or {}),
    )


class LockedSession:
    """A session row held under an exclusive lock for one transaction."""

    def __init__(self, row: InteractiveGameSession) -> None:
        self._row = row

    @property
    def snapshot(self) -> SessionSnapshot:
        return _to_snapshot(self._row)

    @property
    def status(self) -> SessionStatus:
        return SessionStatus(self._row.status)

    @property
    def version(self) -> int:
        return int(self._row.version or 0)

    def _require_in_progress(self) -> None:
        if self._row.status != SessionStatus.IN_PROGRESS.value:
            raise HelperError(
                f"session {self._row.session_id} is {self._row.status}, not in_progress"
            )

    def write_state(self, state: Dict[str, Any]) -> SessionSnapshot:
        """Persist a new state document for an in-progress session."""

        self._require_in_progress()
        self._row.state = deepcopy(state)
        self._row.version = self.version + 1
        self._row.updated_at = now_utc()
        return self.snapshot

    def attach_prompt_handle(self, handle: Optional[str]) -> SessionSnapshot:
        # Presentation bookkeeping only, so the turn counter stays put.
        self._require_in_progress()
        state = deepcopy(self._row.state or {})
        state["prompt_handle"] = handle
        self._row.state = state
        self._row.updated_at = now_utc()
        return self.snapshot

    def write_terminal(
        self,
        status: SessionStatus,
        final_payout: Money,
        state: Optional[Dict[str, Any]] = None,
    ) -> SessionSnapshot:
        """Freeze the session with a terminal status and payout."""

        self._require_in_progress()
        if not status.is_terminal:
            raise HelperError(f"{status.value} is not a terminal status")
        if final_payout < 0:
            raise HelperError("final payout cannot be negative")
        self._row.status = status.value
        self._row.final_payout = int(final_payout)
        if state is not None:
            self._row.state = deepcopy(state)
        self._row.version = self.version + 1
        self._row.updated_at = now_utc()
        return self.snapshot


def _serialize_sqlite_transactions(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the database write lock up front.

    SQLite has no row locks and ignores ``FOR UPDATE``; ``BEGIN IMMEDIATE``
    turns each transaction into an exclusive section so read-modify-write
    sequences cannot interleave.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class SessionStore:
    """Session table access backed by an async SQLAlchemy engine."""

    def __init__(
        self,
        database_url: str,
        *,
        echo: bool = False,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        engine_kwargs: Dict[str, object] = {"echo": echo, "future": True}
        if database_url.startswith("sqlite+aiosqlite:///:memory"):
            engine_kwargs["poolclass"] = StaticPool
        self._engine: AsyncEngine = create_async_engine(database_url, **engine_kwargs)
        if self._engine.dialect.name == "sqlite":
            _serialize_sqlite_transactions(self._engine)
        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )
        self._logger = logger_ or logger
        self._schema_lock = asyncio.Lock()
        self._initialized = False

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def ensure_schema(self) -> None:
        if self._initialized:
            return
        async with self._schema_lock:
            if self._initialized:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._initialized = True

    async def close(self) -> None:
        await self._engine.dispose()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, session_id: SessionId) -> Optional[SessionSnapshot]:
        async with self._sessionmaker() as db:
            row = await db.get(InteractiveGameSession, session_id)
            return _to_snapshot(row) if row is not None else None

    async def list_pending(self, limit: int) -> List[SessionId]:
        """Return up to ``limit`` claimable session ids, oldest first."""

        query = (
            select(InteractiveGameSession.session_id)
            .where(InteractiveGameSession.status == SessionStatus.PENDING_CLAIM.value)
            .order_by(InteractiveGameSession.created_at.asc())
            .limit(limit)
        )
        async with self._sessionmaker() as db:
            result = await db.execute(query)
            return [str(value) for value in result.scalars().all()]

    async def list_stale_in_progress(
        self, cutoff: dt.datetime, limit: int
    ) -> List[Tuple[SessionId, int]]:
        """Return ``(session_id, version)`` for in-progress rows idle since before ``cutoff``."""

        query = (
            select(InteractiveGameSession.session_id, InteractiveGameSession.version)
            .where(
                InteractiveGameSession.status == SessionStatus.IN_PROGRESS.value,
                InteractiveGameSession.updated_at < cutoff,
            )
            .order_by(InteractiveGameSession.updated_at.asc())
            .limit(limit)
        )
        async with self._sessionmaker() as db:
            result = await db.execute(query)
            return [(str(session_id), int(version or 0)) for session_id, version in result.all()]

    async def list_owned_in_progress(self, worker_id: str) -> List[SessionSnapshot]:
        query = select(InteractiveGameSession).where(
            InteractiveGameSession.status == SessionStatus.IN_PROGRESS.value,
            InteractiveGameSession.helper_bot_id == worker_id,
        )
        async with self._sessionmaker() as db:
            result = await db.execute(query)
            return [_to_snapshot(row) for row in result.scalars().all()]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_pending(
        self,
        *,
        session_id: SessionId,
        game_type: str,
        stake_amount: Money,
        initiator: Participant,
        channel_ref: str,
        opponent: Optional[Participant] = None,
        created_at: Optional[dt.datetime] = None,
    ) -> SessionSnapshot:
        """Insert a new claimable session row.

        Session placement belongs to the wagering front end; this exists so
        that front end (and the test-suite) can hand sessions over.
        """

        timestamp = created_at or now_utc()
        row = InteractiveGameSession(
            session_id=session_id,
            status=SessionStatus.PENDING_CLAIM.value,
            game_type=game_type,
            stake_amount=int(stake_amount),
            final_payout=0,
            state={},
            initiator_id=initiator.actor_id,
            initiator_name=initiator.display_name,
            opponent_id=opponent.actor_id if opponent else None,
            opponent_name=opponent.display_name if opponent else None,
            channel_ref=channel_ref,
            version=0,
            created_at=timestamp,
            updated_at=timestamp,
        )
        async with self._sessionmaker() as db:
            async with db.begin():
                db.add(row)
        return _to_snapshot(row)

    async def claim(
        self,
        session_id: SessionId,
        worker_id: str,
        initialise: StateInitialiser,
    ) -> Optional[SessionSnapshot]:
        """Atomically move ``session_id`` from ``pending_claim`` to ``in_progress``.

        Returns ``None`` when another worker got there first. The archetype
        state produced by ``initialise`` is written in the same transaction,
        so no other worker ever observes a half-initialised session. When
        ``initialise`` raises :class:`GameLogicError` the session is moved to
        ``error`` instead (still in the same transaction) and the returned
        snapshot carries that status.
        """

        claim_stmt = (
            update(InteractiveGameSession)
            .where(
                InteractiveGameSession.session_id == session_id,
                InteractiveGameSession.status == SessionStatus.PENDING_CLAIM.value,
            )
            .values(
                status=SessionStatus.IN_PROGRESS.value,
                helper_bot_id=worker_id,
                updated_at=now_utc(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._sessionmaker() as db:
            async with db.begin():
                result = await db.execute(claim_stmt)
                if result.rowcount != 1:
                    return None
                row = (
                    await db.execute(
                        select(InteractiveGameSession)
                        .where(InteractiveGameSession.session_id == session_id)
                        .with_for_update()
                    )
                ).scalar_one()
                locked = LockedSession(row)
                try:
                    state = initialise(locked.snapshot)
                except GameLogicError as exc:
                    self._logger.error(
                        "Session state could not be initialised; forcing error status",
                        extra={
                            "session_id": session_id,
                            "worker_id": worker_id,
                            "game_type": row.game_type,
                            "event_type": "claim_initialise_failed",
                            "error_type": type(exc).__name__,
                        },
                    )
                    return locked.write_terminal(SessionStatus.ERROR, 0)
                return locked.write_state(state)

    @contextlib.asynccontextmanager
    async def locked(
        self, session_id: SessionId
    ) -> AsyncIterator[Optional[LockedSession]]:
        """Hold ``session_id`` under an exclusive row lock for one transaction.

        Yields ``None`` when the row does not exist. Leaving the block
        normally commits; an exception rolls back every write made inside it.
        """

        async with self._sessionmaker() as db:
            async with db.begin():
                row = (
                    await db.execute(
                        select(InteractiveGameSession)
                        .where(InteractiveGameSession.session_id == session_id)
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                yield LockedSession(row) if row is not None else None

    async def attach_prompt_handle(
        self, session_id: SessionId, expected_version: int, handle: Optional[str]
    ) -> bool:
        """Record the visible prompt for ``session_id`` if it has not moved on."""

        async with self.locked(session_id) as session:
            if (
                session is None
                or session.status is not SessionStatus.IN_PROGRESS
                or session.version != expected_version
            ):
                return False
            session.attach_prompt_handle(handle)
            return True


__all__ = ["LockedSession", "SessionStore", "StateInitialiser"]

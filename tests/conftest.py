"""Pytest configuration shared across the test suite."""

import itertools
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import fakeredis
import fakeredis.aioredis
import pytest
import pytest_asyncio

from helperapp.config import GAME_CONSTANTS
from helperapp.entities import Participant
from helperapp.finalizer import Finalizer
from helperapp.games.base import PromptSnapshot
from helperapp.games.engine import GameEngine
from helperapp.notification_bus import NotificationBus
from helperapp.session_store import SessionStore

CLAIM_CHANNEL = "helper:session_claimable"
TURN_CHANNEL = "helper:turn_submitted"
COMPLETED_CHANNEL = "helper:game_completed"

INITIATOR = Participant("1001", "Alice")
OPPONENT = Participant("2002", "Bob")
CHANNEL_REF = "-100500"


class RecordingPromptSender:
    """In-memory prompt sender that hands out sequential handles."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, PromptSnapshot]] = []
        self.deleted: List[Tuple[str, str]] = []
        self._next_handle = 100

    async def send_prompt(self, destination: str, prompt: PromptSnapshot) -> Optional[str]:
        self._next_handle += 1
        self.sent.append((destination, prompt))
        return str(self._next_handle)

    async def delete_prompt(self, destination: str, handle: str) -> None:
        self.deleted.append((destination, handle))

    @property
    def last_prompt(self) -> PromptSnapshot:
        return self.sent[-1][1]


class RecordingBus:
    """Bus double capturing publishes without a Redis connection."""

    def __init__(self, *, fail: bool = False) -> None:
        self.published: List[Tuple[str, Dict[str, Any]]] = []
        self.subscriptions: Dict[str, list] = {}
        self.fail = fail

    def subscribe(self, channel: str, handler) -> None:
        self.subscriptions.setdefault(channel, []).append(handler)

    async def publish(self, channel: str, payload: Dict[str, Any]) -> bool:
        if self.fail:
            return False
        self.published.append((channel, dict(payload)))
        return True

    def on(self, channel: str) -> List[Dict[str, Any]]:
        return [payload for published_channel, payload in self.published if published_channel == channel]


@pytest.fixture
def redis_pool():
    server = fakeredis.FakeServer()
    return fakeredis.aioredis.FakeRedis(server=server)


@pytest.fixture
def game_engine() -> GameEngine:
    return GameEngine.from_constants(GAME_CONSTANTS)


@pytest_asyncio.fixture
async def session_store(tmp_path):
    store = SessionStore(f"sqlite+aiosqlite:///{(tmp_path / 'sessions.sqlite3').as_posix()}")
    await store.ensure_schema()
    yield store
    await store.close()


@pytest.fixture
def recording_bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def prompt_sender() -> RecordingPromptSender:
    return RecordingPromptSender()


@pytest.fixture
def finalizer(session_store, game_engine, recording_bus) -> Finalizer:
    return Finalizer(
        store=session_store,
        engine=game_engine,
        bus=recording_bus,
        completed_channel=COMPLETED_CHANNEL,
        worker_id="worker-a",
    )


@pytest_asyncio.fixture
async def notification_bus(redis_pool):
    bus = NotificationBus(
        redis_pool,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
        listen_timeout=0.05,
    )
    yield bus
    await bus.stop()


@pytest.fixture
def insert_session(session_store):
    """Factory inserting claimable sessions with sequential ids."""

    counter = itertools.count(1)

    async def _insert(
        game_type: str = "escalating",
        *,
        stake: int = 1000,
        with_opponent: bool = False,
        session_id: Optional[str] = None,
        created_at=None,
    ):
        return await session_store.insert_pending(
            session_id=session_id or f"session-{next(counter)}",
            game_type=game_type,
            stake_amount=stake,
            initiator=INITIATOR,
            channel_ref=CHANNEL_REF,
            opponent=OPPONENT if with_opponent else None,
            created_at=created_at,
        )

    return _insert

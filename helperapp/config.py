import logging
import os
import socket
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

import yaml


logger = logging.getLogger(__name__)


_BASE_DIR = Path(__file__).resolve().parent.parent
_DEFAULT_CONFIG_DIR = _BASE_DIR / "config"
_DEFAULT_GAME_CONSTANTS_PATH = _DEFAULT_CONFIG_DIR / "game_constants.yaml"

_DEFAULT_GAME_CONSTANTS_DATA: Dict[str, Any] = {
    "worker": {
        "turn_timeout_seconds": 60,
        "poll_interval_seconds": 2.5,
        "poll_batch_size": 5,
        "orphan_grace_seconds": 30,
        "bus_reconnect_base_delay": 1.0,
        "bus_reconnect_max_delay": 30.0,
    },
    "bus": {
        "claim_channel": "helper:session_claimable",
        "turn_channel": "helper:turn_submitted",
        "completed_channel": "helper:game_completed",
    },
    "dice": {
        "faces": [1, 2, 3, 4, 5, 6],
    },
    "escalating": {
        "max_turns": 6,
        "round_size": 2,
        "effects": {
            1: {"label": "bust", "factor": 0.0},
            2: {"label": "wobble", "factor": 0.8},
            3: {"label": "steady", "factor": 1.0},
            4: {"label": "good", "factor": 1.2},
            5: {"label": "great", "factor": 1.5},
            6: {"label": "bullseye", "factor": 2.0},
        },
    },
    "rounds": {
        "rounds": 5,
        "round_multipliers": {1: 0.2, 2: 0.5, 3: 1.0, 4: 2.0, 5: 4.0},
        "cashout_fraction": 0.5,
        "instant_loss": [1],
        "success": [4, 5, 6],
        "miss": [2, 3],
    },
    "duel": {
        "shots_per_player": 3,
        "scoring": {"rule": "sum"},
        "payout_tiers": [
            {"min_score": 0, "multiplier": 0.9},
            {"min_score": 12, "multiplier": 1.0},
            {"min_score": 15, "multiplier": 1.5},
        ],
    },
    "currency": {
        "symbol": "SOL",
        "decimals": 9,
        "display_precision": 4,
    },
}


def _resolve_config_path(candidate: Optional[str], default: Path) -> Path:
    if not candidate:
        return default
    path = Path(candidate)
    return path if path.is_absolute() else _BASE_DIR / path


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _load_yaml_mapping(path: Path) -> Dict[str, Any]:
    """Read ``path``; any problem is logged and yields an empty mapping."""

    log_extra = {"category": "config", "config_path": str(path), "stage": "game_constants_load"}
    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
    except FileNotFoundError:
        logger.warning(
            "Game constants file not found; using built-in tables.",
            extra={**log_extra, "error_type": "FileNotFoundError"},
        )
        return {}
    except yaml.YAMLError as exc:
        logger.warning(
            "Game constants file is not valid YAML; using built-in tables.",
            extra={**log_extra, "error_type": type(exc).__name__},
            exc_info=True,
        )
        return {}
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        logger.warning(
            "Game constants file is not a mapping; using built-in tables.",
            extra={**log_extra, "error_type": "InvalidMapping"},
        )
        return {}
    return loaded


class GameConstants:
    """Archetype tables and timing defaults: built-in values overlaid with YAML."""

    def __init__(
        self,
        path: Optional[str] = None,
        *,
        defaults: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._path = _resolve_config_path(
            path or os.getenv("HELPERBOT_GAME_CONSTANTS_FILE"),
            _DEFAULT_GAME_CONSTANTS_PATH,
        )
        self._defaults: Dict[str, Any] = deepcopy(defaults or _DEFAULT_GAME_CONSTANTS_DATA)
        self._data: Dict[str, Any] = {}
        self.reload()

    @property
    def path(self) -> Path:
        return self._path

    def reload(self) -> None:
        self._data = _deep_merge(deepcopy(self._defaults), _load_yaml_mapping(self._path))

    def section(self, key: str) -> Dict[str, Any]:
        section = self._data.get(key)
        return deepcopy(section) if isinstance(section, dict) else {}

    worker = property(lambda self: self.section("worker"))
    bus = property(lambda self: self.section("bus"))
    dice = property(lambda self: self.section("dice"))
    escalating = property(lambda self: self.section("escalating"))
    rounds = property(lambda self: self.section("rounds"))
    duel = property(lambda self: self.section("duel"))
    currency = property(lambda self: self.section("currency"))


GAME_CONSTANTS = GameConstants()


def _default_worker_id() -> str:
    return f"helper-{socket.gethostname()}"


def _ignored(env_var: str, raw_value: str, reason: str) -> None:
    logger.warning(
        "Ignoring %s=%r: %s.",
        env_var,
        raw_value,
        reason,
        extra={"category": "config", "stage": "env_parse", "env_var": env_var},
    )


def _env_int(env_var: str, default: int) -> int:
    raw_value = os.getenv(env_var, "").strip()
    if not raw_value:
        return default
    try:
        return int(raw_value)
    except ValueError:
        _ignored(env_var, raw_value, "not an integer")
        return default


def _env_positive(env_var: str, default: Any, cast: Callable[[str], Any]) -> Any:
    """Parse a strictly positive number, falling back to ``default``."""

    raw_value = os.getenv(env_var, "").strip()
    if not raw_value:
        return default
    try:
        value = cast(raw_value)
    except ValueError:
        _ignored(env_var, raw_value, "not a number")
        return default
    if value <= 0:
        _ignored(env_var, raw_value, "must be greater than zero")
        return default
    return value


def _env_flag(env_var: str) -> bool:
    return os.getenv(env_var, "0").strip().lower() in {"1", "true", "yes", "on"}


def _sqlite_url() -> str:
    raw_path = os.getenv("HELPERBOT_SQLITE_PATH", "").strip()
    sqlite_path = Path(raw_path).expanduser() if raw_path else Path.cwd() / "helperbot_sessions.sqlite3"
    try:
        sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            "Unable to create the SQLite directory.",
            extra={
                "category": "config",
                "config_path": str(sqlite_path.parent),
                "stage": "database_path_resolve",
                "error_type": type(exc).__name__,
            },
        )
    return f"sqlite+aiosqlite:///{sqlite_path.resolve().as_posix()}"


class Config:
    """Per-process settings: ``HELPERBOT_*`` environment over the YAML worker section."""

    def __init__(self, constants: Optional[GameConstants] = None):
        self.constants: GameConstants = constants or GAME_CONSTANTS
        worker = self.constants.worker
        bus = self.constants.bus

        self.TOKEN: str = os.getenv("HELPERBOT_TOKEN", "")
        self.DEBUG: bool = _env_flag("HELPERBOT_DEBUG")
        self.WORKER_ID: str = os.getenv("HELPERBOT_WORKER_ID", "").strip() or _default_worker_id()

        self.REDIS_HOST: str = os.getenv("HELPERBOT_REDIS_HOST", "localhost")
        self.REDIS_PORT: int = _env_int("HELPERBOT_REDIS_PORT", 6379)
        self.REDIS_PASS: str = os.getenv("HELPERBOT_REDIS_PASS", "")
        self.REDIS_DB: int = _env_int("HELPERBOT_REDIS_DB", 0)

        self.DATABASE_URL: str = os.getenv("HELPERBOT_DATABASE_URL", "").strip() or _sqlite_url()
        self.DATABASE_ECHO: bool = _env_flag("HELPERBOT_DATABASE_ECHO")

        self.TURN_TIMEOUT_SECONDS: float = _env_positive(
            "HELPERBOT_TURN_TIMEOUT", float(worker.get("turn_timeout_seconds", 60)), float
        )
        self.POLL_INTERVAL_SECONDS: float = _env_positive(
            "HELPERBOT_POLL_INTERVAL", float(worker.get("poll_interval_seconds", 2.5)), float
        )
        self.POLL_BATCH_SIZE: int = _env_positive(
            "HELPERBOT_POLL_BATCH", int(worker.get("poll_batch_size", 5)), int
        )
        self.ORPHAN_GRACE_SECONDS: float = _env_positive(
            "HELPERBOT_ORPHAN_GRACE", float(worker.get("orphan_grace_seconds", 30)), float
        )
        self.BUS_RECONNECT_BASE_DELAY: float = _env_positive(
            "HELPERBOT_BUS_RECONNECT_BASE_DELAY",
            float(worker.get("bus_reconnect_base_delay", 1.0)),
            float,
        )
        self.BUS_RECONNECT_MAX_DELAY: float = _env_positive(
            "HELPERBOT_BUS_RECONNECT_MAX_DELAY",
            float(worker.get("bus_reconnect_max_delay", 30.0)),
            float,
        )

        self.CLAIM_CHANNEL: str = str(bus.get("claim_channel", "helper:session_claimable"))
        self.TURN_CHANNEL: str = str(bus.get("turn_channel", "helper:turn_submitted"))
        self.COMPLETED_CHANNEL: str = str(bus.get("completed_channel", "helper:game_completed"))

        self.METRICS_PORT: Optional[int] = _env_positive("HELPERBOT_METRICS_PORT", None, int)

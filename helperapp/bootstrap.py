"""Application composition root for the helper worker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

import redis.asyncio as aioredis

from helperapp.config import Config
from helperapp.finalizer import Finalizer
from helperapp.games.engine import GameEngine
from helperapp.logging_config import setup_logging
from helperapp.messaging import LamportFormatter
from helperapp.notification_bus import NotificationBus
from helperapp.retry_manager import RetryManager
from helperapp.session_store import SessionStore
from helperapp.utils.logging_helpers import ContextLoggerAdapter, enforce_context


def _build_redis_client_kwargs(cfg: Config) -> Dict[str, Any]:
    """Return connection settings for the Redis client."""

    return {
        "host": cfg.REDIS_HOST,
        "port": cfg.REDIS_PORT,
        "db": cfg.REDIS_DB,
        "password": cfg.REDIS_PASS or None,
        "socket_connect_timeout": 5,
        "retry_on_timeout": True,
        "health_check_interval": 30,
    }


def _create_redis_client(client_kwargs: Dict[str, Any]) -> aioredis.Redis:
    """Create a Redis client; connections are established lazily."""

    return aioredis.Redis(**dict(client_kwargs))


@dataclass(frozen=True)
class ApplicationServices:
    """Container for infrastructure dependencies shared across the worker."""

    logger: ContextLoggerAdapter
    redis: aioredis.Redis
    store: SessionStore
    bus: NotificationBus
    engine: GameEngine
    finalizer: Finalizer
    retry_manager: RetryManager
    currency: LamportFormatter


def _make_service_logger(
    parent_logger: ContextLoggerAdapter, child_name: str, category: str
) -> ContextLoggerAdapter:
    """Return a child logger enriched with the provided ``category`` context."""

    return enforce_context(
        parent_logger.getChild(child_name), {"request_category": category}
    )


def build_services(cfg: Config) -> ApplicationServices:
    """Initialise logging and infrastructure dependencies for the worker."""

    setup_logging(logging.INFO, debug_mode=cfg.DEBUG)
    logger = enforce_context(
        logging.getLogger("helperbot"), {"worker_id": cfg.WORKER_ID}
    )

    redis_client = _create_redis_client(_build_redis_client_kwargs(cfg))
    logger.info(
        "Redis client initialized with lazy connection",
        extra={
            "event_type": "redis_client_created",
            "host": cfg.REDIS_HOST,
            "port": cfg.REDIS_PORT,
        },
    )

    store = SessionStore(
        cfg.DATABASE_URL,
        echo=cfg.DATABASE_ECHO,
        logger_=_make_service_logger(logger, "store", "store"),
    )
    bus = NotificationBus(
        redis_client,
        logger=_make_service_logger(logger, "bus", "bus"),
        reconnect_base_delay=cfg.BUS_RECONNECT_BASE_DELAY,
        reconnect_max_delay=cfg.BUS_RECONNECT_MAX_DELAY,
    )
    engine = GameEngine.from_constants(cfg.constants)
    finalizer = Finalizer(
        store=store,
        engine=engine,
        bus=bus,
        completed_channel=cfg.COMPLETED_CHANNEL,
        worker_id=cfg.WORKER_ID,
        logger=_make_service_logger(logger, "finalizer", "finalize"),
    )
    retry_manager = RetryManager(
        logger=_make_service_logger(logger, "telegram_retry", "telegram")
    )

    return ApplicationServices(
        logger=logger,
        redis=redis_client,
        store=store,
        bus=bus,
        engine=engine,
        finalizer=finalizer,
        retry_manager=retry_manager,
        currency=LamportFormatter.from_mapping(cfg.constants.currency),
    )


__all__ = ["ApplicationServices", "build_services"]

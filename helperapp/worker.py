"""Helper worker process wiring.

``HelperWorker`` owns the long-running pieces (bus listener, fallback poller,
turn timers). ``build_application`` attaches it to a python-telegram-bot
``Application`` so that both share one event loop.
"""

from __future__ import annotations

from typing import Optional

from prometheus_client import start_http_server
from telegram import Update
from telegram.ext import Application, ApplicationBuilder

from helperapp.bootstrap import ApplicationServices
from helperapp.callback_relay import CallbackRelay
from helperapp.config import Config
from helperapp.coordinator import SessionCoordinator
from helperapp.fallback_poller import FallbackPoller
from helperapp.messaging import PromptSender, TelegramPromptSender
from helperapp.utils.logging_helpers import ContextLoggerAdapter


class HelperWorker:
    def __init__(
        self,
        cfg: Config,
        services: ApplicationServices,
        *,
        messenger: PromptSender,
    ) -> None:
        self._cfg = cfg
        self._services = services
        self._logger: ContextLoggerAdapter = services.logger.getChild("worker")
        self._coordinator = SessionCoordinator(
            store=services.store,
            bus=services.bus,
            engine=services.engine,
            finalizer=services.finalizer,
            messenger=messenger,
            worker_id=cfg.WORKER_ID,
            turn_timeout_seconds=cfg.TURN_TIMEOUT_SECONDS,
            claim_channel=cfg.CLAIM_CHANNEL,
            turn_channel=cfg.TURN_CHANNEL,
            logger=services.logger.getChild("coordinator"),
        )
        self._coordinator.register()
        self._poller = FallbackPoller(
            store=services.store,
            bus=services.bus,
            claim_channel=cfg.CLAIM_CHANNEL,
            interval_seconds=cfg.POLL_INTERVAL_SECONDS,
            batch_size=cfg.POLL_BATCH_SIZE,
            orphan_after_seconds=cfg.TURN_TIMEOUT_SECONDS + cfg.ORPHAN_GRACE_SECONDS,
            on_orphan=self._coordinator.handle_orphan,
            logger=services.logger.getChild("poller"),
        )
        self._metrics_started = False
        self._started = False

    @property
    def coordinator(self) -> SessionCoordinator:
        return self._coordinator

    @property
    def poller(self) -> FallbackPoller:
        return self._poller

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self._services.store.ensure_schema()
        await self._services.bus.start()
        await self._coordinator.recover_owned_sessions()
        await self._poller.start()
        self._start_metrics_server()
        self._logger.info(
            "Helper worker started",
            extra={"event_type": "worker_started", "worker_id": self._cfg.WORKER_ID},
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self._poller.stop()
        await self._services.bus.stop()
        await self._coordinator.shutdown()
        await self._services.store.close()
        await self._services.redis.aclose()
        self._logger.info("Helper worker stopped", extra={"event_type": "worker_stopped"})

    def _start_metrics_server(self) -> None:
        port: Optional[int] = self._cfg.METRICS_PORT
        if port is None or self._metrics_started:
            return
        start_http_server(port)
        self._metrics_started = True
        self._logger.info(
            "Metrics endpoint listening",
            extra={"event_type": "metrics_started", "port": port},
        )


def build_application(cfg: Config, services: ApplicationServices) -> Application:
    """Build the Telegram application with the worker attached to its lifecycle."""

    async def _post_init(application: Application) -> None:
        await worker.start()

    async def _post_shutdown(application: Application) -> None:
        await worker.stop()

    application = (
        ApplicationBuilder()
        .token(cfg.TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )
    messenger = TelegramPromptSender(
        application.bot,
        currency=services.currency,
        retry_manager=services.retry_manager,
        logger=services.logger.getChild("prompts"),
    )
    worker = HelperWorker(cfg, services, messenger=messenger)

    relay = CallbackRelay(
        store=services.store,
        engine=services.engine,
        bus=services.bus,
        turn_channel=cfg.TURN_CHANNEL,
        logger=services.logger.getChild("callbacks"),
    )
    application.add_handler(relay.handler())
    application.bot_data["helper_worker"] = worker
    return application


def run(cfg: Config, services: ApplicationServices) -> None:
    application = build_application(cfg, services)
    application.run_polling(allowed_updates=[Update.CALLBACK_QUERY])


__all__ = ["HelperWorker", "build_application", "run"]

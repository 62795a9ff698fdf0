"""Redis pub/sub notification bus.

Delivery is at-most-once per subscriber and a worker may miss messages
while it is disconnected; the fallback poller covers the gap for claimable
sessions. Every delivered message is handled in its own task so one slow
handler never stalls the listener.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from helperapp.metrics import BUS_PUBLISH_FAILURES, BUS_RECONNECT_COUNTER
from helperapp.retry_manager import backoff_delay
from helperapp.utils.logging_helpers import ContextLoggerAdapter, add_context

MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class NotificationBus:
    """Publish/subscribe facade over a shared Redis connection."""

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        logger: Optional[logging.Logger] = None,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        listen_timeout: float = 1.0,
    ) -> None:
        self._redis = redis
        self._logger: ContextLoggerAdapter = add_context(
            logger or logging.getLogger(__name__),
            request_category="bus",
        )
        self._reconnect_base_delay = reconnect_base_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._listen_timeout = listen_timeout
        self._handlers: Dict[str, List[MessageHandler]] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._listener: Optional[asyncio.Task] = None
        self._running = False
        self._subscribed = asyncio.Event()

    @property
    def channels(self) -> List[str]:
        return sorted(self._handlers)

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, channel: str, handler: MessageHandler) -> None:
        """Register ``handler`` for ``channel``; call before :meth:`start`."""

        self._handlers.setdefault(channel, []).append(handler)

    async def publish(self, channel: str, payload: Mapping[str, Any]) -> bool:
        """Publish ``payload`` as JSON. Returns ``False`` instead of raising."""

        try:
            data = json.dumps(dict(payload), sort_keys=True, default=str)
        except (TypeError, ValueError) as exc:
            BUS_PUBLISH_FAILURES.labels(channel=channel).inc()
            self._logger.error(
                "Bus payload is not serialisable",
                extra={
                    "channel": channel,
                    "event_type": "bus_publish_failed",
                    "error_type": type(exc).__name__,
                },
            )
            return False
        try:
            await self._redis.publish(channel, data)
        except (RedisError, OSError) as exc:
            BUS_PUBLISH_FAILURES.labels(channel=channel).inc()
            self._logger.warning(
                "Bus publish failed",
                extra={
                    "channel": channel,
                    "session_id": payload.get("session_id"),
                    "event_type": "bus_publish_failed",
                    "error_type": type(exc).__name__,
                },
            )
            return False
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._subscribed.clear()
        self._listener = asyncio.create_task(self._listen_loop(), name="helper-bus-listener")
        self._logger.info(
            "Started notification bus listener",
            extra={"event_type": "bus_started", "channel": ",".join(self.channels)},
        )

    async def wait_until_subscribed(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._subscribed.wait(), timeout)

    async def stop(self) -> None:
        self._running = False
        task = self._listener
        self._listener = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.drain()
        self._logger.info("Stopped notification bus listener", extra={"event_type": "bus_stopped"})

    async def drain(self) -> None:
        """Wait for every in-flight handler task to finish."""

        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _listen_loop(self) -> None:
        attempt = 0
        while self._running:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(*self.channels)
                attempt = 0
                self._subscribed.set()
                while self._running:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=self._listen_timeout,
                    )
                    if message is not None:
                        self._dispatch(message)
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as exc:
                self._subscribed.clear()
                attempt += 1
                delay = backoff_delay(
                    attempt, self._reconnect_base_delay, self._reconnect_max_delay
                )
                BUS_RECONNECT_COUNTER.inc()
                self._logger.warning(
                    "Bus listener lost its connection; reconnecting",
                    extra={
                        "event_type": "bus_reconnect",
                        "attempt": attempt,
                        "delay": delay,
                        "error_type": type(exc).__name__,
                    },
                )
                await asyncio.sleep(delay)
            finally:
                await self._close_pubsub(pubsub)

    async def _close_pubsub(self, pubsub: Any) -> None:
        try:
            await pubsub.aclose()
        except (RedisError, OSError) as exc:
            self._logger.debug(
                "Failed to close pubsub connection",
                extra={"event_type": "bus_close_failed", "error_type": type(exc).__name__},
            )

    def _dispatch(self, message: Mapping[str, Any]) -> None:
        if message.get("type") != "message":
            return
        channel = _decode(message.get("channel"))
        try:
            payload = json.loads(_decode(message.get("data")))
        except (TypeError, ValueError):
            self._logger.warning(
                "Dropping malformed bus message",
                extra={"channel": channel, "event_type": "bus_message_malformed"},
            )
            return
        if not isinstance(payload, dict):
            self._logger.warning(
                "Dropping non-object bus message",
                extra={"channel": channel, "event_type": "bus_message_malformed"},
            )
            return
        for handler in self._handlers.get(channel, []):
            task = asyncio.create_task(self._run_handler(channel, handler, payload))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _run_handler(
        self, channel: str, handler: MessageHandler, payload: Dict[str, Any]
    ) -> None:
        try:
            await handler(dict(payload))
        except Exception as exc:
            self._logger.error(
                "Bus handler failed",
                extra={
                    "channel": channel,
                    "session_id": payload.get("session_id"),
                    "event_type": "bus_handler_failed",
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )


__all__ = ["MessageHandler", "NotificationBus"]

"""
Retry helpers for outbound Telegram calls and bus reconnects.

Prompt delivery is best-effort: a prompt that cannot be delivered after the
configured attempts is dropped and the turn timer still runs.
"""

from __future__ import annotations

from functools import wraps
import asyncio
from typing import TypeVar, Callable, Optional, Any, Awaitable
from telegram.error import BadRequest, RetryAfter, TimedOut, NetworkError
import logging

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay for the ``attempt``-th retry (1-based), capped at ``max_delay``."""

    attempt = max(int(attempt), 1)
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


class RetryManager:
    """Wrap Telegram coroutines with retry and exponential backoff."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.logger = logger or logging.getLogger(__name__)

    def retry_call(
        self,
        operation_name: str,
    ) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[Optional[T]]]]:
        """Decorator returning ``None`` once retryable failures are exhausted."""

        def decorator(
            func: Callable[..., Awaitable[T]]
        ) -> Callable[..., Awaitable[Optional[T]]]:
            @wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> Optional[T]:
                for attempt in range(1, self.max_retries + 1):
                    try:
                        result = await func(*args, **kwargs)
                        if attempt > 1:
                            self.logger.info(
                                "Telegram %s succeeded after retry",
                                operation_name,
                                extra={"attempt": attempt, "action": operation_name},
                            )
                        return result
                    except RetryAfter as error:
                        delay = _retry_after_seconds(error) + 1.0
                        if attempt >= self.max_retries:
                            self._log_final_failure(operation_name, error, attempt)
                            return None
                        self.logger.warning(
                            "Telegram rate limited, retrying %s in %.1fs",
                            operation_name,
                            delay,
                            extra={
                                "attempt": attempt,
                                "delay": delay,
                                "action": operation_name,
                            },
                        )
                        await asyncio.sleep(delay)
                    except BadRequest:
                        # Permanent; retrying cannot help.
                        raise
                    except (TimedOut, NetworkError) as error:
                        if attempt >= self.max_retries:
                            self._log_final_failure(operation_name, error, attempt)
                            return None
                        delay = backoff_delay(attempt, self.base_delay, self.max_delay)
                        self.logger.warning(
                            "Telegram %s failed, retrying in %.1fs",
                            operation_name,
                            delay,
                            extra={
                                "attempt": attempt,
                                "delay": delay,
                                "error_type": type(error).__name__,
                                "action": operation_name,
                            },
                        )
                        await asyncio.sleep(delay)
                return None

            return wrapper

        return decorator

    def _log_final_failure(
        self,
        operation_name: str,
        error: Exception,
        attempts: int,
    ) -> None:
        self.logger.error(
            "Telegram %s failed after %d attempts",
            operation_name,
            attempts,
            extra={
                "action": operation_name,
                "error_type": type(error).__name__,
                "attempt": attempts,
            },
        )


def _retry_after_seconds(error: RetryAfter) -> float:
    retry_after = getattr(error, "retry_after", 0)
    # Newer python-telegram-bot releases expose a timedelta here.
    total_seconds = getattr(retry_after, "total_seconds", None)
    if callable(total_seconds):
        return float(total_seconds())
    return float(retry_after or 0)


__all__ = ["RetryManager", "backoff_delay"]

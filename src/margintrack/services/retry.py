from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from margintrack.config import BusinessConfig
from margintrack.domain.errors import ConfigError, ValidationError

log = logging.getLogger("margintrack.store")

T = TypeVar("T")

RetryCallback = Callable[[int, BaseException], None]
Sleep = Callable[[float], Awaitable[Any]]


class ErrorClass(str, Enum):
    TERMINAL = "terminal"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"


def classify_error(error: BaseException) -> ErrorClass:
    if isinstance(error, (ValidationError, ConfigError)):
        return ErrorClass.TERMINAL
    status = getattr(error, "status", None)
    if status == 429:
        return ErrorClass.RATE_LIMITED
    if isinstance(status, int) and 400 <= status < 500:
        return ErrorClass.TERMINAL
    return ErrorClass.TRANSIENT


def backoff_delay(attempt: int, base_delay: float, max_backoff: float, rate_limited: bool = False) -> float:
    """Delay after failed attempt `attempt` (1-based); rate limits wait twice as long."""
    delay = base_delay * (2 ** (attempt - 1))
    if rate_limited:
        delay *= 2
    return min(delay, max_backoff)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    on_retry: Optional[RetryCallback] = None,
    *,
    max_backoff: float = 30.0,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run `operation` until it succeeds, fails terminally or attempts run out.

    `on_retry(attempt, error)` is called before every retry with the number
    of the attempt that just failed. The last error is re-raised unchanged.
    """
    if max_attempts < 1:
        raise ConfigError(f"max_attempts must be at least 1. Received: {max_attempts}")

    attempt = 1
    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind = classify_error(e)
            if kind is ErrorClass.TERMINAL or attempt >= max_attempts:
                log.warning("store_call_failed attempt=%s kind=%s error=%s", attempt, kind.value, e)
                raise

            delay = backoff_delay(attempt, base_delay, max_backoff, kind is ErrorClass.RATE_LIMITED)
            log.info("store_retry attempt=%s kind=%s delay=%.2f error=%s", attempt, kind.value, delay, e)
            if on_retry is not None:
                on_retry(attempt, e)
            await sleep(delay)
            attempt += 1


@dataclass(frozen=True)
class RetryExecutor:
    """`with_retry` bound to one configured policy."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_backoff: float = 30.0
    sleep: Sleep = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be at least 1. Received: {self.max_attempts}")

    @classmethod
    def from_config(cls, config: BusinessConfig, sleep: Sleep = asyncio.sleep) -> "RetryExecutor":
        return cls(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay,
            max_backoff=config.max_backoff,
            sleep=sleep,
        )

    async def run(self, operation: Callable[[], Awaitable[T]], on_retry: Optional[RetryCallback] = None) -> T:
        return await with_retry(
            operation,
            self.max_attempts,
            self.base_delay,
            on_retry,
            max_backoff=self.max_backoff,
            sleep=self.sleep,
        )

"""
Backoff for operator-facing calls.

Policy CRUD against a remote policy service retries transient failures
here. Nothing on the routing hot path retries inline: a slow classifier or
policy fetch falls back instead.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import structlog

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """When and how long to back off."""

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = (
        httpx.TransportError,
        ConnectionError,
        TimeoutError,
    )
    # Statuses a policy service returns while overloaded or restarting
    retryable_statuses: frozenset[int] = frozenset({429, 502, 503, 504})

    def should_retry(self, error: Exception) -> bool:
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code in self.retryable_statuses
        return isinstance(error, self.retryable_exceptions)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after the given 0-indexed attempt failed."""
    delay = min(config.base_delay * (config.exponential_base ** attempt), config.max_delay)
    if config.jitter:
        delay *= 0.5 + random.random()
    return delay


async def call_with_retry(
    call: Callable[[], Awaitable[T]],
    config: RetryConfig,
    operation: str,
) -> T:
    """
    Await `call`, retrying transient failures with exponential backoff.

    Non-retryable errors, and the last retryable one, propagate unchanged.
    """
    attempt = 0
    while True:
        try:
            return await call()
        except Exception as e:
            if not config.should_retry(e):
                raise
            if attempt >= config.max_retries:
                logger.error(
                    "Giving up after retries",
                    operation=operation,
                    attempts=attempt + 1,
                    error=str(e),
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                "Retrying after transient error",
                operation=operation,
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)
            attempt += 1


def with_retry(
    config: RetryConfig | None = None,
    operation: str | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of call_with_retry."""
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await call_with_retry(
                lambda: func(*args, **kwargs),
                config,
                operation or func.__name__,
            )

        return wrapper

    return decorator

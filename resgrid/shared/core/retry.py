"""
Retry Logic with Exponential Backoff

Page loads retry transient transport failures (network errors, timeouts,
429 and 5xx responses) with capped exponential backoff. Mutations never
retry: a failed mutation rolls back instead.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from resgrid.shared.core.config import Settings, get_settings
from resgrid.shared.core.exceptions import TransportError

logger = structlog.get_logger()
T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a failed page load is retried, and how long to wait."""

    retries: int = 2
    backoff_base: float = 1.0
    backoff_max: float = 10.0

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.backoff_base < 0 or self.backoff_max < self.backoff_base:
            raise ValueError("backoff_max must be >= backoff_base >= 0")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            retries=settings.PAGE_LOAD_RETRIES,
            backoff_base=settings.PAGE_LOAD_BACKOFF_BASE_SECONDS,
            backoff_max=settings.PAGE_LOAD_BACKOFF_MAX_SECONDS,
        )

    @property
    def attempts(self) -> int:
        return self.retries + 1


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TransportError) and exc.retryable


def _log_before_sleep(operation: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "operation_failed_will_retry",
            operation=operation,
            attempt=retry_state.attempt_number,
            delay_seconds=round(delay, 3),
            error=str(exc),
            error_type=type(exc).__name__,
        )

    return _before_sleep


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run `func`, retrying retryable TransportErrors according to `policy`."""
    retrying = AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.backoff_base, max=policy.backoff_max),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_before_sleep(operation),
        reraise=True,
    )
    result: T
    try:
        async for attempt in retrying:
            with attempt:
                result = await func()
    except TransportError as exc:
        logger.error(
            "operation_failed_all_retries_exhausted",
            operation=operation,
            total_attempts=policy.attempts,
            error=str(exc),
            retryable=exc.retryable,
        )
        raise
    return result

"""Reconnect backoff policy and the Tenacity wrapper for in-place retries."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import BackoffConfig, RetryConfig


@dataclass(frozen=True)
class BackoffPolicy:
    """Capped exponential backoff for session reconnects.

    ``delay(attempt) = min(cap_ms, base_ms * 2**attempt)``.  There is no
    attempt limit; the session retries until it is stopped.
    """

    base_ms: int = 1000
    cap_ms: int = 300_000

    @classmethod
    def from_config(cls, config: BackoffConfig) -> BackoffPolicy:
        return cls(base_ms=config.base_ms, cap_ms=config.cap_ms)

    def delay_ms(self, attempt: int) -> int:
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        # 2**attempt grows without bound; stop doubling once past the cap
        if self.base_ms == 0:
            return 0
        if attempt >= 64 or self.base_ms << attempt >= self.cap_ms:
            return self.cap_ms
        return self.base_ms << attempt

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000


def with_retry(
    config: RetryConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Usage::

        @with_retry(config.retry, retryable_exceptions=(MarkSeenError,))
        async def store_seen(uid: str) -> None: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        reraise=True,
    )

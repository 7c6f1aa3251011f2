"""Centxo — Retry Policy for Meta API calls.

A policy is data: how many attempts, how long to wait before attempt N, and
which failures are worth another try. The sleep function is injectable so
tests can run the policy against a fake clock.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from centxo.config import settings
from centxo.core.logging import get_logger

logger = get_logger("meta.retry")

T = TypeVar("T")

# Graph API error codes that signal throttling rather than a bad request
RATE_LIMIT_CODES = {4, 17, 32, 613, 80000, 80003, 80004, 80014}


def fixed_delay(seconds: float) -> Callable[[int], float]:
    return lambda attempt: seconds


def exponential_delay(base: float) -> Callable[[int], float]:
    return lambda attempt: base * (2 ** (attempt - 1))


def is_transient(exc: BaseException) -> bool:
    """5xx, HTTP 429, Graph throttling codes and transport failures."""
    from centxo.connectors.meta.client import MetaAPIError

    if not isinstance(exc, MetaAPIError):
        return False
    return exc.is_transient


@dataclass
class RetryPolicy:
    max_attempts: int = 2
    delay: Callable[[int], float] = field(default_factory=lambda: fixed_delay(2.5))
    retryable: Callable[[BaseException], bool] = is_transient
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def for_creates(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.create_max_attempts,
            delay=fixed_delay(settings.create_retry_delay),
        )

    @classmethod
    def single_attempt(cls) -> "RetryPolicy":
        return cls(max_attempts=1)

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "") -> T:
        """Await `operation` until it succeeds or the policy gives up."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_attempts or not self.retryable(e):
                    raise
                wait = self.delay(attempt)
                logger.warning(
                    f"{description or 'Request'} failed transiently: {e}. "
                    f"Retrying in {wait}s (attempt {attempt}/{self.max_attempts})"
                )
                await self.sleep(wait)
        raise RuntimeError("Retry policy allows no attempts")

"""Retry policy — bounded exponential backoff shared by every provider call.

One policy object, parameterized by attempt count, base delay and a
retryable-error predicate, wraps embedding batches, query embeddings and
LLM generation calls alike.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx

from studyrag.domain.exceptions import MalformedOutputError, ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient_error(error: BaseException) -> bool:
    """Default predicate: network trouble, rate limits, 5xx and unparseable LLM output."""
    if isinstance(error, ProviderError):
        return error.is_transient
    if isinstance(error, MalformedOutputError):
        return True
    return isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError))


@dataclass
class RetryPolicy:
    """Retry an async operation with exponential backoff.

    The delay before attempt ``n + 1`` is
    ``min(base_delay * backoff_factor ** (n - 1), max_delay)``, optionally
    jittered. Errors rejected by ``retryable`` propagate immediately; once
    ``max_attempts`` is exhausted the last error is re-raised unchanged.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    retryable: Callable[[BaseException], bool] = is_transient_error
    jitter: bool = False
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        delay = min(self.base_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if not self.retryable(exc) or attempt >= self.max_attempts:
                    if attempt > 1:
                        logger.error(
                            "%s failed after %d attempt(s): %s", description, attempt, exc
                        )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed with %s: %s. Retrying in %.2fs (attempt %d/%d)",
                    description,
                    type(exc).__name__,
                    exc,
                    delay,
                    attempt,
                    self.max_attempts,
                )
                await self.sleep(delay)

    def with_attempts(self, max_attempts: int) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_factor=self.backoff_factor,
            retryable=self.retryable,
            jitter=self.jitter,
            sleep=self.sleep,
        )

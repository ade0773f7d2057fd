"""
Retry with exponential backoff and jitter.

Only transient failures are retried: timeouts, connection errors and the
statuses 408, 429, 500, 502, 503 and 504. A 429 carrying a retry-after hint
waits exactly that long before the next attempt.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ._logging import LoggerLike
from .cancellation import CancellationToken
from .exceptions import VeniceCancelledError, VeniceError, VeniceRateLimitError

T = TypeVar("T")

RetryCallback = Callable[[int, float, VeniceError], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters. Delays are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.25

    @classmethod
    def from_config(cls, config: Any) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            initial_delay=config.retry_initial_delay,
            backoff_multiplier=config.retry_backoff_multiplier,
            max_delay=config.retry_max_delay,
            jitter=config.retry_jitter,
        )

    @property
    def max_attempts(self) -> int:
        return 1 + self.max_retries

    def backoff(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay before ``attempt`` (attempt numbers start at 1; the first retry is 2)."""
        delay = self.initial_delay * self.backoff_multiplier ** max(0, attempt - 2)
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay *= (rng or random).uniform(1.0 - self.jitter, 1.0 + self.jitter)
        return delay

    def delay_before(
        self, attempt: int, error: VeniceError, rng: Optional[random.Random] = None
    ) -> float:
        if isinstance(error, VeniceRateLimitError) and error.retry_after is not None:
            return error.retry_after
        return self.backoff(attempt, rng)


class RetryExecutor:
    """
    Runs an attempt function until it succeeds, fails terminally or runs out
    of attempts. The attempt function receives the 1-based attempt number.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        sync_sleep: Callable[[float], Any] = time.sleep,
        rng: Optional[random.Random] = None,
        on_retry: Optional[RetryCallback] = None,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._sync_sleep = sync_sleep
        self._rng = rng
        self._on_retry = on_retry
        self._logger = logger or logging.getLogger(__name__)

    def _next_delay(
        self, attempt: int, error: VeniceError, cancel: Optional[CancellationToken]
    ) -> Optional[float]:
        """Delay before the next attempt, or None if ``error`` is final."""
        error.attempts = attempt
        if cancel is not None and cancel.cancelled:
            return None
        if not error.retryable or attempt >= self.policy.max_attempts:
            return None

        delay = self.policy.delay_before(attempt + 1, error, self._rng)
        self._logger.warning(
            "Attempt %d/%d failed (%s); retrying in %.2fs",
            attempt,
            self.policy.max_attempts,
            error.kind.value,
            delay,
        )
        if self._on_retry is not None:
            self._on_retry(attempt + 1, delay, error)
        return delay

    async def execute(
        self,
        attempt_fn: Callable[[int], Awaitable[T]],
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await attempt_fn(attempt)
            except VeniceError as error:
                delay = self._next_delay(attempt, error, cancel)
                if delay is None:
                    if cancel is not None and cancel.cancelled and not isinstance(
                        error, VeniceCancelledError
                    ):
                        raise VeniceCancelledError() from error
                    raise
            if cancel is not None:
                await cancel.race(self._sleep(delay))
            else:
                await self._sleep(delay)

    def execute_sync(
        self,
        attempt_fn: Callable[[int], T],
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return attempt_fn(attempt)
            except VeniceError as error:
                delay = self._next_delay(attempt, error, cancel)
                if delay is None:
                    if cancel is not None and cancel.cancelled and not isinstance(
                        error, VeniceCancelledError
                    ):
                        raise VeniceCancelledError() from error
                    raise
            if cancel is not None:
                if cancel.wait(delay):
                    raise VeniceCancelledError()
            else:
                self._sync_sleep(delay)

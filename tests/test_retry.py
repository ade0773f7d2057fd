"""
Tests for the retry executor and backoff policy.
"""

import asyncio
import random

import pytest

from veniceai.cancellation import CancellationToken
from veniceai.exceptions import (
    VeniceAuthenticationError,
    VeniceCancelledError,
    VeniceConnectionError,
    VeniceRateLimitError,
    VeniceServerError,
    VeniceValidationError,
)
from veniceai.retry import RetryExecutor, RetryPolicy


def failing(errors, result="ok"):
    """Attempt function raising ``errors`` in turn, then returning ``result``."""
    calls = []

    async def attempt(n):
        calls.append(n)
        if errors:
            raise errors.pop(0)
        return result

    return attempt, calls


@pytest.mark.asyncio
async def test_transient_failures_retried_until_success(recorded_sleep):
    executor = RetryExecutor(RetryPolicy(jitter=0), sleep=recorded_sleep)
    attempt, calls = failing([VeniceServerError(status_code=503), VeniceConnectionError()])
    assert await executor.execute(attempt) == "ok"
    assert calls == [1, 2, 3]
    assert recorded_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_attempts_bounded_by_max_retries(recorded_sleep):
    executor = RetryExecutor(RetryPolicy(max_retries=3, jitter=0), sleep=recorded_sleep)
    attempt, calls = failing([VeniceServerError(status_code=500) for _ in range(10)])

    with pytest.raises(VeniceServerError) as exc_info:
        await executor.execute(attempt)
    assert len(calls) == 4
    assert exc_info.value.attempts == 4
    assert len(recorded_sleep.delays) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        VeniceAuthenticationError("bad key"),
        VeniceValidationError("bad", fields=["model"]),
        VeniceServerError(status_code=501),
    ],
)
async def test_terminal_errors_attempted_once(recorded_sleep, error):
    executor = RetryExecutor(RetryPolicy(), sleep=recorded_sleep)
    attempt, calls = failing([error])
    with pytest.raises(type(error)):
        await executor.execute(attempt)
    assert calls == [1]
    assert recorded_sleep.delays == []


@pytest.mark.asyncio
async def test_retry_after_overrides_backoff(recorded_sleep):
    executor = RetryExecutor(RetryPolicy(initial_delay=0.1), sleep=recorded_sleep)
    attempt, calls = failing([VeniceRateLimitError(retry_after=2.0)])
    assert await executor.execute(attempt) == "ok"
    assert calls == [1, 2]
    assert recorded_sleep.delays == [2.0]


def test_backoff_is_monotonic_without_jitter():
    policy = RetryPolicy(initial_delay=1.0, backoff_multiplier=2.0, max_delay=30.0, jitter=0)
    delays = [policy.backoff(n) for n in range(2, 10)]
    assert delays[:5] == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert all(a <= b for a, b in zip(delays, delays[1:]))
    assert max(delays) == 30.0


def test_jitter_stays_within_band():
    policy = RetryPolicy(initial_delay=4.0, jitter=0.25)
    rng = random.Random(7)
    for _ in range(200):
        assert 3.0 <= policy.backoff(2, rng) <= 5.0


def test_policy_from_config(config):
    policy = RetryPolicy.from_config(config.copy_with(max_retries=5, retry_initial_delay=0.5))
    assert policy.max_attempts == 6
    assert policy.initial_delay == 0.5


@pytest.mark.asyncio
async def test_on_retry_callback(recorded_sleep):
    seen = []
    executor = RetryExecutor(
        RetryPolicy(jitter=0),
        sleep=recorded_sleep,
        on_retry=lambda attempt, delay, error: seen.append((attempt, delay, error.kind.value)),
    )
    attempt, _ = failing([VeniceServerError(status_code=502)])
    await executor.execute(attempt)
    assert seen == [(2, 1.0, "server")]


@pytest.mark.asyncio
async def test_cancelled_token_is_never_retried(recorded_sleep):
    token = CancellationToken()
    executor = RetryExecutor(RetryPolicy(), sleep=recorded_sleep)

    async def attempt(n):
        token.cancel()
        raise VeniceServerError(status_code=503)

    with pytest.raises(VeniceCancelledError):
        await executor.execute(attempt, cancel=token)
    assert recorded_sleep.delays == []


@pytest.mark.asyncio
async def test_cancellation_interrupts_backoff():
    token = CancellationToken()
    executor = RetryExecutor(RetryPolicy(initial_delay=10.0, jitter=0))
    attempt, calls = failing([VeniceServerError(status_code=503)])

    loop = asyncio.get_running_loop()
    loop.call_later(0.05, token.cancel)
    with pytest.raises(VeniceCancelledError):
        await asyncio.wait_for(executor.execute(attempt, cancel=token), timeout=2.0)
    assert calls == [1]


def test_execute_sync(recorded_sleep):
    executor = RetryExecutor(RetryPolicy(jitter=0), sync_sleep=recorded_sleep.sync)
    errors = [VeniceServerError(status_code=504)]
    calls = []

    def attempt(n):
        calls.append(n)
        if errors:
            raise errors.pop(0)
        return n

    assert executor.execute_sync(attempt) == 2
    assert recorded_sleep.delays == [1.0]


def test_execute_sync_cancel_during_backoff():
    token = CancellationToken()
    executor = RetryExecutor(RetryPolicy(initial_delay=0.05, jitter=0))

    def attempt(n):
        if n == 1:
            token.cancel()
            raise VeniceConnectionError()
        return n

    with pytest.raises(VeniceCancelledError):
        executor.execute_sync(attempt, cancel=token)

"""
Retry and backoff behaviour.
"""

import asyncio

import aiohttp
import pytest

from config import RetryPolicy
from providers.errors import ErrorKind, ProviderError
from providers.retry import RetryController

pytestmark = pytest.mark.asyncio


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


def failing(kind, counter, *, succeed_on=None, advance=None, clock=None):
    async def action(timeout):
        counter.append(timeout)
        if advance and clock is not None:
            clock.now += advance
        if succeed_on is not None and len(counter) == succeed_on:
            return "ok"
        raise ProviderError("boom", kind=kind, provider="test")

    return action


async def test_retryable_errors_use_all_attempts():
    """Verify a transient kind is attempted max_retries + 1 times."""
    clock = FakeClock()
    retry = RetryController(max_retries=3, sleep=clock.sleep, clock=clock)
    calls = []

    with pytest.raises(ProviderError) as exc_info:
        await retry.run(failing(ErrorKind.SERVICE_UNAVAILABLE, calls))

    assert len(calls) == 4
    assert exc_info.value.kind is ErrorKind.SERVICE_UNAVAILABLE
    assert clock.sleeps == [3.0, 6.0, 12.0]


async def test_fatal_errors_are_not_retried():
    """Verify non-transient kinds surface after a single attempt."""
    clock = FakeClock()
    retry = RetryController(max_retries=3, sleep=clock.sleep, clock=clock)
    calls = []

    with pytest.raises(ProviderError) as exc_info:
        await retry.run(failing(ErrorKind.CONTENT_BLOCKED, calls))

    assert len(calls) == 1
    assert exc_info.value.kind is ErrorKind.CONTENT_BLOCKED
    assert clock.sleeps == []


async def test_success_after_transient_failures():
    clock = FakeClock()
    retry = RetryController(max_retries=2, sleep=clock.sleep, clock=clock)
    calls = []

    result = await retry.run(failing(ErrorKind.RATE_LIMITED, calls, succeed_on=3))

    assert result == "ok"
    assert len(calls) == 3


async def test_transport_exceptions_are_classified():
    """Verify raw aiohttp errors are retried as transient network faults."""
    clock = FakeClock()
    retry = RetryController(max_retries=1, sleep=clock.sleep, clock=clock, provider="test")
    calls = []

    async def action(timeout):
        calls.append(timeout)
        raise aiohttp.ClientConnectionError("reset")

    with pytest.raises(ProviderError) as exc_info:
        await retry.run(action)

    assert len(calls) == 2
    assert exc_info.value.kind is ErrorKind.TRANSIENT_NETWORK
    assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)


async def test_time_budget_shapes_attempt_timeouts():
    """Verify each attempt's timeout leaves room for the next planned delay."""
    clock = FakeClock()
    retry = RetryController(
        max_retries=2,
        base_delay=1.0,
        total_time_budget=10.0,
        min_attempt_timeout=5.0,
        sleep=clock.sleep,
        clock=clock,
    )
    calls = []

    with pytest.raises(ProviderError):
        await retry.run(failing(ErrorKind.TRANSIENT_NETWORK, calls))

    assert calls == [9.0, 7.0, 7.0]
    assert clock.sleeps == [1.0, 2.0]


async def test_time_budget_exhaustion_stops_retrying():
    clock = FakeClock()
    retry = RetryController(
        max_retries=5,
        base_delay=1.0,
        total_time_budget=10.0,
        sleep=clock.sleep,
        clock=clock,
    )
    calls = []

    with pytest.raises(ProviderError):
        await retry.run(failing(ErrorKind.TRANSIENT_NETWORK, calls, advance=20.0, clock=clock))

    assert len(calls) == 1
    assert clock.sleeps == []


async def test_sleep_never_outlasts_remaining_budget():
    clock = FakeClock()
    retry = RetryController(
        max_retries=3,
        base_delay=8.0,
        total_time_budget=10.0,
        sleep=clock.sleep,
        clock=clock,
    )
    calls = []

    with pytest.raises(ProviderError):
        await retry.run(failing(ErrorKind.TRANSIENT_NETWORK, calls, advance=1.0, clock=clock))

    assert clock.sleeps[0] == 8.0
    assert all(delay <= 10.0 for delay in clock.sleeps)
    assert clock.now <= 10.0 + len(calls)


async def test_cancellation_is_not_retried():
    """Verify task cancellation propagates immediately."""
    clock = FakeClock()
    retry = RetryController(max_retries=3, sleep=clock.sleep, clock=clock)
    calls = []

    async def action(timeout):
        calls.append(timeout)
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await retry.run(action)

    assert len(calls) == 1


async def test_attempt_timeout_passed_without_budget():
    retry = RetryController(max_retries=0, attempt_timeout=42.0)
    seen = []

    async def action(timeout):
        seen.append(timeout)
        return "done"

    assert await retry.run(action) == "done"
    assert seen == [42.0]


async def test_discovery_policy_uses_short_budget():
    policy = RetryPolicy(discovery_time_budget=20.0, discovery_max_retries=2)
    retry = RetryController.from_policy(policy, max_retries=9, discovery=True)

    assert retry.max_retries == 2
    assert retry.total_time_budget == 20.0
    assert retry.delay_for(0) == policy.base_delay
    assert retry.delay_for(1) == policy.base_delay * policy.backoff_factor

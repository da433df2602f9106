from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, TypeVar

from config import SETTINGS, RetryPolicy

from .errors import classify_exception


T = TypeVar("T")

# Receives the timeout (seconds) the attempt may use, or None for no limit
Attempt = Callable[[Optional[float]], Awaitable[T]]


class RetryController:
    """Bounded exponential backoff around a provider operation.

    Makes ``max_retries + 1`` attempts. Errors are classified first; only
    transient kinds (network, 429, 5xx) are retried. With a
    ``total_time_budget`` each attempt gets
    ``max(min_attempt_timeout, remaining - planned_next_delay)`` seconds and
    sleeps never outlast the remaining budget.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay: float = 3.0,
        backoff_factor: float = 2.0,
        jitter: float = 0.0,
        attempt_timeout: float | None = None,
        total_time_budget: float | None = None,
        min_attempt_timeout: float = 5.0,
        provider: str = "",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_retries = max(0, int(max_retries))
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.attempt_timeout = attempt_timeout
        self.total_time_budget = total_time_budget
        self.min_attempt_timeout = min_attempt_timeout
        self.provider = provider
        self._sleep = sleep
        self._clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_policy(
        cls,
        policy: RetryPolicy | None = None,
        *,
        max_retries: int,
        attempt_timeout: float | None = None,
        provider: str = "",
        discovery: bool = False,
    ) -> "RetryController":
        policy = policy or SETTINGS.retry
        if discovery:
            return cls(
                max_retries=policy.discovery_max_retries,
                base_delay=policy.base_delay,
                backoff_factor=policy.backoff_factor,
                jitter=policy.backoff_jitter,
                total_time_budget=policy.discovery_time_budget,
                min_attempt_timeout=policy.min_attempt_timeout,
                provider=provider,
            )
        return cls(
            max_retries=max_retries,
            base_delay=policy.base_delay,
            backoff_factor=policy.backoff_factor,
            jitter=policy.backoff_jitter,
            attempt_timeout=attempt_timeout,
            min_attempt_timeout=policy.min_attempt_timeout,
            provider=provider,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows ``attempt`` (0-based)."""
        return self.base_delay * (self.backoff_factor ** attempt)

    def _timeout_for(self, attempt: int, remaining: float | None) -> float | None:
        if remaining is None:
            return self.attempt_timeout
        is_last = attempt >= self.max_retries
        planned_delay = 0.0 if is_last else min(self.delay_for(attempt), remaining)
        return max(self.min_attempt_timeout, remaining - planned_delay)

    async def run(self, action: Attempt[T]) -> T:
        started = self._clock()
        attempt = 0
        while True:
            remaining = self._remaining(started)
            try:
                return await action(self._timeout_for(attempt, remaining))
            except Exception as exc:  # noqa: BLE001
                error = classify_exception(exc, provider=self.provider)
                is_last = attempt >= self.max_retries
                if is_last or not error.retryable:
                    raise error

                delay = self.delay_for(attempt)
                if self.jitter:
                    delay += random.uniform(0, self.jitter)
                remaining = self._remaining(started)
                if remaining is not None:
                    if remaining <= 0:
                        raise error
                    delay = min(delay, remaining)

                self.logger.debug(
                    "[%s] Attempt %d/%d failed (%s), retrying in %.1fs",
                    self.provider or "provider",
                    attempt + 1,
                    self.max_retries + 1,
                    error.kind.value,
                    delay,
                )
                await self._sleep(delay)
                attempt += 1

    def _remaining(self, started: float) -> float | None:
        if self.total_time_budget is None:
            return None
        return self.total_time_budget - (self._clock() - started)

# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Bounded retry policies and clocks for bootstrap polling loops.

Retry behaviour is carried as data (attempt counts and backoff parameters)
rather than buried in loops, and every wait goes through a ``Clock`` so that
tests can run timeouts of tens of seconds instantly.

Example:
    >>> policy = RetryPolicy(max_attempts=5, initial_delay=2.0)
    >>> handler = RetryHandler(policy)
    >>> members = await handler.execute_with_retry(
    ...     admin.list_members, retry_on=(AdminUnavailableError,)
    ... )
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

from brokerboot.utils.logger import logger

T = TypeVar("T")


class Clock:
    """Monotonic time source and sleeper backed by the event loop."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """Clock whose time only moves when something sleeps on it.

    Sleeping advances the clock by the requested amount and yields to the
    event loop once, so sequential polling loops run without real delays.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy.

    Attributes:
        max_attempts: Total attempts including the first one
        initial_delay: Delay after the first failure in seconds
        multiplier: Growth factor of the delay; 1.0 keeps it fixed
        max_delay: Upper bound of a single delay
    """
    max_attempts: int = 5
    initial_delay: float = 2.0
    multiplier: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must not be negative")

    def delay(self, attempt: int) -> float:
        """
        Calculate the delay after a failed attempt.

        Args:
            attempt: Failed attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        return min(self.initial_delay * (self.multiplier ** attempt), self.max_delay)

    @classmethod
    def fixed(cls, max_attempts: int, delay: float) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, initial_delay=delay, multiplier=1.0, max_delay=delay)


class RetryHandler:
    """
    Runs an async operation under a RetryPolicy.

    Only the exception types named in ``retry_on`` are retried; anything else
    propagates immediately. When attempts are exhausted the last error is
    re-raised so callers can still tell what went wrong.
    """

    def __init__(self, policy: RetryPolicy, clock: Optional[Clock] = None) -> None:
        self.policy = policy
        self.clock = clock or Clock()
        self.attempts = 0

    async def execute_with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        description: str = "operation",
    ) -> T:
        """
        Execute ``func`` until it succeeds or attempts are exhausted.

        Args:
            func: Zero-argument coroutine function to run
            retry_on: Exception types that trigger a retry
            description: Name used in log messages

        Returns:
            The result of the first successful call
        """
        self.attempts = 0
        last_error: Optional[BaseException] = None

        for attempt in range(self.policy.max_attempts):
            self.attempts = attempt + 1
            try:
                return await func()
            except retry_on as e:
                last_error = e
                if attempt + 1 >= self.policy.max_attempts:
                    break
                delay = self.policy.delay(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{self.policy.max_attempts}): "
                    f"{e}. Retrying in {delay:.1f}s"
                )
                await self.clock.sleep(delay)

        logger.error(f"{description} failed after {self.attempts} attempts")
        assert last_error is not None
        raise last_error

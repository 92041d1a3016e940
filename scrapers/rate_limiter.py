"""Request spacing and circuit breaking for outbound Reddit calls."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from loguru import logger

from config import settings


class CircuitOpenError(RuntimeError):
    """Raised by ``RateLimiter.wait`` while the breaker is open."""

    def __init__(self, remaining_seconds: float):
        self.remaining_seconds = max(0.0, remaining_seconds)
        super().__init__(
            f"Circuit breaker open: too many recent failures, retry in "
            f"{self.remaining_seconds:.0f}s"
        )


class RateLimiter:
    """Minimum-interval limiter with a failure-count circuit breaker.

    One instance is meant to be shared by every request that hits the same
    upstream API, so spacing holds across concurrent tasks.

    Args:
        min_interval: Minimum seconds between consecutive requests.
        failure_threshold: Failures after which ``wait`` refuses requests.
        cooldown: Seconds after the last failure before the breaker resets.
        clock: Monotonic time source.
        sleep: Coroutine used to suspend between requests.
    """

    def __init__(
        self,
        min_interval: Optional[float] = None,
        failure_threshold: Optional[int] = None,
        cooldown: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = (
            settings.min_request_interval_seconds if min_interval is None else min_interval
        )
        self.failure_threshold = (
            settings.circuit_breaker_threshold if failure_threshold is None else failure_threshold
        )
        self.cooldown = (
            settings.circuit_breaker_cooldown_seconds if cooldown is None else cooldown
        )
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

        self._last_request_time: Optional[float] = None
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def is_open(self) -> bool:
        """True while requests would be refused."""
        return self._remaining_cooldown() > 0

    def _remaining_cooldown(self) -> float:
        if self._failure_count < self.failure_threshold or self._last_failure_time is None:
            return 0.0
        return self.cooldown - (self._clock() - self._last_failure_time)

    async def wait(self) -> None:
        """Block until the next request may be sent.

        Raises:
            CircuitOpenError: If the breaker is open.
        """
        async with self._lock:
            if self._failure_count >= self.failure_threshold:
                remaining = self._remaining_cooldown()
                if remaining > 0:
                    logger.warning(f"Circuit open, {remaining:.1f}s of cooldown left")
                    raise CircuitOpenError(remaining)
                logger.info("Circuit breaker cooldown elapsed, resetting")
                self._failure_count = 0

            if self._last_request_time is not None:
                elapsed = self._clock() - self._last_request_time
                delay = self.min_interval - elapsed
                if delay > 0:
                    logger.debug(f"Rate limiting: waiting {delay:.2f}s")
                    await self._sleep(delay)

            self._last_request_time = self._clock()

    def record_success(self) -> None:
        if self._failure_count > 0:
            self._failure_count -= 1

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()
        if self._failure_count >= self.failure_threshold:
            logger.warning(
                f"Circuit breaker tripped after {self._failure_count} failures, "
                f"cooling down for {self.cooldown:.0f}s"
            )

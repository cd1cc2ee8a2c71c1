"""Bounded retry policy for polling the transport state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .const import DEFAULT_CONNECT_ATTEMPTS, DEFAULT_CONNECT_INTERVAL

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Fixed or exponential backoff with a capped attempt count.

    Attributes:
        max_attempts: Number of checks before giving up.
        interval: Delay before the second check, in seconds.
        backoff: Multiplier applied to the delay after each check.
        max_interval: Upper bound for the delay.
    """

    max_attempts: int = DEFAULT_CONNECT_ATTEMPTS
    interval: float = DEFAULT_CONNECT_INTERVAL
    backoff: float = 1.0
    max_interval: float = 30.0

    def __post_init__(self) -> None:
        """Validate the policy."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0 or self.backoff < 1.0:
            raise ValueError("interval must be >= 0 and backoff >= 1")

    def delays(self) -> list[float]:
        """Return the delays slept between consecutive checks."""
        delays: list[float] = []
        delay = self.interval
        for _ in range(self.max_attempts - 1):
            delays.append(min(delay, self.max_interval))
            delay *= self.backoff
        return delays

    @property
    def total_wait(self) -> float:
        """Return the longest time a poll can take, excluding the checks."""
        return sum(self.delays())

    async def async_wait_for(
        self,
        predicate: Callable[[], bool | Awaitable[bool]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> bool:
        """Poll a condition until it holds or the attempts run out.

        Args:
            predicate: Sync or async callable returning the condition.
            sleep: Sleep function, replaceable in tests.

        Returns:
            True once the condition holds, False when the budget is exhausted.
        """
        delays = self.delays()
        for attempt in range(1, self.max_attempts + 1):
            result = predicate()
            if not isinstance(result, bool):
                result = await result
            if result:
                return True
            if attempt <= len(delays):
                _LOGGER.debug(
                    "Condition not met (attempt %d/%d), retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    delays[attempt - 1],
                )
                await sleep(delays[attempt - 1])
        return False


__all__ = ["RetryPolicy"]

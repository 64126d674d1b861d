"""
apps/services/sourcing/scheduler.py

Cooperative request pacing for marketplace calls.

Design:
- One RequestScheduler per kind of call (searches, detail fetches)
- asyncio.Lock serializes waits so concurrent jobs sharing a scheduler
  never burst
- The delay policy decides how long to keep between calls:
  FixedDelay (steady), BackoffDelay (grows on reported blocks), NoDelay (tests)
"""
import asyncio
import logging
import time
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class DelayPolicy(Protocol):
    def delay(self, consecutive_blocks: int) -> float:
        """Seconds to keep between two calls."""
        ...


class FixedDelay:
    """Same delay regardless of blocks."""

    def __init__(self, seconds: float):
        self.seconds = seconds

    def delay(self, consecutive_blocks: int) -> float:
        return self.seconds


class BackoffDelay:
    """
    Base delay plus exponential backoff after blocks.

    base, base + step, base + 2*step, base + 4*step ... capped at max_delay.
    """

    def __init__(self, base_seconds: float, step_seconds: float = 10.0, max_delay: float = 60.0):
        self.base_seconds = base_seconds
        self.step_seconds = step_seconds
        self.max_delay = max_delay

    def delay(self, consecutive_blocks: int) -> float:
        if consecutive_blocks <= 0:
            return self.base_seconds
        backoff = self.step_seconds * (2 ** (consecutive_blocks - 1))
        return min(self.base_seconds + backoff, self.max_delay)


class NoDelay:
    def delay(self, consecutive_blocks: int) -> float:
        return 0.0


class RequestScheduler:
    """Enforces the policy's delay between successive calls."""

    def __init__(self, policy: Optional[DelayPolicy] = None, name: str = "requests"):
        self.policy = policy or NoDelay()
        self.name = name
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None
        self._consecutive_blocks = 0

    async def wait(self, label: str = "") -> None:
        """
        Block until the policy's delay has passed since the previous call.

        The first call never waits.
        """
        async with self._lock:
            now = time.monotonic()
            if self._last_request is not None:
                required = self.policy.delay(self._consecutive_blocks)
                elapsed = now - self._last_request
                if elapsed < required:
                    wait_time = required - elapsed
                    logger.debug(
                        f"[Scheduler] {self.name}: waiting {wait_time:.1f}s ({label[:40]})"
                    )
                    await asyncio.sleep(wait_time)
                    now = time.monotonic()
            self._last_request = now

    def report_block(self) -> None:
        """Report that the remote side throttled or blocked us."""
        self._consecutive_blocks += 1
        logger.warning(
            f"[Scheduler] {self.name}: block reported, delay now "
            f"{self.policy.delay(self._consecutive_blocks):.1f}s "
            f"({self._consecutive_blocks} consecutive)"
        )

    def report_success(self) -> None:
        """Gradually relax after a block."""
        if self._consecutive_blocks > 0:
            self._consecutive_blocks -= 1

    def reset(self) -> None:
        self._consecutive_blocks = 0
        self._last_request = None

    @property
    def current_delay(self) -> float:
        return self.policy.delay(self._consecutive_blocks)

"""Per-source pacing and circuit breaker for discovery calls.

Every call is followed by a jittered delay. Consecutive failures per source
trip a breaker after `failure_threshold`; a tripped source is skipped for
the rest of the run unless reset. Blocked responses add a longer cooldown.
"""

import asyncio
import random
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from loguru import logger

from services.discovery.errors import BlockedError

T = TypeVar("T")

# High-defense sources get extra base delay
SOURCE_EXTRA_DELAY_MS: Dict[str, int] = {
    "yelp": 2000,
    "google_maps": 1000,
}


class SourceSkipped(Exception):
    """Raised instead of calling a source whose breaker is open."""

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"{source}: circuit open, skipped")


class RateGate:
    """Delay/backoff policy plus consecutive-failure breaker, keyed by source."""

    def __init__(
        self,
        delay_ms: int = 3000,
        variance_ms: int = 2000,
        failure_threshold: int = 5,
        blocked_cooldown_ms: int = 10000,
        blocked_variance_ms: int = 5000,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.delay_ms = delay_ms
        self.variance_ms = variance_ms
        self.failure_threshold = failure_threshold
        self.blocked_cooldown_ms = blocked_cooldown_ms
        self.blocked_variance_ms = blocked_variance_ms
        self._sleep = sleep or asyncio.sleep
        self._failures: Dict[str, int] = {}
        self.skipped: Dict[str, int] = {}
        self.blocked: Dict[str, int] = {}

    def failures(self, source: str) -> int:
        return self._failures.get(source, 0)

    def is_open(self, source: str) -> bool:
        """True once the source has tripped the breaker."""
        return self.failures(source) >= self.failure_threshold

    def reset(self, source: Optional[str] = None) -> None:
        if source is None:
            self._failures.clear()
        else:
            self._failures.pop(source, None)

    def record_success(self, source: str) -> None:
        self._failures[source] = 0

    def record_failure(self, source: str) -> None:
        self._failures[source] = self.failures(source) + 1
        if self.is_open(source):
            logger.warning(
                f"Circuit open for {source} after {self.failures(source)} consecutive failures"
            )

    def jitter_ms(self, source: str = "") -> int:
        base = self.delay_ms + SOURCE_EXTRA_DELAY_MS.get(source, 0)
        return base + random.randint(0, max(self.variance_ms, 0))

    async def pause(self, source: str = "") -> None:
        await self._sleep(self.jitter_ms(source) / 1000)

    async def cooldown(self) -> None:
        ms = self.blocked_cooldown_ms + random.randint(0, max(self.blocked_variance_ms, 0))
        await self._sleep(ms / 1000)

    async def call(self, source: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run one discovery call through the gate.

        Raises:
            SourceSkipped: If the breaker for this source is open (no call made)
            TransportError: Propagated after being counted
            Exception: Any other adapter failure, also counted and paced
        """
        if self.is_open(source):
            self.skipped[source] = self.skipped.get(source, 0) + 1
            raise SourceSkipped(source)

        try:
            result = await fn()
        except BlockedError:
            self.record_failure(source)
            self.blocked[source] = self.blocked.get(source, 0) + 1
            logger.warning(f"{source}: blocked, cooling down")
            await self.cooldown()
            raise
        except Exception:
            self.record_failure(source)
            await self.pause(source)
            raise

        self.record_success(source)
        await self.pause(source)
        return result

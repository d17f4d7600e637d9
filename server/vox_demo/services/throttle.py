"""Request pacing for the shared demo identity.

The backend enforces per-identity request quotas, so every call made on behalf
of the demo account draws from one token bucket, and the multi-step flows add
named pauses between phases. Both live in a single ``ThrottlePolicy`` so the
pacing is configured in one place and can be switched off in tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

# float slack when comparing accrued tokens
_EPSILON = 1e-9

# most recent pauses kept for diagnostics
HISTORY_SIZE = 100


@dataclass(frozen=True)
class ThrottlePolicy:
    """Token-bucket rate plus the named pauses used by the reset flows."""

    rate_per_second: float = 5.0
    burst: int = 5
    between_ops: float = 0.2
    between_groups: float = 1.0
    login_settle: float = 0.5
    before_reset: float = 1.0
    before_seed: float = 2.0
    between_seed_passes: float = 1.0

    def pause_for(self, name: str) -> float:
        value = getattr(self, name, None)
        if not isinstance(value, (int, float)) or name in ("rate_per_second", "burst"):
            raise KeyError(f"Unknown pause: {name}")
        return float(value)


class TokenBucket:
    """Classic token bucket. ``acquire`` waits until enough tokens accrue."""

    def __init__(self, rate: float, burst: int, clock: Clock | None = None, sleep: Sleep | None = None) -> None:
        if rate <= 0 or burst <= 0:
            raise ValueError("rate and burst must be positive")
        self.rate = rate
        self.burst = burst
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._tokens = float(burst)
        self._updated = self._clock()
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._updated = now

    async def acquire(self, tokens: float = 1.0) -> float:
        """Take ``tokens`` from the bucket. Returns the total time waited."""
        if tokens > self.burst:
            raise ValueError(f"Cannot acquire {tokens} tokens from a bucket of {self.burst}")
        waited = 0.0
        async with self._lock:
            self._refill()
            while self._tokens < tokens - _EPSILON:
                delay = (tokens - self._tokens) / self.rate
                await self._sleep(delay)
                waited += delay
                self._refill()
            self._tokens -= tokens
        return waited


class Throttle:
    """Shared pacing for one backend identity: token bucket plus named pauses."""

    def __init__(self, policy: ThrottlePolicy, clock: Clock | None = None, sleep: Sleep | None = None) -> None:
        self.policy = policy
        self._sleep = sleep or asyncio.sleep
        self._bucket = TokenBucket(policy.rate_per_second, policy.burst, clock=clock, sleep=self._sleep)
        self.enabled = True
        self.history: deque[tuple[str, float]] = deque(maxlen=HISTORY_SIZE)

    @classmethod
    def disabled(cls) -> Throttle:
        """A throttle that never waits. Recent pauses are still recorded in ``history``."""
        throttle = cls(ThrottlePolicy())
        throttle.enabled = False
        return throttle

    async def acquire(self) -> None:
        if not self.enabled:
            return
        waited = await self._bucket.acquire()
        if waited > 0:
            logger.debug("Throttled backend request for %.3fs", waited)

    async def pause(self, name: str) -> None:
        """Sleep for the policy's named pause."""
        delay = self.policy.pause_for(name)
        self.history.append((name, delay))
        if self.enabled and delay > 0:
            await self._sleep(delay)

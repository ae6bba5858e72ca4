"""
Retry Policy and Deadline Configuration

Only the provisioning dispatch is retried. Source introspection and
extraction failures usually mean bad credentials, so they fail fast.

Every sync request carries a Deadline; each stage checks how much time is
left and bounds its own waits by it.

Usage:
    from portcullis.core.retry_config import Deadline, dispatch_retry_policy

    deadline = Deadline.after(settings.sync_deadline_seconds)
    policy = dispatch_retry_policy(settings)
"""
from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from portcullis.core.errors import DeadlineExceededError

T = TypeVar("T")


# =============================================================================
# Retry Policies
# =============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff."""
    maximum_attempts: int = 3
    initial_interval: float = 0.5
    backoff_coefficient: float = 2.0
    maximum_interval: float = 5.0
    jitter: bool = True

    def backoff(self, attempt: int) -> float:
        """Sleep before the retry that follows ``attempt`` (1-based)."""
        interval = self.initial_interval * (self.backoff_coefficient ** (attempt - 1))
        interval = min(interval, self.maximum_interval)
        if self.jitter and interval > 0:
            interval += random.uniform(0, interval) / 2
        return interval


def dispatch_retry_policy(settings) -> RetryPolicy:
    """Retry policy for the dispatch stage built from settings."""
    return RetryPolicy(
        maximum_attempts=settings.dispatch_max_attempts,
        initial_interval=settings.dispatch_initial_backoff_seconds,
        maximum_interval=settings.dispatch_max_backoff_seconds,
    )


# =============================================================================
# Deadline
# =============================================================================

class Deadline:
    """Absolute point in (monotonic) time after which a sync gives up."""

    def __init__(self, expires_at: Optional[float]):
        self.expires_at = expires_at

    @classmethod
    def after(cls, seconds: Optional[float]) -> "Deadline":
        if seconds is None:
            return cls(None)
        return cls(time.monotonic() + seconds)

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def bound(self, timeout: Optional[float]) -> Optional[float]:
        """The smaller of ``timeout`` and the time left."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    async def run(self, awaitable: Awaitable[T], stage: str) -> T:
        """Await ``awaitable``, raising DeadlineExceededError once time runs out."""
        if self.expired:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise DeadlineExceededError(stage)
        try:
            return await asyncio.wait_for(awaitable, timeout=self.remaining())
        except asyncio.TimeoutError as exc:
            raise DeadlineExceededError(stage) from exc

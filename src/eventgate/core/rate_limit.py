"""
Fixed-window rate limiting.

One counter per (tenant, source IP, user). A window resets to zero once
`window_seconds` have passed since it started; bursts at a window boundary
are accepted.

Checking and counting are separate calls: a request is checked before any
work and counted only after its write succeeded, so failed writes do not
consume quota. `check_limit` never mutates; an expired window is only reset
by the next `increment`.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import structlog

from .eviction import evict_oldest

logger = structlog.get_logger(__name__)

ANONYMOUS_USER = "anonymous"


@dataclass(frozen=True)
class RateLimitKey:
    """Identifies one rate-limit bucket."""
    tenant_id: str
    source_ip: str
    user_id: Optional[str] = None

    @property
    def bucket_key(self) -> str:
        return f"{self.tenant_id}:{self.source_ip}:{self.user_id or ANONYMOUS_USER}"


@dataclass
class RateLimitBucket:
    """Counter state for one key."""
    count: int
    window_start: float


@dataclass(frozen=True)
class LimitStatus:
    """Result of a read-only limit check."""
    allowed: bool
    remaining: int
    reset_time: datetime


class RateLimitStore(ABC):
    """Storage interface for rate-limit counters."""

    @abstractmethod
    async def check_limit(self, key: RateLimitKey, limit: int, window_seconds: int) -> LimitStatus:
        """Report whether another request fits in the current window. Read-only."""

    @abstractmethod
    async def increment(self, key: RateLimitKey, window_seconds: int) -> None:
        """Count one request against the key's window."""

    @abstractmethod
    async def reset(self, key: RateLimitKey) -> None:
        """Forget the key's counter."""

    @abstractmethod
    async def get_count(self, key: RateLimitKey, window_seconds: int) -> int:
        """Requests counted in the key's current window."""

    @abstractmethod
    async def cleanup(self) -> int:
        """Drop stale buckets; returns how many were removed."""

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class MemoryRateLimitStore(RateLimitStore):
    """
    In-process fixed-window counters.

    Mutations run under an asyncio lock. Reads take no lock and see
    either the state before or after a mutation.
    """

    def __init__(
        self,
        max_buckets: int = 10000,
        retention_seconds: int = 3600,
        eviction_fraction: float = 0.1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_buckets = max_buckets
        self.retention_seconds = retention_seconds
        self.eviction_fraction = eviction_fraction
        self.buckets: Dict[str, RateLimitBucket] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

        logger.info(
            "Rate limit store initialized",
            max_buckets=max_buckets,
            retention_seconds=retention_seconds,
        )

    async def check_limit(self, key: RateLimitKey, limit: int, window_seconds: int) -> LimitStatus:
        now = self._clock()
        bucket = self.buckets.get(key.bucket_key)

        if bucket is None or now - bucket.window_start >= window_seconds:
            # Fresh or expired window counts as empty
            count, window_start = 0, now
        else:
            count, window_start = bucket.count, bucket.window_start

        return LimitStatus(
            allowed=count < limit,
            remaining=max(0, limit - count),
            reset_time=datetime.fromtimestamp(window_start + window_seconds, tz=timezone.utc),
        )

    async def increment(self, key: RateLimitKey, window_seconds: int) -> None:
        async with self._lock:
            now = self._clock()
            bucket = self.buckets.get(key.bucket_key)

            if bucket is None:
                self.buckets[key.bucket_key] = RateLimitBucket(count=1, window_start=now)
            elif now - bucket.window_start >= window_seconds:
                bucket.count = 1
                bucket.window_start = now
            else:
                bucket.count += 1

            if len(self.buckets) > self.max_buckets:
                evicted = evict_oldest(self.buckets, lambda b: b.window_start, self.eviction_fraction)
                logger.warning(
                    "Rate limit buckets evicted under capacity pressure",
                    evicted=evicted,
                    remaining=len(self.buckets),
                )

    async def reset(self, key: RateLimitKey) -> None:
        async with self._lock:
            self.buckets.pop(key.bucket_key, None)

    async def get_count(self, key: RateLimitKey, window_seconds: int) -> int:
        bucket = self.buckets.get(key.bucket_key)
        if bucket is None:
            return 0
        if self._clock() - bucket.window_start >= window_seconds:
            return 0
        return bucket.count

    async def cleanup(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [
                bucket_key
                for bucket_key, bucket in self.buckets.items()
                if now - bucket.window_start > self.retention_seconds
            ]
            for bucket_key in expired:
                del self.buckets[bucket_key]

        if expired:
            logger.debug("Swept expired rate limit buckets", removed=len(expired))
        return len(expired)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self.buckets.clear()

    def __len__(self) -> int:
        return len(self.buckets)

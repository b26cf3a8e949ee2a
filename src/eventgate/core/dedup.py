"""
Processed-event cache for deduplication.

Entries live in memory only and are lost on restart.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from .eviction import evict_oldest

logger = structlog.get_logger(__name__)


@dataclass
class DeduplicationRecord:
    """When an event id was processed and for how long it stays a duplicate."""
    processed_at: float
    ttl_seconds: Optional[int] = None

    def expired(self, now: float) -> bool:
        return self.ttl_seconds is not None and now - self.processed_at > self.ttl_seconds


class DeduplicationStore(ABC):
    """Storage interface for processed event ids."""

    @abstractmethod
    async def is_duplicate(self, tenant_id: str, event_id: str) -> bool:
        ...

    @abstractmethod
    async def mark_processed(self, tenant_id: str, event_id: str, ttl_seconds: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def reserve(self, tenant_id: str, event_id: str, ttl_seconds: Optional[int] = None) -> bool:
        """Mark an id as processed unless it already is; True when this caller claimed it."""

    @abstractmethod
    async def release(self, tenant_id: str, event_id: str) -> None:
        """Drop a reservation whose write failed so a retry is accepted."""

    @abstractmethod
    async def cleanup(self, older_than_seconds: int) -> int:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class MemoryDeduplicationStore(DeduplicationStore):
    """
    Tenant-qualified event id cache with TTL and capacity eviction.

    - `is_duplicate` drops records whose own TTL has elapsed and reports them
      as new
    - `reserve` checks and marks under one lock, so concurrent writers of
      the same id see exactly one winner
    - Exceeding `max_records` evicts the oldest fraction by processing time
    - `cleanup` is the periodic sweep, independent of lookups
    """

    def __init__(
        self,
        max_records: int = 50000,
        eviction_fraction: float = 0.1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_records = max_records
        self.eviction_fraction = eviction_fraction
        self.records: Dict[str, DeduplicationRecord] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

        logger.info("Deduplication store initialized", max_records=max_records)

    @staticmethod
    def _key(tenant_id: str, event_id: str) -> str:
        return f"{tenant_id}:{event_id}"

    async def is_duplicate(self, tenant_id: str, event_id: str) -> bool:
        key = self._key(tenant_id, event_id)
        record = self.records.get(key)

        if record is None:
            return False

        if record.expired(self._clock()):
            self.records.pop(key, None)
            return False

        return True

    async def mark_processed(self, tenant_id: str, event_id: str, ttl_seconds: Optional[int] = None) -> None:
        async with self._lock:
            self.records[self._key(tenant_id, event_id)] = DeduplicationRecord(
                processed_at=self._clock(),
                ttl_seconds=ttl_seconds,
            )

            self._evict_if_full()

    async def reserve(self, tenant_id: str, event_id: str, ttl_seconds: Optional[int] = None) -> bool:
        key = self._key(tenant_id, event_id)
        async with self._lock:
            now = self._clock()
            record = self.records.get(key)
            if record is not None and not record.expired(now):
                return False

            self.records[key] = DeduplicationRecord(processed_at=now, ttl_seconds=ttl_seconds)
            self._evict_if_full()
        return True

    async def release(self, tenant_id: str, event_id: str) -> None:
        async with self._lock:
            self.records.pop(self._key(tenant_id, event_id), None)

    def _evict_if_full(self) -> None:
        if len(self.records) > self.max_records:
            evicted = evict_oldest(self.records, lambda r: r.processed_at, self.eviction_fraction)
            logger.warning(
                "Deduplication records evicted under capacity pressure",
                evicted=evicted,
                remaining=len(self.records),
            )

    async def cleanup(self, older_than_seconds: int) -> int:
        async with self._lock:
            now = self._clock()
            expired = [
                key
                for key, record in self.records.items()
                if now - record.processed_at > older_than_seconds or record.expired(now)
            ]
            for key in expired:
                del self.records[key]

        if expired:
            logger.debug("Swept expired deduplication records", removed=len(expired))
        return len(expired)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self.records.clear()

    def __len__(self) -> int:
        return len(self.records)

"""
Tests for the in-memory deduplication store.
"""

import asyncio

import pytest

from eventgate.core.dedup import MemoryDeduplicationStore
from eventgate.core.eviction import evict_oldest


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestDeduplicationStore:
    """Test processed-id tracking."""

    @pytest.mark.asyncio
    async def test_marked_event_is_duplicate(self) -> None:
        store = MemoryDeduplicationStore(clock=FakeClock())
        assert not await store.is_duplicate("tenant-a", "evt-1")

        await store.mark_processed("tenant-a", "evt-1", ttl_seconds=60)
        assert await store.is_duplicate("tenant-a", "evt-1")

    @pytest.mark.asyncio
    async def test_tenants_do_not_share_ids(self) -> None:
        """Test the same event id under another tenant is new."""

        store = MemoryDeduplicationStore(clock=FakeClock())
        await store.mark_processed("tenant-a", "evt-1")
        assert not await store.is_duplicate("tenant-b", "evt-1")

    @pytest.mark.asyncio
    async def test_expired_record_is_new_and_dropped(self) -> None:
        """Test lookups lazily expire records past their TTL."""

        clock = FakeClock()
        store = MemoryDeduplicationStore(clock=clock)
        await store.mark_processed("tenant-a", "evt-1", ttl_seconds=60)

        clock.now += 61
        assert not await store.is_duplicate("tenant-a", "evt-1")
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_record_without_ttl_never_expires_on_lookup(self) -> None:
        clock = FakeClock()
        store = MemoryDeduplicationStore(clock=clock)
        await store.mark_processed("tenant-a", "evt-1")

        clock.now += 10 ** 6
        assert await store.is_duplicate("tenant-a", "evt-1")

    @pytest.mark.asyncio
    async def test_cleanup_sweeps_by_horizon(self) -> None:
        """Test cleanup removes records older than the horizon."""

        clock = FakeClock()
        store = MemoryDeduplicationStore(clock=clock)
        await store.mark_processed("tenant-a", "old")
        clock.now += 500
        await store.mark_processed("tenant-a", "new")
        clock.now += 200

        removed = await store.cleanup(older_than_seconds=600)

        assert removed == 1
        assert not await store.is_duplicate("tenant-a", "old")
        assert await store.is_duplicate("tenant-a", "new")

    @pytest.mark.asyncio
    async def test_capacity_eviction(self) -> None:
        """Test the oldest records go first when max_records is exceeded."""

        clock = FakeClock()
        store = MemoryDeduplicationStore(max_records=20, eviction_fraction=0.1, clock=clock)
        for i in range(21):
            await store.mark_processed("tenant-a", f"evt-{i}")
            clock.now += 1

        assert len(store) == 19
        assert not await store.is_duplicate("tenant-a", "evt-0")
        assert not await store.is_duplicate("tenant-a", "evt-1")
        assert await store.is_duplicate("tenant-a", "evt-20")

    @pytest.mark.asyncio
    async def test_reserve_claims_once(self) -> None:
        store = MemoryDeduplicationStore(clock=FakeClock())

        assert await store.reserve("tenant-a", "evt-1", ttl_seconds=60)
        assert not await store.reserve("tenant-a", "evt-1", ttl_seconds=60)
        assert await store.is_duplicate("tenant-a", "evt-1")

    @pytest.mark.asyncio
    async def test_concurrent_reserves_have_one_winner(self) -> None:
        store = MemoryDeduplicationStore(clock=FakeClock())

        claims = await asyncio.gather(*(store.reserve("tenant-a", "same") for _ in range(20)))

        assert claims.count(True) == 1

    @pytest.mark.asyncio
    async def test_release_allows_retry(self) -> None:
        store = MemoryDeduplicationStore(clock=FakeClock())
        await store.reserve("tenant-a", "evt-1")

        await store.release("tenant-a", "evt-1")

        assert not await store.is_duplicate("tenant-a", "evt-1")
        assert await store.reserve("tenant-a", "evt-1")

    @pytest.mark.asyncio
    async def test_expired_reservation_can_be_reclaimed(self) -> None:
        clock = FakeClock()
        store = MemoryDeduplicationStore(clock=clock)
        await store.reserve("tenant-a", "evt-1", ttl_seconds=60)

        clock.now += 61
        assert await store.reserve("tenant-a", "evt-1", ttl_seconds=60)


class TestEvictOldest:
    """Test the shared eviction helper."""

    def test_removes_floor_of_fraction(self) -> None:
        records = {f"k{i}": i for i in range(25)}
        removed = evict_oldest(records, lambda v: v, 0.1)

        assert removed == 2
        assert "k0" not in records and "k1" not in records
        assert "k2" in records

    def test_small_maps_untouched(self) -> None:
        records = {"a": 1, "b": 2}
        assert evict_oldest(records, lambda v: v, 0.1) == 0
        assert len(records) == 2

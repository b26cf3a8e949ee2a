"""
Tests for the JSON-document user store.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from eventgate.models.user import UserRecord
from eventgate.storage import FlatFileUserStore, UserQueryFilter

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_user(user_id: str = "u1", **overrides) -> UserRecord:
    values = {
        "user_id": user_id,
        "tenant_id": "tenant-a",
        "first_seen": T0,
        "last_seen": T0,
        "session_count": 1,
        "event_count": 0,
    }
    values.update(overrides)
    return UserRecord(**values)


class TestUpsert:
    """Test create and merge semantics."""

    @pytest.mark.asyncio
    async def test_create_then_merge_properties(self, user_store: FlatFileUserStore) -> None:
        """Test properties union with incoming keys winning."""

        first = await user_store.upsert(make_user(properties={"a": 1, "b": 1}))
        second = await user_store.upsert(make_user(properties={"b": 2, "c": 3}, last_seen=T0 + timedelta(hours=1)))

        assert first.created
        assert not second.created

        user = await user_store.get("tenant-a", "u1")
        assert user.properties == {"a": 1, "b": 2, "c": 3}

    @pytest.mark.asyncio
    async def test_first_seen_never_moves(self, user_store: FlatFileUserStore) -> None:
        await user_store.upsert(make_user())
        await user_store.upsert(make_user(first_seen=T0 + timedelta(days=1), last_seen=T0 + timedelta(days=1)))

        user = await user_store.get("tenant-a", "u1")
        assert user.first_seen == T0
        assert user.last_seen == T0 + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_counters_kept_unless_requested(self, user_store: FlatFileUserStore) -> None:
        await user_store.upsert(make_user(session_count=3, event_count=7))

        await user_store.upsert(make_user(session_count=9, event_count=9))
        user = await user_store.get("tenant-a", "u1")
        assert (user.session_count, user.event_count) == (3, 7)

        await user_store.upsert(make_user(session_count=4, event_count=8), update_counters=True)
        user = await user_store.get("tenant-a", "u1")
        assert (user.session_count, user.event_count) == (4, 8)

    @pytest.mark.asyncio
    async def test_concurrent_upserts_keep_every_property(self, user_store: FlatFileUserStore) -> None:
        await asyncio.gather(*(user_store.upsert(make_user(properties={f"k{i}": i})) for i in range(20)))

        user = await user_store.get("tenant-a", "u1")
        assert user.properties == {f"k{i}": i for i in range(20)}

    @pytest.mark.asyncio
    async def test_no_temporary_files_left(self, user_store: FlatFileUserStore) -> None:
        await user_store.upsert(make_user())
        await user_store.upsert(make_user(properties={"x": 1}))

        files = list(user_store.user_path("tenant-a", "u1").parent.iterdir())
        assert [f.name for f in files] == ["u1.json"]


class TestReadsAndDelete:
    """Test lookups, erasure and queries."""

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, user_store: FlatFileUserStore) -> None:
        await user_store.upsert(make_user())
        assert await user_store.get("tenant-b", "u1") is None

    @pytest.mark.asyncio
    async def test_delete(self, user_store: FlatFileUserStore) -> None:
        await user_store.upsert(make_user())

        assert await user_store.delete("tenant-a", "u1")
        assert await user_store.get("tenant-a", "u1") is None
        assert not await user_store.delete("tenant-a", "u1")

    @pytest.mark.asyncio
    async def test_corrupt_document_reads_as_missing(self, user_store: FlatFileUserStore) -> None:
        path = user_store.user_path("tenant-a", "u1")
        path.parent.mkdir(parents=True)
        path.write_text("{broken")

        assert await user_store.get("tenant-a", "u1") is None

    @pytest.mark.asyncio
    async def test_undecodable_document_reads_as_missing(self, user_store: FlatFileUserStore) -> None:
        path = user_store.user_path("tenant-a", "u1")
        path.parent.mkdir(parents=True)
        path.write_bytes(b'{"userId": "\xff\xfe"}')

        assert await user_store.get("tenant-a", "u1") is None

    @pytest.mark.asyncio
    async def test_get_batch_skips_unknown(self, user_store: FlatFileUserStore) -> None:
        await user_store.upsert(make_user("u1"))
        await user_store.upsert(make_user("u2"))

        users = await user_store.get_batch("tenant-a", ["u2", "missing", "u1"])
        assert [u.user_id for u in users] == ["u2", "u1"]

    @pytest.mark.asyncio
    async def test_query_by_properties_and_activity(self, user_store: FlatFileUserStore) -> None:
        await user_store.upsert(make_user("u1", properties={"plan": "pro"}, last_seen=T0))
        await user_store.upsert(make_user("u2", properties={"plan": "pro"}, last_seen=T0 + timedelta(days=2)))
        await user_store.upsert(make_user("u3", properties={"plan": "free"}, last_seen=T0 + timedelta(days=2)))

        result = await user_store.query(UserQueryFilter(
            tenant_id="tenant-a",
            properties={"plan": "pro"},
            active_since=T0 + timedelta(days=1),
        ))
        assert [u.user_id for u in result.users] == ["u2"]

        result = await user_store.query(UserQueryFilter(tenant_id="tenant-a", sort_by="lastSeen", sort_order="desc", limit=1))
        assert result.total_count == 3
        assert result.has_more
        assert result.users[0].last_seen == T0 + timedelta(days=2)

    @pytest.mark.asyncio
    async def test_health_check(self, user_store: FlatFileUserStore) -> None:
        assert await user_store.health_check()


class TestRecordActivity:
    """Test event counts added by tracking."""

    @pytest.mark.asyncio
    async def test_creates_profile_with_first_session(self, user_store: FlatFileUserStore) -> None:
        result = await user_store.record_activity("tenant-a", "u1", event_count=2, seen_at=T0)

        assert result.created
        user = await user_store.get("tenant-a", "u1")
        assert (user.session_count, user.event_count) == (1, 2)
        assert user.first_seen == T0

    @pytest.mark.asyncio
    async def test_adds_to_existing_counts(self, user_store: FlatFileUserStore) -> None:
        await user_store.upsert(make_user(properties={"plan": "pro"}, session_count=3, event_count=4))

        await user_store.record_activity("tenant-a", "u1", event_count=1, seen_at=T0 + timedelta(hours=1))
        await user_store.record_activity("tenant-a", "u1", event_count=1, seen_at=T0 - timedelta(hours=1))

        user = await user_store.get("tenant-a", "u1")
        assert (user.session_count, user.event_count) == (3, 6)
        assert user.last_seen == T0 + timedelta(hours=1)
        assert user.properties == {"plan": "pro"}

    @pytest.mark.asyncio
    async def test_concurrent_activity_loses_nothing(self, user_store: FlatFileUserStore) -> None:
        await asyncio.gather(*(
            user_store.record_activity("tenant-a", "u1", event_count=1, seen_at=T0)
            for _ in range(50)
        ))

        user = await user_store.get("tenant-a", "u1")
        assert user.event_count == 50

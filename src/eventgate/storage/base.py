"""
Storage adapter interfaces and their result types.
"""

import asyncio
import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models.event import AnalyticsEvent
from ..models.user import UserRecord

_SAFE_COMPONENT = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]{0,63}$")


def safe_path_component(value: str) -> str:
    """
    Make an identifier usable as a single path component.

    Plain identifiers pass through unchanged; anything else becomes
    {safe_prefix}_{hash_suffix} so distinct ids never collide and never
    escape the storage root.
    """
    if _SAFE_COMPONENT.match(value) and value not in (".", ".."):
        return value

    safe_prefix = re.sub(r"[^a-zA-Z0-9_-]", "", value)[:20]
    hash_suffix = hashlib.sha256(value.encode()).hexdigest()[:12]
    return f"{safe_prefix}_{hash_suffix}"


class PathLockPool:
    """
    Fixed set of asyncio locks shared by path hash.

    One path always maps to the same lock, so writers to a file serialize.
    Unrelated paths may share a lock; memory stays bounded however many
    partitions or profiles exist.
    """

    def __init__(self, size: int = 256) -> None:
        self._locks = [asyncio.Lock() for _ in range(size)]

    def for_path(self, path: Path) -> asyncio.Lock:
        digest = hashlib.blake2b(str(path).encode(), digest_size=8).digest()
        return self._locks[int.from_bytes(digest, "big") % len(self._locks)]


@dataclass
class InsertResult:
    """Result of writing one event."""
    success: bool
    event_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class UpsertResult:
    """Result of writing one user profile."""
    success: bool
    created: bool
    user_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class EventQueryFilter:
    """
    Event scan criteria. `limit=None` returns every match.

    `properties` matches when each key equals the event's value.
    """
    tenant_id: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    event_types: Optional[List[str]] = None
    user_id: Optional[str] = None
    properties: Optional[Dict[str, Any]] = None
    sort_by: Optional[str] = None
    sort_order: str = "asc"
    limit: Optional[int] = None
    offset: int = 0


@dataclass
class UserQueryFilter:
    """User scan criteria; the activity bounds apply to last_seen."""
    tenant_id: str
    user_id: Optional[str] = None
    active_since: Optional[datetime] = None
    active_until: Optional[datetime] = None
    properties: Optional[Dict[str, Any]] = None
    sort_by: Optional[str] = None
    sort_order: str = "asc"
    limit: Optional[int] = None
    offset: int = 0


@dataclass
class EventQueryResult:
    events: List[AnalyticsEvent] = field(default_factory=list)
    total_count: int = 0
    has_more: bool = False


@dataclass
class UserQueryResult:
    users: List[UserRecord] = field(default_factory=list)
    total_count: int = 0
    has_more: bool = False


@dataclass
class ExportResult:
    format: str
    data: str
    record_count: int


def properties_match(actual: Dict[str, Any], expected: Optional[Dict[str, Any]]) -> bool:
    """Equality filter over an opaque property map."""
    if not expected:
        return True
    return all(key in actual and actual[key] == value for key, value in expected.items())


class EventStore(ABC):
    """Durable event storage."""

    @abstractmethod
    async def insert(self, event: AnalyticsEvent) -> InsertResult:
        ...

    @abstractmethod
    async def insert_batch(self, events: List[AnalyticsEvent]) -> List[InsertResult]:
        """Write many events; results are in input order."""

    @abstractmethod
    async def query(self, query_filter: EventQueryFilter) -> EventQueryResult:
        ...

    @abstractmethod
    async def export(self, start_time: datetime, end_time: datetime, export_format: str) -> ExportResult:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    async def close(self) -> None:
        """Release resources; nothing to do for file storage."""


class UserStore(ABC):
    """Durable user-profile storage."""

    @abstractmethod
    async def upsert(self, user: UserRecord, update_counters: bool = False) -> UpsertResult:
        """
        Create or merge a profile.

        Properties merge shallowly with incoming keys winning; first_seen is
        kept from the stored record. Session and event counts are kept too
        unless `update_counters` is set, in which case the caller's values win.
        """

    @abstractmethod
    async def record_activity(
        self,
        tenant_id: str,
        user_id: str,
        event_count: int,
        seen_at: datetime,
    ) -> UpsertResult:
        """
        Add tracked events to a profile in one atomic read-modify-write.

        `event_count` is added to the stored count and last_seen only moves
        forward. A missing profile is created with one session.
        """

    @abstractmethod
    async def get(self, tenant_id: str, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def delete(self, tenant_id: str, user_id: str) -> bool:
        ...

    @abstractmethod
    async def get_batch(self, tenant_id: str, user_ids: List[str]) -> List[UserRecord]:
        ...

    @abstractmethod
    async def query(self, query_filter: UserQueryFilter) -> UserQueryResult:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    async def close(self) -> None:
        """Release resources; nothing to do for file storage."""

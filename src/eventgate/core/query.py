"""
Read-path query engine.

Sorting and pagination are pure functions over result sets the storage
adapters already filtered. `QueryService` builds adapter filters from
validated query options, fetches every match and pages in memory.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

import structlog

from ..models.event import AnalyticsEvent
from ..models.query import (
    DEFAULT_QUERY_LIMIT,
    EventQueryData,
    EventSortField,
    PaginationInfo,
    SortOrder,
    UserQueryData,
    UserSortField,
)
from ..models.user import UserRecord
from ..storage.base import EventQueryFilter, EventStore, UserQueryFilter, UserStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

EVENT_SORT_KEYS: Dict[str, Callable[[AnalyticsEvent], Any]] = {
    EventSortField.TIMESTAMP.value: lambda event: event.timestamp,
    EventSortField.EVENT_NAME.value: lambda event: event.event_name,
    EventSortField.USER_ID.value: lambda event: event.user_id or "",
}

USER_SORT_KEYS: Dict[str, Callable[[UserRecord], Any]] = {
    UserSortField.FIRST_SEEN.value: lambda user: user.first_seen,
    UserSortField.LAST_SEEN.value: lambda user: user.last_seen,
    UserSortField.EVENT_COUNT.value: lambda user: user.event_count,
    UserSortField.SESSION_COUNT.value: lambda user: user.session_count,
}


@dataclass
class Page(Generic[T]):
    """One page of a result set."""
    items: List[T]
    total_count: int
    has_more: bool
    pagination: PaginationInfo


def sort_records(
    records: Sequence[T],
    sort_by: Optional[str],
    sort_order: str,
    sort_keys: Dict[str, Callable[[T], Any]],
) -> List[T]:
    """
    Stable sort by a named key. Ties keep storage order in both directions;
    an unknown or missing key leaves the order untouched.
    """
    key_fn = sort_keys.get(sort_by) if sort_by else None
    if key_fn is None:
        return list(records)
    return sorted(records, key=key_fn, reverse=sort_order == SortOrder.DESC.value)


def paginate(records: Sequence[T], limit: Optional[int], offset: int = 0) -> Page[T]:
    """Slice by offset/limit; next_offset is set only when more results remain."""
    actual_limit = limit or DEFAULT_QUERY_LIMIT
    end = offset + actual_limit
    has_more = end < len(records)

    return Page(
        items=list(records[offset:end]),
        total_count=len(records),
        has_more=has_more,
        pagination=PaginationInfo(
            limit=actual_limit,
            offset=offset,
            next_offset=end if has_more else None,
        ),
    )


@dataclass(frozen=True)
class EventQueryOptions:
    """Validated event query parameters."""
    event_types: Optional[List[str]] = None
    user_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    properties: Optional[Dict[str, Any]] = None
    sort_by: Optional[str] = None
    sort_order: str = SortOrder.ASC.value
    limit: int = DEFAULT_QUERY_LIMIT
    offset: int = 0


@dataclass(frozen=True)
class UserQueryOptions:
    """Validated user query parameters."""
    user_id: Optional[str] = None
    active_since: Optional[datetime] = None
    active_until: Optional[datetime] = None
    properties: Optional[Dict[str, Any]] = None
    sort_by: Optional[str] = None
    sort_order: str = SortOrder.ASC.value
    limit: int = DEFAULT_QUERY_LIMIT
    offset: int = 0


class QueryService:
    """Tenant-scoped event and user queries."""

    def __init__(self, event_store: EventStore, user_store: UserStore) -> None:
        self.event_store = event_store
        self.user_store = user_store

    async def query_events(self, tenant_id: str, options: EventQueryOptions) -> EventQueryData:
        started = time.monotonic()

        result = await self.event_store.query(
            EventQueryFilter(
                tenant_id=tenant_id,
                start_time=options.start_date,
                end_time=options.end_date,
                event_types=options.event_types,
                user_id=options.user_id,
                properties=options.properties,
            )
        )

        events = sort_records(result.events, options.sort_by, options.sort_order, EVENT_SORT_KEYS)
        page = paginate(events, options.limit, options.offset)

        logger.debug(
            "Event query executed",
            tenant_id=tenant_id,
            matched=page.total_count,
            returned=len(page.items),
        )

        return EventQueryData(
            events=page.items,
            total_count=page.total_count,
            has_more=page.has_more,
            pagination=page.pagination,
            execution_time=int((time.monotonic() - started) * 1000),
        )

    async def query_users(self, tenant_id: str, options: UserQueryOptions) -> UserQueryData:
        started = time.monotonic()

        result = await self.user_store.query(
            UserQueryFilter(
                tenant_id=tenant_id,
                user_id=options.user_id,
                active_since=options.active_since,
                active_until=options.active_until,
                properties=options.properties,
            )
        )

        users = sort_records(result.users, options.sort_by, options.sort_order, USER_SORT_KEYS)
        page = paginate(users, options.limit, options.offset)

        logger.debug(
            "User query executed",
            tenant_id=tenant_id,
            matched=page.total_count,
            returned=len(page.items),
        )

        return UserQueryData(
            users=page.items,
            total_count=page.total_count,
            has_more=page.has_more,
            pagination=page.pagination,
            execution_time=int((time.monotonic() - started) * 1000),
        )

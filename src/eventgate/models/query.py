"""
Query endpoint enums and response models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import Field

from .common import CamelModel
from .event import AnalyticsEvent
from .user import UserRecord

MAX_QUERY_LIMIT = 1000
DEFAULT_QUERY_LIMIT = 100


class SortOrder(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


class EventSortField(str, Enum):
    """Sortable event attributes."""

    TIMESTAMP = "timestamp"
    EVENT_NAME = "eventName"
    USER_ID = "userId"


class UserSortField(str, Enum):
    """Sortable user attributes."""

    FIRST_SEEN = "firstSeen"
    LAST_SEEN = "lastSeen"
    EVENT_COUNT = "eventCount"
    SESSION_COUNT = "sessionCount"


class OutputFormat(str, Enum):
    """Query response rendering."""

    JSON = "json"
    TABLE = "table"
    CSV = "csv"


class PaginationInfo(CamelModel):
    """Offset pagination state; next_offset only when more results remain."""

    limit: int
    offset: int
    next_offset: Optional[int] = None


class EventQueryData(CamelModel):
    events: List[AnalyticsEvent]
    total_count: int
    has_more: bool
    pagination: PaginationInfo
    execution_time: int = Field(description="Milliseconds spent answering the query")


class UserQueryData(CamelModel):
    users: List[UserRecord]
    total_count: int
    has_more: bool
    pagination: PaginationInfo
    execution_time: int = Field(description="Milliseconds spent answering the query")


class TableData(CamelModel):
    """Tabular rendering of a result page."""

    columns: List[str]
    rows: List[List[Any]]
    total_count: int
    has_more: bool
    pagination: PaginationInfo
    execution_time: int


class EventQueryResponse(CamelModel):
    success: bool = True
    data: EventQueryData
    timestamp: datetime
    request_id: str


class UserQueryResponse(CamelModel):
    success: bool = True
    data: UserQueryData
    timestamp: datetime
    request_id: str


class TableQueryResponse(CamelModel):
    success: bool = True
    data: TableData
    timestamp: datetime
    request_id: str

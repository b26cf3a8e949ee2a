"""
Pydantic data models package.

Contains all data validation models for:
- Track, batch and identify requests and responses
- Stored events and user profiles
- Query responses
- Admin and token-exchange operations
"""

from .admin import (
    ApiKeyGenerationRequest,
    ApiKeyGenerationResponse,
    ApiKeyRevocationResponse,
    TokenExchangeResponse,
)
from .common import ErrorResponse, ensure_utc, utcnow
from .event import (
    AnalyticsEvent,
    BatchEventResult,
    BatchTrackRequest,
    BatchTrackResponse,
    TrackRequest,
    TrackResponse,
)
from .query import (
    EventQueryResponse,
    EventSortField,
    OutputFormat,
    PaginationInfo,
    SortOrder,
    TableQueryResponse,
    UserQueryResponse,
    UserSortField,
)
from .tenant import RateLimitOverride, TenantInfo
from .user import IdentifyRequest, IdentifyResponse, UserDeletedResponse, UserRecord, UserResponse

__all__ = [
    # Event models
    "AnalyticsEvent",
    "TrackRequest",
    "TrackResponse",
    "BatchTrackRequest",
    "BatchTrackResponse",
    "BatchEventResult",

    # User models
    "UserRecord",
    "IdentifyRequest",
    "IdentifyResponse",
    "UserResponse",
    "UserDeletedResponse",

    # Query models
    "EventQueryResponse",
    "UserQueryResponse",
    "TableQueryResponse",
    "EventSortField",
    "UserSortField",
    "SortOrder",
    "OutputFormat",
    "PaginationInfo",

    # Tenant models
    "TenantInfo",
    "RateLimitOverride",

    # Admin models
    "ApiKeyGenerationRequest",
    "ApiKeyGenerationResponse",
    "ApiKeyRevocationResponse",
    "TokenExchangeResponse",

    # Shared
    "ErrorResponse",
    "ensure_utc",
    "utcnow",
]

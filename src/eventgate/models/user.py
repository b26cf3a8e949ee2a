"""
User profile models.

Profiles are created on first identify and merge-updated afterwards.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import Field, field_validator

from .common import CamelModel, check_nesting_depth, ensure_utc


class UserRecord(CamelModel):
    """A stored user profile, one JSON document per (tenantId, userId)."""

    user_id: str = Field(description="Primary identifier")
    tenant_id: str = Field(description="Tenant namespace")
    properties: Dict[str, Any] = Field(default_factory=dict, description="User attributes")
    first_seen: datetime = Field(description="Initial identification, never moves")
    last_seen: datetime = Field(description="Most recent activity")
    session_count: int = Field(default=0, ge=0, description="Total sessions")
    event_count: int = Field(default=0, ge=0, description="Total tracked events")

    @field_validator("first_seen", "last_seen")
    @classmethod
    def normalise_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class IdentifyRequest(CamelModel):
    """Body of POST /v1/identify."""

    user_id: str = Field(min_length=1, max_length=256, description="User identifier")
    traits: Optional[Dict[str, Any]] = Field(default=None, description="Attributes merged into the profile")
    timestamp: Optional[datetime] = Field(default=None, description="ISO-8601 activity time, defaults to now")

    @field_validator("timestamp")
    @classmethod
    def normalise_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else v

    @field_validator("traits")
    @classmethod
    def validate_traits(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if v is not None:
            check_nesting_depth(v)
        return v


class IdentifyResponse(CamelModel):
    """Successful identify acknowledgment."""

    success: bool = True
    user_id: str
    created: bool = Field(description="True when this call created the profile")
    timestamp: datetime
    request_id: str


class UserResponse(CamelModel):
    """Single user lookup."""

    success: bool = True
    data: UserRecord
    timestamp: datetime
    request_id: str


class UserDeletedResponse(CamelModel):
    """Compliance erasure acknowledgment."""

    success: bool = True
    user_id: str
    deleted: bool
    timestamp: datetime
    request_id: str

"""
Analytics event data models and validation.

- Track requests: `event` required; properties, ids and an ISO-8601 timestamp optional
- Batch requests: 1-500 track requests
- Stored events are immutable and keyed by (tenantId, eventId)
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .common import CamelModel, check_nesting_depth, ensure_utc

MAX_BATCH_EVENTS = 500


class AnalyticsEvent(CamelModel):
    """
    A stored analytics event.

    Serialised one per line in the partition files, camelCase keys.
    """

    event_id: str = Field(description="Deduplication key")
    tenant_id: str = Field(description="Tenant namespace")
    event_name: str = Field(description="Event type identifier")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Opaque event data")
    timestamp: datetime = Field(description="Event occurrence time")
    received_at: datetime = Field(description="Server receipt time")
    user_id: Optional[str] = Field(default=None, description="Associated user")
    session_id: Optional[str] = Field(default=None, description="Session tracking id")
    device_id: Optional[str] = Field(default=None, description="Device fingerprint")

    @field_validator("timestamp", "received_at")
    @classmethod
    def normalise_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class TrackRequest(CamelModel):
    """
    Body of POST /v1/track.
    """

    event: str = Field(min_length=1, max_length=256, description="Event name")
    properties: Optional[Dict[str, Any]] = Field(default=None, description="Event properties")
    timestamp: Optional[datetime] = Field(default=None, description="ISO-8601 event time, defaults to now")
    user_id: Optional[str] = Field(default=None, min_length=1, max_length=256, description="User identifier")
    session_id: Optional[str] = Field(default=None, max_length=256, description="Session identifier")
    device_id: Optional[str] = Field(default=None, max_length=256, description="Device identifier")
    event_id: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=128,
        description="Client-generated id used for deduplication",
    )

    @model_validator(mode="before")
    @classmethod
    def hoist_user_id(cls, data: Any) -> Any:
        """Older SDKs send userId inside properties; move it to the top level."""
        if not isinstance(data, dict):
            return data
        properties = data.get("properties")
        if data.get("userId") or data.get("user_id") or not isinstance(properties, dict):
            return data
        if "userId" not in properties:
            return data

        data = dict(data)
        remaining = dict(properties)
        data["userId"] = remaining.pop("userId")
        data["properties"] = remaining
        return data

    @field_validator("timestamp")
    @classmethod
    def normalise_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else v

    @field_validator("properties")
    @classmethod
    def validate_properties(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if v is not None:
            check_nesting_depth(v)
        return v


class BatchTrackRequest(CamelModel):
    """Body of POST /v1/batch."""

    events: List[TrackRequest] = Field(
        min_length=1,
        max_length=MAX_BATCH_EVENTS,
        description="Track requests (1-500)",
    )


class TrackResponse(CamelModel):
    """Successful track acknowledgment."""

    success: bool = True
    event_id: str = Field(description="Stored (or previously stored) event id")
    duplicate: bool = Field(default=False, description="True when the event id was already processed")
    timestamp: datetime = Field(description="Response timestamp")
    request_id: str = Field(description="Server-generated request identifier")


class BatchEventResult(CamelModel):
    """Outcome for one event of a batch."""

    event_id: str
    success: bool
    duplicate: bool = False
    error: Optional[str] = None


class BatchTrackResponse(CamelModel):
    """Per-event results of a batch write."""

    success: bool
    accepted: int
    rejected: int
    results: List[BatchEventResult]
    timestamp: datetime
    request_id: str

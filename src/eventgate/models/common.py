"""
Shared model helpers: camelCase wire format, UTC time handling, error envelope.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def check_nesting_depth(obj: Any, max_depth: int = 5, current_depth: int = 0) -> None:
    """Reject property maps nested deeper than max_depth levels."""
    if current_depth > max_depth:
        raise ValueError(f"Properties nesting too deep (max {max_depth} levels)")

    if isinstance(obj, dict):
        for value in obj.values():
            check_nesting_depth(value, max_depth, current_depth + 1)
    elif isinstance(obj, list):
        for item in obj:
            check_nesting_depth(item, max_depth, current_depth + 1)


class ErrorResponse(CamelModel):
    """
    Standard error response model.
    """

    error: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    status_code: int = Field(description="HTTP status code")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error details")
    timestamp: datetime = Field(description="Response timestamp")
    request_id: Optional[str] = Field(default=None, description="Server-generated request identifier")

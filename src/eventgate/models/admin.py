"""
Admin and token-exchange API data models.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from .common import CamelModel
from .tenant import RateLimitOverride


class ApiKeyGenerationRequest(CamelModel):
    """Request model for API key generation."""

    tenant_id: str = Field(
        ...,
        description="Tenant the key authenticates as (alphanumeric, hyphens, underscores only)",
        pattern=r"^[a-zA-Z0-9_-]+$",
        min_length=1,
        max_length=64,
    )
    name: Optional[str] = Field(default=None, max_length=200, description="Human-readable tenant name")
    rate_limit: Optional[RateLimitOverride] = Field(default=None, description="Per-tenant rate limit")


class ApiKeyGenerationResponse(CamelModel):
    """Response model for API key generation."""

    api_key: str = Field(..., description="Generated API key")
    tenant_id: str
    name: Optional[str] = None
    message: str


class ApiKeyRevocationResponse(CamelModel):
    revoked: bool
    message: str


class TokenExchangeResponse(CamelModel):
    """JWT issued in exchange for an API key."""

    token: str
    type: str = "Bearer"
    expires_in: int = Field(description="Lifetime in seconds")
    tenant_id: str
    message: str = "Use this token in the Authorization: Bearer <token> header"
    timestamp: datetime

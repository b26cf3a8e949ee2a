"""
Tenant identity as resolved from a credential.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RateLimitOverride(BaseModel):
    """Per-tenant replacement for the default request window."""

    max_requests: int = Field(ge=1, description="Requests allowed per window")
    window_seconds: int = Field(ge=1, description="Window size in seconds")

    model_config = ConfigDict(frozen=True)


class TenantInfo(BaseModel):
    """Resolved per request, never persisted."""

    tenant_id: str = Field(min_length=1, description="Tenant namespace")
    name: Optional[str] = Field(default=None, description="Display name")
    rate_limit: Optional[RateLimitOverride] = Field(default=None, description="Per-tenant rate limit")

    model_config = ConfigDict(frozen=True)

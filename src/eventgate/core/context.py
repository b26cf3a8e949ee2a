"""
Immutable per-request context threaded through the admission pipeline.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from starlette.requests import Request

from ..models.tenant import TenantInfo

DEFAULT_CLIENT_IP = "127.0.0.1"


@dataclass(frozen=True)
class RequestContext:
    """
    Identity of one request.

    Built once at the HTTP boundary; the tenant is set exactly once, by
    `with_tenant`, which returns a new context.
    """
    request_id: str
    source_ip: str
    received_at: datetime
    tenant: Optional[TenantInfo] = None

    @property
    def tenant_id(self) -> str:
        if self.tenant is None:
            raise RuntimeError("Request context has no resolved tenant")
        return self.tenant.tenant_id

    def with_tenant(self, tenant: TenantInfo) -> "RequestContext":
        if self.tenant is not None:
            raise RuntimeError("Tenant already resolved for this request")
        return replace(self, tenant=tenant)


def client_ip(request: Request) -> str:
    """First x-forwarded-for hop, then x-real-ip, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return DEFAULT_CLIENT_IP

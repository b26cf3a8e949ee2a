"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- /v1/track, /v1/batch, /v1/identify - Writes through the admission pipeline
- /v1/events/query, /v1/users/query - Tenant-scoped reads
- /v1/users/{userId} - Profile lookup and erasure
- /v1/auth/token - API key to JWT exchange
- /v1/admin/* - Key management and export
- /health, /metrics - Operations
"""
from .admin import router as admin_router
from .auth import router as auth_router
from .events import router as events_router
from .healthz import router as healthz_router
from .metrics import router as metrics_router
from .query import router as query_router
from .users import router as users_router

__all__ = [
    "admin_router",
    "auth_router",
    "events_router",
    "healthz_router",
    "metrics_router",
    "query_router",
    "users_router",
]

"""
Shared FastAPI dependencies.

Components live on `app.state`, built once by `create_app`.
"""

import uuid
from typing import Dict, Optional

import structlog
from fastapi import Depends, Request, Response

from ..config import Settings
from ..core.auth import BEARER_PREFIX, mask_credential, verify_admin_token
from ..core.context import RequestContext, client_ip
from ..core.exceptions import AuthenticationError, AuthorizationError
from ..core.pipeline import AdmissionPipeline, RateLimitTicket
from ..core.query import QueryService
from ..models.common import utcnow

logger = structlog.get_logger(__name__)

ADMIN_TOKEN_HEADER = "x-admin-token"


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = request.state.request_id = str(uuid.uuid4())
    return request_id


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_pipeline(request: Request) -> AdmissionPipeline:
    return request.app.state.pipeline


def get_query_service(request: Request) -> QueryService:
    return request.app.state.query_service


def request_context(request: Request) -> RequestContext:
    """Unauthenticated context for the current request."""
    return RequestContext(
        request_id=get_request_id(request),
        source_ip=client_ip(request),
        received_at=utcnow(),
    )


def _authorization_credential(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if authorization and authorization.strip():
        return authorization
    return None


async def authenticated_context(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    pipeline: AdmissionPipeline = Depends(get_pipeline),
) -> RequestContext:
    """
    Context with the request's tenant resolved; raises 401 otherwise.

    The Authorization header is tried first and the API-key header second,
    so a stale bearer token does not hide a valid API key.
    """
    context = request_context(request)
    return pipeline.authenticate(
        context,
        credential=_authorization_credential(request),
        tenant_header=request.headers.get(settings.security.tenant_header),
        api_key=request.headers.get(settings.security.api_key_header),
    )


async def require_admin(request: Request, settings: Settings = Depends(get_app_settings)) -> str:
    """
    Admin token from x-admin-token or a bearer Authorization header.

    No credential is a 401; a credential that is not the admin token is a 403.
    """
    token = request.headers.get(ADMIN_TOKEN_HEADER)
    if not token:
        authorization = request.headers.get("authorization", "")
        if authorization.lower().startswith(BEARER_PREFIX):
            token = authorization[len(BEARER_PREFIX):].strip()
        else:
            token = authorization.strip() or request.headers.get(settings.security.api_key_header)

    if not token:
        raise AuthenticationError("Admin token required")

    if not verify_admin_token(token, settings.security.admin_token):
        logger.warning("Admin access denied", token=mask_credential(token))
        raise AuthorizationError("Admin access required")

    return token


def rate_limit_headers(ticket: RateLimitTicket) -> Dict[str, str]:
    headers = {"X-RateLimit-Limit": str(ticket.limit)}
    if ticket.status is not None:
        headers["X-RateLimit-Remaining"] = str(ticket.remaining)
        headers["X-RateLimit-Reset"] = str(int(ticket.status.reset_time.timestamp()))
    return headers


def apply_rate_limit_headers(response: Response, ticket: RateLimitTicket) -> None:
    for name, value in rate_limit_headers(ticket).items():
        response.headers[name] = value

"""
Token exchange endpoint.

POST /v1/auth/token trades a valid API key (x-api-key header) for a
signed JWT usable as `Authorization: Bearer <token>`.
"""

import structlog
from fastapi import APIRouter, Depends, Request

from ..config import Settings
from ..core.auth import StaticCredentialStore, mask_credential
from ..core.exceptions import AuthenticationError, ConfigurationError, ValidationError
from ..core.pipeline import AdmissionPipeline
from ..models.admin import TokenExchangeResponse
from ..models.common import ErrorResponse, utcnow
from .deps import get_app_settings, get_pipeline

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/v1/auth/token",
    response_model=TokenExchangeResponse,
    response_model_by_alias=True,
    responses={
        400: {"model": ErrorResponse, "description": "API key header missing"},
        401: {"model": ErrorResponse, "description": "Unknown API key"},
        500: {"model": ErrorResponse, "description": "JWT signing not configured"},
    },
    summary="Exchange an API key for a JWT",
)
async def exchange_token(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    pipeline: AdmissionPipeline = Depends(get_pipeline),
) -> TokenExchangeResponse:
    header = settings.security.api_key_header
    api_key = request.headers.get(header)
    if not api_key:
        raise ValidationError(f"Provide the {header} header", field=header)

    if not settings.security.jwt_secret:
        raise ConfigurationError("JWT authentication is not configured")

    credentials: StaticCredentialStore = request.app.state.credentials
    tenant = credentials.lookup(api_key.strip())
    if tenant is None:
        logger.warning("Token exchange with unknown API key", key=mask_credential(api_key))
        raise AuthenticationError()

    token, expires_in = pipeline.auth.issue_token(tenant)

    return TokenExchangeResponse(
        token=token,
        expires_in=expires_in,
        tenant_id=tenant.tenant_id,
        timestamp=utcnow(),
    )

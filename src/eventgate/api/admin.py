"""
Admin API endpoints.

Protected by the configured admin token:
- POST /v1/admin/api-keys: issue an API key for a tenant
- DELETE /v1/admin/api-keys/{key}: revoke a key
- GET /v1/admin/export: dump events of every tenant in a time range
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from ..core.auth import StaticCredentialStore, generate_api_key, mask_credential
from ..core.exceptions import NotFoundError, StorageError, ValidationError
from ..models.admin import ApiKeyGenerationRequest, ApiKeyGenerationResponse, ApiKeyRevocationResponse
from ..models.common import ErrorResponse
from ..models.tenant import TenantInfo
from ..storage.base import EventStore
from .deps import get_request_id, require_admin
from .query import parse_date_range

logger = structlog.get_logger(__name__)

router = APIRouter()

ADMIN_ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Admin token required"},
    403: {"model": ErrorResponse, "description": "Credential is not the admin token"},
}

EXPORT_MEDIA_TYPES = {"json": "application/json", "csv": "text/csv"}


def get_credential_store(request: Request) -> StaticCredentialStore:
    return request.app.state.credentials


def get_event_store(request: Request) -> EventStore:
    return request.app.state.stores.events


@router.post(
    "/v1/admin/api-keys",
    response_model=ApiKeyGenerationResponse,
    response_model_by_alias=True,
    responses=ADMIN_ERROR_RESPONSES,
    summary="Generate an API key",
    description="""
    Issue a new API key bound to a tenant.

    **Note:** keys are added to the running process only. For persistence,
    add them to config.yaml or EVENTGATE_SECURITY_API_KEYS.
    """,
)
async def generate_key(
    body: ApiKeyGenerationRequest,
    admin_token: str = Depends(require_admin),
    credentials: StaticCredentialStore = Depends(get_credential_store),
) -> ApiKeyGenerationResponse:
    api_key = generate_api_key()
    while credentials.lookup(api_key) is not None:
        api_key = generate_api_key()

    credentials.add(
        api_key,
        TenantInfo(tenant_id=body.tenant_id, name=body.name, rate_limit=body.rate_limit),
    )

    logger.info(
        "API key generated",
        tenant_id=body.tenant_id,
        key=mask_credential(api_key),
        admin_token=mask_credential(admin_token),
    )

    return ApiKeyGenerationResponse(
        api_key=api_key,
        tenant_id=body.tenant_id,
        name=body.name,
        message=(
            f"API key generated for tenant '{body.tenant_id}'. "
            "It is active immediately but does not persist across restarts."
        ),
    )


@router.delete(
    "/v1/admin/api-keys/{api_key}",
    response_model=ApiKeyRevocationResponse,
    responses={**ADMIN_ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Unknown key"}},
    summary="Revoke an API key",
)
async def revoke_key(
    api_key: str,
    admin_token: str = Depends(require_admin),
    credentials: StaticCredentialStore = Depends(get_credential_store),
) -> ApiKeyRevocationResponse:
    if not credentials.remove(api_key):
        raise NotFoundError("API key not found")

    return ApiKeyRevocationResponse(revoked=True, message="API key revoked")


@router.get(
    "/v1/admin/export",
    responses=ADMIN_ERROR_RESPONSES,
    summary="Export events",
    description="""
    Export every tenant's events between `startDate` and `endDate`
    (ISO 8601, inclusive) as `json` or `csv`.
    """,
)
async def export_events(
    request: Request,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    export_format: str = Query("json", alias="format"),
    admin_token: str = Depends(require_admin),
    events: EventStore = Depends(get_event_store),
) -> Response:
    if not start_date:
        raise ValidationError("startDate is required", field="startDate")
    if not end_date:
        raise ValidationError("endDate is required", field="endDate")
    if export_format not in EXPORT_MEDIA_TYPES:
        raise ValidationError("format must be one of: json, csv", field="format")

    start, end = parse_date_range(start_date, end_date, "startDate", "endDate")

    try:
        result = await events.export(start, end, export_format)
    except OSError as e:
        logger.error("Export failed", error=str(e))
        raise StorageError("Failed to export events") from e

    headers = {
        "x-request-id": get_request_id(request),
        "x-record-count": str(result.record_count),
        "content-disposition": f'attachment; filename="events-export.{export_format}"',
    }
    return Response(content=result.data, media_type=EXPORT_MEDIA_TYPES[export_format], headers=headers)


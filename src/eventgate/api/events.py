"""
Write endpoints.

- POST /v1/track
- POST /v1/batch
- POST /v1/identify
"""

import structlog
from fastapi import APIRouter, Depends, Response

from ..core.context import RequestContext
from ..core.pipeline import AdmissionPipeline
from ..models.common import ErrorResponse, utcnow
from ..models.event import BatchTrackRequest, BatchTrackResponse, TrackRequest, TrackResponse
from ..models.user import IdentifyRequest, IdentifyResponse
from .deps import apply_rate_limit_headers, authenticated_context, get_pipeline

logger = structlog.get_logger(__name__)

router = APIRouter()

WRITE_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    401: {"model": ErrorResponse, "description": "Unauthorized"},
    429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    500: {"model": ErrorResponse, "description": "Storage failure"},
}


@router.post(
    "/v1/track",
    response_model=TrackResponse,
    response_model_by_alias=True,
    responses=WRITE_ERROR_RESPONSES,
    summary="Track an event",
    description="""
    Store one analytics event for the caller's tenant.

    **Admission:**
    1. API key (x-api-key or Authorization) or bearer JWT
    2. Fixed-window rate limit per tenant, client IP and user
    3. Deduplication by eventId
    4. Append to the tenant's partition file

    A repeated eventId returns 200 with `duplicate: true`, writes nothing
    and does not count against the rate limit.
    """,
)
async def track_event(
    body: TrackRequest,
    response: Response,
    context: RequestContext = Depends(authenticated_context),
    pipeline: AdmissionPipeline = Depends(get_pipeline),
) -> TrackResponse:
    outcome = await pipeline.track(context, body)
    apply_rate_limit_headers(response, outcome.ticket)

    return TrackResponse(
        event_id=outcome.event_id,
        duplicate=outcome.duplicate,
        timestamp=utcnow(),
        request_id=context.request_id,
    )


@router.post(
    "/v1/batch",
    response_model=BatchTrackResponse,
    response_model_by_alias=True,
    responses=WRITE_ERROR_RESPONSES,
    summary="Track a batch of events",
    description="""
    Store 1-500 events in one request. Results are reported per event in
    request order; a failed partition only fails its own events. One unit
    of rate limit is consumed when anything was stored.
    """,
)
async def track_batch(
    body: BatchTrackRequest,
    response: Response,
    context: RequestContext = Depends(authenticated_context),
    pipeline: AdmissionPipeline = Depends(get_pipeline),
) -> BatchTrackResponse:
    outcome = await pipeline.track_batch(context, body.events)
    apply_rate_limit_headers(response, outcome.ticket)

    return BatchTrackResponse(
        success=outcome.rejected == 0,
        accepted=outcome.accepted,
        rejected=outcome.rejected,
        results=outcome.results,
        timestamp=utcnow(),
        request_id=context.request_id,
    )


@router.post(
    "/v1/identify",
    response_model=IdentifyResponse,
    response_model_by_alias=True,
    responses=WRITE_ERROR_RESPONSES,
    summary="Identify a user",
    description="""
    Create or merge-update a user profile. Traits merge into existing
    properties with incoming keys winning; firstSeen never moves. A gap
    longer than the session timeout since lastSeen starts a new session.
    """,
)
async def identify_user(
    body: IdentifyRequest,
    response: Response,
    context: RequestContext = Depends(authenticated_context),
    pipeline: AdmissionPipeline = Depends(get_pipeline),
) -> IdentifyResponse:
    outcome = await pipeline.identify(context, body)
    apply_rate_limit_headers(response, outcome.ticket)

    return IdentifyResponse(
        user_id=outcome.user_id,
        created=outcome.created,
        timestamp=utcnow(),
        request_id=context.request_id,
    )

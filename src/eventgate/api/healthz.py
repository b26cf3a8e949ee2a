"""
Health check endpoint.

- /health: dependency status, no authentication
"""

from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request, Response, status

from .. import __version__
from ..core.health import UNHEALTHY, HealthChecker
from ..models.common import utcnow
from .deps import get_request_id

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/health",
    summary="Service health",
    description="""
    Aggregated dependency health.

    - `healthy`: every dependency passed
    - `degraded`: only the in-memory rate limiter or dedup store failed;
      writes keep flowing (rate limiting fails open)
    - `unhealthy`: event or user storage is not writable (503)
    """,
)
async def health_check(request: Request, response: Response) -> Dict[str, Any]:
    health_checker: HealthChecker = request.app.state.health_checker
    health_status = await health_checker.check_all()

    if health_status.status == UNHEALTHY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning("Health check failed", failed_checks=health_status.failed_checks)
    else:
        response.status_code = status.HTTP_200_OK

    return {
        "status": health_status.status,
        "version": __version__,
        "uptime": int(health_status.uptime_seconds),
        "dependencies": health_status.dependencies,
        "timestamp": utcnow().isoformat(),
        "requestId": get_request_id(request),
    }

"""
Prometheus metrics endpoint.

Exposes metrics in Prometheus text format for scraping.
"""

import structlog
from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..core.metrics import MetricsCollector, store_size

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="""
    Prometheus metrics endpoint in standard text format.

    **Key Metrics:**
    - events_ingested_total{tenant} - Events stored
    - events_duplicates_suppressed_total{tenant} - Duplicates skipped
    - rate_limited_requests_total{tenant} - 429 responses
    - storage_failures_total{store} - Failed writes
    - rate_limit_buckets, dedup_records - In-memory store sizes
    - http_request_duration_seconds - Request latency histogram
    """,
)
async def get_metrics(request: Request) -> Response:
    metrics: MetricsCollector = request.app.state.metrics
    metrics.update_store_gauges(
        rate_limit_buckets=store_size(request.app.state.rate_limiter),
        dedup_records=store_size(request.app.state.dedup_store),
    )

    metrics_data = generate_latest(metrics.registry)
    logger.debug("Metrics scraped successfully", size_bytes=len(metrics_data))

    return Response(content=metrics_data, media_type=CONTENT_TYPE_LATEST)

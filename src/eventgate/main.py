"""
Main FastAPI application entry point.

This module sets up the FastAPI app with all middleware, routes, and lifecycle events.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api import (
    admin_router,
    auth_router,
    events_router,
    healthz_router,
    metrics_router,
    query_router,
    users_router,
)
from .config import Settings, get_settings
from .core.auth import AuthResolver, StaticCredentialStore
from .core.dedup import MemoryDeduplicationStore
from .core.exceptions import EventGateException, RateLimitExceeded
from .core.health import HealthChecker
from .core.maintenance import MaintenanceService
from .core.metrics import MetricsCollector
from .core.pipeline import AdmissionPipeline
from .core.query import QueryService
from .models.common import utcnow
from .storage import StoreSelector, build_rate_limit_store

REQUEST_ID_HEADER = "x-request-id"


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    # Configure stdlib logging but silence watchfiles spam
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    logging.getLogger("watchfiles").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(settings: Settings) -> Any:
    """Create a lifespan handler with access to settings."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Starts the maintenance sweeps and closes the stores on shutdown.
        """
        logger = structlog.get_logger(__name__)
        logger.info(
            "Starting EventGate service",
            version=app.version,
            environment=settings.environment,
        )

        maintenance: MaintenanceService = app.state.maintenance
        await maintenance.start()

        try:
            logger.info("EventGate service started successfully")
            yield
        finally:
            logger.info("Shutting down EventGate service")

            await maintenance.stop()
            await app.state.stores.close()
            await app.state.rate_limiter.close()
            await app.state.dedup_store.close()

            logger.info("EventGate service shutdown complete")

    return lifespan


def _build_components(app: FastAPI, settings: Settings) -> None:
    """Wire every collaborator onto app.state."""
    metrics = MetricsCollector()
    credentials = StaticCredentialStore(settings.security.api_keys)
    auth = AuthResolver(
        credentials,
        jwt_secret=settings.security.jwt_secret,
        jwt_algorithm=settings.security.jwt_algorithm,
        jwt_expiry_hours=settings.security.jwt_expiry_hours,
    )

    stores = StoreSelector.from_settings(settings.storage)
    rate_limiter = build_rate_limit_store(settings.storage, settings.rate_limit)
    dedup_store = MemoryDeduplicationStore(
        max_records=settings.dedup.max_records,
        eviction_fraction=settings.dedup.eviction_fraction,
    )

    app.state.settings = settings
    app.state.metrics = metrics
    app.state.credentials = credentials
    app.state.stores = stores
    app.state.rate_limiter = rate_limiter
    app.state.dedup_store = dedup_store
    app.state.pipeline = AdmissionPipeline(
        auth=auth,
        rate_limiter=rate_limiter,
        dedup_store=dedup_store,
        event_store=stores.events,
        user_store=stores.users,
        security=settings.security,
        rate_limit=settings.rate_limit,
        dedup=settings.dedup,
        session=settings.session,
        metrics=metrics,
    )
    app.state.query_service = QueryService(stores.events, stores.users)
    app.state.health_checker = HealthChecker(stores.events, stores.users, rate_limiter, dedup_store)
    app.state.maintenance = MaintenanceService(
        rate_limiter,
        dedup_store,
        dedup_horizon_seconds=settings.dedup.cleanup_horizon_seconds,
        interval_seconds=settings.maintenance.sweep_interval_seconds,
        metrics=metrics,
    )


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _error_body(
    request: Request,
    error: str,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "error": error,
        "message": message,
        "statusCode": status_code,
        "details": details or {},
        "timestamp": utcnow().isoformat(),
        "requestId": _request_id(request),
    }


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EventGateException)
    async def eventgate_exception_handler(request: Request, exc: EventGateException) -> JSONResponse:
        """Handle custom EventGate exceptions."""
        logger = structlog.get_logger(__name__)
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "EventGate exception occurred",
            error=str(exc),
            error_code=exc.error_code,
            status_code=exc.status_code,
            path=request.url.path,
            method=request.method,
            request_id=_request_id(request),
        )

        headers = {}
        if isinstance(exc, RateLimitExceeded):
            if exc.retry_after:
                headers["Retry-After"] = str(exc.retry_after)
            if exc.limit is not None:
                headers["X-RateLimit-Limit"] = str(exc.limit)
                headers["X-RateLimit-Remaining"] = str(exc.remaining)
            if exc.reset_time is not None:
                headers["X-RateLimit-Reset"] = str(int(exc.reset_time.timestamp()))

        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.error_code, str(exc), exc.status_code, exc.details),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Report body and parameter validation failures as 400 with per-field messages."""
        errors = []
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
            errors.append({"field": ".".join(loc) or "body", "message": error.get("msg", "Invalid value")})

        first = errors[0] if errors else {"field": "body", "message": "Invalid request"}
        return JSONResponse(
            status_code=400,
            content=_error_body(
                request,
                "validation_error",
                f"{first['field']}: {first['message']}",
                400,
                {"field": first["field"], "errors": errors},
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content=_error_body(
                    request,
                    "not_found",
                    f"Route {request.method} {request.url.path} not found",
                    404,
                ),
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, "http_error", str(exc.detail), exc.status_code),
            headers=getattr(exc, "headers", None),
        )


def _register_middleware(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )

    @app.middleware("http")
    async def request_boundary(request: Request, call_next: Any) -> Response:
        """
        Outermost request boundary.

        Assigns the request id, records request metrics and turns any
        unexpected exception into a generic 500.
        """
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            structlog.get_logger(__name__).error(
                "Unexpected exception occurred",
                error=str(e),
                error_type=type(e).__name__,
                path=request.url.path,
                method=request.method,
                request_id=request_id,
                exc_info=True,
            )
            response = JSONResponse(
                status_code=500,
                content=_error_body(request, "internal_error", "An unexpected error occurred", 500),
            )

        response.headers[REQUEST_ID_HEADER] = request_id

        route = request.scope.get("route")
        request.app.state.metrics.record_request(
            method=request.method,
            endpoint=getattr(route, "path", "unmatched"),
            status_code=response.status_code,
            duration_seconds=time.perf_counter() - started,
        )
        return response


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function ensures all configuration is applied
    whether running via uvicorn or in tests with explicit settings.
    """
    settings = settings or get_settings()

    configure_logging(settings.log_level)

    app = FastAPI(
        title="EventGate",
        description="Multi-tenant analytics event ingestion and query service",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(settings),
    )

    _build_components(app, settings)
    _register_middleware(app, settings)
    _register_exception_handlers(app)

    # Query routes first so /v1/users/query is not taken as a user id
    app.include_router(events_router, tags=["events"])
    app.include_router(query_router, tags=["query"])
    app.include_router(users_router, tags=["users"])
    app.include_router(auth_router, tags=["auth"])
    app.include_router(admin_router, tags=["admin"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "EventGate",
            "version": app.version,
            "description": "Multi-tenant analytics event ingestion and query service",
            "docs": "/docs",
        }

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "eventgate.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )

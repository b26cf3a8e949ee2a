"""
Dependency health aggregation for GET /health.

- Storage adapters (events, users): unhealthy makes the service unhealthy
- In-memory rate limiter and dedup store: unhealthy only degrades the
  service, since admission fails open without them
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List

import structlog

from .dedup import DeduplicationStore
from .rate_limit import RateLimitStore
from ..storage.base import EventStore, UserStore

logger = structlog.get_logger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

CRITICAL_DEPENDENCIES = ("eventStore", "userStore")


@dataclass
class HealthCheck:
    """Individual health check result."""
    name: str
    status: str  # "healthy" or "unhealthy"
    message: str
    details: Dict[str, Any]
    last_check: float


@dataclass
class HealthStatus:
    """Overall health status."""
    status: str
    checks: Dict[str, HealthCheck]
    failed_checks: List[str]
    uptime_seconds: float
    timestamp: float

    @property
    def dependencies(self) -> Dict[str, str]:
        return {name: check.status for name, check in self.checks.items()}


class HealthChecker:
    """Runs every dependency check concurrently and folds them into one status."""

    def __init__(
        self,
        event_store: EventStore,
        user_store: UserStore,
        rate_limiter: RateLimitStore,
        dedup_store: DeduplicationStore,
    ) -> None:
        self._checks: Dict[str, Callable[[], Awaitable[bool]]] = {
            "eventStore": event_store.health_check,
            "userStore": user_store.health_check,
            "rateLimiter": rate_limiter.health_check,
            "deduplication": dedup_store.health_check,
        }
        self._start_time = time.time()

        logger.info("Health Checker initialized")

    async def check_all(self) -> HealthStatus:
        names = list(self._checks)
        results = await asyncio.gather(
            *(self._checks[name]() for name in names),
            return_exceptions=True,
        )

        checks: Dict[str, HealthCheck] = {}
        failed_checks: List[str] = []

        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.warning("Health check raised", dependency=name, error=str(result))
                checks[name] = HealthCheck(
                    name=name,
                    status=UNHEALTHY,
                    message="Check failed",
                    details={"error_type": type(result).__name__},
                    last_check=time.time(),
                )
            elif result:
                checks[name] = HealthCheck(
                    name=name,
                    status=HEALTHY,
                    message="OK",
                    details={},
                    last_check=time.time(),
                )
            else:
                checks[name] = HealthCheck(
                    name=name,
                    status=UNHEALTHY,
                    message="Check reported unhealthy",
                    details={},
                    last_check=time.time(),
                )

            if checks[name].status != HEALTHY:
                failed_checks.append(name)

        if any(name in CRITICAL_DEPENDENCIES for name in failed_checks):
            status = UNHEALTHY
        elif failed_checks:
            status = DEGRADED
        else:
            status = HEALTHY

        return HealthStatus(
            status=status,
            checks=checks,
            failed_checks=failed_checks,
            uptime_seconds=time.time() - self._start_time,
            timestamp=time.time(),
        )

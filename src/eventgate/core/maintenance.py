"""
Background sweeps of the in-memory stores.

Runs beside request handling on the event loop; a sweep holds a store's
lock only for the scan-and-delete of that store.
"""

import asyncio
from typing import Optional

import structlog

from .dedup import DeduplicationStore
from .metrics import MetricsCollector, store_size
from .rate_limit import RateLimitStore

logger = structlog.get_logger(__name__)


class MaintenanceService:
    """
    Periodically expires rate-limit buckets and deduplication records.

    A failing sweep is logged and tried again on the next interval.
    """

    def __init__(
        self,
        rate_limiter: RateLimitStore,
        dedup_store: DeduplicationStore,
        dedup_horizon_seconds: int,
        interval_seconds: int = 60,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.rate_limiter = rate_limiter
        self.dedup_store = dedup_store
        self.dedup_horizon_seconds = dedup_horizon_seconds
        self.interval = interval_seconds
        self.metrics = metrics
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False

        logger.info("Maintenance Service initialized", interval_seconds=interval_seconds)

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())

        logger.info("Maintenance Service started")

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Maintenance Service stopped")

    async def sweep(self) -> int:
        """Run one sweep of both stores; returns the number of entries removed."""
        buckets_removed = await self.rate_limiter.cleanup()
        records_removed = await self.dedup_store.cleanup(self.dedup_horizon_seconds)

        if self.metrics:
            self.metrics.update_store_gauges(
                rate_limit_buckets=store_size(self.rate_limiter),
                dedup_records=store_size(self.dedup_store),
            )

        if buckets_removed or records_removed:
            logger.info(
                "Maintenance sweep completed",
                rate_limit_buckets_removed=buckets_removed,
                dedup_records_removed=records_removed,
            )
        return buckets_removed + records_removed

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Maintenance sweep failed", error=str(e), error_type=type(e).__name__)

    def is_healthy(self) -> bool:
        return self._running and self._task is not None and not self._task.done()


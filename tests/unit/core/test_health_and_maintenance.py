"""
Tests for dependency health aggregation and the background sweeper.
"""

import asyncio
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from eventgate.core.dedup import MemoryDeduplicationStore
from eventgate.core.health import DEGRADED, HEALTHY, UNHEALTHY, HealthChecker
from eventgate.core.maintenance import MaintenanceService
from eventgate.core.metrics import MetricsCollector, store_size
from eventgate.core.rate_limit import MemoryRateLimitStore, RateLimitKey
from eventgate.storage import FlatFileEventStore, FlatFileUserStore


class UnhealthyRateLimitStore(MemoryRateLimitStore):
    async def health_check(self) -> bool:
        return False


class ExplodingUserStore(FlatFileUserStore):
    async def health_check(self) -> bool:
        raise RuntimeError("disk gone")


class TestHealthChecker:
    """Test status folding."""

    @pytest.mark.asyncio
    async def test_all_healthy(self, tmp_path: Path) -> None:
        checker = HealthChecker(
            FlatFileEventStore(tmp_path / "events"),
            FlatFileUserStore(tmp_path / "users"),
            MemoryRateLimitStore(),
            MemoryDeduplicationStore(),
        )
        status = await checker.check_all()

        assert status.status == HEALTHY
        assert status.failed_checks == []
        assert status.dependencies == {
            "eventStore": HEALTHY,
            "userStore": HEALTHY,
            "rateLimiter": HEALTHY,
            "deduplication": HEALTHY,
        }
        assert not (tmp_path / "events" / ".health-check").exists()

    @pytest.mark.asyncio
    async def test_rate_limiter_failure_degrades(self, tmp_path: Path) -> None:
        checker = HealthChecker(
            FlatFileEventStore(tmp_path / "events"),
            FlatFileUserStore(tmp_path / "users"),
            UnhealthyRateLimitStore(),
            MemoryDeduplicationStore(),
        )
        status = await checker.check_all()

        assert status.status == DEGRADED
        assert status.failed_checks == ["rateLimiter"]

    @pytest.mark.asyncio
    async def test_storage_failure_is_unhealthy(self, tmp_path: Path) -> None:
        checker = HealthChecker(
            FlatFileEventStore(tmp_path / "events"),
            ExplodingUserStore(tmp_path / "users"),
            MemoryRateLimitStore(),
            MemoryDeduplicationStore(),
        )
        status = await checker.check_all()

        assert status.status == UNHEALTHY
        assert status.checks["userStore"].details == {"error_type": "RuntimeError"}


class TestMaintenanceService:
    """Test sweeping and the loop lifecycle."""

    @pytest.mark.asyncio
    async def test_sweep_removes_expired_entries_and_updates_gauges(self) -> None:
        clock_now = [1_700_000_000.0]
        clock = lambda: clock_now[0]  # noqa: E731
        rate_limiter = MemoryRateLimitStore(retention_seconds=60, clock=clock)
        dedup_store = MemoryDeduplicationStore(clock=clock)
        metrics = MetricsCollector(registry=CollectorRegistry())

        await rate_limiter.increment(RateLimitKey(tenant_id="t", source_ip="1.1.1.1"), window_seconds=60)
        await dedup_store.mark_processed("t", "evt-1")
        clock_now[0] += 120

        service = MaintenanceService(rate_limiter, dedup_store, dedup_horizon_seconds=60, metrics=metrics)
        removed = await service.sweep()

        assert removed == 2
        assert store_size(rate_limiter) == 0
        assert store_size(dedup_store) == 0
        assert metrics.registry.get_sample_value("rate_limit_buckets") == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        service = MaintenanceService(MemoryRateLimitStore(), MemoryDeduplicationStore(), 60, interval_seconds=3600)

        await service.start()
        assert service.is_healthy()

        await service.stop()
        assert not service.is_healthy()

    @pytest.mark.asyncio
    async def test_failing_sweep_keeps_loop_alive(self) -> None:
        class BrokenDedupStore(MemoryDeduplicationStore):
            async def cleanup(self, older_than_seconds: int) -> int:
                raise RuntimeError("sweep failed")

        service = MaintenanceService(MemoryRateLimitStore(), BrokenDedupStore(), 60, interval_seconds=0)
        await service.start()
        await asyncio.sleep(0.05)

        assert service.is_healthy()
        await service.stop()

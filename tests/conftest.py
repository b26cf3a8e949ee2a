"""
Pytest configuration and shared fixtures.

Contains common test fixtures and setup for all test modules.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Optional

import pytest
from fastapi.testclient import TestClient

from eventgate.config import (
    DeduplicationSettings,
    MaintenanceSettings,
    RateLimitSettings,
    SecuritySettings,
    Settings,
    StorageSettings,
)
from eventgate.main import create_app
from eventgate.models.event import AnalyticsEvent
from eventgate.storage import FlatFileEventStore, FlatFileUserStore

TEST_JWT_SECRET = "test_jwt_secret_0123456789abcdef"
TEST_ADMIN_TOKEN = "test_admin_token_123456789abc"
TENANT_A_KEY = "test_key_tenant_a_123456789abc"
TENANT_B_KEY = "test_key_tenant_b_123456789abc"
LIMITED_KEY = "test_key_limited_123456789abcd"


@pytest.fixture
def test_config() -> Dict[str, Any]:
    """API keys used across the integration tests."""
    return {
        TENANT_A_KEY: {"tenant_id": "tenant-a", "name": "Tenant A", "active": True},
        TENANT_B_KEY: {"tenant_id": "tenant-b", "name": "Tenant B", "active": True},
        LIMITED_KEY: {
            "tenant_id": "tenant-limited",
            "active": True,
            "rate_limit": {"max_requests": 2, "window_seconds": 60},
        },
        "test_key_inactive_123456789abc": {"tenant_id": "tenant-a", "active": False},
    }


@pytest.fixture
def test_settings(tmp_path: Path, test_config: Dict[str, Any]) -> Settings:
    """Settings pointing every file store at a temporary directory."""
    return Settings(
        environment="test",
        log_level="WARNING",
        security=SecuritySettings(
            jwt_secret=TEST_JWT_SECRET,
            admin_token=TEST_ADMIN_TOKEN,
            api_keys=test_config,
        ),
        rate_limit=RateLimitSettings(max_requests=100, window_seconds=60),
        dedup=DeduplicationSettings(enabled=True, ttl_seconds=3600),
        storage=StorageSettings(
            events_path=tmp_path / "events",
            users_path=tmp_path / "users",
        ),
        maintenance=MaintenanceSettings(sweep_interval_seconds=3600),
    )


@pytest.fixture
def test_client(test_settings: Settings) -> Generator[TestClient, None, None]:
    """FastAPI test client with test configuration."""
    app = create_app(test_settings)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"x-api-key": TENANT_A_KEY}


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"x-admin-token": TEST_ADMIN_TOKEN}


@pytest.fixture
def event_store(tmp_path: Path) -> FlatFileEventStore:
    return FlatFileEventStore(tmp_path / "events")


@pytest.fixture
def user_store(tmp_path: Path) -> FlatFileUserStore:
    return FlatFileUserStore(tmp_path / "users")


@pytest.fixture
def make_event() -> Callable[..., AnalyticsEvent]:
    """Stored-event factory for store and query tests."""

    def _make(
        event_id: str,
        tenant_id: str = "tenant-a",
        event_name: str = "page_view",
        timestamp: datetime = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc),
        user_id: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> AnalyticsEvent:
        return AnalyticsEvent(
            event_id=event_id,
            tenant_id=tenant_id,
            event_name=event_name,
            properties=properties or {},
            timestamp=timestamp,
            received_at=timestamp,
            user_id=user_id,
        )

    return _make


@pytest.fixture
def valid_track_request() -> Dict[str, Any]:
    """Sample valid track body."""
    return {
        "event": "page_view",
        "properties": {"page": "/home", "plan": "pro"},
        "userId": "user-1",
        "sessionId": "session-1",
    }


@pytest.fixture
def tenant_b_headers() -> Dict[str, str]:
    return {"x-api-key": TENANT_B_KEY}


@pytest.fixture
def limited_headers() -> Dict[str, str]:
    """Credential for a tenant allowed two requests per minute."""
    return {"x-api-key": LIMITED_KEY}

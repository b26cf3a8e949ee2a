"""
Tests for credential resolution and token issuing.

Tests API key lookup, JWT verification with API key fallback and the
constant-time admin token check.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from eventgate.core.auth import (
    GENERIC_AUTH_FAILURE,
    AuthResolver,
    StaticCredentialStore,
    generate_api_key,
    verify_admin_token,
)
from eventgate.core.exceptions import ConfigurationError
from eventgate.models.tenant import TenantInfo

SECRET = "unit_test_secret_0123456789abcdef"


@pytest.fixture
def credentials() -> StaticCredentialStore:
    return StaticCredentialStore({
        "key_active_123456": {"tenant_id": "tenant-a", "name": "A"},
        "key_camel_1234567": {"tenantId": "tenant-c", "rateLimit": {"max_requests": 5, "window_seconds": 10}},
        "key_inactive_1234": {"tenant_id": "tenant-a", "active": False},
        "key_no_tenant_123": {"name": "orphan"},
    })


@pytest.fixture
def resolver(credentials: StaticCredentialStore) -> AuthResolver:
    return AuthResolver(credentials, jwt_secret=SECRET)


class TestStaticCredentialStore:
    """Test the configured API key table."""

    def test_skips_inactive_and_tenantless_keys(self, credentials: StaticCredentialStore) -> None:
        assert len(credentials) == 2
        assert credentials.lookup("key_inactive_1234") is None
        assert credentials.lookup("key_no_tenant_123") is None

    def test_accepts_camel_case_entries(self, credentials: StaticCredentialStore) -> None:
        tenant = credentials.lookup("key_camel_1234567")
        assert tenant is not None
        assert tenant.tenant_id == "tenant-c"
        assert tenant.rate_limit is not None
        assert tenant.rate_limit.max_requests == 5

    def test_add_and_remove(self, credentials: StaticCredentialStore) -> None:
        api_key = generate_api_key()
        assert api_key.startswith("ak_")

        credentials.add(api_key, TenantInfo(tenant_id="tenant-new"))
        assert credentials.lookup(api_key).tenant_id == "tenant-new"
        assert credentials.remove(api_key)
        assert not credentials.remove(api_key)


class TestAuthResolver:
    """Test credential to tenant resolution."""

    def test_raw_api_key(self, resolver: AuthResolver) -> None:
        result = resolver.resolve("key_active_123456")
        assert result.success
        assert result.method == "api_key"
        assert result.tenant.tenant_id == "tenant-a"

    def test_bearer_api_key(self, resolver: AuthResolver) -> None:
        """Test API keys also work behind the Bearer prefix."""

        result = resolver.resolve("Bearer key_active_123456")
        assert result.success
        assert result.tenant.tenant_id == "tenant-a"

    def test_valid_jwt(self, resolver: AuthResolver) -> None:
        token, expires_in = resolver.issue_token(TenantInfo(tenant_id="tenant-a", name="A"))
        assert expires_in == 24 * 3600

        result = resolver.resolve(f"Bearer {token}")
        assert result.success
        assert result.method == "jwt"
        assert result.tenant.tenant_id == "tenant-a"
        assert result.tenant.name == "A"

    def test_sub_claim_identifies_tenant(self, resolver: AuthResolver) -> None:
        token = jwt.encode({"sub": "tenant-sub"}, SECRET, algorithm="HS256")
        result = resolver.resolve(f"Bearer {token}")
        assert result.success
        assert result.tenant.tenant_id == "tenant-sub"

    def test_expired_jwt_falls_back_to_api_key_table(self) -> None:
        """Test an expired JWT that is also a configured key still authenticates."""

        expired = jwt.encode(
            {"tenantId": "tenant-a", "exp": datetime.now(timezone.utc) - timedelta(hours=1)},
            SECRET,
            algorithm="HS256",
        )
        store = StaticCredentialStore({expired: {"tenant_id": "tenant-key"}})
        resolver = AuthResolver(store, jwt_secret=SECRET)

        result = resolver.resolve(f"Bearer {expired}")
        assert result.success
        assert result.method == "api_key"
        assert result.tenant.tenant_id == "tenant-key"

    def test_expired_jwt_without_key_fails_generically(self, resolver: AuthResolver) -> None:
        expired = jwt.encode(
            {"tenantId": "tenant-a", "exp": datetime.now(timezone.utc) - timedelta(hours=1)},
            SECRET,
            algorithm="HS256",
        )
        result = resolver.resolve(f"Bearer {expired}")
        assert not result.success
        assert result.error == GENERIC_AUTH_FAILURE

    def test_wrong_signature_fails_generically(self, resolver: AuthResolver) -> None:
        forged = jwt.encode({"tenantId": "tenant-a"}, "another_secret_0123456789abcdef", algorithm="HS256")
        result = resolver.resolve(f"Bearer {forged}")
        assert not result.success
        assert result.error == GENERIC_AUTH_FAILURE

    @pytest.mark.parametrize("raw", [None, "", "   ", "Bearer unknown_key_123"])
    def test_missing_or_unknown_credentials(self, resolver: AuthResolver, raw: str) -> None:
        result = resolver.resolve(raw)
        assert not result.success
        assert result.error == GENERIC_AUTH_FAILURE

    def test_jwts_ignored_without_secret(self, credentials: StaticCredentialStore) -> None:
        token = jwt.encode({"tenantId": "tenant-a"}, SECRET, algorithm="HS256")
        result = AuthResolver(credentials).resolve(f"Bearer {token}")
        assert not result.success

    def test_issue_token_requires_secret(self, credentials: StaticCredentialStore) -> None:
        with pytest.raises(ConfigurationError):
            AuthResolver(credentials).issue_token(TenantInfo(tenant_id="tenant-a"))


class TestAdminToken:
    """Test admin token comparison."""

    def test_matches(self) -> None:
        assert verify_admin_token("admin_token_value", "admin_token_value")

    def test_mismatch(self) -> None:
        assert not verify_admin_token("admin_token_valuX", "admin_token_value")

    def test_unset_admin_token_never_matches(self) -> None:
        assert not verify_admin_token("", "")
        assert not verify_admin_token("anything", "")

"""
Credential resolution.

A credential is either a signed JWT or a static API key. JWTs are tried
first when a signing secret is configured; any verification failure falls
through to the API-key table so keys keep working in the Authorization
header. Callers only ever see a generic failure.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Protocol, Tuple

import jwt
import structlog

from ..models.tenant import RateLimitOverride, TenantInfo
from .exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

BEARER_PREFIX = "bearer "
GENERIC_AUTH_FAILURE = "Invalid or missing credentials"


def mask_credential(value: str) -> str:
    """Loggable form of a credential."""
    return value[:8] + "..." if len(value) >= 8 else "invalid"


class CredentialStore(Protocol):
    """Lookup of static API keys."""

    def lookup(self, api_key: str) -> Optional[TenantInfo]:
        ...


class StaticCredentialStore:
    """
    In-memory API key table seeded from configuration.

    Configured entries look like {tenant_id, name, active, rate_limit};
    inactive or malformed entries are skipped at load time.
    """

    def __init__(self, api_keys: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self._keys: Dict[str, TenantInfo] = {}

        for api_key, key_info in (api_keys or {}).items():
            if not key_info.get("active", True):
                continue
            tenant_id = key_info.get("tenant_id") or key_info.get("tenantId")
            if not tenant_id:
                logger.warning("Skipping API key without tenant", key=mask_credential(api_key))
                continue

            rate_limit = key_info.get("rate_limit") or key_info.get("rateLimit")
            self._keys[api_key] = TenantInfo(
                tenant_id=tenant_id,
                name=key_info.get("name"),
                rate_limit=RateLimitOverride(**rate_limit) if rate_limit else None,
            )

        logger.info("Credential store loaded", api_keys=len(self._keys))

    def lookup(self, api_key: str) -> Optional[TenantInfo]:
        return self._keys.get(api_key)

    def add(self, api_key: str, tenant: TenantInfo) -> None:
        self._keys[api_key] = tenant
        logger.info("API key added", key=mask_credential(api_key), tenant_id=tenant.tenant_id)

    def remove(self, api_key: str) -> bool:
        removed = self._keys.pop(api_key, None) is not None
        if removed:
            logger.info("API key revoked", key=mask_credential(api_key))
        return removed

    def __len__(self) -> int:
        return len(self._keys)


def generate_api_key() -> str:
    return f"ak_{secrets.token_urlsafe(32)}"


def verify_admin_token(provided: Optional[str], expected: str) -> bool:
    """Constant-time admin token comparison; an unset admin token never matches."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


@dataclass(frozen=True)
class AuthResult:
    """Outcome of resolving one credential."""
    success: bool
    tenant: Optional[TenantInfo] = None
    method: Optional[str] = None
    error: Optional[str] = None


class AuthResolver:
    """
    Turns a raw credential into a tenant.

    Read-only: resolving never changes the credential store.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        jwt_secret: Optional[str] = None,
        jwt_algorithm: str = "HS256",
        jwt_expiry_hours: int = 24,
    ) -> None:
        self.credentials = credentials
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.jwt_expiry_hours = jwt_expiry_hours

    def resolve(self, raw_token: Optional[str]) -> AuthResult:
        if not raw_token or not raw_token.strip():
            return AuthResult(success=False, error=GENERIC_AUTH_FAILURE)

        raw_token = raw_token.strip()
        token = raw_token
        if token.lower().startswith(BEARER_PREFIX):
            token = token[len(BEARER_PREFIX):].strip()

        if self.jwt_secret:
            tenant = self._verify_jwt(token)
            if tenant is not None:
                return AuthResult(success=True, tenant=tenant, method="jwt")

        for candidate in (token, raw_token):
            tenant = self.credentials.lookup(candidate)
            if tenant is not None:
                logger.debug("Authenticated via API key", key=mask_credential(candidate), tenant_id=tenant.tenant_id)
                return AuthResult(success=True, tenant=tenant, method="api_key")

        logger.warning("Authentication failed", key=mask_credential(token))
        return AuthResult(success=False, error=GENERIC_AUTH_FAILURE)

    def _verify_jwt(self, token: str) -> Optional[TenantInfo]:
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=[self.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            logger.debug("Expired JWT, trying API key", key=mask_credential(token))
            return None
        except jwt.InvalidTokenError:
            return None

        tenant_id = payload.get("tenantId") or payload.get("sub")
        if not tenant_id or not isinstance(tenant_id, str):
            logger.debug("JWT without tenant claim, trying API key")
            return None

        return TenantInfo(tenant_id=tenant_id, name=payload.get("name"))

    def issue_token(self, tenant: TenantInfo) -> Tuple[str, int]:
        """Sign a JWT for the tenant; returns the token and its lifetime in seconds."""
        if not self.jwt_secret:
            raise ConfigurationError("JWT authentication is not configured")

        expires_in = self.jwt_expiry_hours * 3600
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "sub": tenant.tenant_id,
            "tenantId": tenant.tenant_id,
            "iat": now,
            "exp": now + timedelta(seconds=expires_in),
        }
        if tenant.name:
            payload["name"] = tenant.name

        token = jwt.encode(payload, self.jwt_secret, algorithm=self.jwt_algorithm)
        logger.info("Issued JWT", tenant_id=tenant.tenant_id, expires_in=expires_in)
        return token, expires_in

"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation,
with an optional config.yaml supplying defaults that env vars override.
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_BACKENDS = {"flatfile", "memory"}
KNOWN_BACKENDS = VALID_BACKENDS | {"clickhouse", "bigquery", "postgres", "dynamodb", "redis"}
VALID_ENVIRONMENTS = {"development", "staging", "production", "test"}


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get("EVENTGATE_CONFIG_FILE")

    if config_path is None:
        possible_paths = [
            "config.yaml",
            "../../config.yaml",
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            return yaml.safe_load(f) or {}
    return {}


class SecuritySettings(BaseSettings):
    """Authentication configuration."""

    jwt_secret: Optional[str] = Field(default=None, description="HMAC secret for bearer JWTs")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_expiry_hours: int = Field(default=24, description="Lifetime of exchanged JWTs")
    api_key_header: str = Field(default="x-api-key", description="Header carrying a raw API key")
    tenant_header: str = Field(default="x-tenant-id", description="Header for manual tenant identification")
    allow_tenant_header: bool = Field(
        default=False,
        description="Accept the tenant header when no credential is presented",
    )
    admin_token: str = Field(default="", description="Admin token for key management and export")
    api_keys: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="API key -> {tenant_id, name, active, rate_limit}",
    )

    @field_validator("api_keys", mode="before")
    @classmethod
    def parse_api_keys(cls, v: Any) -> Dict[str, Dict[str, Any]]:
        """Parse API keys from JSON string if needed."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError:
                return {}
            return parsed if isinstance(parsed, dict) else {}
        if isinstance(v, dict):
            return v
        return {}

    model_config = SettingsConfigDict(env_prefix="EVENTGATE_SECURITY_")


class RateLimitSettings(BaseSettings):
    """Fixed-window rate limiting configuration."""

    max_requests: int = Field(default=1000, description="Requests allowed per window")
    window_seconds: int = Field(default=3600, description="Window size in seconds")
    max_buckets: int = Field(default=10000, description="Bucket count that triggers eviction")
    retention_seconds: int = Field(default=3600, description="Sweep buckets whose window started earlier")
    eviction_fraction: float = Field(default=0.1, description="Share of oldest buckets evicted under pressure")

    @field_validator("max_requests", "window_seconds", "max_buckets", "retention_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be positive")
        return v

    @field_validator("eviction_fraction")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("must be within (0, 1]")
        return v

    model_config = SettingsConfigDict(env_prefix="EVENTGATE_RATE_LIMIT_")


class DeduplicationSettings(BaseSettings):
    """Event deduplication configuration."""

    enabled: bool = Field(default=True, description="Check event ids against recently processed ones")
    ttl_seconds: int = Field(default=3600, description="How long an event id counts as processed")
    max_records: int = Field(default=50000, description="Record count that triggers eviction")
    cleanup_horizon_seconds: int = Field(default=3600, description="Sweep records processed earlier")
    eviction_fraction: float = Field(default=0.1, description="Share of oldest records evicted under pressure")

    @field_validator("ttl_seconds", "max_records", "cleanup_horizon_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be positive")
        return v

    @field_validator("eviction_fraction")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("must be within (0, 1]")
        return v

    model_config = SettingsConfigDict(env_prefix="EVENTGATE_DEDUP_")


class StorageSettings(BaseSettings):
    """Storage backend selection and flat-file locations."""

    events: str = Field(default="flatfile", description="Event store backend")
    users: str = Field(default="flatfile", description="User store backend")
    rate_limits: str = Field(default="memory", description="Rate limit store backend")
    events_path: Path = Field(default=Path("./data/events"), description="Root directory for event partitions")
    users_path: Path = Field(default=Path("./data/users"), description="Root directory for user records")
    partition_strategy: str = Field(default="daily", description="Event partition granularity (daily|hourly)")

    @field_validator("events", "users", "rate_limits")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in KNOWN_BACKENDS:
            raise ValueError(f"unknown storage backend '{v}'")
        return v

    @field_validator("partition_strategy")
    @classmethod
    def validate_partition_strategy(cls, v: str) -> str:
        if v not in ("daily", "hourly"):
            raise ValueError("partition_strategy must be 'daily' or 'hourly'")
        return v

    model_config = SettingsConfigDict(env_prefix="EVENTGATE_STORAGE_")


class SessionSettings(BaseSettings):
    """User session accounting."""

    session_timeout_minutes: int = Field(default=30, description="Inactivity gap that starts a new session")

    model_config = SettingsConfigDict(env_prefix="EVENTGATE_SESSION_")


class MaintenanceSettings(BaseSettings):
    """Background sweep configuration."""

    sweep_interval_seconds: int = Field(default=60, description="Seconds between store sweeps")

    model_config = SettingsConfigDict(env_prefix="EVENTGATE_MAINTENANCE_")


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3001, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")
    environment: str = Field(default="development", description="Deployment environment")
    cors_origins: List[str] = Field(default=["*"], description="Allowed CORS origins")

    # Component settings
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    dedup: DeduplicationSettings = Field(default_factory=DeduplicationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        # 0 lets the OS pick a port in tests
        if not 0 <= v <= 65535:
            raise ValueError("port must be between 0 and 65535")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in VALID_ENVIRONMENTS:
            raise ValueError(f"environment must be one of: {', '.join(sorted(VALID_ENVIRONMENTS))}")
        return v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.startswith("["):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    model_config = SettingsConfigDict(env_prefix="EVENTGATE_", case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "EVENTGATE_HOST",
        ("server", "port"): "EVENTGATE_PORT",
        ("server", "debug"): "EVENTGATE_DEBUG",
        ("server", "log_level"): "EVENTGATE_LOG_LEVEL",
        ("server", "environment"): "EVENTGATE_ENVIRONMENT",
        ("security", "jwt_secret"): "EVENTGATE_SECURITY_JWT_SECRET",
        ("security", "admin_token"): "EVENTGATE_SECURITY_ADMIN_TOKEN",
        ("security", "allow_tenant_header"): "EVENTGATE_SECURITY_ALLOW_TENANT_HEADER",
        ("rate_limit", "max_requests"): "EVENTGATE_RATE_LIMIT_MAX_REQUESTS",
        ("rate_limit", "window_seconds"): "EVENTGATE_RATE_LIMIT_WINDOW_SECONDS",
        ("dedup", "enabled"): "EVENTGATE_DEDUP_ENABLED",
        ("dedup", "ttl_seconds"): "EVENTGATE_DEDUP_TTL_SECONDS",
        ("storage", "events"): "EVENTGATE_STORAGE_EVENTS",
        ("storage", "users"): "EVENTGATE_STORAGE_USERS",
        ("storage", "events_path"): "EVENTGATE_STORAGE_EVENTS_PATH",
        ("storage", "users_path"): "EVENTGATE_STORAGE_USERS_PATH",
        ("storage", "partition_strategy"): "EVENTGATE_STORAGE_PARTITION_STRATEGY",
        ("session", "session_timeout_minutes"): "EVENTGATE_SESSION_SESSION_TIMEOUT_MINUTES",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = config_data.get(section, {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)

    # Mappings travel as JSON strings
    if "EVENTGATE_SECURITY_API_KEYS" not in os.environ:
        api_keys = config_data.get("security", {}).get("api_keys")
        if api_keys:
            os.environ["EVENTGATE_SECURITY_API_KEYS"] = json.dumps(api_keys)

    if "EVENTGATE_CORS_ORIGINS" not in os.environ:
        cors_origins = config_data.get("server", {}).get("cors_origins")
        if cors_origins:
            os.environ["EVENTGATE_CORS_ORIGINS"] = json.dumps(cors_origins)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()

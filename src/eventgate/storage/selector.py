"""
Storage backend selection.

Maps the configured backend names to adapter instances. Backends that
are recognised but not shipped fail at startup with a configuration error.
"""

from dataclasses import dataclass
from typing import Dict

import structlog

from ..config import KNOWN_BACKENDS, RateLimitSettings, StorageSettings
from ..core.exceptions import ConfigurationError
from ..core.rate_limit import MemoryRateLimitStore, RateLimitStore
from .base import EventStore, UserStore
from .flatfile_events import FlatFileEventStore
from .flatfile_users import FlatFileUserStore

logger = structlog.get_logger(__name__)


@dataclass
class StoreSelector:
    """The event and user adapters chosen for this process."""
    events: EventStore
    users: UserStore

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "StoreSelector":
        events = _build_event_store(settings)
        users = _build_user_store(settings)

        logger.info(
            "Storage adapters selected",
            events=settings.events,
            users=settings.users,
        )
        return cls(events=events, users=users)

    async def health_check(self) -> Dict[str, bool]:
        return {
            "events": await self.events.health_check(),
            "users": await self.users.health_check(),
        }

    async def close(self) -> None:
        await self.events.close()
        await self.users.close()


def _unsupported(kind: str, backend: str) -> ConfigurationError:
    if backend in KNOWN_BACKENDS:
        message = f"{kind} backend '{backend}' is not available in this build"
    else:
        message = f"Unknown {kind} backend '{backend}'"
    return ConfigurationError(message, details={"backend": backend, "store": kind})


def _build_event_store(settings: StorageSettings) -> EventStore:
    if settings.events == "flatfile":
        return FlatFileEventStore(settings.events_path, settings.partition_strategy)
    raise _unsupported("events", settings.events)


def _build_user_store(settings: StorageSettings) -> UserStore:
    if settings.users == "flatfile":
        return FlatFileUserStore(settings.users_path)
    raise _unsupported("users", settings.users)


def build_rate_limit_store(storage: StorageSettings, rate_limit: RateLimitSettings) -> RateLimitStore:
    if storage.rate_limits == "memory":
        return MemoryRateLimitStore(
            max_buckets=rate_limit.max_buckets,
            retention_seconds=rate_limit.retention_seconds,
            eviction_fraction=rate_limit.eviction_fraction,
        )
    raise _unsupported("rate_limits", storage.rate_limits)

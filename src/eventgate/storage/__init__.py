"""
Storage adapters.

- EventStore / UserStore interfaces
- Flat-file JSONL event partitions and JSON user documents
- Backend selection from settings
"""

from .base import (
    EventQueryFilter,
    EventQueryResult,
    EventStore,
    ExportResult,
    InsertResult,
    UpsertResult,
    UserQueryFilter,
    UserQueryResult,
    UserStore,
    safe_path_component,
)
from .flatfile_events import FlatFileEventStore
from .flatfile_users import FlatFileUserStore
from .selector import StoreSelector, build_rate_limit_store

__all__ = [
    "EventStore",
    "UserStore",
    "EventQueryFilter",
    "EventQueryResult",
    "UserQueryFilter",
    "UserQueryResult",
    "InsertResult",
    "UpsertResult",
    "ExportResult",
    "FlatFileEventStore",
    "FlatFileUserStore",
    "StoreSelector",
    "build_rate_limit_store",
    "safe_path_component",
]

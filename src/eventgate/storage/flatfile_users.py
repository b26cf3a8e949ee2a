"""
JSON-document user profile storage.

One file per profile at {users_path}/{tenant}/users/{user}.json. Writes
go to a temporary file that is then renamed over the target, so readers
never see a partial document.
"""

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog
from aiofiles import open as aio_open
from aiofiles import os as aio_os
from pydantic import ValidationError

from ..models.user import UserRecord
from .base import (
    PathLockPool,
    UpsertResult,
    UserQueryFilter,
    UserQueryResult,
    UserStore,
    properties_match,
    safe_path_component,
)

logger = structlog.get_logger(__name__)

HEALTH_SENTINEL = ".health-check"


class FlatFileUserStore(UserStore):
    """
    Read-modify-write profile documents.

    Each profile path maps to a pooled asyncio lock, held across the
    read, merge and write of an upsert, so concurrent upserts of one user
    serialize and none are lost.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self._locks = PathLockPool()

        logger.info("Flat-file user store initialized", base_path=str(self.base_path))

    def user_path(self, tenant_id: str, user_id: str) -> Path:
        return self._users_dir(tenant_id) / f"{safe_path_component(user_id)}.json"

    def _users_dir(self, tenant_id: str) -> Path:
        return self.base_path / safe_path_component(tenant_id) / "users"

    async def _read(self, path: Path) -> Optional[UserRecord]:
        try:
            async with aio_open(path, "rb") as f:
                content = await f.read()
        except FileNotFoundError:
            return None

        try:
            return UserRecord.model_validate_json(content.decode("utf-8"))
        except (UnicodeDecodeError, ValidationError) as e:
            logger.warning("Ignoring unreadable user profile", path=str(path), error=str(e))
            return None

    async def _write(self, path: Path, user: UserRecord) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")

        async with aio_open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(user.model_dump_json(by_alias=True, indent=2))

        await aio_os.rename(tmp_path, path)

    async def upsert(self, user: UserRecord, update_counters: bool = False) -> UpsertResult:
        path = self.user_path(user.tenant_id, user.user_id)

        try:
            async with self._locks.for_path(path):
                existing = await self._read(path)

                if existing is None:
                    merged = user
                else:
                    merged = existing.model_copy(update={
                        "properties": {**existing.properties, **user.properties},
                        "last_seen": user.last_seen,
                        "session_count": user.session_count if update_counters else existing.session_count,
                        "event_count": user.event_count if update_counters else existing.event_count,
                    })

                await self._write(path, merged)
        except OSError as e:
            logger.error(
                "Failed to write user profile",
                tenant_id=user.tenant_id,
                user_id=user.user_id,
                error=str(e),
            )
            return UpsertResult(success=False, created=False, user_id=user.user_id, error="Failed to write user")

        return UpsertResult(success=True, created=existing is None, user_id=user.user_id)

    async def record_activity(
        self,
        tenant_id: str,
        user_id: str,
        event_count: int,
        seen_at: datetime,
    ) -> UpsertResult:
        path = self.user_path(tenant_id, user_id)

        try:
            async with self._locks.for_path(path):
                existing = await self._read(path)

                if existing is None:
                    updated = UserRecord(
                        user_id=user_id,
                        tenant_id=tenant_id,
                        first_seen=seen_at,
                        last_seen=seen_at,
                        session_count=1,
                        event_count=event_count,
                    )
                else:
                    updated = existing.model_copy(update={
                        "last_seen": max(existing.last_seen, seen_at),
                        "event_count": existing.event_count + event_count,
                    })

                await self._write(path, updated)
        except OSError as e:
            logger.error(
                "Failed to record user activity",
                tenant_id=tenant_id,
                user_id=user_id,
                error=str(e),
            )
            return UpsertResult(success=False, created=False, user_id=user_id, error="Failed to write user")

        return UpsertResult(success=True, created=existing is None, user_id=user_id)

    async def get(self, tenant_id: str, user_id: str) -> Optional[UserRecord]:
        return await self._read(self.user_path(tenant_id, user_id))

    async def delete(self, tenant_id: str, user_id: str) -> bool:
        path = self.user_path(tenant_id, user_id)
        async with self._locks.for_path(path):
            try:
                await aio_os.remove(path)
            except FileNotFoundError:
                return False

        logger.info("Deleted user profile", tenant_id=tenant_id, user_id=user_id)
        return True

    async def get_batch(self, tenant_id: str, user_ids: List[str]) -> List[UserRecord]:
        users = []
        for user_id in user_ids:
            user = await self.get(tenant_id, user_id)
            if user is not None:
                users.append(user)
        return users

    async def query(self, query_filter: UserQueryFilter) -> UserQueryResult:
        from ..core.query import USER_SORT_KEYS, sort_records

        users_dir = self._users_dir(query_filter.tenant_id)
        if not users_dir.is_dir():
            return UserQueryResult()

        matched: List[UserRecord] = []
        for path in sorted(users_dir.glob("*.json")):
            user = await self._read(path)
            if user is None or user.tenant_id != query_filter.tenant_id:
                continue
            if query_filter.user_id is not None and user.user_id != query_filter.user_id:
                continue
            if query_filter.active_since is not None and user.last_seen < query_filter.active_since:
                continue
            if query_filter.active_until is not None and user.last_seen > query_filter.active_until:
                continue
            if not properties_match(user.properties, query_filter.properties):
                continue
            matched.append(user)

        if query_filter.sort_by:
            matched = sort_records(matched, query_filter.sort_by, query_filter.sort_order, USER_SORT_KEYS)

        total = len(matched)
        if query_filter.limit is None:
            return UserQueryResult(users=matched, total_count=total, has_more=False)

        end = query_filter.offset + query_filter.limit
        return UserQueryResult(
            users=matched[query_filter.offset:end],
            total_count=total,
            has_more=end < total,
        )

    async def health_check(self) -> bool:
        sentinel = self.base_path / HEALTH_SENTINEL
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            async with aio_open(sentinel, "w", encoding="utf-8") as f:
                await f.write(json.dumps({"ok": True}))
            await aio_os.remove(sentinel)
        except OSError as e:
            logger.error("User storage health check failed", base_path=str(self.base_path), error=str(e))
            return False
        return True

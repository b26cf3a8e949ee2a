"""
Append-only JSONL event storage.

Events are written one JSON object per line into time-partitioned files:

    {events_path}/{tenant}/{YYYY}/{MM}/events-{YYYY-MM-DD}.jsonl      (daily)
    {events_path}/{tenant}/{YYYY}/{MM}/events-{YYYY-MM-DD-HH}.jsonl   (hourly)

Partition dates come from the event timestamp in UTC. Every append is a
single write issued under the file's pooled asyncio lock, so concurrent inserts
into one partition never interleave.
"""

import csv
import io
import json
import re
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import structlog
from aiofiles import open as aio_open
from aiofiles import os as aio_os
from pydantic import ValidationError

from ..models.event import AnalyticsEvent
from .base import (
    EventQueryFilter,
    EventQueryResult,
    EventStore,
    ExportResult,
    InsertResult,
    PathLockPool,
    properties_match,
    safe_path_component,
)

logger = structlog.get_logger(__name__)

PARTITION_FILE_PATTERN = re.compile(r"^events-(\d{4})-(\d{2})-(\d{2})(?:-(\d{2}))?\.jsonl$")
EXPORT_CSV_COLUMNS = ["eventId", "tenantId", "userId", "eventName", "timestamp", "receivedAt", "properties"]
HEALTH_SENTINEL = ".health-check"


class FlatFileEventStore(EventStore):
    """
    JSONL partition files on the local filesystem.

    Reads scan the tenant's partition files in name order, which is
    chronological, and skip files entirely outside the requested range.
    Lines that fail to parse are logged and skipped.
    """

    def __init__(self, base_path: Path, partition_strategy: str = "daily"):
        if partition_strategy not in ("daily", "hourly"):
            raise ValueError(f"Unknown partition strategy: {partition_strategy}")

        self.base_path = Path(base_path)
        self.partition_strategy = partition_strategy
        self._locks = PathLockPool()

        logger.info(
            "Flat-file event store initialized",
            base_path=str(self.base_path),
            partition_strategy=partition_strategy,
        )

    def partition_path(self, tenant_id: str, timestamp: datetime) -> Path:
        """Partition file an event with this timestamp belongs to."""
        ts = timestamp.astimezone(timezone.utc)
        if self.partition_strategy == "hourly":
            file_name = f"events-{ts:%Y-%m-%d-%H}.jsonl"
        else:
            file_name = f"events-{ts:%Y-%m-%d}.jsonl"

        return self.base_path / safe_path_component(tenant_id) / f"{ts:%Y}" / f"{ts:%m}" / file_name

    async def _append(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with self._locks.for_path(path):
            async with aio_open(path, "a", encoding="utf-8") as f:
                await f.write(payload)

    @staticmethod
    def _serialize(event: AnalyticsEvent) -> str:
        return event.model_dump_json(by_alias=True) + "\n"

    async def insert(self, event: AnalyticsEvent) -> InsertResult:
        path = self.partition_path(event.tenant_id, event.timestamp)
        try:
            await self._append(path, self._serialize(event))
        except OSError as e:
            logger.error(
                "Failed to append event",
                tenant_id=event.tenant_id,
                event_id=event.event_id,
                partition=str(path),
                error=str(e),
            )
            return InsertResult(success=False, event_id=event.event_id, error="Failed to write event")

        return InsertResult(success=True, event_id=event.event_id)

    async def insert_batch(self, events: List[AnalyticsEvent]) -> List[InsertResult]:
        """
        Group events by partition and append each group in one write.

        A failed partition fails only its own events.
        """
        results: List[Optional[InsertResult]] = [None] * len(events)
        groups: Dict[Path, List[int]] = defaultdict(list)

        for index, event in enumerate(events):
            groups[self.partition_path(event.tenant_id, event.timestamp)].append(index)

        for path, indexes in groups.items():
            payload = "".join(self._serialize(events[i]) for i in indexes)
            try:
                await self._append(path, payload)
            except OSError as e:
                logger.error(
                    "Failed to append event batch",
                    partition=str(path),
                    events=len(indexes),
                    error=str(e),
                )
                for i in indexes:
                    results[i] = InsertResult(
                        success=False,
                        event_id=events[i].event_id,
                        error="Failed to write event",
                    )
                continue

            for i in indexes:
                results[i] = InsertResult(success=True, event_id=events[i].event_id)

        return [result for result in results if result is not None]

    def _partition_span(self, path: Path) -> Optional[Tuple[datetime, datetime]]:
        """Time range [start, end) covered by a partition file, from its name."""
        match = PARTITION_FILE_PATTERN.match(path.name)
        if not match:
            return None

        year, month, day, hour = match.groups()
        if hour is not None:
            start = datetime(int(year), int(month), int(day), int(hour), tzinfo=timezone.utc)
            return start, start + timedelta(hours=1)

        start = datetime(int(year), int(month), int(day), tzinfo=timezone.utc)
        return start, start + timedelta(days=1)

    def _partition_files(
        self,
        tenant_dir: Path,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[Path]:
        files = []
        for path in sorted(tenant_dir.glob("*/*/events-*.jsonl")):
            span = self._partition_span(path)
            if span is None:
                continue
            file_start, file_end = span
            if start_time is not None and file_end <= start_time:
                continue
            if end_time is not None and file_start > end_time:
                continue
            files.append(path)
        return files

    async def _read_events(self, path: Path) -> List[AnalyticsEvent]:
        try:
            async with aio_open(path, "rb") as f:
                content = await f.read()
        except OSError as e:
            logger.warning("Failed to read partition file", partition=str(path), error=str(e))
            return []

        events = []
        for line_number, raw_line in enumerate(content.split(b"\n"), start=1):
            if not raw_line.strip():
                continue
            try:
                events.append(AnalyticsEvent.model_validate_json(raw_line.decode("utf-8")))
            except (UnicodeDecodeError, ValidationError) as e:
                logger.warning(
                    "Skipping malformed event line",
                    partition=str(path),
                    line=line_number,
                    error=str(e),
                )
        return events

    async def query(self, query_filter: EventQueryFilter) -> EventQueryResult:
        # Local import: the query engine depends on this package's interfaces
        from ..core.query import EVENT_SORT_KEYS, sort_records

        tenant_dir = self.base_path / safe_path_component(query_filter.tenant_id)
        if not tenant_dir.is_dir():
            return EventQueryResult()

        event_types = set(query_filter.event_types) if query_filter.event_types else None
        matched: List[AnalyticsEvent] = []

        for path in self._partition_files(tenant_dir, query_filter.start_time, query_filter.end_time):
            for event in await self._read_events(path):
                if event.tenant_id != query_filter.tenant_id:
                    continue
                if event_types is not None and event.event_name not in event_types:
                    continue
                if query_filter.user_id is not None and event.user_id != query_filter.user_id:
                    continue
                if query_filter.start_time is not None and event.timestamp < query_filter.start_time:
                    continue
                if query_filter.end_time is not None and event.timestamp > query_filter.end_time:
                    continue
                if not properties_match(event.properties, query_filter.properties):
                    continue
                matched.append(event)

        if query_filter.sort_by:
            matched = sort_records(matched, query_filter.sort_by, query_filter.sort_order, EVENT_SORT_KEYS)

        total = len(matched)
        if query_filter.limit is None:
            return EventQueryResult(events=matched, total_count=total, has_more=False)

        end = query_filter.offset + query_filter.limit
        return EventQueryResult(
            events=matched[query_filter.offset:end],
            total_count=total,
            has_more=end < total,
        )

    async def export(self, start_time: datetime, end_time: datetime, export_format: str) -> ExportResult:
        """Dump every tenant's events in [start_time, end_time] as JSON or CSV."""
        if export_format not in ("json", "csv"):
            raise ValueError(f"Unsupported export format: {export_format}")

        events: List[AnalyticsEvent] = []
        if self.base_path.is_dir():
            for tenant_dir in sorted(p for p in self.base_path.iterdir() if p.is_dir()):
                for path in self._partition_files(tenant_dir, start_time, end_time):
                    events.extend(
                        event
                        for event in await self._read_events(path)
                        if start_time <= event.timestamp <= end_time
                    )

        if export_format == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(EXPORT_CSV_COLUMNS)
            for event in events:
                writer.writerow([
                    event.event_id,
                    event.tenant_id,
                    event.user_id or "",
                    event.event_name,
                    event.timestamp.isoformat(),
                    event.received_at.isoformat(),
                    json.dumps(event.properties),
                ])
            data = buffer.getvalue()
        else:
            data = json.dumps([event.model_dump(mode="json", by_alias=True) for event in events], indent=2)

        logger.info(
            "Exported events",
            format=export_format,
            records=len(events),
            start_time=start_time.isoformat(),
            end_time=end_time.isoformat(),
        )
        return ExportResult(format=export_format, data=data, record_count=len(events))

    async def health_check(self) -> bool:
        """Write and remove a sentinel file under the storage root."""
        sentinel = self.base_path / HEALTH_SENTINEL
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            async with aio_open(sentinel, "w", encoding="utf-8") as f:
                await f.write(datetime.now(timezone.utc).isoformat())
            await aio_os.remove(sentinel)
        except OSError as e:
            logger.error("Event storage health check failed", base_path=str(self.base_path), error=str(e))
            return False
        return True

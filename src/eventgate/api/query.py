"""
Read endpoints.

- GET /v1/events/query
- GET /v1/users/query

Parameters are validated here, before any storage access, so each bad
parameter gets its own message. Reads are tenant scoped and not rate
limited.
"""

import csv
import io
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Type

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..core.context import RequestContext
from ..core.exceptions import ValidationError
from ..core.query import EventQueryOptions, QueryService, UserQueryOptions
from ..models.common import ErrorResponse, ensure_utc, utcnow
from ..models.query import (
    DEFAULT_QUERY_LIMIT,
    MAX_QUERY_LIMIT,
    EventQueryResponse,
    EventSortField,
    OutputFormat,
    SortOrder,
    TableData,
    TableQueryResponse,
    UserQueryResponse,
    UserSortField,
)
from .deps import authenticated_context, get_query_service

logger = structlog.get_logger(__name__)

router = APIRouter()

_datetime_adapter = TypeAdapter(datetime)

EVENT_COLUMNS = ["eventId", "eventName", "userId", "sessionId", "timestamp", "receivedAt", "properties"]
USER_COLUMNS = ["userId", "firstSeen", "lastSeen", "sessionCount", "eventCount", "properties"]

READ_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid query parameter"},
    401: {"model": ErrorResponse, "description": "Unauthorized"},
}


def _parse_limit(value: Optional[str]) -> int:
    if value is None:
        return DEFAULT_QUERY_LIMIT
    try:
        limit = int(value)
    except ValueError:
        limit = 0
    if not 1 <= limit <= MAX_QUERY_LIMIT:
        raise ValidationError(
            f"limit must be a positive integer between 1 and {MAX_QUERY_LIMIT}",
            field="limit",
        )
    return limit


def _parse_offset(value: Optional[str]) -> int:
    if value is None:
        return 0
    try:
        offset = int(value)
    except ValueError:
        offset = -1
    if offset < 0:
        raise ValidationError("offset must be a non-negative integer", field="offset")
    return offset


def _parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return ensure_utc(_datetime_adapter.validate_python(value))
    except PydanticValidationError:
        raise ValidationError(f"{field} must be a valid ISO 8601 date", field=field) from None


def parse_date_range(
    start: Optional[str],
    end: Optional[str],
    start_field: str,
    end_field: str,
) -> tuple:
    start_date = _parse_date(start, start_field)
    end_date = _parse_date(end, end_field)
    if start_date and end_date and start_date > end_date:
        raise ValidationError(f"{start_field} must be before {end_field}", field=start_field)
    return start_date, end_date


def _parse_properties(value: Optional[str]) -> Optional[Dict[str, Any]]:
    if value is None or value == "":
        return None
    try:
        properties = json.loads(value)
    except json.JSONDecodeError:
        raise ValidationError("properties must be valid JSON", field="properties") from None
    if not isinstance(properties, dict):
        raise ValidationError("properties must be a JSON object", field="properties")
    return properties


def _parse_choice(value: Optional[str], choices: Type, field: str) -> Optional[str]:
    if value is None or value == "":
        return None
    allowed = [choice.value for choice in choices]
    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}", field=field)
    return value


def _parse_event_types(event_types: Optional[str], event_type: Optional[str]) -> Optional[List[str]]:
    names: List[str] = []
    for raw in (event_types, event_type):
        if raw:
            names.extend(name.strip() for name in raw.split(",") if name.strip())
    return names or None


def _cell(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _rows(records: Sequence[Any], columns: List[str]) -> List[List[Any]]:
    rows = []
    for record in records:
        data = record.model_dump(by_alias=True)
        rows.append([_cell(data.get(column)) for column in columns])
    return rows


def _csv_response(columns: List[str], rows: List[List[Any]], request_id: str) -> Response:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if cell is None else cell for cell in row])
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"x-request-id": request_id},
    )


def _render(
    output_format: str,
    data: Any,
    records: Sequence[Any],
    columns: List[str],
    envelope: Any,
    request_id: str,
) -> Response:
    if output_format == OutputFormat.CSV.value:
        return _csv_response(columns, _rows(records, columns), request_id)

    if output_format == OutputFormat.TABLE.value:
        body = TableQueryResponse(
            data=TableData(
                columns=columns,
                rows=_rows(records, columns),
                total_count=data.total_count,
                has_more=data.has_more,
                pagination=data.pagination,
                execution_time=data.execution_time,
            ),
            timestamp=utcnow(),
            request_id=request_id,
        )
    else:
        body = envelope(data=data, timestamp=utcnow(), request_id=request_id)

    return JSONResponse(content=body.model_dump(mode="json", by_alias=True))


@router.get(
    "/v1/events/query",
    responses=READ_ERROR_RESPONSES,
    summary="Query events",
    description="""
    Scan the caller's events with optional filters.

    - `eventTypes` (comma separated) or `eventType`
    - `userId`, `startDate`/`endDate` (ISO 8601), `properties` (JSON object)
    - `sortBy` timestamp|eventName|userId, `sortOrder` asc|desc
    - `limit` 1-1000, `offset` >= 0, `format` json|table|csv
    """,
)
async def query_events(
    context: RequestContext = Depends(authenticated_context),
    service: QueryService = Depends(get_query_service),
    event_types: Optional[str] = Query(None, alias="eventTypes"),
    event_type: Optional[str] = Query(None, alias="eventType"),
    user_id: Optional[str] = Query(None, alias="userId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    properties: Optional[str] = Query(None),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    output_format: Optional[str] = Query(None, alias="format"),
) -> Response:
    start, end = parse_date_range(start_date, end_date, "startDate", "endDate")
    options = EventQueryOptions(
        event_types=_parse_event_types(event_types, event_type),
        user_id=user_id or None,
        start_date=start,
        end_date=end,
        properties=_parse_properties(properties),
        sort_by=_parse_choice(sort_by, EventSortField, "sortBy"),
        sort_order=_parse_choice(sort_order, SortOrder, "sortOrder") or SortOrder.ASC.value,
        limit=_parse_limit(limit),
        offset=_parse_offset(offset),
    )
    fmt = _parse_choice(output_format, OutputFormat, "format") or OutputFormat.JSON.value

    data = await service.query_events(context.tenant_id, options)

    logger.info(
        "Event query served",
        tenant_id=context.tenant_id,
        returned=len(data.events),
        total=data.total_count,
        format=fmt,
        request_id=context.request_id,
    )
    return _render(fmt, data, data.events, EVENT_COLUMNS, EventQueryResponse, context.request_id)


@router.get(
    "/v1/users/query",
    responses=READ_ERROR_RESPONSES,
    summary="Query users",
    description="""
    Scan the caller's user profiles.

    - `userId`, `activeSince`/`activeUntil` (ISO 8601, on lastSeen)
    - `properties` (JSON object)
    - `sortBy` firstSeen|lastSeen|eventCount|sessionCount, `sortOrder` asc|desc
    - `limit` 1-1000, `offset` >= 0, `format` json|table|csv
    """,
)
async def query_users(
    context: RequestContext = Depends(authenticated_context),
    service: QueryService = Depends(get_query_service),
    user_id: Optional[str] = Query(None, alias="userId"),
    active_since: Optional[str] = Query(None, alias="activeSince"),
    active_until: Optional[str] = Query(None, alias="activeUntil"),
    properties: Optional[str] = Query(None),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    output_format: Optional[str] = Query(None, alias="format"),
) -> Response:
    since, until = parse_date_range(active_since, active_until, "activeSince", "activeUntil")
    options = UserQueryOptions(
        user_id=user_id or None,
        active_since=since,
        active_until=until,
        properties=_parse_properties(properties),
        sort_by=_parse_choice(sort_by, UserSortField, "sortBy"),
        sort_order=_parse_choice(sort_order, SortOrder, "sortOrder") or SortOrder.ASC.value,
        limit=_parse_limit(limit),
        offset=_parse_offset(offset),
    )
    fmt = _parse_choice(output_format, OutputFormat, "format") or OutputFormat.JSON.value

    data = await service.query_users(context.tenant_id, options)

    logger.info(
        "User query served",
        tenant_id=context.tenant_id,
        returned=len(data.users),
        total=data.total_count,
        format=fmt,
        request_id=context.request_id,
    )
    return _render(fmt, data, data.users, USER_COLUMNS, UserQueryResponse, context.request_id)


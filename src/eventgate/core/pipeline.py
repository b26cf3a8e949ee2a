"""
Admission pipeline for write requests.

Each write passes, in order:

1. Tenant resolution and authentication
2. Rate limit check (read-only)
3. Deduplication (track and batch): the event id is reserved atomically
   and released again if the write fails
4. Storage write
5. Rate limit increment, only when the write stored something

Any stage may end the request by raising an EventGateException. Failures
of the rate limit store itself are logged and the request is let through.
"""

import math
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from ..config import DeduplicationSettings, RateLimitSettings, SecuritySettings, SessionSettings
from ..models.common import utcnow
from ..models.event import AnalyticsEvent, BatchEventResult, TrackRequest
from ..models.tenant import TenantInfo
from ..models.user import IdentifyRequest, UserRecord
from ..storage.base import EventStore, UserStore
from .auth import AuthResolver
from .context import RequestContext
from .dedup import DeduplicationStore
from .exceptions import AuthenticationError, RateLimitExceeded, StorageError
from .metrics import MetricsCollector
from .rate_limit import LimitStatus, RateLimitKey, RateLimitStore

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitTicket:
    """A passed rate limit check, redeemed by `consume` after a successful write."""
    key: RateLimitKey
    limit: int
    window_seconds: int
    status: Optional[LimitStatus] = None
    consumed: bool = False

    @property
    def remaining(self) -> Optional[int]:
        if self.status is None:
            return None
        return max(0, self.status.remaining - (1 if self.consumed else 0))


@dataclass
class TrackOutcome:
    event_id: str
    duplicate: bool
    ticket: RateLimitTicket


@dataclass
class BatchOutcome:
    results: List[BatchEventResult]
    ticket: RateLimitTicket
    accepted: int = 0
    rejected: int = 0


@dataclass
class IdentifyOutcome:
    user_id: str
    created: bool
    ticket: RateLimitTicket


@dataclass
class _UserActivity:
    events: int = 0
    last_seen: Optional[datetime] = None


class AdmissionPipeline:
    """
    Orchestrates auth, rate limiting, deduplication and storage for writes.

    All collaborators are injected; the pipeline holds no state of its own.
    """

    def __init__(
        self,
        auth: AuthResolver,
        rate_limiter: RateLimitStore,
        dedup_store: DeduplicationStore,
        event_store: EventStore,
        user_store: UserStore,
        security: SecuritySettings,
        rate_limit: RateLimitSettings,
        dedup: DeduplicationSettings,
        session: SessionSettings,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.auth = auth
        self.rate_limiter = rate_limiter
        self.dedup_store = dedup_store
        self.event_store = event_store
        self.user_store = user_store
        self.security = security
        self.rate_limit = rate_limit
        self.dedup = dedup
        self.session_timeout = timedelta(minutes=session.session_timeout_minutes)
        self.metrics = metrics
        self._clock = clock

        logger.info("Admission pipeline initialized", has_metrics=metrics is not None)

    # Tenant resolution and authentication

    def authenticate(
        self,
        context: RequestContext,
        credential: Optional[str],
        tenant_header: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> RequestContext:
        """
        Establish the request's tenant.

        Presented credentials are tried in order: `credential` (the
        Authorization header) first, then `api_key`. The first valid one
        decides the tenant; if any was presented and none is valid the
        request fails. The tenant header is only honoured when allowed and
        no credential was presented.
        """
        presented = [value for value in (credential, api_key) if value and value.strip()]
        if presented:
            for candidate in presented:
                result = self.auth.resolve(candidate)
                if result.success and result.tenant is not None:
                    break
            else:
                raise AuthenticationError()

            if tenant_header and tenant_header != result.tenant.tenant_id:
                logger.warning(
                    "Ignoring tenant header that disagrees with credential",
                    tenant_id=result.tenant.tenant_id,
                    request_id=context.request_id,
                )
            return context.with_tenant(result.tenant)

        if tenant_header and self.security.allow_tenant_header:
            return context.with_tenant(TenantInfo(tenant_id=tenant_header))

        raise AuthenticationError()

    # Rate limiting

    def _limits_for(self, tenant: TenantInfo) -> Tuple[int, int]:
        if tenant.rate_limit is not None:
            return tenant.rate_limit.max_requests, tenant.rate_limit.window_seconds
        return self.rate_limit.max_requests, self.rate_limit.window_seconds

    async def check_rate_limit(self, context: RequestContext, user_id: Optional[str] = None) -> RateLimitTicket:
        tenant = context.tenant
        if tenant is None:
            raise AuthenticationError()

        limit, window_seconds = self._limits_for(tenant)
        ticket = RateLimitTicket(
            key=RateLimitKey(tenant_id=tenant.tenant_id, source_ip=context.source_ip, user_id=user_id),
            limit=limit,
            window_seconds=window_seconds,
        )

        try:
            status = await self.rate_limiter.check_limit(ticket.key, limit, window_seconds)
        except Exception as e:
            logger.error(
                "Rate limit check failed, allowing request",
                tenant_id=tenant.tenant_id,
                error=str(e),
                request_id=context.request_id,
            )
            if self.metrics:
                self.metrics.record_rate_limit_error("check")
            return ticket

        ticket.status = status

        if not status.allowed:
            retry_after = max(1, math.ceil((status.reset_time - self._clock()).total_seconds()))
            logger.warning(
                "Rate limit exceeded",
                tenant_id=tenant.tenant_id,
                source_ip=context.source_ip,
                limit=limit,
                retry_after=retry_after,
                request_id=context.request_id,
            )
            if self.metrics:
                self.metrics.record_rate_limited(tenant.tenant_id)
            raise RateLimitExceeded(
                retry_after=retry_after,
                limit=limit,
                remaining=0,
                reset_time=status.reset_time,
            )

        return ticket

    async def consume(self, ticket: RateLimitTicket) -> None:
        try:
            await self.rate_limiter.increment(ticket.key, ticket.window_seconds)
        except Exception as e:
            logger.error("Rate limit increment failed", tenant_id=ticket.key.tenant_id, error=str(e))
            if self.metrics:
                self.metrics.record_rate_limit_error("increment")
            return
        ticket.consumed = True

    # Deduplication

    async def _reserve(self, tenant_id: str, event_id: str) -> bool:
        """Claim an event id before writing; False means it was already processed."""
        if not self.dedup.enabled:
            return True
        return await self.dedup_store.reserve(tenant_id, event_id, self.dedup.ttl_seconds)

    async def _release(self, tenant_id: str, event_id: str) -> None:
        if self.dedup.enabled:
            await self.dedup_store.release(tenant_id, event_id)

    # Writes

    def _build_event(self, context: RequestContext, request: TrackRequest) -> AnalyticsEvent:
        received_at = self._clock()
        return AnalyticsEvent(
            event_id=request.event_id or str(uuid.uuid4()),
            tenant_id=context.tenant_id,
            event_name=request.event,
            properties=request.properties or {},
            timestamp=request.timestamp or received_at,
            received_at=received_at,
            user_id=request.user_id,
            session_id=request.session_id,
            device_id=request.device_id,
        )

    async def track(self, context: RequestContext, request: TrackRequest) -> TrackOutcome:
        ticket = await self.check_rate_limit(context, request.user_id)
        event = self._build_event(context, request)

        if not await self._reserve(event.tenant_id, event.event_id):
            logger.info(
                "Duplicate event suppressed",
                tenant_id=event.tenant_id,
                event_id=event.event_id,
                request_id=context.request_id,
            )
            if self.metrics:
                self.metrics.record_duplicate(event.tenant_id)
            return TrackOutcome(event_id=event.event_id, duplicate=True, ticket=ticket)

        try:
            result = await self.event_store.insert(event)
        except Exception:
            await self._release(event.tenant_id, event.event_id)
            raise

        if not result.success:
            await self._release(event.tenant_id, event.event_id)
            if self.metrics:
                self.metrics.record_storage_failure("events")
            raise StorageError("Failed to store event")

        await self.consume(ticket)

        if event.user_id:
            await self._record_activity(event.tenant_id, {event.user_id: _UserActivity(1, event.timestamp)})

        if self.metrics:
            self.metrics.record_ingestion(event.tenant_id, stored=1)

        logger.debug(
            "Event stored",
            tenant_id=event.tenant_id,
            event_id=event.event_id,
            event_name=event.event_name,
            request_id=context.request_id,
        )
        return TrackOutcome(event_id=event.event_id, duplicate=False, ticket=ticket)

    async def track_batch(self, context: RequestContext, requests: List[TrackRequest]) -> BatchOutcome:
        """
        Store many events in one admission.

        Duplicates, including repeats inside the batch, are reported and
        skipped. One quota unit is consumed when anything was stored.
        """
        ticket = await self.check_rate_limit(context)
        tenant_id = context.tenant_id

        results: List[Optional[BatchEventResult]] = [None] * len(requests)
        pending: List[Tuple[int, AnalyticsEvent]] = []
        duplicates = 0

        for index, request in enumerate(requests):
            event = self._build_event(context, request)
            if not await self._reserve(tenant_id, event.event_id):
                results[index] = BatchEventResult(event_id=event.event_id, success=True, duplicate=True)
                duplicates += 1
                continue
            pending.append((index, event))

        stored: List[AnalyticsEvent] = []
        failed = 0
        if pending:
            try:
                insert_results = await self.event_store.insert_batch([event for _, event in pending])
            except Exception:
                for _, event in pending:
                    await self._release(tenant_id, event.event_id)
                raise

            for (index, event), insert_result in zip(pending, insert_results):
                if insert_result.success:
                    stored.append(event)
                    results[index] = BatchEventResult(event_id=event.event_id, success=True)
                else:
                    failed += 1
                    await self._release(tenant_id, event.event_id)
                    results[index] = BatchEventResult(
                        event_id=event.event_id,
                        success=False,
                        error=insert_result.error or "Failed to store event",
                    )

        if failed and self.metrics:
            self.metrics.record_storage_failure("events", failed)

        if pending and not stored:
            raise StorageError("Failed to store events")

        if stored:
            await self.consume(ticket)
            activity: Dict[str, _UserActivity] = defaultdict(_UserActivity)
            for event in stored:
                if event.user_id:
                    entry = activity[event.user_id]
                    entry.events += 1
                    if entry.last_seen is None or event.timestamp > entry.last_seen:
                        entry.last_seen = event.timestamp
            if activity:
                await self._record_activity(tenant_id, activity)

        if self.metrics:
            self.metrics.record_ingestion(tenant_id, stored=len(stored), batch_size=len(requests))
            if duplicates:
                self.metrics.record_duplicate(tenant_id, duplicates)

        logger.info(
            "Batch processed",
            tenant_id=tenant_id,
            received=len(requests),
            stored=len(stored),
            duplicates=duplicates,
            failed=failed,
            request_id=context.request_id,
        )

        final_results = [result for result in results if result is not None]
        return BatchOutcome(
            results=final_results,
            ticket=ticket,
            accepted=len(stored) + duplicates,
            rejected=failed,
        )

    async def _record_activity(self, tenant_id: str, activity: Dict[str, _UserActivity]) -> None:
        """Advance event counts and lastSeen for tracked users. Failures are logged only."""
        for user_id, entry in activity.items():
            try:
                result = await self.user_store.record_activity(
                    tenant_id,
                    user_id,
                    event_count=entry.events,
                    seen_at=entry.last_seen or self._clock(),
                )
                if not result.success:
                    logger.warning("Failed to update user activity", tenant_id=tenant_id, user_id=user_id)
            except Exception as e:
                logger.error(
                    "User activity update failed",
                    tenant_id=tenant_id,
                    user_id=user_id,
                    error=str(e),
                )

    async def identify(self, context: RequestContext, request: IdentifyRequest) -> IdentifyOutcome:
        ticket = await self.check_rate_limit(context, request.user_id)
        tenant_id = context.tenant_id
        seen_at = request.timestamp or self._clock()

        existing = await self.user_store.get(tenant_id, request.user_id)
        if existing is None:
            session_count = 1
            event_count = 0
            first_seen = seen_at
        else:
            new_session = seen_at - existing.last_seen > self.session_timeout
            session_count = existing.session_count + 1 if new_session else existing.session_count
            event_count = existing.event_count
            first_seen = existing.first_seen

        record = UserRecord(
            user_id=request.user_id,
            tenant_id=tenant_id,
            properties=request.traits or {},
            first_seen=first_seen,
            last_seen=seen_at,
            session_count=session_count,
            event_count=event_count,
        )

        result = await self.user_store.upsert(record, update_counters=True)
        if not result.success:
            if self.metrics:
                self.metrics.record_storage_failure("users")
            raise StorageError("Failed to store user")

        await self.consume(ticket)

        if self.metrics:
            self.metrics.record_identify(tenant_id, result.created)

        logger.debug(
            "User identified",
            tenant_id=tenant_id,
            user_id=request.user_id,
            created=result.created,
            session_count=session_count,
            request_id=context.request_id,
        )
        return IdentifyOutcome(user_id=request.user_id, created=result.created, ticket=ticket)


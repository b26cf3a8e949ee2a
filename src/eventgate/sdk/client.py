"""
Async client for sending events to an EventGate server.

Features:
- Queues track calls and sends them to /v1/batch
- Flushes when the queue reaches batch_size, and every flush_interval seconds
- Sends identify calls immediately
- Retries 5xx, 429 and transport errors with a backoff schedule
- Drops a batch after max_retries
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
import structlog

from ..models.event import MAX_BATCH_EVENTS

logger = structlog.get_logger(__name__)

USER_AGENT = "eventgate-sdk/0.1"


class AnalyticsClientError(Exception):
    """Raised when the server rejects a call or stays unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ClientConfig:
    """Connection and batching settings."""
    base_url: str
    api_key: str
    batch_size: int = 10
    flush_interval: float = 10.0
    max_retries: int = 3
    backoff_seconds: Sequence[float] = field(default_factory=lambda: (1.0, 2.0, 5.0))
    timeout_seconds: float = 10.0


@dataclass
class FlushResult:
    """Result of one flush."""
    success: bool
    events_sent: int
    events_dropped: int = 0
    error_message: Optional[str] = None


class AnalyticsClient:
    """
    Batching analytics client.

    Use as an async context manager, or call start() and stop(). stop()
    flushes whatever is still queued.
    """

    def __init__(self, config: ClientConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.session = session
        self._owns_session = session is None
        self._queue: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False

    async def __aenter__(self) -> "AnalyticsClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        if self._running:
            return

        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            )
            self._owns_session = True

        self._running = True
        if self.config.flush_interval > 0:
            self._task = asyncio.create_task(self._run_flush_loop())

        logger.info("Analytics client started", base_url=self.config.base_url)

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        while self._queue:
            result = await self.flush()
            if not result.success:
                break

        if self._owns_session and self.session:
            await self.session.close()
            self.session = None

        logger.info("Analytics client stopped")

    @property
    def queued(self) -> int:
        return len(self._queue)

    async def track(
        self,
        event: str,
        properties: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        device_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        event_id: Optional[str] = None,
    ) -> str:
        """
        Queue an event; returns its eventId.

        The id is generated client-side so a retried batch is deduplicated
        by the server.
        """
        payload: Dict[str, Any] = {
            "event": event,
            "properties": properties or {},
            "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
            "eventId": event_id or str(uuid.uuid4()),
        }
        if user_id:
            payload["userId"] = user_id
        if session_id:
            payload["sessionId"] = session_id
        if device_id:
            payload["deviceId"] = device_id

        async with self._lock:
            self._queue.append(payload)
            should_flush = len(self._queue) >= self.config.batch_size

        if should_flush:
            await self.flush()

        return payload["eventId"]

    async def identify(
        self,
        user_id: str,
        traits: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Send an identify call right away; returns the server response body."""
        payload: Dict[str, Any] = {"userId": user_id, "traits": traits or {}}
        if timestamp:
            payload["timestamp"] = timestamp.isoformat()

        status, body = await self._post("/v1/identify", payload)
        if status >= 400:
            raise AnalyticsClientError(
                body.get("message", f"identify failed with status {status}"),
                status_code=status,
            )
        return body

    async def flush(self) -> FlushResult:
        """Send up to one batch of queued events."""
        async with self._lock:
            limit = min(self.config.batch_size, MAX_BATCH_EVENTS)
            batch, self._queue = self._queue[:limit], self._queue[limit:]

        if not batch:
            return FlushResult(success=True, events_sent=0)

        try:
            status, body = await self._post("/v1/batch", {"events": batch})
        except AnalyticsClientError as e:
            logger.error("Dropping event batch after retries", events=len(batch), error=str(e))
            return FlushResult(success=False, events_sent=0, events_dropped=len(batch), error_message=str(e))

        if status >= 400:
            message = body.get("message", f"batch rejected with status {status}")
            logger.error("Server rejected event batch", status=status, events=len(batch), error=message)
            return FlushResult(success=False, events_sent=0, events_dropped=len(batch), error_message=message)

        logger.debug("Event batch sent", events=len(batch), accepted=body.get("accepted"))
        return FlushResult(success=True, events_sent=len(batch))

    def _backoff(self, attempt: int) -> float:
        schedule = self.config.backoff_seconds
        if not schedule:
            return 0.0
        return schedule[min(attempt, len(schedule) - 1)]

    async def _post(self, path: str, payload: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """
        POST with retries.

        Returns the final status and JSON body for any response that is not
        retried; raises AnalyticsClientError once retries are exhausted.
        """
        if self.session is None:
            raise AnalyticsClientError("Client not started")

        url = f"{self.config.base_url.rstrip('/')}{path}"
        headers = {
            "x-api-key": self.config.api_key,
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        last_error = "no attempt made"

        for attempt in range(self.config.max_retries + 1):
            delay = self._backoff(attempt)
            try:
                async with self.session.post(url, json=payload, headers=headers) as response:
                    body = await _json_body(response)
                    if response.status < 500 and response.status != 429:
                        return response.status, body

                    last_error = f"HTTP {response.status}"
                    if response.status == 429:
                        retry_after = response.headers.get("Retry-After")
                        if retry_after and retry_after.isdigit():
                            delay = float(retry_after)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = str(e) or type(e).__name__

            logger.warning(
                "Request attempt failed",
                path=path,
                attempt=attempt + 1,
                max_retries=self.config.max_retries,
                error=last_error,
            )
            if attempt < self.config.max_retries:
                await asyncio.sleep(delay)

        raise AnalyticsClientError(f"Giving up on {path}: {last_error}")

    async def _run_flush_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.flush_interval)
                if self._queue:
                    await self.flush()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Background flush failed", error=str(e))


async def _json_body(response: aiohttp.ClientResponse) -> Dict[str, Any]:
    try:
        body = await response.json(content_type=None)
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}

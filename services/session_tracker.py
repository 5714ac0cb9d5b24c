"""
Session Activity Tracker

Emits one session.activity event per request of a fully identified session
and one session.response event per completed request, followed by the
error/slow/suspicious classification events that apply.

Emission is best-effort: every sink call is bounded by a timeout and any
failure is logged here, so a broken sink never affects the request.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from models.request_context import RequestIdentity
from models.session_events import (
    ResponseEvent,
    SessionActivityEvent,
    SLOW_RESPONSE_THRESHOLD_MS,
    SUSPICIOUS_STATUS_CODES,
    SESSION_ACTIVITY,
    SESSION_ERROR_RESPONSE,
    SESSION_RESPONSE,
    SESSION_SLOW_RESPONSE,
    SESSION_SUSPICIOUS_RESPONSE,
)
from services.event_publisher import EventSink, NullEventSink
from utils.config import matches_path_prefix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResponseClassification:
    is_error: bool
    is_slow: bool
    is_suspicious: bool


def classify_response(
    status_code: int,
    response_time_ms: float,
    slow_threshold_ms: int = SLOW_RESPONSE_THRESHOLD_MS,
) -> ResponseClassification:
    """Classify a completed response; the three flags are independent."""
    return ResponseClassification(
        is_error=status_code >= 400,
        is_slow=response_time_ms > slow_threshold_ms,
        is_suspicious=status_code in SUSPICIOUS_STATUS_CODES,
    )


class SessionActivityTracker:
    """
    Best-effort session event emitter.

    Args:
        sink: Event destination (defaults to a no-op sink)
        slow_threshold_ms: Responses slower than this are classified slow
        emit_timeout_seconds: Upper bound for a single sink call
        untracked_paths: Path prefixes (health checks, metrics, ...) never tracked
    """

    def __init__(
        self,
        sink: Optional[EventSink] = None,
        slow_threshold_ms: int = SLOW_RESPONSE_THRESHOLD_MS,
        emit_timeout_seconds: float = 2.0,
        untracked_paths: Iterable[str] = (),
    ):
        self.sink = sink or NullEventSink()
        self.slow_threshold_ms = slow_threshold_ms
        self.emit_timeout_seconds = emit_timeout_seconds
        self.untracked_paths: Tuple[str, ...] = tuple(p for p in untracked_paths if p)
        self._pending: Set[asyncio.Task] = set()

    def should_track(self, path: str) -> bool:
        return not matches_path_prefix(path, self.untracked_paths)

    def classify_response(self, status_code: int, response_time_ms: float) -> ResponseClassification:
        return classify_response(status_code, response_time_ms, self.slow_threshold_ms)

    def track_request(
        self,
        identity: Optional[RequestIdentity],
        method: str,
        url: str,
    ) -> bool:
        """
        Schedule a session.activity event without waiting for the sink.

        Returns:
            True if an event was scheduled (complete identity, tracked path)
        """
        if identity is None or not identity.is_complete:
            return False
        if not self.should_track(urlsplit(url).path):
            return False

        event = SessionActivityEvent(
            **identity.snapshot(),
            method=method,
            url=url,
            timestamp=datetime.now(timezone.utc),
        )
        task = asyncio.create_task(
            self._emit(SESSION_ACTIVITY, event.model_dump(mode="json", by_alias=True))
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def track_response(
        self,
        identity: Optional[RequestIdentity],
        method: str,
        url: str,
        status_code: int,
        response_time_ms: float,
    ) -> Optional[ResponseEvent]:
        """
        Emit session.response and any applicable classification events.

        Returns:
            The ResponseEvent, or None for untracked paths and events that
            could not be built
        """
        if not self.should_track(urlsplit(url).path):
            return None

        snapshot: Dict[str, Any] = identity.snapshot() if identity else {}
        try:
            event = ResponseEvent(
                **snapshot,
                method=method,
                url=url,
                status_code=status_code,
                response_time_ms=max(0.0, response_time_ms),
                timestamp=datetime.now(timezone.utc),
                slow_threshold_ms=self.slow_threshold_ms,
            )
            payload = event.model_dump(mode="json", by_alias=True)
        except Exception as e:
            logger.warning(
                f"Session response event not built: method={method}, url={url}, "
                f"status={status_code}, error={type(e).__name__}: {e}"
            )
            return None

        names: List[str] = [SESSION_RESPONSE]
        if event.is_error_response:
            names.append(SESSION_ERROR_RESPONSE)
        if event.is_slow_response:
            names.append(SESSION_SLOW_RESPONSE)
        if event.is_suspicious_status:
            names.append(SESSION_SUSPICIOUS_RESPONSE)

        for name in names:
            await self._emit(name, payload)

        if event.is_slow_response:
            logger.warning(
                f"Slow response: method={method}, url={url}, "
                f"status={status_code}, response_time_ms={event.response_time_ms:.0f}"
            )
        return event

    async def _emit(self, name: str, payload: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(
                self.sink.emit(name, payload),
                timeout=self.emit_timeout_seconds
            )
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"Session event emission timed out: event={name}, "
                f"timeout={self.emit_timeout_seconds}s"
            )
        except Exception as e:
            logger.warning(
                f"Session event emission failed: event={name}, "
                f"error={type(e).__name__}: {e}"
            )
        return False

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def flush(self) -> None:
        """Wait for scheduled activity events to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

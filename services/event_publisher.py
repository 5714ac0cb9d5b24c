import redis.asyncio as redis
import json
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from utils.config import GatewayConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSink(Protocol):
    """Destination for named session events."""

    async def emit(self, name: str, payload: Dict[str, Any]) -> None:
        ...


class NullEventSink:
    """Discards every event."""

    async def emit(self, name: str, payload: Dict[str, Any]) -> None:
        return None


class LoggingEventSink:
    """Writes events as log lines on the session events logger."""

    def __init__(self, level: int = logging.INFO):
        self.level = level
        self._logger = logging.getLogger("session_events")

    async def emit(self, name: str, payload: Dict[str, Any]) -> None:
        self._logger.log(self.level, f"{name} {json.dumps(payload, default=str)}")


class RedisStreamEventSink:
    """Appends events to a capped Redis stream."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        stream_name: str = "session_events",
        maxlen: int = 10000,
        redis_client: Optional[redis.Redis] = None,
    ):
        self.redis_client = redis_client or redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5
        )
        self.stream_name = stream_name
        self.maxlen = maxlen

    async def emit(self, name: str, payload: Dict[str, Any]) -> None:
        """Publish one event; Redis errors propagate to the tracker, which logs them."""
        event_data = {
            "event_type": name,
            "payload": json.dumps(payload, default=str),
        }
        tenant_id = payload.get("tenantId")
        if tenant_id:
            event_data["tenant_id"] = tenant_id

        await self.redis_client.xadd(
            self.stream_name,
            event_data,
            maxlen=self.maxlen,
            approximate=True
        )
        logger.debug(f"Published {name} to stream: stream={self.stream_name}")

    async def close(self) -> None:
        try:
            await self.redis_client.aclose()
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis client: {e}")


def build_event_sink(config: GatewayConfig) -> EventSink:
    """Create the sink selected by SESSION_EVENT_SINK."""
    kind = config.event_sink

    if kind == "none":
        return NullEventSink()

    if kind == "redis":
        logger.info(f"Session events -> Redis stream {config.event_stream_name}")
        return RedisStreamEventSink(
            redis_url=config.redis_url,
            stream_name=config.event_stream_name,
        )

    if kind == "eventbridge":
        from services.aws_event_publisher import EventBridgeEventSink

        return EventBridgeEventSink(
            region=config.aws_region,
            bus_name=config.eventbridge_bus_name,
            event_source=config.event_source,
        )

    if kind != "log":
        logger.warning(f"Unknown SESSION_EVENT_SINK={kind!r}, falling back to log sink")
    return LoggingEventSink()

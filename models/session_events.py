"""
Session Event Data Models

This module defines the events emitted by the session activity tracker.
Both events are immutable once created and serialize to plain JSON for the
configured event sink (Redis stream, EventBridge or log) with camelCase keys
(tenantId, isSlowResponse, ...) via model_dump(mode="json", by_alias=True).
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer
from pydantic.alias_generators import to_camel

SLOW_RESPONSE_THRESHOLD_MS = 5000
SUSPICIOUS_STATUS_CODES = frozenset({401, 403, 500, 502, 503})

SESSION_ACTIVITY = "session.activity"
SESSION_RESPONSE = "session.response"
SESSION_ERROR_RESPONSE = "session.error_response"
SESSION_SLOW_RESPONSE = "session.slow_response"
SESSION_SUSPICIOUS_RESPONSE = "session.suspicious_response"


def _serialize_utc(value: datetime) -> str:
    iso_str = value.isoformat()
    if iso_str.endswith('+00:00'):
        return iso_str[:-6] + 'Z'
    elif not iso_str.endswith('Z'):
        return iso_str + 'Z'
    return iso_str


class SessionActivityEvent(BaseModel):
    """
    One request made by a fully identified session.

    Only emitted when tenant, user and session are all known.
    """
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    tenant_id: str = Field(..., min_length=1, description="Resolved tenant identifier")
    user_id: str = Field(..., min_length=1, description="User identifier")
    session_id: str = Field(..., min_length=1, description="Session identifier")
    ip_address: str = Field(default="unknown", description="Client IP address")
    user_agent: str = Field(default="unknown", description="Client user agent")
    method: str = Field(..., description="HTTP method")
    url: str = Field(..., description="Request path and query")
    timestamp: datetime = Field(..., description="Request entry time (UTC)")

    @field_serializer('timestamp')
    def serialize_timestamp(self, value: datetime) -> str:
        """Serialize datetime to ISO 8601 format with Z suffix for UTC."""
        return _serialize_utc(value)


class ResponseEvent(BaseModel):
    """
    One completed response, emitted regardless of identity completeness.

    The classification flags are derived at emit time and are not mutually
    exclusive: a slow 503 is an error, slow and suspicious at once.
    """
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    method: str
    url: str
    status_code: int = Field(..., ge=0)
    response_time_ms: float = Field(..., ge=0)
    timestamp: datetime
    slow_threshold_ms: int = Field(default=SLOW_RESPONSE_THRESHOLD_MS, exclude=True)

    @computed_field(alias="isErrorResponse")
    @property
    def is_error_response(self) -> bool:
        return self.status_code >= 400

    @computed_field(alias="isSlowResponse")
    @property
    def is_slow_response(self) -> bool:
        return self.response_time_ms > self.slow_threshold_ms

    @computed_field(alias="isSuspiciousStatus")
    @property
    def is_suspicious_status(self) -> bool:
        return self.status_code in SUSPICIOUS_STATUS_CODES

    @field_serializer('timestamp')
    def serialize_timestamp(self, value: datetime) -> str:
        """Serialize datetime to ISO 8601 format with Z suffix for UTC."""
        return _serialize_utc(value)

"""Data models for the DealCycle gateway."""
from .request_context import CredentialCandidates, RequestIdentity, token_fingerprint
from .session_events import (
    SessionActivityEvent,
    ResponseEvent,
    SLOW_RESPONSE_THRESHOLD_MS,
    SUSPICIOUS_STATUS_CODES,
    SESSION_ACTIVITY,
    SESSION_RESPONSE,
    SESSION_ERROR_RESPONSE,
    SESSION_SLOW_RESPONSE,
    SESSION_SUSPICIOUS_RESPONSE,
)

__all__ = [
    # Request identity
    "CredentialCandidates",
    "RequestIdentity",
    "token_fingerprint",
    # Session events
    "SessionActivityEvent",
    "ResponseEvent",
    "SLOW_RESPONSE_THRESHOLD_MS",
    "SUSPICIOUS_STATUS_CODES",
    "SESSION_ACTIVITY",
    "SESSION_RESPONSE",
    "SESSION_ERROR_RESPONSE",
    "SESSION_SLOW_RESPONSE",
    "SESSION_SUSPICIOUS_RESPONSE",
]

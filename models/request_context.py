"""
Request Identity Data Models

This module defines the dataclasses carrying tenant, user and session identity
through a request: the raw CredentialCandidates pulled from headers, cookies
and query, and the resolved RequestIdentity attached to request.state.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

TOKEN_FINGERPRINT_PREFIX = "tok_"


def token_fingerprint(token: str) -> str:
    """Stable, non-reversible stand-in for a credential (sha256, 16 hex chars)."""
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return f"{TOKEN_FINGERPRINT_PREFIX}{digest[:16]}"


@dataclass(frozen=True)
class CredentialCandidates:
    """
    Best-effort identity fields extracted from one inbound request.

    Nothing here has been arbitrated or verified yet; the tenant header in
    particular is only a candidate for the TenantResolver.

    Attributes:
        session_id: From x-session-id, bearer token, cookie or query
        user_id: From the trusted x-user-id header
        tenant_header: Raw x-tenant-id header value
        bearer_token: Token from the Authorization header (no "Bearer " prefix)
        ip_address: First forwarded-for address or peer address
        user_agent: User-Agent header, "unknown" when absent
    """
    session_id: Optional[str]
    user_id: Optional[str]
    tenant_header: Optional[str]
    bearer_token: Optional[str]
    ip_address: str
    user_agent: str
    method: str
    path: str


@dataclass
class RequestIdentity:
    """
    Resolved identity of one inbound request.

    Created by the identity middleware, read by route handlers and the
    session tracker, discarded at the end of the request.

    Attributes:
        tenant_id: Resolved tenant; None only when resolution failed or the
            path is tenant-exempt
        tenant_source: claim, header, oauth_default or none
        claims: Verified access-token claims, if any
    """
    tenant_id: Optional[str]
    user_id: Optional[str]
    session_id: Optional[str]
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    tenant_source: str = "none"
    bearer_token: Optional[str] = field(default=None, repr=False)
    claims: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def is_complete(self) -> bool:
        """Tenant, user and session all known."""
        return bool(self.tenant_id and self.user_id and self.session_id)

    @property
    def session_from_bearer(self) -> bool:
        """Session id fell back to the bearer token."""
        return bool(self.bearer_token) and self.session_id == self.bearer_token

    def snapshot(self) -> Dict[str, Optional[str]]:
        """
        Identity fields safe to embed in emitted events (no credentials).

        A session id taken from the bearer token is replaced by its
        fingerprint so events still correlate per session.
        """
        session_id = self.session_id
        if self.session_from_bearer:
            session_id = token_fingerprint(session_id)
        return {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "session_id": session_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }

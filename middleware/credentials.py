"""
Credential Extraction

Pulls candidate identity fields out of a raw request. Each precedence chain is
an ordered tuple of small source functions; first_non_empty() walks a chain
and returns the first usable value. Nothing here raises, decodes tokens or
performs I/O.

Precedence:
- Session id: x-session-id header, bearer token, sessionId cookie, sessionId query
- IP address: x-forwarded-for (first entry), x-real-ip, x-client-ip, peer address
"""

import logging
from typing import Callable, Iterable, Optional

from fastapi import Request

from middleware.jwt_auth import extract_bearer_token
from models.request_context import CredentialCandidates

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

Source = Callable[[Request], Optional[str]]


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def first_non_empty(request: Request, sources: Iterable[Source]) -> Optional[str]:
    """Evaluate sources in order and return the first non-empty value."""
    for source in sources:
        value = _clean(source(request))
        if value:
            return value
    return None


# --- Session id sources ---

def session_from_header(request: Request) -> Optional[str]:
    return request.headers.get("x-session-id")


def session_from_bearer(request: Request) -> Optional[str]:
    return extract_bearer_token(request.headers.get("authorization"))


def session_from_cookie(request: Request) -> Optional[str]:
    return request.cookies.get("sessionId")


def session_from_query(request: Request) -> Optional[str]:
    return request.query_params.get("sessionId")


SESSION_ID_SOURCES = (
    session_from_header,
    session_from_bearer,
    session_from_cookie,
    session_from_query,
)


# --- IP address sources ---

def ip_from_forwarded_for(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return None
    return forwarded.split(",")[0]


def ip_from_real_ip(request: Request) -> Optional[str]:
    return request.headers.get("x-real-ip")


def ip_from_client_ip(request: Request) -> Optional[str]:
    return request.headers.get("x-client-ip")


def ip_from_peer(request: Request) -> Optional[str]:
    client = request.client
    return client.host if client else None


IP_ADDRESS_SOURCES = (
    ip_from_forwarded_for,
    ip_from_real_ip,
    ip_from_client_ip,
    ip_from_peer,
)


def extract_credentials(request: Request) -> CredentialCandidates:
    """
    Extract candidate identity fields from a request.

    Args:
        request: Incoming FastAPI/Starlette request

    Returns:
        CredentialCandidates with None / "unknown" for anything absent
    """
    candidates = CredentialCandidates(
        session_id=first_non_empty(request, SESSION_ID_SOURCES),
        user_id=_clean(request.headers.get("x-user-id")),
        tenant_header=_clean(request.headers.get("x-tenant-id")),
        bearer_token=session_from_bearer(request),
        ip_address=first_non_empty(request, IP_ADDRESS_SOURCES) or UNKNOWN,
        user_agent=_clean(request.headers.get("user-agent")) or UNKNOWN,
        method=request.method,
        path=request.url.path,
    )

    logger.debug(
        f"Credentials extracted: path={candidates.path}, ip={candidates.ip_address}, "
        f"session={'present' if candidates.session_id else 'absent'}, "
        f"user={'present' if candidates.user_id else 'absent'}, "
        f"tenant_header={'present' if candidates.tenant_header else 'absent'}"
    )

    return candidates

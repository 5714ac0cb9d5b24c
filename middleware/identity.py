"""
Request Identity Middleware

Runs the identity chain for every inbound request:

1. Extract credential candidates and, when a JWT secret is configured,
   verify the bearer token
2. Enforce the per-IP rate limit (disabled in development)
3. Resolve the tenant, unless the path is tenant-exempt
4. Store the RequestIdentity on request.state.identity
5. Emit session.activity, call the handler, and emit the response events
   after the body has been sent

Rejected requests (401 missing tenant, 429 rate limited) never reach the
handler but still produce a response event.
"""

import logging
import time
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask, BackgroundTasks

from middleware.credentials import extract_credentials
from middleware.jwt_auth import JWTVerificationError, UserClaims, verify_access_token
from models.request_context import RequestIdentity
from services.errors import GatewayError, RateLimitExceeded
from services.rate_limiter import FixedWindowRateLimiter
from services.session_tracker import SessionActivityTracker
from utils.config import GatewayConfig

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"


def _verify_claims(token: Optional[str], config: GatewayConfig) -> Optional[UserClaims]:
    if not token or not config.jwt_configured:
        return None
    try:
        return verify_access_token(
            token,
            config.jwt_secret,
            issuer=config.jwt_issuer,
            audience=config.jwt_audience,
        )
    except JWTVerificationError as e:
        # The token still travels downstream as the caller's credential
        logger.info(f"Bearer token not verified: code={e.code}")
        return None


def _request_url(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _enforce_rate_limit(limiter: FixedWindowRateLimiter, ip_address: str) -> None:
    decision = limiter.check(ip_address)
    if not decision.allowed:
        raise RateLimitExceeded(
            "Too many requests",
            headers={"Retry-After": str(decision.retry_after(limiter.now()))},
        )


def _attach_background(response: Response, task: BackgroundTask) -> None:
    if response.background is None:
        response.background = task
        return
    tasks = BackgroundTasks()
    tasks.add_task(response.background)
    tasks.add_task(task)
    response.background = tasks


async def identity_middleware(request: Request, call_next: Callable) -> Response:
    """Resolve identity, enforce tenancy and rate limits, track the session."""
    state = request.app.state
    config: GatewayConfig = state.config
    tracker: SessionActivityTracker = state.tracker

    started = time.perf_counter()
    path = request.url.path
    url = _request_url(request)
    method = request.method

    candidates = extract_credentials(request)
    claims = _verify_claims(candidates.bearer_token, config)

    identity = RequestIdentity(
        tenant_id=None,
        user_id=claims.user_id if claims else candidates.user_id,
        session_id=candidates.session_id,
        ip_address=candidates.ip_address,
        user_agent=candidates.user_agent,
        bearer_token=candidates.bearer_token,
        claims=claims.as_dict() if claims else None,
    )
    request.state.identity = identity

    def response_time_ms() -> float:
        return (time.perf_counter() - started) * 1000

    try:
        if not config.is_development:
            _enforce_rate_limit(state.rate_limiter, identity.ip_address)

        if not config.is_tenant_exempt(path):
            resolution = state.tenant_resolver.resolve(
                claims.tenant_id if claims else None,
                candidates.tenant_header,
                path,
            )
            identity.tenant_id = resolution.tenant_id
            identity.tenant_source = resolution.source
    except GatewayError as e:
        logger.warning(
            f"Request rejected: method={method}, path={path}, "
            f"status={e.status_code}, code={e.code}, ip={identity.ip_address}"
        )
        response = JSONResponse(
            e.to_payload(config.expose_error_details),
            status_code=e.status_code,
            headers=e.headers,
        )
    else:
        tracker.track_request(identity, method, url)
        try:
            response = await call_next(request)
        except Exception:
            await tracker.track_response(identity, method, url, 500, response_time_ms())
            raise

    if identity.tenant_id:
        response.headers[TENANT_HEADER] = identity.tenant_id

    async def emit_response_events() -> None:
        await tracker.track_response(
            identity, method, url, response.status_code, response_time_ms()
        )

    _attach_background(response, BackgroundTask(emit_response_events))
    return response

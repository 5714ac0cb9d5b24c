"""
Context Utilities

Accessors used by route handlers: the RequestIdentity set by the identity
middleware, the application-owned components stored on app.state, and the
bearer credential a proxied call should carry.

Bearer credential priority:
1. The caller's own bearer token
2. A bypass token, when bypass auth is expected by policy
3. Otherwise the request is rejected
"""

import logging
from typing import Optional, Tuple

from fastapi import Request

from models.request_context import RequestIdentity
from services.bypass_token import BypassTokenProvider
from services.errors import AuthenticationRequired, BypassTokenUnavailable, InternalError
from services.proxy import ProxyForwarder
from utils.config import GatewayConfig

logger = logging.getLogger(__name__)

TOKEN_SOURCE_REQUEST = "request"
TOKEN_SOURCE_BYPASS = "bypass"


def get_request_identity(request: Request) -> RequestIdentity:
    """
    Return the identity resolved by the identity middleware.

    Raises:
        InternalError: If the middleware did not run for this request
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        logger.error(f"Request identity missing: path={request.url.path}")
        raise InternalError("Request identity not resolved")
    return identity


def get_config(request: Request) -> GatewayConfig:
    return request.app.state.config


def get_bypass_provider(request: Request) -> BypassTokenProvider:
    return request.app.state.bypass_provider


def get_forwarder(request: Request) -> ProxyForwarder:
    return request.app.state.forwarder


async def resolve_bearer_token(
    identity: RequestIdentity,
    provider: BypassTokenProvider,
) -> Tuple[str, str]:
    """
    Choose the bearer credential for a proxied call.

    Args:
        identity: Resolved request identity
        provider: Application bypass token provider

    Returns:
        (token, source) where source is "request" or "bypass"

    Raises:
        BypassTokenUnavailable: Bypass expected but no token could be obtained
        AuthenticationRequired: No caller token and bypass not expected
    """
    if identity.bearer_token:
        return identity.bearer_token, TOKEN_SOURCE_REQUEST

    if provider.is_bypass_auth_expected():
        token: Optional[str] = await provider.get_token()
        if not token:
            logger.error(
                f"Bypass token unavailable: tenant_id={identity.tenant_id}, "
                f"ip={identity.ip_address}"
            )
            raise BypassTokenUnavailable("Authentication service unavailable")
        return token, TOKEN_SOURCE_BYPASS

    logger.warning(
        f"Proxy request without credentials rejected: tenant_id={identity.tenant_id}"
    )
    raise AuthenticationRequired("Authentication required")

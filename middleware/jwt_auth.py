"""
Access Token Verification Module

This module verifies the access tokens issued by the DealCycle auth service
and extracts the authenticated user context the tenant resolver trusts most.

Claims Contract:
- sub / userId / user_id: string (required) - User identifier
- tenantId / tenant_id: string (optional) - Tenant the user belongs to
- email: string (optional)
- roles: list of strings (optional)
- iss / aud: checked only when JWT_ISSUER / JWT_AUDIENCE are configured
- exp: number (required) - Expiration timestamp

Security:
- Uses HMAC-SHA256 (HS256) symmetric signing
- Never logs full tokens
"""

import logging
from typing import List, Optional
from dataclasses import dataclass, field

import jwt
from jwt.exceptions import (
    InvalidTokenError,
    ExpiredSignatureError,
    InvalidIssuerError,
    InvalidAudienceError,
)

logger = logging.getLogger(__name__)

# Clock skew tolerance in seconds (for exp validation)
CLOCK_SKEW_LEEWAY = 30

BEARER_PREFIX = "Bearer "


@dataclass
class UserClaims:
    """
    Validated claims extracted from an access token.

    Attributes:
        user_id: User identifier (Mongo ObjectId string in DealCycle)
        tenant_id: Tenant claim, None when the token carries none
        email: Optional email address
        roles: Role names granted to the user
        expires_at: Unix timestamp when the token expires
    """
    user_id: str
    tenant_id: Optional[str] = None
    email: Optional[str] = None
    roles: List[str] = field(default_factory=list)
    expires_at: int = 0

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "roles": list(self.roles),
        }


class JWTVerificationError(Exception):
    """
    Raised when JWT verification fails.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for logging/metrics
    """
    def __init__(self, message: str, code: str = "JWT_INVALID"):
        self.message = message
        self.code = code
        super().__init__(message)


def _first_claim(payload: dict, *names: str) -> Optional[str]:
    for name in names:
        value = payload.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def verify_access_token(
    token: str,
    secret: str,
    issuer: Optional[str] = None,
    audience: Optional[str] = None,
) -> UserClaims:
    """
    Verify an access token and extract user claims.

    Validations:
    1. Signature verification using the shared secret
    2. Issuer and audience, when configured
    3. Expiration check with clock skew tolerance
    4. Presence of a user identifier claim

    Args:
        token: The JWT string (without 'Bearer ' prefix)
        secret: HMAC secret shared with the auth service
        issuer: Expected issuer, or None to skip the check
        audience: Expected audience, or None to skip the check

    Returns:
        UserClaims with user_id and, when present, tenant_id

    Raises:
        JWTVerificationError: On any validation failure
    """
    if not secret:
        raise JWTVerificationError(
            "JWT verification not configured",
            code="JWT_NOT_CONFIGURED"
        )

    # Log only that verification is being attempted (never log the token)
    logger.debug(f"Verifying JWT (first 8 chars): {token[:8]}...")

    options = {"require": ["exp"], "verify_aud": audience is not None}

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            issuer=issuer,
            audience=audience,
            leeway=CLOCK_SKEW_LEEWAY,
            options=options,
        )
    except ExpiredSignatureError:
        logger.warning("JWT has expired")
        raise JWTVerificationError("Token has expired", code="JWT_EXPIRED")

    except InvalidIssuerError:
        logger.warning(f"JWT has invalid issuer (expected: {issuer})")
        raise JWTVerificationError("Invalid token issuer", code="JWT_INVALID_ISSUER")

    except InvalidAudienceError:
        logger.warning(f"JWT has invalid audience (expected: {audience})")
        raise JWTVerificationError("Invalid token audience", code="JWT_INVALID_AUDIENCE")

    except InvalidTokenError as e:
        logger.warning(f"JWT verification failed: {type(e).__name__}")
        raise JWTVerificationError("Invalid token", code="JWT_INVALID")

    user_id = _first_claim(payload, "sub", "userId", "user_id")
    if not user_id:
        logger.warning("JWT missing user claim")
        raise JWTVerificationError(
            "Missing required claim: sub",
            code="JWT_MISSING_USER"
        )

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]

    claims = UserClaims(
        user_id=user_id,
        tenant_id=_first_claim(payload, "tenantId", "tenant_id"),
        email=_first_claim(payload, "email"),
        roles=[str(role) for role in roles],
        expires_at=int(payload.get("exp", 0)),
    )

    logger.debug(
        f"JWT verified: user_id={claims.user_id}, "
        f"tenant_claim={'present' if claims.tenant_id else 'absent'}"
    )
    return claims


def extract_bearer_token(authorization_header: Optional[str]) -> Optional[str]:
    """
    Extract the token from an Authorization header.

    Args:
        authorization_header: The full Authorization header value

    Returns:
        The token string, or None if header is missing/malformed
    """
    if not authorization_header:
        return None

    if not authorization_header.startswith(BEARER_PREFIX):
        return None

    token = authorization_header[len(BEARER_PREFIX):]

    if not token or not token.strip():
        return None

    return token.strip()

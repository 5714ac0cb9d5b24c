"""
Gateway error taxonomy.

Every failure that reaches the client is one of these exceptions. Each carries
its HTTP status and a machine-readable code; the FastAPI exception handler in
main.py renders them with to_payload().
"""

from typing import Any, Dict, Mapping, Optional


class GatewayError(Exception):
    """
    Base class for client-visible gateway failures.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code
        status_code: HTTP status returned to the client
        details: Diagnostic detail, only rendered outside production
        headers: Extra response headers (Allow, Retry-After, ...)
    """
    status_code = 500
    code = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        self.headers = dict(headers or {})
        super().__init__(message)

    def to_payload(self, expose_details: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if expose_details and self.details:
            payload["details"] = self.details
        return payload


class MissingTenantError(GatewayError):
    """No tenant resolvable from claim, header or OAuth default."""
    status_code = 401
    code = "missing_tenant"


class AuthenticationRequired(GatewayError):
    """No bearer token and bypass auth not expected."""
    status_code = 401
    code = "authentication_required"


class BypassTokenUnavailable(GatewayError):
    """Bypass auth expected by policy but no bypass token could be obtained."""
    status_code = 503
    code = "bypass_token_unavailable"


class ServiceUnavailable(GatewayError):
    """Downstream service unreachable (connection refused, DNS failure)."""
    status_code = 503
    code = "service_unavailable"


class InternalError(GatewayError):
    """Any uncategorized failure."""
    status_code = 500
    code = "internal_error"


class MethodNotAllowed(GatewayError):
    status_code = 405
    code = "method_not_allowed"


class RateLimitExceeded(GatewayError):
    status_code = 429
    code = "rate_limited"


class UpstreamError(GatewayError):
    """
    Downstream returned a non-2xx status.

    The upstream status and body are passed through unchanged; diagnostic
    detail is merged into the body only when details are exposed.
    """
    code = "upstream_error"

    def __init__(
        self,
        status_code: int,
        body: Any,
        *,
        service: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.body = body
        self.service = service
        super().__init__(
            f"{service} service responded with status {status_code}",
            status_code=status_code,
            details=details,
        )

    def to_payload(self, expose_details: bool) -> Any:
        if not expose_details or not self.details:
            return self.body
        if isinstance(self.body, dict):
            return {**self.body, "upstream": self.details}
        return {"data": self.body, "upstream": self.details}

"""
Gateway Configuration

This module assembles the single GatewayConfig used by every component.
Configuration is read once at process start (after python-dotenv has loaded
.env) and handed to components explicitly; nothing else reads os.environ.

Environment Variables:
    APP_ENV / NODE_ENV: Deployment environment (development, test, production)
    DEFAULT_TENANT_ID: Tenant used for OAuth callback requests without a tenant
    OAUTH_CALLBACK_PREFIXES: Comma-separated path prefixes of OAuth callbacks
    BYPASS_AUTH / NEXT_PUBLIC_BYPASS_AUTH: Whether bypass auth is expected
    BYPASS_ADMIN_EMAIL / BYPASS_ADMIN_PASSWORD: Admin credentials for bypass tokens
    <NAME>_SERVICE_URL / <NAME>_SERVICE_TIMEOUT_S: Downstream service endpoints
    JWT_SECRET / JWT_ISSUER / JWT_AUDIENCE: Access token verification
    SESSION_EVENT_SINK: none, log, redis or eventbridge
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# Literal fallback tenant, only ever used outside production
DEV_FALLBACK_TENANT_ID = "507f1f77bcf86cd799439011"

DEFAULT_SERVICE_URLS = {
    "auth": "http://localhost:3001/api/auth",
    "leads": "http://localhost:3002/api",
    "transactions": "http://localhost:3003/api",
    "timesheets": "http://localhost:3004/api",
    "buyers": "http://localhost:3006/api",
    "ats": "http://localhost:3008/api/ats",
}

DEFAULT_SERVICE_TIMEOUT_SECONDS = 5.0

_TRUE_VALUES = ("1", "true", "yes", "on")


class ConfigError(ValueError):
    """Raised when an environment value cannot be parsed."""


@dataclass(frozen=True)
class ServiceEndpoint:
    """Base URL and request timeout of one downstream service."""
    name: str
    base_url: str
    timeout_seconds: float = DEFAULT_SERVICE_TIMEOUT_SECONDS


@dataclass(frozen=True)
class GatewayConfig:
    """
    Process-wide gateway configuration.

    Attributes:
        environment: development, test or production
        default_tenant_id: Tenant for OAuth callbacks lacking claim and header
        oauth_callback_prefixes: Paths eligible for the default tenant
        bypass_auth_expected: Whether proxy routes must obtain a bypass token
            when the caller sent none
        services: Downstream endpoints keyed by service name
    """
    environment: str = "development"
    default_tenant_id: Optional[str] = DEV_FALLBACK_TENANT_ID
    oauth_callback_prefixes: Tuple[str, ...] = (
        "/auth/google/callback",
        "/api/auth/google/callback",
    )
    bypass_auth_expected: bool = False
    bypass_admin_email: Optional[str] = None
    bypass_admin_password: Optional[str] = None
    bypass_token_ttl_seconds: int = 900
    bypass_token_refresh_margin_seconds: int = 30
    services: Dict[str, ServiceEndpoint] = field(
        default_factory=lambda: {
            name: ServiceEndpoint(name=name, base_url=url)
            for name, url in DEFAULT_SERVICE_URLS.items()
        }
    )
    jwt_secret: Optional[str] = None
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None
    rate_limit_requests: int = 1000
    rate_limit_window_seconds: int = 60
    slow_response_threshold_ms: int = 5000
    event_sink: str = "log"
    redis_url: str = "redis://localhost:6379"
    event_stream_name: str = "session_events"
    aws_region: str = "us-east-1"
    eventbridge_bus_name: str = "default"
    event_source: str = "com.dealcycle.gateway"
    event_emit_timeout_seconds: float = 2.0
    untracked_paths: Tuple[str, ...] = ("/health", "/metrics", "/favicon.ico")
    tenant_exempt_paths: Tuple[str, ...] = ("/health",)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def expose_error_details(self) -> bool:
        """Diagnostic detail is attached to error payloads outside production."""
        return not self.is_production

    @property
    def jwt_configured(self) -> bool:
        return bool(self.jwt_secret)

    def service(self, name: str) -> ServiceEndpoint:
        try:
            return self.services[name]
        except KeyError:
            raise ConfigError(f"Unknown downstream service: {name}")

    def is_tenant_exempt(self, path: str) -> bool:
        return matches_path_prefix(path, self.tenant_exempt_paths)


def matches_path_prefix(path: str, prefixes: Tuple[str, ...]) -> bool:
    """True when path starts with any of the configured prefixes."""
    return any(path.startswith(prefix) for prefix in prefixes)


def _get_bool(env: Mapping[str, str], *names: str, default: bool = False) -> bool:
    for name in names:
        value = env.get(name)
        if value is not None and value.strip():
            return value.strip().lower() in _TRUE_VALUES
    return default


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}")


def _get_list(env: Mapping[str, str], name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    value = env.get(name)
    if value is None:
        return default
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _get_str(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _load_services(env: Mapping[str, str]) -> Dict[str, ServiceEndpoint]:
    services = {}
    for name, default_url in DEFAULT_SERVICE_URLS.items():
        prefix = name.upper()
        base_url = _get_str(env, f"{prefix}_SERVICE_URL") or default_url
        timeout = _get_float(env, f"{prefix}_SERVICE_TIMEOUT_S", DEFAULT_SERVICE_TIMEOUT_SECONDS)
        if timeout <= 0:
            raise ConfigError(f"{prefix}_SERVICE_TIMEOUT_S must be positive")
        services[name] = ServiceEndpoint(
            name=name,
            base_url=base_url.rstrip("/"),
            timeout_seconds=timeout,
        )
    return services


def load_config(env: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    """
    Build the gateway configuration from environment variables.

    Args:
        env: Mapping to read from (defaults to os.environ)

    Returns:
        Fully populated GatewayConfig

    Raises:
        ConfigError: If a numeric variable cannot be parsed
    """
    env = os.environ if env is None else env

    environment = (
        _get_str(env, "APP_ENV") or _get_str(env, "NODE_ENV") or "development"
    ).lower()
    is_production = environment == "production"

    default_tenant_id = _get_str(env, "DEFAULT_TENANT_ID")
    if default_tenant_id is None and not is_production:
        default_tenant_id = DEV_FALLBACK_TENANT_ID

    defaults = GatewayConfig()

    config = GatewayConfig(
        environment=environment,
        default_tenant_id=default_tenant_id,
        oauth_callback_prefixes=_get_list(
            env, "OAUTH_CALLBACK_PREFIXES", defaults.oauth_callback_prefixes
        ),
        bypass_auth_expected=_get_bool(env, "BYPASS_AUTH", "NEXT_PUBLIC_BYPASS_AUTH"),
        bypass_admin_email=_get_str(env, "BYPASS_ADMIN_EMAIL"),
        bypass_admin_password=_get_str(env, "BYPASS_ADMIN_PASSWORD"),
        bypass_token_ttl_seconds=_get_int(
            env, "BYPASS_TOKEN_TTL_S", defaults.bypass_token_ttl_seconds
        ),
        bypass_token_refresh_margin_seconds=_get_int(
            env, "BYPASS_TOKEN_REFRESH_MARGIN_S", defaults.bypass_token_refresh_margin_seconds
        ),
        services=_load_services(env),
        jwt_secret=_get_str(env, "JWT_SECRET"),
        jwt_issuer=_get_str(env, "JWT_ISSUER"),
        jwt_audience=_get_str(env, "JWT_AUDIENCE"),
        rate_limit_requests=_get_int(env, "RATE_LIMIT_REQUESTS", defaults.rate_limit_requests),
        rate_limit_window_seconds=_get_int(
            env, "RATE_LIMIT_WINDOW_S", defaults.rate_limit_window_seconds
        ),
        slow_response_threshold_ms=_get_int(
            env, "SLOW_RESPONSE_THRESHOLD_MS", defaults.slow_response_threshold_ms
        ),
        event_sink=(_get_str(env, "SESSION_EVENT_SINK") or defaults.event_sink).lower(),
        redis_url=_get_str(env, "REDIS_URL") or defaults.redis_url,
        event_stream_name=_get_str(env, "SESSION_EVENT_STREAM") or defaults.event_stream_name,
        aws_region=_get_str(env, "AWS_REGION") or defaults.aws_region,
        eventbridge_bus_name=_get_str(env, "EVENTBRIDGE_BUS_NAME") or defaults.eventbridge_bus_name,
        event_source=_get_str(env, "EVENT_SOURCE") or defaults.event_source,
        event_emit_timeout_seconds=_get_float(
            env, "SESSION_EVENT_TIMEOUT_S", defaults.event_emit_timeout_seconds
        ),
        untracked_paths=_get_list(env, "UNTRACKED_PATHS", defaults.untracked_paths),
        tenant_exempt_paths=_get_list(env, "TENANT_EXEMPT_PATHS", defaults.tenant_exempt_paths),
    )

    if config.rate_limit_requests < 1 or config.rate_limit_window_seconds < 1:
        raise ConfigError("Rate limit requests and window must be positive")

    if is_production and not config.default_tenant_id:
        logger.warning(
            "DEFAULT_TENANT_ID not set in production; OAuth callbacks without "
            "a tenant will be rejected"
        )

    if config.bypass_auth_expected and not (
        config.bypass_admin_email and config.bypass_admin_password
    ):
        logger.warning(
            "Bypass auth expected but BYPASS_ADMIN_EMAIL/BYPASS_ADMIN_PASSWORD "
            "are not set; proxy routes will answer 503 without a caller token"
        )

    logger.info(
        f"Configuration loaded: environment={config.environment}, "
        f"bypass_auth_expected={config.bypass_auth_expected}, "
        f"event_sink={config.event_sink}, jwt_configured={config.jwt_configured}"
    )

    return config

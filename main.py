from contextlib import asynccontextmanager
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

from middleware.identity import identity_middleware
from middleware.tenant import TenantResolver
from routers import health, proxy
from services.bypass_token import BypassTokenProvider
from services.errors import GatewayError
from services.event_publisher import EventSink, build_event_sink
from services.proxy import ProxyForwarder
from services.rate_limiter import FixedWindowRateLimiter
from services.session_tracker import SessionActivityTracker
from utils.config import GatewayConfig, load_config

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def log_startup_summary(config: GatewayConfig):
    """Log the effective gateway configuration (never credentials)."""
    logger.info("=" * 60)
    logger.info(f"DealCycle gateway starting: environment={config.environment}")
    for name, endpoint in sorted(config.services.items()):
        logger.info(f"  {name}: {endpoint.base_url} (timeout {endpoint.timeout_seconds}s)")
    logger.info(f"  Bypass auth expected: {config.bypass_auth_expected}")
    logger.info(f"  Session event sink: {config.event_sink}")
    logger.info(
        f"  Rate limit: {config.rate_limit_requests}/{config.rate_limit_window_seconds}s"
        + (" (disabled in development)" if config.is_development else "")
    )
    logger.info("=" * 60)


def create_app(
    config: Optional[GatewayConfig] = None,
    *,
    event_sink: Optional[EventSink] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        config: Gateway configuration (loaded from the environment if omitted)
        event_sink: Session event sink overriding SESSION_EVENT_SINK
        transport: httpx transport for all downstream clients (tests)
    """
    config = config or load_config()
    sink = event_sink or build_event_sink(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_startup_summary(config)
        clients = {
            name: httpx.AsyncClient(
                base_url=endpoint.base_url,
                timeout=endpoint.timeout_seconds,
                transport=transport,
            )
            for name, endpoint in config.services.items()
        }
        auth = config.service("auth")
        app.state.bypass_provider = BypassTokenProvider(
            clients["auth"],
            auth.base_url,
            config.bypass_admin_email,
            config.bypass_admin_password,
            expected=config.bypass_auth_expected,
            ttl_seconds=config.bypass_token_ttl_seconds,
            refresh_margin_seconds=config.bypass_token_refresh_margin_seconds,
        )
        app.state.forwarder = ProxyForwarder(
            clients,
            expose_error_details=config.expose_error_details,
        )
        try:
            yield
        finally:
            logger.info("Shutting down: flushing session events and closing clients")
            await app.state.tracker.flush()
            for client in clients.values():
                await client.aclose()
            close = getattr(sink, "close", None)
            if close is not None:
                await close()

    app = FastAPI(title="DealCycle Gateway", lifespan=lifespan)

    app.state.config = config
    app.state.tenant_resolver = TenantResolver(
        config.default_tenant_id,
        config.oauth_callback_prefixes,
    )
    app.state.rate_limiter = FixedWindowRateLimiter(
        config.rate_limit_requests,
        config.rate_limit_window_seconds,
    )
    app.state.tracker = SessionActivityTracker(
        sink,
        slow_threshold_ms=config.slow_response_threshold_ms,
        emit_timeout_seconds=config.event_emit_timeout_seconds,
        untracked_paths=config.untracked_paths,
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        return JSONResponse(
            exc.to_payload(config.expose_error_details),
            status_code=exc.status_code,
            headers=exc.headers or None,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled error: method={request.method}, path={request.url.path}, "
            f"error={type(exc).__name__}: {exc}",
            exc_info=exc
        )
        return JSONResponse(
            {"error": "internal_error", "message": "Internal server error"},
            status_code=500,
        )

    app.middleware("http")(identity_middleware)

    # Include routers
    app.include_router(health.router)
    app.include_router(proxy.router)

    return app


app = create_app()

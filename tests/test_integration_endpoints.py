"""
Integration Tests for Endpoint Flows

This module runs requests through the full gateway (identity middleware,
proxy router, exception handlers) with the downstream services replaced by
an httpx.MockTransport.

Tests:
- Tenant resolution from header, JWT claim and OAuth default
- Bearer credential resolution (caller token, bypass token, rejection)
- Error mapping (401, 405, 429, 503, upstream passthrough)
- Session events for accepted and rejected requests
"""

import logging
from typing import Callable, Dict, List, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import TEST_JWT_SECRET, RecordingSink, generate_test_jwt
from main import create_app
from models.request_context import token_fingerprint
from services.event_publisher import LoggingEventSink
from utils.config import GatewayConfig

LOGIN_URL_PATH = "/api/auth/login"


class Downstream:
    """Mock downstream services keyed by (method, path)."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, method: str, path: str, factory: Callable[[httpx.Request], httpx.Response]):
        self.routes[(method, path)] = factory

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        factory = self.routes.get((request.method, request.url.path))
        if factory is None:
            return httpx.Response(404, json={"message": "Not found"})
        return factory(request)


def refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


@pytest.fixture
def downstream():
    return Downstream()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_client(downstream, sink):
    """Build a TestClient for a gateway with the given config overrides."""
    def factory(**overrides) -> TestClient:
        values = {"environment": "test", "event_sink": "none"}
        values.update(overrides)
        app = create_app(
            GatewayConfig(**values),
            event_sink=sink,
            transport=httpx.MockTransport(downstream),
        )
        return TestClient(app)
    return factory


class TestTenantResolution:
    """Tenant arbitration through the middleware."""

    def test_header_tenant_forwarded_and_echoed(self, make_client, downstream):
        downstream.on("GET", "/api/leads", lambda r: httpx.Response(200, json=[{"id": "l1"}]))

        with make_client() as client:
            response = client.get(
                "/api/leads",
                headers={"x-tenant-id": "t1", "authorization": "Bearer caller-token"},
            )

        assert response.status_code == 200
        assert response.json() == [{"id": "l1"}]
        assert response.headers["x-tenant-id"] == "t1"
        (forwarded,) = downstream.calls_to("/api/leads")
        assert forwarded.headers["x-tenant-id"] == "t1"
        assert forwarded.headers["authorization"] == "Bearer caller-token"

    def test_claim_tenant_beats_header(self, make_client, downstream):
        downstream.on("GET", "/api/leads", lambda r: httpx.Response(200, json=[]))
        token = generate_test_jwt(user_id="u-claim", tenant_id="t-claim")

        with make_client(jwt_secret=TEST_JWT_SECRET) as client:
            response = client.get(
                "/api/leads",
                headers={"x-tenant-id": "t-header", "authorization": f"Bearer {token}"},
            )

        assert response.headers["x-tenant-id"] == "t-claim"
        (forwarded,) = downstream.calls_to("/api/leads")
        assert forwarded.headers["x-tenant-id"] == "t-claim"
        assert forwarded.headers["x-user-id"] == "u-claim"

    def test_missing_tenant_rejected_before_handler(self, make_client, downstream, sink):
        with make_client() as client:
            response = client.get("/api/leads", headers={"authorization": "Bearer tok"})

        assert response.status_code == 401
        assert response.json()["error"] == "missing_tenant"
        assert response.json()["message"] == "Tenant context not found"
        assert downstream.requests == []
        responses = sink.of("session.response")
        assert len(responses) == 1
        assert responses[0]["statusCode"] == 401
        assert "session.suspicious_response" in sink.names()

    def test_oauth_callback_uses_default_tenant(self, make_client, downstream):
        downstream.on(
            "GET", "/api/auth/google/callback",
            lambda r: httpx.Response(200, json={"accessToken": "user-token"}),
        )

        with make_client() as client:
            response = client.get("/api/auth/google/callback?code=abc&state=xyz&extra=1")

        assert response.status_code == 200
        (forwarded,) = downstream.calls_to("/api/auth/google/callback")
        assert forwarded.headers["x-tenant-id"] == "507f1f77bcf86cd799439011"
        assert forwarded.url.params.get("code") == "abc"
        assert "extra" not in forwarded.url.params
        assert "authorization" not in forwarded.headers

    def test_health_is_tenant_exempt_and_untracked(self, make_client, sink):
        with make_client() as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert sink.events == []


class TestBearerResolution:
    """Caller token, bypass token and rejection."""

    def test_no_token_without_bypass_is_401(self, make_client, downstream):
        with make_client() as client:
            response = client.get("/api/leads", headers={"x-tenant-id": "t1"})

        assert response.status_code == 401
        assert response.json()["error"] == "authentication_required"
        assert downstream.requests == []

    def test_bypass_unavailable_is_503(self, make_client, downstream):
        downstream.on("POST", LOGIN_URL_PATH, refuse)

        with make_client(
            bypass_auth_expected=True,
            bypass_admin_email="admin@dealcycle.com",
            bypass_admin_password="secret",
        ) as client:
            response = client.get("/api/leads", headers={"x-tenant-id": "t1"})

        assert response.status_code == 503
        assert response.json()["error"] == "bypass_token_unavailable"
        assert downstream.calls_to("/api/leads") == []

    def test_bypass_without_credentials_is_503(self, make_client, downstream):
        with make_client(bypass_auth_expected=True) as client:
            response = client.get("/api/leads", headers={"x-tenant-id": "t1"})

        assert response.status_code == 503
        assert response.json()["error"] == "bypass_token_unavailable"
        assert downstream.requests == []

    def test_bypass_token_fetched_once_and_forwarded(self, make_client, downstream):
        downstream.on(
            "POST", LOGIN_URL_PATH,
            lambda r: httpx.Response(200, json={"accessToken": "bypass-1", "expiresIn": 86400}),
        )
        downstream.on("GET", "/api/buyers", lambda r: httpx.Response(200, json=[]))

        with make_client(
            bypass_auth_expected=True,
            bypass_admin_email="admin@dealcycle.com",
            bypass_admin_password="secret",
        ) as client:
            for _ in range(3):
                assert client.get("/api/buyers", headers={"x-tenant-id": "t1"}).status_code == 200

        assert len(downstream.calls_to(LOGIN_URL_PATH)) == 1
        assert all(
            request.headers["authorization"] == "Bearer bypass-1"
            for request in downstream.calls_to("/api/buyers")
        )

    def test_downstream_401_invalidates_bypass_token(self, make_client, downstream):
        issued = iter(["stale", "fresh"])
        downstream.on(
            "POST", LOGIN_URL_PATH,
            lambda r: httpx.Response(200, json={"accessToken": next(issued)}),
        )
        downstream.on(
            "GET", "/api/buyers",
            lambda r: httpx.Response(
                200 if r.headers["authorization"] == "Bearer fresh" else 401,
                json={"message": "ok"},
            ),
        )

        with make_client(
            bypass_auth_expected=True,
            bypass_admin_email="admin@dealcycle.com",
            bypass_admin_password="secret",
        ) as client:
            first = client.get("/api/buyers", headers={"x-tenant-id": "t1"})
            second = client.get("/api/buyers", headers={"x-tenant-id": "t1"})

        assert first.status_code == 401
        assert second.status_code == 200
        assert len(downstream.calls_to(LOGIN_URL_PATH)) == 2

    def test_caller_token_preferred_over_bypass(self, make_client, downstream):
        downstream.on("GET", "/api/leads", lambda r: httpx.Response(200, json=[]))

        with make_client(bypass_auth_expected=True) as client:
            client.get("/api/leads", headers={"x-tenant-id": "t1", "authorization": "Bearer mine"})

        assert downstream.calls_to(LOGIN_URL_PATH) == []
        assert downstream.calls_to("/api/leads")[0].headers["authorization"] == "Bearer mine"


class TestErrorMapping:
    """Status mapping at the gateway edge."""

    headers = {"x-tenant-id": "t1", "authorization": "Bearer tok"}

    def test_unsupported_method_is_405_with_allow(self, make_client):
        with make_client() as client:
            response = client.delete("/api/leads", headers=self.headers)

        assert response.status_code == 405
        assert response.headers["allow"] == "GET, POST"
        assert response.json()["error"] == "method_not_allowed"
        assert response.json()["message"] == "Method not allowed"

    def test_rate_limit_is_429_with_retry_after(self, make_client, downstream):
        downstream.on("GET", "/api/leads", lambda r: httpx.Response(200, json=[]))

        with make_client(rate_limit_requests=2) as client:
            statuses = [client.get("/api/leads", headers=self.headers).status_code for _ in range(3)]
            blocked = client.get("/api/leads", headers=self.headers)

        assert statuses == [200, 200, 429]
        assert blocked.json()["error"] == "rate_limited"
        assert int(blocked.headers["retry-after"]) >= 1

    def test_rate_limit_disabled_in_development(self, make_client, downstream):
        downstream.on("GET", "/api/leads", lambda r: httpx.Response(200, json=[]))

        with make_client(environment="development", rate_limit_requests=1) as client:
            statuses = [client.get("/api/leads", headers=self.headers).status_code for _ in range(3)]

        assert statuses == [200, 200, 200]

    def test_downstream_unreachable_is_503(self, make_client, downstream):
        downstream.on("GET", "/api/transactions", refuse)

        with make_client() as client:
            response = client.get("/api/transactions", headers=self.headers)

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"

    def test_upstream_status_and_body_pass_through(self, make_client, downstream):
        downstream.on(
            "PATCH", "/api/transactions/tx-1/status",
            lambda r: httpx.Response(409, json={"message": "Invalid status transition"}),
        )

        with make_client() as client:
            response = client.patch(
                "/api/transactions/tx-1/status",
                headers=self.headers,
                json={"status": "closed"},
            )

        assert response.status_code == 409
        body = response.json()
        assert body["message"] == "Invalid status transition"
        assert body["upstream"]["service"] == "transactions"

    def test_upstream_diagnostics_hidden_in_production(self, make_client, downstream):
        downstream.on("GET", "/api/leads/l404", lambda r: httpx.Response(404, json={"message": "Lead not found"}))

        with make_client(environment="production") as client:
            response = client.get("/api/leads/l404", headers=self.headers)

        assert response.status_code == 404
        assert response.json() == {"message": "Lead not found"}

    def test_no_content_passthrough(self, make_client, downstream):
        downstream.on("DELETE", "/api/ats/candidates/c1", lambda r: httpx.Response(204))

        with make_client() as client:
            response = client.delete("/api/ats/candidates/c1", headers=self.headers)

        assert response.status_code == 204
        assert response.content == b""


class TestSessionEvents:
    """Session events emitted around proxied requests."""

    def test_identified_request_emits_activity_and_response(self, make_client, downstream, sink):
        downstream.on("GET", "/api/ats/candidates", lambda r: httpx.Response(200, json=[]))

        with make_client() as client:
            client.get(
                "/api/ats/candidates?status=new",
                headers={
                    "x-tenant-id": "t1",
                    "x-user-id": "u1",
                    "x-session-id": "s1",
                    "authorization": "Bearer tok",
                    "x-forwarded-for": "203.0.113.5, 10.0.0.1",
                },
            )

        (activity,) = sink.of("session.activity")
        assert activity["tenantId"] == "t1"
        assert activity["userId"] == "u1"
        assert activity["sessionId"] == "s1"
        assert activity["ipAddress"] == "203.0.113.5"
        assert activity["url"] == "/api/ats/candidates?status=new"
        (response_event,) = sink.of("session.response")
        assert response_event["statusCode"] == 200
        assert response_event["isErrorResponse"] is False

    def test_request_without_user_emits_response_only(self, make_client, downstream, sink):
        downstream.on("GET", "/api/leads", lambda r: httpx.Response(200, json=[]))

        with make_client() as client:
            client.get("/api/leads", headers={"x-tenant-id": "t1", "authorization": "Bearer tok"})

        assert sink.of("session.activity") == []
        assert len(sink.of("session.response")) == 1

    def test_bearer_token_never_reaches_event_log(self, downstream, caplog):
        downstream.on("GET", "/api/leads", lambda r: httpx.Response(200, json=[]))
        token = "super-secret-bearer-token-value-0123456789"
        app = create_app(
            GatewayConfig(environment="test"),
            event_sink=LoggingEventSink(),
            transport=httpx.MockTransport(downstream),
        )

        with caplog.at_level(logging.INFO):
            with TestClient(app) as client:
                response = client.get(
                    "/api/leads",
                    headers={
                        "x-tenant-id": "t1",
                        "x-user-id": "u1",
                        "authorization": f"Bearer {token}",
                    },
                )

        assert response.status_code == 200
        event_lines = [r.getMessage() for r in caplog.records if r.name == "session_events"]
        assert any(line.startswith("session.activity") for line in event_lines)
        assert any(line.startswith("session.response") for line in event_lines)
        assert token not in caplog.text
        assert token_fingerprint(token) in caplog.text

    def test_non_standard_upstream_status_still_tracked(self, make_client, downstream, sink):
        downstream.on("GET", "/api/leads", lambda r: httpx.Response(600, json={"message": "odd"}))

        with make_client() as client:
            response = client.get(
                "/api/leads", headers={"x-tenant-id": "t1", "authorization": "Bearer tok"}
            )

        assert response.status_code == 600
        (response_event,) = sink.of("session.response")
        assert response_event["statusCode"] == 600
        assert response_event["isErrorResponse"] is True

    def test_exempt_prefix_covers_subpaths(self, make_client, downstream, sink):
        with make_client() as client:
            response = client.get("/health/ready")

        assert response.status_code != 401
        assert sink.events == []
        assert downstream.requests == []

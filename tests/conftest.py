"""Shared fixtures for the gateway test suite."""

import time
from typing import Any, Dict, List, Optional, Tuple

import jwt as pyjwt
import pytest
from starlette.requests import Request

TEST_JWT_SECRET = "test-secret-that-is-at-least-32-characters-long"


def build_request(
    headers: Optional[Dict[str, str]] = None,
    path: str = "/api/leads",
    query_string: str = "",
    method: str = "GET",
    client: Optional[Tuple[str, int]] = ("10.0.0.9", 51000),
) -> Request:
    """Build a real Starlette request from a minimal ASGI scope."""
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": query_string.encode(),
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ],
        "client": client,
        "server": ("testserver", 80),
    }
    return Request(scope)


def generate_test_jwt(
    user_id: Optional[str] = "64b7f0c2a1e4d5f6a7b8c9d0",
    tenant_id: Optional[str] = None,
    exp_offset: int = 300,
    secret: str = TEST_JWT_SECRET,
    **extra: Any,
) -> str:
    """Generate an HS256 access token shaped like the auth service's."""
    now = int(time.time())
    payload: Dict[str, Any] = {"iat": now, "exp": now + exp_offset, **extra}
    if user_id is not None:
        payload["sub"] = user_id
    if tenant_id is not None:
        payload["tenantId"] = tenant_id
    return pyjwt.encode(payload, secret, algorithm="HS256")


class RecordingSink:
    """EventSink that keeps every emitted event in memory."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def emit(self, name: str, payload: Dict[str, Any]) -> None:
        self.events.append((name, payload))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> List[Dict[str, Any]]:
        return [payload for event_name, payload in self.events if event_name == name]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def fake_clock():
    return FakeClock()

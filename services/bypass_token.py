"""
Bypass Token Provider

Supplies a standing administrative access token for contexts where callers do
not send their own (local development, automated testing, service-to-service
proxying). The token is obtained by logging in to the auth service with the
configured admin credentials and cached until shortly before it expires.

Failure semantics: any failure to obtain a token resolves to None. Callers
consult is_bypass_auth_expected() to decide whether that is fatal.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
_TOKEN_KEYS = ("accessToken", "access_token", "token")


@dataclass(frozen=True)
class BypassToken:
    """A cached bypass credential; times are monotonic clock readings."""
    value: str
    fetched_at: float
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


def _extract_token(body: Any) -> tuple[Optional[str], Optional[float]]:
    """Return (token, expires_in_seconds) from an auth service login body."""
    if not isinstance(body, dict):
        return None, None
    if isinstance(body.get("data"), dict):
        nested_token, nested_expiry = _extract_token(body["data"])
        if nested_token:
            return nested_token, nested_expiry
    token = None
    for key in _TOKEN_KEYS:
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            token = value.strip()
            break
    expires_in = body.get("expiresIn", body.get("expires_in"))
    try:
        expires_in = float(expires_in) if expires_in is not None else None
    except (TypeError, ValueError):
        expires_in = None
    return token, expires_in


class BypassTokenProvider:
    """
    Application-owned bypass token cache with single-flight refresh.

    Concurrent callers that find the cache empty share one in-flight login
    request instead of each calling the auth service.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        auth_base_url: str,
        email: Optional[str],
        password: Optional[str],
        *,
        expected: bool = False,
        ttl_seconds: int = 900,
        refresh_margin_seconds: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._login_url = auth_base_url.rstrip("/") + LOGIN_PATH
        self._email = email
        self._password = password
        self._expected = expected
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._refresh_margin_seconds = max(0, int(refresh_margin_seconds))
        self._clock = clock
        self._cached: Optional[BypassToken] = None
        self._inflight: Optional[asyncio.Task] = None
        self.fetch_count = 0

    def is_bypass_auth_expected(self) -> bool:
        return self._expected

    @property
    def has_credentials(self) -> bool:
        return bool(self._email and self._password)

    @property
    def cached(self) -> Optional[BypassToken]:
        return self._cached

    def _valid_cached_value(self) -> Optional[str]:
        cached = self._cached
        if cached is not None and cached.is_valid(self._clock()):
            return cached.value
        return None

    async def get_token(self) -> Optional[str]:
        """
        Return a bypass token, fetching one if the cache is empty or stale.

        Returns:
            The token string, or None if none could be obtained
        """
        token = self._valid_cached_value()
        if token:
            return token

        if not self.has_credentials:
            logger.warning("Bypass token requested but admin credentials are not configured")
            return None

        task = self._inflight
        if task is None or task.done():
            task = asyncio.create_task(self._fetch())
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        else:
            logger.debug("Joining in-flight bypass token fetch")

        # Shielded so one cancelled waiter does not abort the shared fetch
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    def invalidate(self, token: Optional[str] = None) -> bool:
        """
        Drop the cached token.

        Args:
            token: If given, only invalidate when it matches the cached value
                (a newer token fetched meanwhile is kept)

        Returns:
            True if a cached token was dropped
        """
        cached = self._cached
        if cached is None:
            return False
        if token is not None and cached.value != token:
            return False
        self._cached = None
        logger.info("Bypass token invalidated")
        return True

    async def _fetch(self) -> Optional[str]:
        self.fetch_count += 1
        started = self._clock()
        try:
            response = await self._client.post(
                self._login_url,
                json={"email": self._email, "password": self._password},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"Bypass token fetch failed: url={self._login_url}, "
                f"error={type(e).__name__}: {e}"
            )
            return None
        except Exception as e:
            logger.error(
                f"Unexpected error fetching bypass token: url={self._login_url}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True
            )
            return None

        if not response.is_success:
            logger.warning(
                f"Auth service rejected bypass login: status={response.status_code}"
            )
            return None

        try:
            body = response.json()
        except ValueError:
            logger.warning("Auth service returned a non-JSON bypass login response")
            return None

        token, expires_in = _extract_token(body)
        if not token:
            logger.warning("Auth service bypass login response carried no token")
            return None

        lifetime = float(self._ttl_seconds)
        if expires_in is not None and expires_in > 0:
            lifetime = min(lifetime, expires_in)
        lifetime = max(1.0, lifetime - self._refresh_margin_seconds)

        self._cached = BypassToken(
            value=token,
            fetched_at=started,
            expires_at=started + lifetime,
        )
        logger.info(
            f"Bypass token fetched: prefix={token[:8]}..., lifetime={lifetime:.0f}s"
        )
        return token

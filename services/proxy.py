"""
Proxy Forwarder

Forwards an identified request to its downstream DealCycle service and maps
the outcome back: upstream status and JSON body pass through, transport
failures become gateway errors.

Error mapping:
- Connection refused / connect timeout -> ServiceUnavailable (503)
- Upstream non-2xx -> UpstreamError (original status and body)
- Anything else -> InternalError (500)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote, urlencode

import httpx

from services.errors import InternalError, ServiceUnavailable, UpstreamError

logger = logging.getLogger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Inbound headers passed on to downstream services (Authorization is set
# separately from the resolved bearer token)
FORWARDED_HEADERS = (
    "content-type",
    "x-tenant-id",
    "x-user-id",
    "x-session-id",
    "x-forwarded-for",
)

QueryInput = Union[Mapping[str, Any], Iterable[Tuple[str, Any]], None]


@dataclass(frozen=True)
class ProxyRoute:
    """
    One inbound proxy endpoint and its downstream target.

    Attributes:
        name: Route name (used in logs and as the FastAPI route name)
        service: Key of the downstream service in the configuration
        path: Inbound path template, e.g. /api/leads/{lead_id}
        upstream_path: Downstream path template relative to the service base URL
        methods: Accepted HTTP methods
        allowed_query: Query keys forwarded downstream; everything else is dropped
        ignored_values: Query values treated as "no filter" and not forwarded
        requires_auth: Whether a bearer credential must be resolved first
    """
    name: str
    service: str
    path: str
    upstream_path: str
    methods: Tuple[str, ...] = ("GET",)
    allowed_query: FrozenSet[str] = frozenset()
    ignored_values: FrozenSet[str] = frozenset({"all"})
    requires_auth: bool = True

    def allows(self, method: str) -> bool:
        return method.upper() in self.methods

    @property
    def allow_header(self) -> str:
        return ", ".join(self.methods)


@dataclass
class ProxyResult:
    status_code: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


def _query_pairs(query: QueryInput) -> List[Tuple[str, str]]:
    if query is None:
        return []
    if hasattr(query, "multi_items"):
        return [(k, str(v)) for k, v in query.multi_items()]
    if isinstance(query, Mapping):
        pairs = []
        for key, value in query.items():
            values = value if isinstance(value, (list, tuple)) else [value]
            pairs.extend((key, str(v)) for v in values if v is not None)
        return pairs
    return [(k, str(v)) for k, v in query]


def _parse_body(response: httpx.Response) -> Any:
    """Parse a downstream body; never raises."""
    text = response.text
    if not text.strip():
        return {} if response.is_success else {"message": response.reason_phrase}
    try:
        return response.json()
    except ValueError:
        logger.warning(
            f"Non-JSON response from downstream: status={response.status_code}, "
            f"content_type={response.headers.get('content-type')}"
        )
        return {} if response.is_success else {"message": text}


class ProxyForwarder:
    """
    Sends proxied requests through one httpx.AsyncClient per service.

    The clients carry the base URL and timeout of their service and are owned
    by the application lifespan.
    """

    def __init__(
        self,
        clients: Mapping[str, httpx.AsyncClient],
        expose_error_details: bool = False,
    ):
        self.clients = dict(clients)
        self.expose_error_details = expose_error_details

    def client(self, service: str) -> httpx.AsyncClient:
        try:
            return self.clients[service]
        except KeyError:
            raise InternalError(
                "Downstream service not configured",
                details={"service": service},
            )

    @staticmethod
    def build_url(
        route: ProxyRoute,
        path_params: Optional[Mapping[str, Any]] = None,
        query: QueryInput = None,
    ) -> str:
        """
        Build the downstream URL relative to the service base URL.

        Path parameters are percent-encoded; query keys outside the route's
        allow-list are dropped, repeated keys are kept in order.
        """
        encoded = {
            key: quote(str(value), safe="")
            for key, value in (path_params or {}).items()
        }
        path = route.upstream_path.format(**encoded)

        pairs = [
            (key, value)
            for key, value in _query_pairs(query)
            if key in route.allowed_query
            and value.strip()
            and value not in route.ignored_values
        ]
        if pairs:
            return f"{path}?{urlencode(pairs)}"
        return path

    def _outgoing_headers(
        self,
        headers: Optional[Mapping[str, str]],
        bearer_token: Optional[str],
    ) -> Dict[str, str]:
        outgoing = {"Accept": "application/json"}
        for name, value in (headers or {}).items():
            if name.lower() in FORWARDED_HEADERS and value:
                outgoing[name.lower()] = value
        if bearer_token:
            outgoing["Authorization"] = f"Bearer {bearer_token}"
        return outgoing

    async def forward(
        self,
        route: ProxyRoute,
        method: str,
        *,
        path_params: Optional[Mapping[str, Any]] = None,
        query: QueryInput = None,
        body: Optional[bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
        bearer_token: Optional[str] = None,
    ) -> ProxyResult:
        """
        Forward one request downstream.

        Args:
            route: Matched proxy route
            method: HTTP method, sent verbatim
            path_params: Values for the upstream path template
            query: Inbound query parameters (filtered by the route allow-list)
            body: Raw inbound body; sent only for POST/PUT/PATCH, or DELETE when non-empty
            headers: Identity headers to forward (see FORWARDED_HEADERS)
            bearer_token: Credential for the Authorization header

        Returns:
            ProxyResult with the upstream status and parsed JSON body

        Raises:
            ServiceUnavailable: Downstream unreachable
            UpstreamError: Downstream answered non-2xx
            InternalError: Any other failure
        """
        method = method.upper()
        url = self.build_url(route, path_params, query)
        client = self.client(route.service)

        content = None
        if method in BODY_METHODS or (method == "DELETE" and body):
            content = body or b""

        logger.info(f"Proxying request: route={route.name}, method={method}, url={url}")

        try:
            response = await client.request(
                method,
                url,
                content=content,
                headers=self._outgoing_headers(headers, bearer_token),
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.error(
                f"Downstream service unavailable: service={route.service}, "
                f"url={url}, error={type(e).__name__}: {e}"
            )
            raise ServiceUnavailable(
                f"{route.service} service unavailable",
                details={"service": route.service, "error": str(e)} if self.expose_error_details else None,
            )
        except Exception as e:
            logger.error(
                f"Proxy request failed: service={route.service}, url={url}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True
            )
            raise InternalError(
                "Internal server error",
                details={"service": route.service, "error": f"{type(e).__name__}: {e}"}
                if self.expose_error_details else None,
            )

        logger.info(
            f"Downstream responded: route={route.name}, status={response.status_code}"
        )

        if response.status_code == 204:
            return ProxyResult(status_code=204)

        data = _parse_body(response)

        if not response.is_success:
            details = None
            if self.expose_error_details:
                details = {
                    "service": route.service,
                    "method": method,
                    "url": str(response.request.url),
                    "status": response.status_code,
                }
            raise UpstreamError(
                response.status_code,
                data,
                service=route.service,
                details=details,
            )

        return ProxyResult(status_code=response.status_code, body=data)

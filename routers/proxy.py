"""
Proxy router for the DealCycle domain services.

Every route here only validates identity and forwards the call: the identity
middleware has already resolved the tenant, this router resolves the bearer
credential and hands the request to the ProxyForwarder.
"""

import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from services.bypass_token import BypassTokenProvider
from services.errors import MethodNotAllowed, MissingTenantError, UpstreamError
from services.proxy import BODY_METHODS, ProxyForwarder, ProxyRoute
from utils.context_utils import (
    TOKEN_SOURCE_BYPASS,
    get_bypass_provider,
    get_forwarder,
    get_request_identity,
    resolve_bearer_token,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

ACCEPTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]
ITEM_METHODS = ("GET", "PUT", "PATCH", "DELETE")
COLLECTION_METHODS = ("GET", "POST")

PAGING_QUERY = frozenset({"page", "limit", "sortBy", "sortOrder", "search"})


def _collection(name: str, service: str, path: str, upstream: str, *extra_query: str) -> ProxyRoute:
    return ProxyRoute(
        name=name,
        service=service,
        path=path,
        upstream_path=upstream,
        methods=COLLECTION_METHODS,
        allowed_query=PAGING_QUERY | frozenset(extra_query),
    )


def _item(name: str, service: str, path: str, upstream: str) -> ProxyRoute:
    return ProxyRoute(
        name=name,
        service=service,
        path=path,
        upstream_path=upstream,
        methods=ITEM_METHODS,
    )


# Literal segments (upcoming, calendar, week) are listed before the
# parameterized item routes they would otherwise be captured by.
PROXY_ROUTES: List[ProxyRoute] = [
    # Leads
    _collection(
        "leads", "leads", "/api/leads", "/leads",
        "status", "source", "priority", "assignedTo", "tag",
    ),
    _item("lead", "leads", "/api/leads/{lead_id}", "/leads/{lead_id}"),

    # Buyers
    _collection(
        "buyers", "buyers", "/api/buyers", "/buyers",
        "buyerType", "investmentRange", "city", "state", "isActive",
    ),
    _item("buyer", "buyers", "/api/buyers/{buyer_id}", "/buyers/{buyer_id}"),

    # Transactions
    _collection(
        "transactions", "transactions", "/api/transactions", "/transactions",
        "status", "type", "assignedTo",
    ),
    _item(
        "transaction", "transactions",
        "/api/transactions/{transaction_id}", "/transactions/{transaction_id}",
    ),
    ProxyRoute(
        name="transaction_status",
        service="transactions",
        path="/api/transactions/{transaction_id}/status",
        upstream_path="/transactions/{transaction_id}/status",
        methods=("PUT", "PATCH"),
    ),
    ProxyRoute(
        name="transaction_activities",
        service="transactions",
        path="/api/transactions/{transaction_id}/activities",
        upstream_path="/transactions/{transaction_id}/activities",
        methods=COLLECTION_METHODS,
        allowed_query=frozenset({"page", "limit"}),
    ),

    # ATS
    _collection(
        "ats_candidates", "ats", "/api/ats/candidates", "/candidates",
        "status", "source", "tag", "position",
    ),
    _item(
        "ats_candidate", "ats",
        "/api/ats/candidates/{candidate_id}", "/candidates/{candidate_id}",
    ),
    _collection(
        "ats_interviews", "ats", "/api/ats/interviews", "/interviews",
        "status", "candidateId", "interviewerId", "type",
    ),
    ProxyRoute(
        name="ats_interviews_upcoming",
        service="ats",
        path="/api/ats/interviews/upcoming",
        upstream_path="/interviews/upcoming",
        allowed_query=frozenset({"limit", "interviewerId"}),
    ),
    ProxyRoute(
        name="ats_interviews_calendar",
        service="ats",
        path="/api/ats/interviews/calendar",
        upstream_path="/interviews/calendar",
        allowed_query=frozenset({"startDate", "endDate"}),
    ),
    _item(
        "ats_interview", "ats",
        "/api/ats/interviews/{interview_id}", "/interviews/{interview_id}",
    ),
    ProxyRoute(
        name="ats_interview_start",
        service="ats",
        path="/api/ats/interviews/{interview_id}/start",
        upstream_path="/interviews/{interview_id}/start",
        methods=("POST",),
    ),
    ProxyRoute(
        name="ats_interview_complete",
        service="ats",
        path="/api/ats/interviews/{interview_id}/complete",
        upstream_path="/interviews/{interview_id}/complete",
        methods=("POST",),
    ),
    _collection(
        "ats_applications", "ats", "/api/ats/applications", "/applications",
        "status", "candidateId", "jobPostingId",
    ),
    _item(
        "ats_application", "ats",
        "/api/ats/applications/{application_id}", "/applications/{application_id}",
    ),
    _collection(
        "ats_job_postings", "ats", "/api/ats/job-postings", "/job-postings",
        "status", "department", "location",
    ),
    _item(
        "ats_job_posting", "ats",
        "/api/ats/job-postings/{job_posting_id}", "/job-postings/{job_posting_id}",
    ),
    _collection(
        "ats_scripts", "ats", "/api/ats/scripts", "/scripts",
        "type", "isActive", "tag",
    ),
    _item("ats_script", "ats", "/api/ats/scripts/{script_id}", "/scripts/{script_id}"),
    ProxyRoute(
        name="ats_script_clone",
        service="ats",
        path="/api/ats/scripts/{script_id}/clone",
        upstream_path="/scripts/{script_id}/clone",
        methods=("POST",),
    ),

    # Timesheets
    ProxyRoute(
        name="time_entries_week",
        service="timesheets",
        path="/api/timesheets/entries/week",
        upstream_path="/time-entries/week",
        allowed_query=frozenset({"userId", "weekStart"}),
    ),
    _collection(
        "time_entries", "timesheets", "/api/timesheets/entries", "/time-entries",
        "userId", "startDate", "endDate", "status",
    ),
    ProxyRoute(
        name="time_entry",
        service="timesheets",
        path="/api/timesheets/entries/{entry_id}",
        upstream_path="/time-entries/{entry_id}",
        methods=("GET", "PUT", "DELETE"),
    ),

    # Auth: the OAuth callback carries no bearer token yet
    ProxyRoute(
        name="auth_google_callback",
        service="auth",
        path="/api/auth/google/callback",
        upstream_path="/google/callback",
        methods=("GET", "POST"),
        allowed_query=frozenset({"code", "state", "scope", "error"}),
        requires_auth=False,
    ),
]


async def proxy_request(
    route: ProxyRoute,
    request: Request,
    provider: BypassTokenProvider,
    forwarder: ProxyForwarder,
) -> Response:
    """
    Forward one inbound request along a proxy route.

    Raises:
        MethodNotAllowed: Method not served by the route (405 with Allow)
        AuthenticationRequired / BypassTokenUnavailable: No usable credential
        ServiceUnavailable / UpstreamError / InternalError: Forwarding failed
    """
    method = request.method.upper()
    if not route.allows(method):
        raise MethodNotAllowed(
            "Method not allowed",
            headers={"Allow": route.allow_header},
        )

    identity = get_request_identity(request)
    if not identity.tenant_id:
        raise MissingTenantError("Tenant context not found")

    token: Optional[str] = identity.bearer_token
    token_source: Optional[str] = None
    if route.requires_auth:
        token, token_source = await resolve_bearer_token(identity, provider)

    body = None
    if method in BODY_METHODS or method == "DELETE":
        body = await request.body()

    forward_headers = {
        "content-type": request.headers.get("content-type", "application/json"),
        "x-tenant-id": identity.tenant_id,
        "x-user-id": identity.user_id,
        "x-session-id": identity.session_id,
    }
    if identity.ip_address != "unknown":
        forward_headers["x-forwarded-for"] = identity.ip_address

    try:
        result = await forwarder.forward(
            route,
            method,
            path_params=request.path_params,
            query=request.query_params,
            body=body,
            headers={k: v for k, v in forward_headers.items() if v},
            bearer_token=token,
        )
    except UpstreamError as e:
        if e.status_code == 401 and token_source == TOKEN_SOURCE_BYPASS:
            logger.warning(f"Bypass token rejected downstream: route={route.name}")
            provider.invalidate(token)
        raise

    if result.status_code == 204:
        return Response(status_code=204)
    return JSONResponse(result.body, status_code=result.status_code)


def _make_endpoint(route: ProxyRoute) -> Callable:
    async def endpoint(
        request: Request,
        provider: BypassTokenProvider = Depends(get_bypass_provider),
        forwarder: ProxyForwarder = Depends(get_forwarder),
    ) -> Response:
        return await proxy_request(route, request, provider, forwarder)

    endpoint.__name__ = f"proxy_{route.name}"
    return endpoint


for _route in PROXY_ROUTES:
    router.add_api_route(
        _route.path,
        _make_endpoint(_route),
        methods=ACCEPTED_METHODS,
        name=_route.name,
    )

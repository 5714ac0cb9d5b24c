"""
Property-Based Tests for Credential Extraction

This module tests that credential extraction follows the documented
precedence chains and never raises, whatever combination of headers,
cookies and query parameters a request carries.
"""

from hypothesis import given, strategies as st, settings

from conftest import build_request
from middleware.credentials import (
    IP_ADDRESS_SOURCES,
    SESSION_ID_SOURCES,
    extract_credentials,
    first_non_empty,
    ip_from_forwarded_for,
)

# Header-safe token text (visible ASCII, no separators that change meaning)
token_text = st.text(
    alphabet=st.characters(min_codepoint=33, max_codepoint=126, exclude_characters=",;=\"\\"),
    min_size=1,
    max_size=40,
)
ipv4 = st.ip_addresses(v=4).map(str)
padding = st.sampled_from(["", " ", "  ", "\t"])


@given(
    addresses=st.lists(ipv4, min_size=2, max_size=5),
    pads=st.lists(padding, min_size=10, max_size=10),
)
@settings(max_examples=100)
def test_forwarded_for_yields_first_address(addresses, pads):
    """
    For any x-forwarded-for value with several comma-separated addresses,
    the extracted IP is the first address, trimmed.
    """
    header = ",".join(
        f"{pads[i % len(pads)]}{address}{pads[(i + 1) % len(pads)]}"
        for i, address in enumerate(addresses)
    )
    request = build_request({"x-forwarded-for": header})

    assert extract_credentials(request).ip_address == addresses[0]


def test_forwarded_for_concrete_example():
    request = build_request({"x-forwarded-for": "203.0.113.5, 10.0.0.1"})

    assert extract_credentials(request).ip_address == "203.0.113.5"


@given(
    header_session=st.one_of(st.none(), token_text),
    bearer=st.one_of(st.none(), token_text),
    cookie_session=st.one_of(st.none(), token_text),
    query_session=st.one_of(st.none(), st.from_regex(r"[A-Za-z0-9]{1,20}", fullmatch=True)),
)
@settings(max_examples=100)
def test_session_id_precedence(header_session, bearer, cookie_session, query_session):
    """Session id: header, then bearer token, then cookie, then query."""
    headers = {}
    if header_session is not None:
        headers["x-session-id"] = header_session
    if bearer is not None:
        headers["authorization"] = f"Bearer {bearer}"
    if cookie_session is not None:
        headers["cookie"] = f"sessionId={cookie_session}"
    query = f"sessionId={query_session}" if query_session is not None else ""

    request = build_request(headers, query_string=query)
    expected = next(
        (value for value in (header_session, bearer, cookie_session, query_session) if value),
        None,
    )

    assert extract_credentials(request).session_id == expected


@given(
    user=st.one_of(st.none(), token_text),
    tenant=st.one_of(st.none(), token_text),
    agent=st.one_of(st.none(), token_text),
)
@settings(max_examples=50)
def test_extraction_never_raises_and_defaults_unknown(user, tenant, agent):
    headers = {}
    if user is not None:
        headers["x-user-id"] = user
    if tenant is not None:
        headers["x-tenant-id"] = tenant
    if agent is not None:
        headers["user-agent"] = agent

    candidates = extract_credentials(build_request(headers, client=None))

    assert candidates.user_id == user
    assert candidates.tenant_header == tenant
    assert candidates.user_agent == (agent or "unknown")
    assert candidates.ip_address == "unknown"


def test_ip_precedence_falls_through_to_peer():
    request = build_request({}, client=("198.51.100.7", 443))

    assert extract_credentials(request).ip_address == "198.51.100.7"


def test_real_ip_beats_client_ip():
    request = build_request({"x-real-ip": "192.0.2.1", "x-client-ip": "192.0.2.2"})

    assert extract_credentials(request).ip_address == "192.0.2.1"


def test_empty_forwarded_for_is_skipped():
    request = build_request({"x-forwarded-for": " ", "x-client-ip": "192.0.2.2"})

    assert extract_credentials(request).ip_address == "192.0.2.2"


def test_bearer_token_is_not_a_user_id():
    request = build_request({"authorization": "Bearer abc123"})

    candidates = extract_credentials(request)

    assert candidates.bearer_token == "abc123"
    assert candidates.session_id == "abc123"
    assert candidates.user_id is None


def test_whitespace_headers_count_as_absent():
    request = build_request({"x-session-id": "   ", "x-user-id": " ", "x-tenant-id": "  "})

    candidates = extract_credentials(request)

    assert candidates.session_id is None
    assert candidates.user_id is None
    assert candidates.tenant_header is None


def test_chains_are_ordered_data():
    assert SESSION_ID_SOURCES[0].__name__ == "session_from_header"
    assert IP_ADDRESS_SOURCES[0] is ip_from_forwarded_for
    assert first_non_empty(build_request({}, client=None), IP_ADDRESS_SOURCES) is None

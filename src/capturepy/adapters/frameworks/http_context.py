"""Request enrichment shared by the HTTP and RPC boundary adapters."""

from collections.abc import Iterable, Mapping

from capturepy.core.models import User
from capturepy.core.scope import Scope
from capturepy.core.tracing import is_valid_trace_id

# Header names (lower-cased) never copied into event contexts.
REDACTED_HEADERS = frozenset({"authorization", "cookie", "x-api-key"})

USER_ID_HEADER = "x-user-id"
SESSION_ID_HEADER = "x-session-id"
# Carries the trace id between services, on HTTP headers and RPC metadata.
TRACE_ID_HEADER = "x-trace-id"


def filter_headers(headers: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Drop redacted headers; keep the first value of repeated names.

    Names are matched case-insensitively and returned lower-cased.
    """
    kept: dict[str, str] = {}
    for name, value in headers:
        key = name.lower()
        if key in REDACTED_HEADERS or key in kept:
            continue
        kept[key] = value
    return kept


def enrich_scope_from_request(
    scope: Scope,
    method: str,
    url: str,
    headers: Iterable[tuple[str, str]],
    remote_addr: str = "",
) -> dict[str, str]:
    """Populate ``scope`` with request tags, filtered headers and identity.

    Args:
        scope: Scope of the current call.
        method: HTTP method, or the RPC method for RPC calls.
        url: Full request URL (path for RPC calls).
        headers: Header or metadata pairs in arrival order.
        remote_addr: Client address, if known.

    Returns:
        The filtered headers, lower-cased.
    """
    filtered = filter_headers(headers)
    scope.set_tags(
        {
            "http.method": method,
            "http.url": url,
            "http.user_agent": filtered.get("user-agent", ""),
            "http.remote_addr": remote_addr,
        }
    )
    scope.set_headers(filtered)
    scope.set_context("request", {"method": method, "url": url, "headers": filtered})
    user_id = filtered.get(USER_ID_HEADER)
    if user_id:
        scope.set_user(User(id=user_id))
    session_id = filtered.get(SESSION_ID_HEADER)
    if session_id:
        scope.set_tag("session.id", session_id)
    return filtered


def incoming_trace_id(headers: Mapping[str, str]) -> str | None:
    """Return the upstream trace id from filtered headers, if it is valid."""
    value = headers.get(TRACE_ID_HEADER, "").strip().lower()
    return value if is_valid_trace_id(value) else None


def outgoing_metadata(
    trace_id: str, metadata: Iterable[tuple[str, str]] = ()
) -> list[tuple[str, str]]:
    """Copy ``metadata`` for an outgoing call, carrying ``trace_id``.

    Any trace header already present is replaced.
    """
    pairs = [(k, v) for k, v in metadata if k.lower() != TRACE_ID_HEADER]
    pairs.append((TRACE_ID_HEADER, trace_id))
    return pairs

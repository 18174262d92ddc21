"""Pure helper functions for the proxy handlers.

No ProxyState dependency. Endpoint paths, header filtering, credential and
query-string handling shared by all handlers live here.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from urllib.parse import urlencode

from fastapi.security import HTTPBasic, HTTPBasicCredentials

from ..types import AuthenticationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ADD_ENDPOINT = "/api/v0/add"
DAG_IMPORT_ENDPOINT = "/api/v0/dag/import"
PIN_LS_ENDPOINT = "/api/v0/pin/ls"
PIN_RM_ENDPOINT = "/api/v0/pin/rm"

# Counter tag for any query param a handler does not accept. Caller-chosen
# names would grow the counter series without bound.
OTHER_PARAM = "other"

# Request headers that must not be forwarded. Content-Length is kept so the
# upload body is forwarded with the framing the caller chose.
_HOP_BY_HOP = frozenset({
    "host", "connection", "transfer-encoding", "keep-alive",
    "proxy-authenticate", "proxy-authorization", "te", "trailers",
    "upgrade",
})

basic_auth = HTTPBasic(auto_error=False, realm="user-mapping-proxy")


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def forward_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Filter out hop-by-hop headers for forwarding."""
    return {
        k: v for k, v in headers.items()
        if k.lower() not in _HOP_BY_HOP
    }


def require_user(credentials: HTTPBasicCredentials | None) -> str:
    """Return the Basic auth username. The password is not checked here."""
    if credentials is None or not credentials.username:
        raise AuthenticationError("no basic auth")
    return credentials.username


def first_invalid_param(
    params: Iterable[tuple[str, str]],
    allowed: Iterable[str] = (),
) -> str | None:
    """Name of the first query param not in *allowed*, or None."""
    allowed = set(allowed)
    for name, _ in params:
        if name not in allowed:
            return name
    return None


def flag_enabled(params: Iterable[tuple[str, str]], name: str) -> bool:
    """Truthy-by-default query flag.

    Absent means False. Present with the literal value ``false`` means False.
    Any other value, including an empty one, means True. With repeated
    values the first one decides.
    """
    for key, value in params:
        if key == name:
            return value != "false"
    return False


def encode_query(params: Iterable[tuple[str, str]]) -> str:
    return urlencode(list(params))

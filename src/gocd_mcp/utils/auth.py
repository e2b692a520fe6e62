# ABOUTME: Per-request GoCD token resolution for GoCD MCP Server
# ABOUTME: Reads the caller's bearer token from the MCP HTTP request, with a configured fallback

"""
Token resolution.

Over the HTTP transports each MCP request carries the caller's GoCD token:

    POST /mcp
    Authorization: Bearer <gocd personal access token>

The token is read from that request and handed to the client call
explicitly. Nothing is stored between requests.

Over stdio there are no headers; the token configured as GOCD_API_TOKEN is
used instead.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from gocd_mcp.utils.errors import MissingTokenError

if TYPE_CHECKING:
    from mcp.server.fastmcp import Context

MISSING_TOKEN_MESSAGE = (
    "GoCD API token is required. Please provide a Bearer token for authentication."
)

_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def parse_bearer(header: str | None) -> str | None:
    """Token from an Authorization header value, or None if absent or not Bearer."""
    if not header:
        return None
    match = _BEARER.match(header.strip())
    if not match:
        return None
    return match.group(1).strip() or None


def extract_bearer_token(ctx: Context[Any, Any, Any]) -> str | None:
    """
    Bearer token of the HTTP request behind this MCP call.

    Returns None outside a request, on stdio, or when the header is missing
    or malformed.
    """
    try:
        request = ctx.request_context.request
    except ValueError:
        # Context used outside of a request
        return None
    if request is None:
        return None
    headers = getattr(request, "headers", None)
    if headers is None:
        return None
    return parse_bearer(headers.get("authorization"))


def resolve_token(ctx: Context[Any, Any, Any], fallback: str | None = None) -> str:
    """
    Token to use for this call: the request's bearer token, else the fallback.

    Raises:
        MissingTokenError: If neither is available.
    """
    token = extract_bearer_token(ctx) or fallback
    if not token:
        raise MissingTokenError(MISSING_TOKEN_MESSAGE)
    return token

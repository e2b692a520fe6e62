# ABOUTME: MCP tool result envelopes for GoCD MCP Server
# ABOUTME: Maps results and exceptions to text content with stable error codes

"""
Tool result formatting.

Every tool returns a CallToolResult with a single text block:

    success   {"content": [{"type": "text", "text": "<json or raw text>"}]}
    failure   {"content": [{"type": "text", "text": "<error json>"}], "isError": true}

Error JSON always has the same keys so that an assistant can branch on
`code` instead of parsing prose:

    {"error": true, "code": "NOT_FOUND", "message": "Resource not found: pipelines/x/status"}

    Error                         code            extra
    ----------------------------  --------------  ----------
    GocdApiError 401              UNAUTHORIZED
    GocdApiError 403              FORBIDDEN
    GocdApiError 404              NOT_FOUND
    GocdApiError other            API_ERROR       statusCode
    MissingTokenError             UNAUTHORIZED
    any other Exception           ERROR
    anything else                 UNKNOWN_ERROR
"""

from __future__ import annotations

import json
from typing import Any

from mcp.types import CallToolResult, TextContent

from gocd_mcp.utils.errors import GocdApiError, MissingTokenError


def _to_jsonable(data: Any) -> Any:
    """Domain objects expose to_dict(); containers of them are walked."""
    if hasattr(data, "to_dict"):
        return data.to_dict()
    if isinstance(data, list):
        return [_to_jsonable(item) for item in data]
    return data


def format_text_response(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)])


def format_json_response(data: Any) -> CallToolResult:
    """JSON text (indent 2) of a value or domain object."""
    return format_text_response(json.dumps(_to_jsonable(data), indent=2))


def format_success_response(message: str) -> CallToolResult:
    return format_json_response({"success": True, "message": message})


def format_error_response(error: object) -> str:
    """Error JSON text for an exception (or any raised value)."""
    body: dict[str, Any]

    if isinstance(error, GocdApiError):
        if error.status_code == 401:
            body = {
                "code": "UNAUTHORIZED",
                "message": "Authentication failed. Check your GoCD API token.",
            }
        elif error.status_code == 403:
            body = {"code": "FORBIDDEN", "message": f"Permission denied for {error.endpoint}"}
        elif error.status_code == 404:
            body = {"code": "NOT_FOUND", "message": f"Resource not found: {error.endpoint}"}
        else:
            body = {"code": "API_ERROR", "message": str(error), "statusCode": error.status_code}
    elif isinstance(error, MissingTokenError):
        body = {"code": "UNAUTHORIZED", "message": str(error)}
    elif isinstance(error, Exception):
        # httpx timeouts stringify to ""
        body = {"code": "ERROR", "message": str(error) or type(error).__name__}
    else:
        body = {"code": "UNKNOWN_ERROR", "message": str(error)}

    return json.dumps({"error": True, **body})


def format_tool_error(error: object) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=format_error_response(error))],
        isError=True,
    )

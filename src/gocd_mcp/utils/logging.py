# ABOUTME: Structured logging with correlation IDs for GoCD MCP Server
# ABOUTME: Implements audit logging and secret masking for logged upstream bodies

"""
Structured logging with correlation IDs and audit trails.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module provides the observability features of the server:

1. STRUCTURED LOGGING: structlog events with consistent fields, rendered as
   colored console text or one JSON object per line.

2. CORRELATION IDs: A short identifier attached to every log entry produced
   while handling one MCP tool call, so that the upstream GoCD requests made
   for that call can be found together:

    {"correlation_id": "a1b2c3", "event": "gocd_request", "path": "api/dashboard"}
    {"correlation_id": "a1b2c3", "event": "gocd_response", "status": 200}
    {"correlation_id": "a1b2c3", "event": "audit", "action": "list_pipelines"}

3. AUDIT LOGGING: One record per tool call (success, error, or blocked).

4. SECRET MASKING: Upstream error bodies are logged, and GoCD echoes request
   payloads in some errors. Tokens and passwords are masked before logging.

=============================================================================
WHY STDERR?
=============================================================================

With the stdio transport, stdout IS the MCP protocol stream. A single log
line on stdout corrupts the JSON-RPC framing, so all logs go to stderr.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

# Each asyncio task sees its own value, so concurrent tool calls never share an ID.
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Get current correlation ID or generate new one.

    Code running outside a tool call (startup, shutdown) still gets an ID so
    that its logs are correlatable.

    Returns:
        8-character correlation ID string.
    """
    cid = correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """
    Set correlation ID for current context.

    Called at the start of each MCP tool function with the MCP request ID.
    An empty string makes the next get_correlation_id() generate a new one.
    """
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor that stamps every event with the correlation ID."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging.

    Call once at startup. Calling again reconfigures (useful in tests).

    PROCESSOR PIPELINE:
    -------------------
    1. merge_contextvars: Adds any context variables
    2. add_log_level: Adds "level" field
    3. TimeStamper: Adds ISO-format timestamp
    4. add_correlation_id: Adds our correlation ID
    5. Renderer: JSON (tracebacks formatted first) or console text

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_output: True for JSON lines, False for console rendering.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        # stdout belongs to the stdio transport
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# SECRET MASKING
# =============================================================================

MASK = "***MASKED***"

# (pattern, replacement) pairs applied to strings; case-insensitive.
SECRET_PATTERNS = [
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(password[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(secret[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(bearer\s+)[^\s\"']+", re.I), rf"\1{MASK}"),
]

# Dictionary keys whose values are always masked.
# GoCD environment variables carry secure values under "encrypted_value".
SENSITIVE_KEYS = frozenset(
    [
        "token",
        "password",
        "secret",
        "api_key",
        "apikey",
        "api-key",
        "authorization",
        "credentials",
        "encrypted_value",
        "secure_value",
    ]
)


def mask_secrets(data: Any) -> Any:
    """
    Mask sensitive values in a string or nested dict/list structure.

    Strings are rewritten with SECRET_PATTERNS; dict values under
    SENSITIVE_KEYS are replaced outright; containers are walked recursively.
    Other values are returned unchanged.

    Example:
        >>> mask_secrets({"user": "bob", "password": "hunter2"})
        {'user': 'bob', 'password': '***MASKED***'}
        >>> mask_secrets("Authorization: Bearer abc123")
        'Authorization: Bearer ***MASKED***'
    """
    if isinstance(data, str):
        masked = data
        for pattern, replacement in SECRET_PATTERNS:
            masked = pattern.sub(replacement, masked)
        return masked

    if isinstance(data, dict):
        return {
            k: MASK if str(k).lower() in SENSITIVE_KEYS else mask_secrets(v)
            for k, v in data.items()
        }

    if isinstance(data, list):
        return [mask_secrets(item) for item in data]

    return data


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Audit logger for recording every tool call.

    WHAT WE LOG:
    ------------
    - timestamp: When it happened (UTC ISO 8601)
    - correlation_id: Request identifier
    - action: Tool name ("trigger_pipeline", "get_job_console")
    - target: Resource ("build-linux/42/test/1/unit")
    - result: "success", "error" or "blocked"
    - details: Optional context (error message, trigger options)

    Write operations (trigger, pause, cancel) matter most here: they change
    the state of the CD server on behalf of whoever holds the token.

    OUTPUT MODES:
    -------------
    1. FILE: Append one JSON object per line.
    2. STREAM: Emit an "audit" event through structlog.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Initialize audit logger.

        Args:
            log_path: File to append JSON lines to, or None for structlog.
                      The parent directory must exist.
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log an auditable action.

        All convenience methods delegate here.
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_read(self, action: str, target: str) -> None:
        """Log a successful read operation."""
        self.log(action, target, "success")

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log a write operation.

        Example:
            audit_logger.log_write(
                "trigger_pipeline",
                "build-linux",
                "success",
                {"update_materials": True},
            )
        """
        self.log(action, target, result, details)

    def log_blocked(self, action: str, target: str, reason: str) -> None:
        """Log a call refused before reaching GoCD (e.g. no credentials)."""
        self.log(action, target, "blocked", {"reason": reason})

    def log_error(self, action: str, target: str, error: str) -> None:
        """Log a call that failed upstream or during processing."""
        self.log(action, target, "error", {"error": error})

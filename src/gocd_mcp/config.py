# ABOUTME: Configuration management for GoCD MCP Server
# ABOUTME: Handles environment variables for the GoCD connection, transport, and logging

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module handles all configuration for the MCP server. It:

1. READS environment variables (like GOCD_SERVER_URL, GOCD_MCP_PORT)
2. VALIDATES them (ensures URLs are normalized, ports are integers, etc.)
3. PROVIDES typed access to settings throughout the application

=============================================================================
WHAT IS *NOT* CONFIGURED HERE: THE API TOKEN
=============================================================================

GoCD credentials normally arrive WITH EACH REQUEST as an
`Authorization: Bearer <token>` header. Different AI clients can talk to the
same server using different GoCD accounts, so the token is passed explicitly
to every client call instead of being stored on the client.

GOCD_API_TOKEN exists only as a FALLBACK for transports that have no HTTP
headers (stdio), where one local user runs their own server.

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

GoCD connection:
    GOCD_SERVER_URL           -> GoCD server base URL (required)
    GOCD_API_TOKEN            -> Fallback API token (optional)
    GOCD_INSECURE             -> Skip TLS certificate verification

Server settings (GOCD_MCP_ prefix):
    GOCD_MCP_TRANSPORT        -> streamable-http (default), sse, or stdio
    GOCD_MCP_HOST             -> Listen address (default: 0.0.0.0)
    GOCD_MCP_PORT             -> Listen port (default: 3999)
    GOCD_MCP_REQUEST_TIMEOUT  -> Upstream request timeout in seconds (default: 30)
    GOCD_MCP_MAX_GET_RETRIES  -> Retries for GET requests (default: 2)
    GOCD_MCP_RETRY_BACKOFF    -> Backoff multiplier in seconds (default: 0.5)
    GOCD_MCP_LOG_LEVEL        -> DEBUG, INFO, WARNING, ERROR, CRITICAL
    GOCD_MCP_JSON_LOGS        -> Emit JSON log lines instead of console output
    GOCD_MCP_AUDIT_LOG        -> Path to audit log file
    GOCD_MCP_MASK_SECRETS     -> Mask secrets in logged upstream bodies (default: true)
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# MAIN SERVER SETTINGS
# =============================================================================


class ServerSettings(BaseSettings):
    """
    Main server configuration.

    USAGE:
    ------
        settings = load_settings()  # Reads from environment
        print(settings.gocd_server_url)  # https://gocd.example.com
        print(settings.port)  # 3999
    """

    model_config = SettingsConfigDict(
        env_prefix="GOCD_MCP_",
        # Most settings read from GOCD_MCP_* environment variables
        # Exception: the gocd_* fields use validation_alias for GOCD_*
        extra="ignore",
        populate_by_name=True,
        # Allows using field name OR alias when creating instances
        # This enables both GOCD_SERVER_URL and gocd_server_url to work
    )

    # -------------------------------------------------------------------------
    # GOCD CONNECTION
    # -------------------------------------------------------------------------

    gocd_server_url: str = Field(
        default="",  # Empty string = not configured
        validation_alias="GOCD_SERVER_URL",
        description="GoCD server base URL, without the /go suffix",
    )

    gocd_api_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="GOCD_API_TOKEN",
        description="Fallback GoCD API token for requests without a bearer header",
    )
    # HOW TO GET A GOCD TOKEN:
    #   GoCD UI -> user menu -> Personal Access Tokens -> Generate Token

    gocd_insecure: bool = Field(
        default=False,
        validation_alias="GOCD_INSECURE",
        description="Skip TLS verification for the GoCD server",
    )

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Upstream request timeout in seconds",
    )

    max_get_retries: int = Field(
        default=2,
        ge=0,
        description="Retries for idempotent GET requests on transient failure",
    )
    # POST requests (trigger, pause, cancel) are never retried: running a
    # pipeline twice because the first response was slow is worse than failing.

    retry_backoff: float = Field(
        default=0.5,
        ge=0,
        description="Exponential backoff multiplier between GET retries, in seconds",
    )

    # -------------------------------------------------------------------------
    # MCP TRANSPORT
    # -------------------------------------------------------------------------

    transport: Literal["streamable-http", "sse", "stdio"] = Field(
        default="streamable-http",
        description="MCP transport to serve",
    )

    host: str = Field(default="0.0.0.0", description="Listen address for HTTP transports")  # noqa: S104

    port: int = Field(default=3999, ge=1, le=65535, description="Listen port for HTTP transports")

    # -------------------------------------------------------------------------
    # OBSERVABILITY
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )
    # DEBUG includes one line per upstream request and response.

    json_logs: bool = Field(default=False, description="Emit JSON log lines")

    audit_log: Path | None = Field(default=None, description="Path to audit log file")
    # When None (default), audit entries go to the structlog stream.

    mask_secrets: bool = Field(
        default=True,
        description="Mask sensitive values in logged upstream bodies",
    )

    # -------------------------------------------------------------------------
    # VALIDATORS
    # -------------------------------------------------------------------------

    @field_validator("gocd_server_url")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        """
        Ensure the URL has a scheme and no trailing slash.

        "gocd.example.com/"  ->  "https://gocd.example.com"

        An empty value stays empty so that "not configured" can be reported
        at startup with a clear message.
        """
        v = v.strip()
        if not v:
            return v
        if not v.startswith(("http://", "https://")):
            v = f"https://{v}"
        return v.rstrip("/")

    @property
    def fallback_token(self) -> str | None:
        """Configured fallback token, or None when unset."""
        value = self.gocd_api_token.get_secret_value()
        return value or None


# =============================================================================
# SETTINGS LOADER
# =============================================================================


def load_settings() -> ServerSettings:
    """
    Load settings from environment with validation.

    If GOCD_MCP_ENV_FILE is set, additional variables are read from that file.
    Useful for local development:

        GOCD_SERVER_URL=http://localhost:8153
        GOCD_API_TOKEN=my-dev-token
        GOCD_MCP_TRANSPORT=stdio

    Returns:
        Fully validated ServerSettings instance.

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return ServerSettings(
        _env_file=os.environ.get("GOCD_MCP_ENV_FILE"),
    )

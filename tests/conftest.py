# ABOUTME: Pytest fixtures and configuration for GoCD MCP Server tests
# ABOUTME: Provides shared fixtures for unit and integration tests

import os
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from gocd_mcp.config import ServerSettings
from gocd_mcp.utils.client import GocdClient
from gocd_mcp.utils.logging import AuditLogger

SERVER_URL = "https://gocd.example.com"
API_URL = f"{SERVER_URL}/go/api"
FILES_URL = f"{SERVER_URL}/go/files"
TOKEN = "test-token"

JUNIT_XML = """<?xml version="1.0" encoding="UTF-8"?>
<testsuites>
  <testsuite name="CalculatorTest" tests="3" failures="1" errors="0" skipped="1" time="0.5">
    <testcase name="adds" classname="com.example.CalculatorTest" time="0.1"/>
    <testcase name="divides" classname="com.example.CalculatorTest" time="0.2">
      <failure message="expected 2 but was 3" type="AssertionError">at CalculatorTest.divides(CalculatorTest.java:42)</failure>
    </testcase>
    <testcase name="later" classname="com.example.CalculatorTest">
      <skipped/>
    </testcase>
  </testsuite>
</testsuites>
"""


@pytest.fixture
def mock_server_settings() -> ServerSettings:
    """Create mock server settings."""
    return ServerSettings(
        gocd_server_url=SERVER_URL,
        gocd_api_token=SecretStr(""),
        retry_backoff=0,
    )


@pytest.fixture
async def client() -> AsyncIterator[GocdClient]:
    """GoCD client with retries that don't sleep, for respx-based tests."""
    async with GocdClient(SERVER_URL, retry_backoff=0) as gocd:
        yield gocd


@pytest.fixture
def mock_gocd_client() -> AsyncMock:
    """Create a mock GoCD client."""
    gocd = AsyncMock(spec=GocdClient)
    gocd.get_pipeline_status.return_value = {"paused": False, "locked": False, "schedulable": True}
    gocd.list_pipelines.return_value = []
    return gocd


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


def make_context(
    app: Any,
    authorization: str | None = f"Bearer {TOKEN}",
    request_id: str = "test-request-123",
) -> MagicMock:
    """MCP context whose HTTP request carries the given Authorization header."""
    ctx = MagicMock()
    ctx.request_id = request_id
    ctx.request_context.lifespan_context = app
    headers = {"authorization": authorization} if authorization is not None else {}
    ctx.request_context.request.headers = headers
    return ctx


# Integration test fixtures


@pytest.fixture
def gocd_server_url() -> str | None:
    """Get GoCD server URL from environment."""
    return os.environ.get("GOCD_SERVER_URL")


@pytest.fixture
def gocd_api_token() -> str | None:
    """Get GoCD API token from environment."""
    return os.environ.get("GOCD_API_TOKEN")


@pytest.fixture
async def live_gocd_client(
    gocd_server_url: str | None,
    gocd_api_token: str | None,
) -> AsyncIterator[GocdClient | None]:
    """Create a live GoCD client for integration tests."""
    if not gocd_server_url or not gocd_api_token:
        yield None
        return

    insecure = os.environ.get("GOCD_INSECURE", "false").lower() == "true"
    async with GocdClient(gocd_server_url, insecure=insecure) as gocd:
        yield gocd

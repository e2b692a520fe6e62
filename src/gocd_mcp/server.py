# ABOUTME: FastMCP server initialization and main entry point
# ABOUTME: Configures MCP server with GoCD tools, resources, health route, and lifecycle management

"""GoCD MCP Server - GoCD pipelines, stages and jobs for AI assistants."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult  # noqa: TC002 - Required at runtime for FastMCP signatures
from pydantic import BaseModel, Field
from starlette.requests import Request  # noqa: TC002 - Required at runtime for route signatures
from starlette.responses import JSONResponse

from gocd_mcp import __version__
from gocd_mcp.config import ServerSettings, load_settings
from gocd_mcp.utils.analysis import analyze_job_failures as run_failure_analysis
from gocd_mcp.utils.auth import resolve_token
from gocd_mcp.utils.client import GocdClient
from gocd_mcp.utils.errors import GocdError, MissingTokenError
from gocd_mcp.utils.logging import AuditLogger, configure_logging, set_correlation_id
from gocd_mcp.utils.responses import (
    format_json_response,
    format_success_response,
    format_text_response,
    format_tool_error,
)
from gocd_mcp.utils.url_parser import parse_gocd_url as parse_url

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

MCPContext = Context[Any, Any, Any]
logger = structlog.get_logger(__name__)

# Expected failures; anything else is also reported, but logged with a traceback
EXPECTED_ERRORS = (GocdError, httpx.HTTPError)


@dataclass
class AppContext:
    """Per-lifespan state, reached from tools via ctx.request_context.lifespan_context."""

    settings: ServerSettings
    client: GocdClient
    audit_logger: AuditLogger


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage server lifecycle: load config, open the GoCD client, cleanup on shutdown."""
    settings = load_settings()
    configure_logging(level=settings.log_level, json_output=settings.json_logs)

    if not settings.gocd_server_url:
        raise ValueError("GOCD_SERVER_URL is required")

    client = GocdClient(
        server_url=settings.gocd_server_url,
        timeout=settings.request_timeout,
        insecure=settings.gocd_insecure,
        max_get_retries=settings.max_get_retries,
        retry_backoff=settings.retry_backoff,
        mask_secrets=settings.mask_secrets,
    )
    async with client:
        logger.info("GoCD client ready", url=settings.gocd_server_url)
        yield AppContext(
            settings=settings,
            client=client,
            audit_logger=AuditLogger(settings.audit_log),
        )

    logger.info("GoCD client closed")


mcp = FastMCP("gocd-mcp", lifespan=lifespan)


def get_app(ctx: MCPContext) -> AppContext:
    """Get the lifespan state for this request."""
    app = ctx.request_context.lifespan_context
    if not isinstance(app, AppContext):
        raise RuntimeError("Server not initialized")
    return app


def _begin(ctx: MCPContext, app: AppContext) -> str:
    """Set the correlation ID and resolve the caller's token."""
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    return resolve_token(ctx, app.settings.fallback_token)


def _failed(app: AppContext, action: str, target: str, error: Exception) -> CallToolResult:
    """Audit a failed call and turn the error into an error result. Call from an except block."""
    if not isinstance(error, EXPECTED_ERRORS):
        logger.exception("tool_failed", action=action, target=target)
    if isinstance(error, MissingTokenError):
        app.audit_logger.log_blocked(action, target, str(error))
    else:
        app.audit_logger.log_error(action, target, str(error) or type(error).__name__)
    return format_tool_error(error)


# =============================================================================
# PARAMETER MODELS
# =============================================================================


class PipelineParams(BaseModel):
    pipeline_name: str = Field(description="Name of the pipeline")


class PipelineInstanceParams(PipelineParams):
    pipeline_counter: int = Field(ge=1, description="Pipeline run counter")


class StageParams(PipelineInstanceParams):
    stage_name: str = Field(description="Name of the stage")


class StageInstanceParams(StageParams):
    stage_counter: int = Field(ge=1, description="Stage run counter")

    @property
    def target(self) -> str:
        return (
            f"{self.pipeline_name}/{self.pipeline_counter}/{self.stage_name}/{self.stage_counter}"
        )


class JobParams(StageInstanceParams):
    """Full locator of one job run."""

    job_name: str = Field(description="Name of the job")

    @property
    def target(self) -> str:
        return f"{super().target}/{self.job_name}"


# =============================================================================
# PIPELINE TOOLS
# =============================================================================


@mcp.tool(structured_output=False)
async def list_pipelines(ctx: MCPContext) -> CallToolResult:
    """
    List all pipelines visible to you, with their group, lock state and pause state.

    Use this to discover pipeline names before calling other tools.
    """
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        pipelines = await app.client.list_pipelines(token)
    except Exception as e:  # noqa: BLE001
        return _failed(app, "list_pipelines", "all", e)

    app.audit_logger.log_read("list_pipelines", "all")
    return format_json_response(pipelines)


@mcp.tool(structured_output=False)
async def get_pipeline_status(params: PipelineParams, ctx: MCPContext) -> CallToolResult:
    """Get whether a pipeline is paused, locked, and schedulable."""
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        status = await app.client.get_pipeline_status(token, params.pipeline_name)
    except Exception as e:  # noqa: BLE001
        return _failed(app, "get_pipeline_status", params.pipeline_name, e)

    app.audit_logger.log_read("get_pipeline_status", params.pipeline_name)
    return format_json_response(status)


class GetPipelineHistoryParams(PipelineParams):
    page_size: int | None = Field(
        default=None, ge=1, description="Number of runs per page (default: 10)"
    )
    after: int | None = Field(
        default=None, description="Pagination cursor from a previous page"
    )


@mcp.tool(structured_output=False)
async def get_pipeline_history(
    params: GetPipelineHistoryParams, ctx: MCPContext
) -> CallToolResult:
    """
    Get the run history of a pipeline, newest first.

    Use this to find recent pipeline counters or spot when a pipeline started failing.
    """
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        history = await app.client.get_pipeline_history(
            token, params.pipeline_name, page_size=params.page_size, after=params.after
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "get_pipeline_history", params.pipeline_name, e)

    app.audit_logger.log_read("get_pipeline_history", params.pipeline_name)
    return format_json_response(history)


@mcp.tool(structured_output=False)
async def get_pipeline_instance(
    params: PipelineInstanceParams, ctx: MCPContext
) -> CallToolResult:
    """Get one pipeline run including build cause, materials, and stages."""
    target = f"{params.pipeline_name}/{params.pipeline_counter}"
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        instance = await app.client.get_pipeline_instance(
            token, params.pipeline_name, params.pipeline_counter
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "get_pipeline_instance", target, e)

    app.audit_logger.log_read("get_pipeline_instance", target)
    return format_json_response(instance)


class TriggerPipelineParams(PipelineParams):
    environment_variables: dict[str, str] | None = Field(
        default=None, description="Environment variables to set for this run"
    )
    update_materials: bool | None = Field(
        default=None, description="Fetch latest material revisions before scheduling"
    )


@mcp.tool(structured_output=False)
async def trigger_pipeline(params: TriggerPipelineParams, ctx: MCPContext) -> CallToolResult:
    """
    Trigger a new run of a pipeline.

    This schedules real work on the GoCD server.
    """
    details: dict[str, Any] = {}
    if params.environment_variables:
        # names only; values may be secrets
        details["environment_variables"] = sorted(params.environment_variables)
    if params.update_materials is not None:
        details["update_materials"] = params.update_materials

    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        await app.client.trigger_pipeline(
            token,
            params.pipeline_name,
            environment_variables=params.environment_variables,
            update_materials=params.update_materials,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "trigger_pipeline", params.pipeline_name, e)

    app.audit_logger.log_write("trigger_pipeline", params.pipeline_name, "success", details)
    return format_success_response(f"Pipeline '{params.pipeline_name}' triggered successfully")


class PausePipelineParams(PipelineParams):
    pause_cause: str | None = Field(default=None, description="Reason for pausing")


@mcp.tool(structured_output=False)
async def pause_pipeline(params: PausePipelineParams, ctx: MCPContext) -> CallToolResult:
    """Pause a pipeline so that no new runs are scheduled."""
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        await app.client.pause_pipeline(token, params.pipeline_name, reason=params.pause_cause)
    except Exception as e:  # noqa: BLE001
        return _failed(app, "pause_pipeline", params.pipeline_name, e)

    app.audit_logger.log_write(
        "pause_pipeline",
        params.pipeline_name,
        "success",
        {"pause_cause": params.pause_cause} if params.pause_cause else None,
    )
    return format_success_response(f"Pipeline '{params.pipeline_name}' paused successfully")


@mcp.tool(structured_output=False)
async def unpause_pipeline(params: PipelineParams, ctx: MCPContext) -> CallToolResult:
    """Unpause a paused pipeline."""
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        await app.client.unpause_pipeline(token, params.pipeline_name)
    except Exception as e:  # noqa: BLE001
        return _failed(app, "unpause_pipeline", params.pipeline_name, e)

    app.audit_logger.log_write("unpause_pipeline", params.pipeline_name, "success")
    return format_success_response(f"Pipeline '{params.pipeline_name}' unpaused successfully")


# =============================================================================
# STAGE TOOLS
# =============================================================================


@mcp.tool(structured_output=False)
async def get_stage_instance(params: StageInstanceParams, ctx: MCPContext) -> CallToolResult:
    """
    Get one stage run including every job's state and result.

    Use this to find which job failed in a stage before looking at its logs.
    """
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        instance = await app.client.get_stage_instance(
            token,
            params.pipeline_name,
            params.pipeline_counter,
            params.stage_name,
            params.stage_counter,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "get_stage_instance", params.target, e)

    app.audit_logger.log_read("get_stage_instance", params.target)
    return format_json_response(instance)


@mcp.tool(structured_output=False)
async def trigger_stage(params: StageParams, ctx: MCPContext) -> CallToolResult:
    """Run or re-run a stage within an existing pipeline run."""
    target = f"{params.pipeline_name}/{params.pipeline_counter}/{params.stage_name}"
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        await app.client.trigger_stage(
            token, params.pipeline_name, params.pipeline_counter, params.stage_name
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "trigger_stage", target, e)

    app.audit_logger.log_write("trigger_stage", target, "success")
    return format_success_response(
        f"Stage '{params.stage_name}' triggered in pipeline "
        f"'{params.pipeline_name}' run {params.pipeline_counter}"
    )


@mcp.tool(structured_output=False)
async def cancel_stage(params: StageInstanceParams, ctx: MCPContext) -> CallToolResult:
    """Cancel a running stage."""
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        await app.client.cancel_stage(
            token,
            params.pipeline_name,
            params.pipeline_counter,
            params.stage_name,
            params.stage_counter,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "cancel_stage", params.target, e)

    app.audit_logger.log_write("cancel_stage", params.target, "success")
    return format_success_response(f"Stage '{params.stage_name}' cancelled")


# =============================================================================
# JOB TOOLS
# =============================================================================


class ParseGocdUrlParams(BaseModel):
    url: str = Field(description="GoCD URL for a job, stage, or pipeline (e.g., from the browser)")


@mcp.tool(structured_output=False)
async def parse_gocd_url(params: ParseGocdUrlParams, ctx: MCPContext) -> CallToolResult:
    """
    Extract pipeline, stage and job from a GoCD URL.

    Use this FIRST when the user pastes a GoCD link, then call the other tools
    with the extracted names and counters.
    """
    # Pure parsing: no GoCD call, so no token needed
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    try:
        parsed = parse_url(params.url)
    except Exception as e:  # noqa: BLE001
        if not isinstance(e, GocdError):
            logger.exception("tool_failed", action="parse_gocd_url", target=params.url)
        return format_tool_error(e)
    return format_json_response(parsed)


@mcp.tool(structured_output=False)
async def analyze_job_failures(params: JobParams, ctx: MCPContext) -> CallToolResult:
    """
    Analyze why a job failed.

    Use this when asked "what went wrong" or "why did this fail". Looks for
    JUnit reports in the usual locations, extracts failed tests with messages
    and stack traces, and includes the console log.
    """
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        analysis = await run_failure_analysis(
            app.client,
            token,
            params.pipeline_name,
            params.pipeline_counter,
            params.stage_name,
            params.stage_counter,
            params.job_name,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "analyze_job_failures", params.target, e)

    app.audit_logger.log_read("analyze_job_failures", params.target)
    return format_json_response(analysis)


class GetJobHistoryParams(PipelineParams):
    stage_name: str = Field(description="Name of the stage")
    job_name: str = Field(description="Name of the job")
    page_size: int | None = Field(
        default=None, ge=1, description="Number of results per page (default: 10)"
    )


@mcp.tool(structured_output=False)
async def get_job_history(params: GetJobHistoryParams, ctx: MCPContext) -> CallToolResult:
    """Get the run history of one job across pipeline runs."""
    target = f"{params.pipeline_name}/{params.stage_name}/{params.job_name}"
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        history = await app.client.get_job_history(
            token,
            params.pipeline_name,
            params.stage_name,
            params.job_name,
            page_size=params.page_size,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "get_job_history", target, e)

    app.audit_logger.log_read("get_job_history", target)
    return format_json_response(history)


@mcp.tool(structured_output=False)
async def get_job_instance(params: JobParams, ctx: MCPContext) -> CallToolResult:
    """Get one job run: state, result, agent and timestamps."""
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        instance = await app.client.get_job_instance(
            token,
            params.pipeline_name,
            params.pipeline_counter,
            params.stage_name,
            params.stage_counter,
            params.job_name,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "get_job_instance", params.target, e)

    app.audit_logger.log_read("get_job_instance", params.target)
    return format_json_response(instance)


@mcp.tool(structured_output=False)
async def get_job_console(params: JobParams, ctx: MCPContext) -> CallToolResult:
    """
    Get the full console log of a job run.

    Use this to read build output, compiler errors and stack traces.
    """
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        console_log = await app.client.get_job_console_log(
            token,
            params.pipeline_name,
            params.pipeline_counter,
            params.stage_name,
            params.stage_counter,
            params.job_name,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "get_job_console", params.target, e)

    app.audit_logger.log_read("get_job_console", params.target)
    return format_text_response(console_log)


@mcp.tool(structured_output=False)
async def list_job_artifacts(params: JobParams, ctx: MCPContext) -> CallToolResult:
    """
    List the files and folders a job published as artifacts.

    Use this to find test reports or build outputs before downloading one.
    """
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        artifacts = await app.client.list_job_artifacts(
            token,
            params.pipeline_name,
            params.pipeline_counter,
            params.stage_name,
            params.stage_counter,
            params.job_name,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "list_job_artifacts", params.target, e)

    app.audit_logger.log_read("list_job_artifacts", params.target)
    return format_json_response(artifacts)


class GetJobArtifactParams(JobParams):
    artifact_path: str = Field(
        description="Path to the artifact file (e.g., 'test-results/junit.xml')"
    )


@mcp.tool(structured_output=False)
async def get_job_artifact(params: GetJobArtifactParams, ctx: MCPContext) -> CallToolResult:
    """
    Download one artifact file as text.

    For JUnit reports prefer parse_junit_xml, which returns structured results.
    """
    target = f"{params.target}/{params.artifact_path}"
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        content = await app.client.get_job_artifact(
            token,
            params.pipeline_name,
            params.pipeline_counter,
            params.stage_name,
            params.stage_counter,
            params.job_name,
            params.artifact_path,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "get_job_artifact", target, e)

    app.audit_logger.log_read("get_job_artifact", target)
    return format_text_response(content)


class ParseJUnitXmlParams(JobParams):
    junit_path: str = Field(
        description=(
            "Path to the JUnit XML file (e.g., 'test-results/junit.xml'); "
            "glob patterns like 'reports/TEST-*.xml' pick the first match"
        )
    )


@mcp.tool(structured_output=False)
async def parse_junit_xml(params: ParseJUnitXmlParams, ctx: MCPContext) -> CallToolResult:
    """
    Parse a JUnit XML report artifact into suites, totals, and failed tests.

    Returns test names, failure messages and stack traces in structured form.
    """
    target = f"{params.target}/{params.junit_path}"
    app = get_app(ctx)
    try:
        token = _begin(ctx, app)
        results = await app.client.parse_junit_xml(
            token,
            params.pipeline_name,
            params.pipeline_counter,
            params.stage_name,
            params.stage_counter,
            params.job_name,
            params.junit_path,
        )
    except Exception as e:  # noqa: BLE001
        return _failed(app, "parse_junit_xml", target, e)

    app.audit_logger.log_read("parse_junit_xml", target)
    return format_json_response(results)


# =============================================================================
# MCP RESOURCES AND ROUTES
# =============================================================================


@mcp.resource("gocd://server")
async def get_server_resource() -> str:
    """Get information about the configured GoCD server."""
    settings = load_settings()
    return (
        "GoCD MCP Server:\n"
        f"  Version: {__version__}\n"
        f"  GoCD server: {settings.gocd_server_url or 'not configured'}\n"
        f"  Transport: {settings.transport}\n"
        f"  Fallback token configured: {settings.fallback_token is not None}\n"
        f"  Retries for GET requests: {settings.max_get_retries}"
    )


@mcp.custom_route("/health", methods=["GET"])
async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "service": "gocd-mcp"})


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the GoCD MCP server."""
    settings = load_settings()
    configure_logging(level=settings.log_level, json_output=settings.json_logs)

    mcp.settings.host = settings.host
    mcp.settings.port = settings.port

    logger.info(
        "GoCD MCP Server starting",
        transport=settings.transport,
        host=settings.host,
        port=settings.port,
    )

    try:
        mcp.run(transport=settings.transport)
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()

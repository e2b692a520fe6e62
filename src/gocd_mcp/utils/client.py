# ABOUTME: GoCD API client wrapper with retry logic and error handling
# ABOUTME: Provides async access to GoCD pipelines, stages, jobs and artifacts with a per-request token

"""
GoCD API client with retry logic and structured error handling.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module provides the HTTP client for communicating with GoCD's REST API.
It handles:

1. HTTP COMMUNICATION: Requests to the API root ({server}/go/api) and the
   artifact file root ({server}/go/files)
2. VERSIONED MEDIA TYPES: Every API endpoint pins its own version through
   the Accept header
3. ERROR HANDLING: Non-2xx responses become typed GocdApiError exceptions
4. RETRY LOGIC: Idempotent GET requests are retried on transient failures
5. RESPONSE SHAPES: The dashboard response comes in several shapes and is
   normalized into one flat list of Pipeline objects

=============================================================================
GOCD REST API OVERVIEW
=============================================================================

GoCD versions each endpoint separately. The client must ask for the version
it understands, otherwise GoCD answers 404:

    GET  /go/api/dashboard                      Accept: application/vnd.go.cd.v4+json
    GET  /go/api/pipelines/{name}/status        Accept: application/vnd.go.cd.v1+json
    GET  /go/api/stages/{p}/{pc}/{s}/{sc}       Accept: application/vnd.go.cd.v3+json
    POST /go/api/stages/{p}/{pc}/{s}/{sc}/cancel   (+ X-GoCD-Confirm: true)

Artifacts and console logs are plain files served without a version header:

    GET  /go/files/{p}/{pc}/{s}/{sc}/{job}/cruise-output/console.log
    GET  /go/files/{p}/{pc}/{s}/{sc}/{job}.json     <- artifact tree listing

=============================================================================
NO AMBIENT CREDENTIALS
=============================================================================

One GocdClient (and one httpx connection pool) is shared by every MCP
session. Concurrent tool calls can come from different users with different
GoCD tokens, so the client never stores a token. Every public method takes
the caller's `token` as its first argument and it is attached to that single
request only:

    async with GocdClient("https://gocd.example.com") as client:
        pipelines = await client.list_pipelines(token)
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from gocd_mcp.utils.errors import GocdApiError, GocdValidationError
from gocd_mcp.utils.junit import JUnitTestResults, parse_junit
from gocd_mcp.utils.logging import mask_secrets

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from tenacity import RetryCallState

logger = structlog.get_logger(__name__)


# Upstream statuses worth another GET attempt
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Path fragments of state-changing endpoints that GoCD guards with X-GoCD-Confirm
CONFIRM_PATH_MARKERS = ("/cancel", "/unpause", "/pause")

GLOB_CHARS = frozenset("*?[")

SUCCESS: dict[str, Any] = {"success": True}


def _segment(value: str | int) -> str:
    """Percent-encode one path segment, slashes included."""
    return quote(str(value), safe="")


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, GocdApiError) and exc.status_code in RETRYABLE_STATUS_CODES


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "gocd_request_retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


# =============================================================================
# DASHBOARD DOMAIN OBJECTS
# =============================================================================


@dataclass(frozen=True)
class PauseInfo:
    paused: bool
    paused_by: str | None
    pause_reason: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "paused": self.paused,
            "pausedBy": self.paused_by,
            "pauseReason": self.pause_reason,
        }


@dataclass(frozen=True)
class Pipeline:
    """
    A pipeline as listed on the GoCD dashboard.

    `group` is copied from the owning pipeline group. `pause_info` is None
    only when GoCD sent no pause metadata at all (e.g. a bare name list);
    when GoCD did send it, all three fields are present even if not paused.
    """

    name: str
    group: str
    locked: bool = False
    pause_info: PauseInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "group": self.group,
            "locked": self.locked,
            "pauseInfo": self.pause_info.to_dict() if self.pause_info else None,
        }


def _embedded(container: dict[str, Any], key: str) -> Any:
    """Read `key` from HAL `_embedded` first, then from the top level."""
    embedded = container.get("_embedded")
    if isinstance(embedded, dict) and embedded.get(key) is not None:
        return embedded[key]
    return container.get(key)


def _pipelines_from_names(names: list[Any], group: str) -> list[Pipeline]:
    # A non-string entry in a name-shaped group carries no usable name
    return [Pipeline(name=name if isinstance(name, str) else "", group=group) for name in names]


def _pipelines_from_objects(entries: list[Any], group: str) -> list[Pipeline]:
    pipelines = []
    for entry in entries:
        if not isinstance(entry, dict):
            # Bare name inside an object-shaped group: nothing to read from it
            pipelines.append(Pipeline(name="", group=group))
            continue
        raw_pause = entry.get("pause_info")
        pause_info = None
        if isinstance(raw_pause, dict):
            pause_info = PauseInfo(
                paused=bool(raw_pause.get("paused", False)),
                paused_by=raw_pause.get("paused_by"),
                pause_reason=raw_pause.get("pause_reason"),
            )
        pipelines.append(
            Pipeline(
                name=entry.get("name", ""),
                group=group,
                locked=bool(entry.get("locked", False)),
                pause_info=pause_info,
            )
        )
    return pipelines


def normalize_dashboard(data: Any) -> list[Pipeline]:
    """
    Flatten a dashboard response into pipelines.

    GoCD has returned this payload in several shapes over its versions:

        {"_embedded": {"pipeline_groups": [...]}}      HAL (v4)
        {"pipeline_groups": [...]}                     plain

    and each group lists its pipelines either under `_embedded.pipelines` or
    `pipelines`, either as bare names or as objects with lock/pause state.

    The entry shape is decided once per group from the group's first entry;
    groups are assumed homogeneous. Order is groups in source order, then
    pipelines in source order.

    Raises:
        GocdValidationError: If no pipeline_groups field exists, or the
            groups are not a list of objects.
    """
    if not isinstance(data, dict):
        raise GocdValidationError("Invalid dashboard response: missing pipeline_groups field")

    groups = _embedded(data, "pipeline_groups")
    if groups is None:
        logger.error("dashboard_missing_pipeline_groups", keys=sorted(data))
        raise GocdValidationError("Invalid dashboard response: missing pipeline_groups field")

    if not isinstance(groups, list):
        raise GocdValidationError("Invalid dashboard response: pipeline_groups is not a list")

    pipelines: list[Pipeline] = []
    for group in groups:
        if not isinstance(group, dict):
            raise GocdValidationError("Invalid dashboard response: pipeline group is not an object")
        group_name = group.get("name", "")
        entries = _embedded(group, "pipelines")
        if not entries:
            logger.debug("pipeline_group_empty", group=group_name)
            continue
        if not isinstance(entries, list):
            raise GocdValidationError(
                f"Invalid dashboard response: pipelines of group {group_name} is not a list"
            )

        if isinstance(entries[0], str):
            pipelines.extend(_pipelines_from_names(entries, group_name))
        else:
            pipelines.extend(_pipelines_from_objects(entries, group_name))

    return pipelines


# =============================================================================
# ARTIFACT TREE HELPERS
# =============================================================================


def iter_artifact_paths(tree: Iterable[dict[str, Any]], prefix: str = "") -> Iterator[str]:
    """
    Yield relative file paths from a GoCD artifact listing.

    GoCD returns a nested tree:

        [{"name": "test-results", "type": "folder",
          "files": [{"name": "junit.xml", "type": "file", "url": "..."}]}]

    which flattens to "test-results/junit.xml". Folders are descended into,
    files are yielded in listing order.
    """
    for node in tree:
        name = node.get("name", "")
        path = f"{prefix}/{name}" if prefix else name
        if node.get("type") == "folder":
            yield from iter_artifact_paths(node.get("files") or [], path)
        else:
            yield path


def is_glob(pattern: str) -> bool:
    return any(ch in GLOB_CHARS for ch in pattern)


def match_artifact(paths: Iterable[str], pattern: str) -> str | None:
    """First path matching a shell-style pattern (`*` also crosses `/`), or None."""
    for path in paths:
        if fnmatch.fnmatchcase(path, pattern):
            return path
    return None


# =============================================================================
# GOCD CLIENT
# =============================================================================


class GocdClient:
    """
    Async GoCD API client with retry logic.

    LIFECYCLE:
    ----------
    1. Create client: client = GocdClient(server_url)
    2. Enter context: async with client: ...
    3. Use client: await client.list_pipelines(token)
    4. Exit context: HTTP connections cleaned up

    RETRY LOGIC:
    ------------
    GET requests are retried on connection errors, timeouts, and upstream
    statuses 408/429/500/502/503/504, with exponential backoff:
    - Attempt 1: Immediate
    - Attempt 2: Wait retry_backoff seconds
    - Attempt 3: Wait 2 * retry_backoff seconds
    - Give up: Raise the last error

    POST requests are never retried. A trigger whose response was lost may
    still have scheduled the pipeline.
    """

    def __init__(
        self,
        server_url: str,
        timeout: float = 30.0,
        insecure: bool = False,
        max_get_retries: int = 2,
        retry_backoff: float = 0.5,
        mask_secrets: bool = True,
    ) -> None:
        """
        Initialize GoCD client.

        Args:
            server_url: GoCD base URL without the /go suffix.
            timeout: Per-request timeout in seconds.
            insecure: Skip TLS certificate verification.
            max_get_retries: Extra attempts for GET requests.
            retry_backoff: Backoff multiplier in seconds (0 disables waiting).
            mask_secrets: Mask secrets in upstream bodies before logging them.
        """
        self._server_url = server_url.rstrip("/")
        self._timeout = timeout
        self._insecure = insecure
        self._max_get_retries = max_get_retries
        self._retry_backoff = retry_backoff
        self._mask_secrets = mask_secrets
        self._client: httpx.AsyncClient | None = None

    @property
    def server_url(self) -> str:
        return self._server_url

    async def __aenter__(self) -> GocdClient:
        # No Authorization header here: the token is per request
        self._client = httpx.AsyncClient(
            base_url=f"{self._server_url}/go/",
            timeout=self._timeout,
            verify=not self._insecure,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def _send(
        self,
        token: str,
        method: str,
        url: str,
        endpoint: str,
        headers: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Send one logical request, retrying GETs on transient failures.

        Raises:
            GocdApiError: On status >= 400 (after retries for GET).
            httpx.TransportError: On network failure (after retries for GET).
            RuntimeError: If client not initialized (forgot async with).
        """
        client = self._client
        if client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        request_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        log = logger.bind(method=method, path=url)

        async def attempt() -> httpx.Response:
            log.debug("gocd_request")
            response = await client.request(
                method,
                url,
                headers=request_headers,
                json=body,
                params=params,
            )
            log.debug("gocd_response", status=response.status_code)

            if response.status_code >= 400:
                error_body = response.text
                logged_body = mask_secrets(error_body) if self._mask_secrets else error_body
                log.warning("gocd_api_error", status=response.status_code, body=logged_body[:500])
                raise GocdApiError.from_response(
                    response.status_code,
                    response.reason_phrase or "Unknown error",
                    endpoint,
                    error_body or None,
                )
            return response

        attempts = self._max_get_retries + 1 if method == "GET" else 1
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self._retry_backoff, max=5),
            before_sleep=_log_retry,
            reraise=True,
        )
        return await retrying(attempt)

    async def request(
        self,
        token: str,
        method: str,
        path: str,
        api_version: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make a request to the GoCD API.

        This is the CORE REQUEST METHOD. Every API endpoint goes through it.

        RESPONSE CLASSIFICATION:
        ------------------------
        - status >= 400            -> GocdApiError (GocdAuthError, GocdNotFoundError)
        - 202 Accepted, 204        -> {"success": True}
        - empty body, null, {}, [] -> {"success": True}
        - anything else            -> the parsed JSON, unchanged

        Args:
            token: GoCD API token for this call.
            method: "GET", "POST" or "DELETE".
            path: Path under /go/api, e.g. "/pipelines/build/status".
            api_version: Media type version, e.g. "v1".
            body: JSON body; None sends no body at all.
            params: Query parameters.

        Raises:
            GocdApiError: On API error (4xx, 5xx).
            GocdValidationError: If the body is not JSON.
        """
        endpoint = path.lstrip("/")
        headers = {"Accept": f"application/vnd.go.cd.{api_version}+json"}
        if any(marker in path for marker in CONFIRM_PATH_MARKERS):
            headers["X-GoCD-Confirm"] = "true"

        response = await self._send(
            token,
            method,
            f"api/{endpoint}",
            endpoint,
            headers=headers,
            body=body,
            params=params,
        )

        if response.status_code in (202, 204) or not response.content.strip():
            return dict(SUCCESS)

        try:
            data = response.json()
        except ValueError as e:
            raise GocdValidationError(f"Invalid JSON response from {endpoint}") from e

        if data is None or (isinstance(data, (dict, list)) and not data):
            return dict(SUCCESS)
        return data

    async def _fetch_file(self, token: str, path: str) -> httpx.Response:
        endpoint = f"files/{path}"
        return await self._send(token, "GET", endpoint, endpoint)

    # =========================================================================
    # PIPELINE OPERATIONS
    # =========================================================================

    async def list_pipelines(self, token: str) -> list[Pipeline]:
        """
        List every pipeline visible to the token, across all groups.

        GoCD API: GET /api/dashboard (v4)
        """
        data = await self.request(token, "GET", "/dashboard", "v4")
        return normalize_dashboard(data)

    async def get_pipeline_status(self, token: str, name: str) -> dict[str, Any]:
        """Paused, locked and schedulable flags for a pipeline."""
        return await self.request(token, "GET", f"/pipelines/{_segment(name)}/status", "v1")

    async def get_pipeline_history(
        self,
        token: str,
        name: str,
        page_size: int | None = None,
        after: int | None = None,
    ) -> dict[str, Any]:
        """
        Recent runs of a pipeline, newest first.

        Args:
            page_size: Number of runs per page (GoCD default 10).
            after: Cursor from a previous page's `_links.next`.
        """
        params: dict[str, Any] = {}
        if page_size:
            params["page_size"] = page_size
        if after is not None:
            params["after"] = after
        return await self.request(
            token,
            "GET",
            f"/pipelines/{_segment(name)}/history",
            "v1",
            params=params or None,
        )

    async def get_pipeline_instance(self, token: str, name: str, counter: int) -> dict[str, Any]:
        """One pipeline run: build cause, materials and stages."""
        return await self.request(
            token, "GET", f"/pipelines/{_segment(name)}/{_segment(counter)}", "v1"
        )

    async def trigger_pipeline(
        self,
        token: str,
        name: str,
        environment_variables: dict[str, str] | None = None,
        update_materials: bool | None = None,
    ) -> dict[str, Any]:
        """
        Schedule a new pipeline run.

        GoCD API: POST /api/pipelines/{name}/schedule (v1)

        The request body only carries the options that were given; with no
        options at all, no body is sent.
        """
        body: dict[str, Any] = {}
        if environment_variables is not None:
            body["environment_variables"] = [
                {"name": var_name, "value": value}
                for var_name, value in environment_variables.items()
            ]
        if update_materials is not None:
            body["update_materials_before_scheduling"] = update_materials

        return await self.request(
            token,
            "POST",
            f"/pipelines/{_segment(name)}/schedule",
            "v1",
            body=body or None,
        )

    async def pause_pipeline(
        self, token: str, name: str, reason: str | None = None
    ) -> dict[str, Any]:
        """Pause scheduling of a pipeline, optionally recording why."""
        body = {"pause_cause": reason} if reason else None
        return await self.request(
            token, "POST", f"/pipelines/{_segment(name)}/pause", "v1", body=body
        )

    async def unpause_pipeline(self, token: str, name: str) -> dict[str, Any]:
        return await self.request(token, "POST", f"/pipelines/{_segment(name)}/unpause", "v1")

    # =========================================================================
    # STAGE OPERATIONS
    # =========================================================================

    async def get_stage_instance(
        self,
        token: str,
        pipeline: str,
        pipeline_counter: int,
        stage: str,
        stage_counter: int,
    ) -> dict[str, Any]:
        """One stage run, including the state and result of each job."""
        path = (
            f"/stages/{_segment(pipeline)}/{_segment(pipeline_counter)}"
            f"/{_segment(stage)}/{_segment(stage_counter)}"
        )
        return await self.request(token, "GET", path, "v3")

    async def trigger_stage(
        self,
        token: str,
        pipeline: str,
        pipeline_counter: int,
        stage: str,
    ) -> dict[str, Any]:
        """Run (or re-run) a stage within an existing pipeline run."""
        path = f"/stages/{_segment(pipeline)}/{_segment(pipeline_counter)}/{_segment(stage)}/run"
        return await self.request(token, "POST", path, "v2")

    async def cancel_stage(
        self,
        token: str,
        pipeline: str,
        pipeline_counter: int,
        stage: str,
        stage_counter: int,
    ) -> dict[str, Any]:
        path = (
            f"/stages/{_segment(pipeline)}/{_segment(pipeline_counter)}"
            f"/{_segment(stage)}/{_segment(stage_counter)}/cancel"
        )
        return await self.request(token, "POST", path, "v3")

    # =========================================================================
    # JOB OPERATIONS
    # =========================================================================

    async def get_job_history(
        self,
        token: str,
        pipeline: str,
        stage: str,
        job: str,
        page_size: int | None = None,
    ) -> dict[str, Any]:
        path = f"/jobs/{_segment(pipeline)}/{_segment(stage)}/{_segment(job)}/history"
        params = {"page_size": page_size} if page_size else None
        return await self.request(token, "GET", path, "v1", params=params)

    async def get_job_instance(
        self,
        token: str,
        pipeline: str,
        pipeline_counter: int,
        stage: str,
        stage_counter: int,
        job: str,
    ) -> dict[str, Any]:
        """One job run: state, result, agent and timestamps."""
        path = (
            f"/jobs/{_segment(pipeline)}/{_segment(pipeline_counter)}"
            f"/{_segment(stage)}/{_segment(stage_counter)}/{_segment(job)}"
        )
        return await self.request(token, "GET", path, "v1")

    # =========================================================================
    # ARTIFACTS AND LOGS
    # =========================================================================

    @staticmethod
    def _job_files_path(
        pipeline: str,
        pipeline_counter: int,
        stage: str,
        stage_counter: int,
        job: str,
    ) -> str:
        return (
            f"{_segment(pipeline)}/{_segment(pipeline_counter)}"
            f"/{_segment(stage)}/{_segment(stage_counter)}/{_segment(job)}"
        )

    async def get_job_console_log(
        self,
        token: str,
        pipeline: str,
        pipeline_counter: int,
        stage: str,
        stage_counter: int,
        job: str,
    ) -> str:
        """Full console output of a job run, as text."""
        job_path = self._job_files_path(pipeline, pipeline_counter, stage, stage_counter, job)
        response = await self._fetch_file(token, f"{job_path}/cruise-output/console.log")
        return response.text

    async def list_job_artifacts(
        self,
        token: str,
        pipeline: str,
        pipeline_counter: int,
        stage: str,
        stage_counter: int,
        job: str,
    ) -> list[dict[str, Any]]:
        """
        Artifact tree of a job run.

        Returns:
            Nested list of {name, url, type, files?}; see iter_artifact_paths.
        """
        job_path = self._job_files_path(pipeline, pipeline_counter, stage, stage_counter, job)
        response = await self._fetch_file(token, f"{job_path}.json")
        if not response.content.strip():
            return []
        try:
            data = response.json()
        except ValueError as e:
            raise GocdValidationError(f"Invalid artifact listing for {job_path}") from e
        if not isinstance(data, list):
            raise GocdValidationError(f"Invalid artifact listing for {job_path}")
        return data

    async def get_job_artifact(
        self,
        token: str,
        pipeline: str,
        pipeline_counter: int,
        stage: str,
        stage_counter: int,
        job: str,
        artifact_path: str,
    ) -> str:
        """
        Contents of one artifact file, as text.

        Each segment of artifact_path is encoded separately, so
        "test results/TEST-a.xml" becomes "test%20results/TEST-a.xml".
        """
        job_path = self._job_files_path(pipeline, pipeline_counter, stage, stage_counter, job)
        encoded = "/".join(_segment(part) for part in artifact_path.split("/") if part)
        response = await self._fetch_file(token, f"{job_path}/{encoded}")
        return response.text

    async def find_job_artifact(
        self,
        token: str,
        pipeline: str,
        pipeline_counter: int,
        stage: str,
        stage_counter: int,
        job: str,
        pattern: str,
    ) -> str | None:
        """
        Resolve a glob pattern to the first matching artifact path.

        Literal paths are returned unchanged without contacting GoCD.
        """
        if not is_glob(pattern):
            return pattern
        tree = await self.list_job_artifacts(
            token, pipeline, pipeline_counter, stage, stage_counter, job
        )
        return match_artifact(iter_artifact_paths(tree), pattern)

    async def parse_junit_xml(
        self,
        token: str,
        pipeline: str,
        pipeline_counter: int,
        stage: str,
        stage_counter: int,
        job: str,
        junit_path: str,
    ) -> JUnitTestResults:
        """
        Fetch a JUnit report artifact and parse it.

        junit_path may be a glob ("reports/TEST-*.xml"); the first matching
        artifact is parsed.

        Raises:
            GocdValidationError: If no artifact matches, or the XML is malformed.
        """
        path = await self.find_job_artifact(
            token, pipeline, pipeline_counter, stage, stage_counter, job, junit_path
        )
        if path is None:
            raise GocdValidationError(f"No artifact matches {junit_path}")
        text = await self.get_job_artifact(
            token, pipeline, pipeline_counter, stage, stage_counter, job, path
        )
        return parse_junit(text)

# ABOUTME: Unit tests for GoCD API client
# ABOUTME: Tests request headers, response classification, retries, encoding, and endpoints

import json

import httpx
import pytest
import respx
from conftest import API_URL, FILES_URL, JUNIT_XML, SERVER_URL, TOKEN

from gocd_mcp.utils.client import GocdClient
from gocd_mcp.utils.errors import (
    GocdApiError,
    GocdAuthError,
    GocdNotFoundError,
    GocdValidationError,
)

JOB = ("build", 42, "test", 1, "unit")


@pytest.mark.unit
class TestGocdClientContextManager:
    """Tests for GocdClient async context manager."""

    def test_init(self):
        """Test client initialization."""
        client = GocdClient(f"{SERVER_URL}/")

        assert client.server_url == SERVER_URL
        assert client._timeout == 30.0
        assert client._max_get_retries == 2
        assert client._client is None

    async def test_context_manager_creates_and_closes_client(self):
        """Test async with creates httpx client and closes it on exit."""
        client = GocdClient(SERVER_URL)

        async with client as c:
            assert c is client
            assert isinstance(client._client, httpx.AsyncClient)

        assert client._client is None

    async def test_shared_client_carries_no_credentials(self):
        """Test the pooled httpx client has no Authorization header of its own."""
        async with GocdClient(SERVER_URL) as client:
            assert "authorization" not in client._client.headers

    async def test_request_without_context_manager_raises(self):
        """Test that client raises when not in context manager."""
        client = GocdClient(SERVER_URL)

        with pytest.raises(RuntimeError, match="not initialized"):
            await client.request(TOKEN, "GET", "/dashboard", "v4")


@pytest.mark.unit
class TestRequestHeaders:
    """Tests for headers attached by GocdClient.request."""

    @respx.mock
    async def test_versioned_accept_and_bearer_token(self, client: GocdClient):
        route = respx.get(f"{API_URL}/pipelines/build/status").mock(
            return_value=httpx.Response(200, json={"paused": False})
        )

        await client.get_pipeline_status(TOKEN, "build")

        request = route.calls.last.request
        assert request.headers["accept"] == "application/vnd.go.cd.v1+json"
        assert request.headers["authorization"] == f"Bearer {TOKEN}"
        assert "x-gocd-confirm" not in request.headers

    @respx.mock
    async def test_each_call_uses_its_own_token(self, client: GocdClient):
        route = respx.get(f"{API_URL}/pipelines/build/status").mock(
            return_value=httpx.Response(200, json={"paused": False})
        )

        await client.get_pipeline_status("alice-token", "build")
        await client.get_pipeline_status("bob-token", "build")

        assert route.calls[0].request.headers["authorization"] == "Bearer alice-token"
        assert route.calls[1].request.headers["authorization"] == "Bearer bob-token"

    @respx.mock
    async def test_pause_sends_confirm_header(self, client: GocdClient):
        route = respx.post(f"{API_URL}/pipelines/build/pause").mock(
            return_value=httpx.Response(200, json={"message": "paused"})
        )

        await client.pause_pipeline(TOKEN, "build")

        assert route.calls.last.request.headers["x-gocd-confirm"] == "true"

    @respx.mock
    async def test_unpause_sends_confirm_header(self, client: GocdClient):
        route = respx.post(f"{API_URL}/pipelines/build/unpause").mock(
            return_value=httpx.Response(200, json={"message": "unpaused"})
        )

        await client.unpause_pipeline(TOKEN, "build")

        assert route.calls.last.request.headers["x-gocd-confirm"] == "true"

    @respx.mock
    async def test_cancel_sends_confirm_header_with_v3(self, client: GocdClient):
        route = respx.post(f"{API_URL}/stages/build/42/test/1/cancel").mock(
            return_value=httpx.Response(200, json={"message": "cancelled"})
        )

        await client.cancel_stage(TOKEN, "build", 42, "test", 1)

        request = route.calls.last.request
        assert request.headers["x-gocd-confirm"] == "true"
        assert request.headers["accept"] == "application/vnd.go.cd.v3+json"

    @respx.mock
    async def test_schedule_has_no_confirm_header(self, client: GocdClient):
        route = respx.post(f"{API_URL}/pipelines/build/schedule").mock(
            return_value=httpx.Response(202, json={"message": "scheduled"})
        )

        await client.trigger_pipeline(TOKEN, "build")

        assert "x-gocd-confirm" not in route.calls.last.request.headers


@pytest.mark.unit
class TestResponseClassification:
    """Tests for how GocdClient.request interprets responses."""

    @respx.mock
    async def test_json_body_returned_unchanged(self, client: GocdClient):
        payload = {"_embedded": {"pipelines": [{"name": "build", "counter": 42}]}}
        respx.get(f"{API_URL}/pipelines/build/history").mock(
            return_value=httpx.Response(200, json=payload)
        )

        result = await client.get_pipeline_history(TOKEN, "build")

        assert result == payload

    @pytest.mark.parametrize("status", [202, 204])
    @respx.mock
    async def test_accepted_and_no_content_are_success(self, client: GocdClient, status: int):
        respx.post(f"{API_URL}/pipelines/build/schedule").mock(
            return_value=httpx.Response(status)
        )

        result = await client.trigger_pipeline(TOKEN, "build")

        assert result == {"success": True}

    @pytest.mark.parametrize("body", [b"", b"null", b"{}", b"[]", b"  \n"])
    @respx.mock
    async def test_empty_bodies_are_success(self, client: GocdClient, body: bytes):
        respx.get(f"{API_URL}/pipelines/build/status").mock(
            return_value=httpx.Response(200, content=body)
        )

        result = await client.get_pipeline_status(TOKEN, "build")

        assert result == {"success": True}

    @respx.mock
    async def test_non_json_body_raises_validation_error(self, client: GocdClient):
        respx.get(f"{API_URL}/pipelines/build/status").mock(
            return_value=httpx.Response(200, text="<html>login</html>")
        )

        with pytest.raises(GocdValidationError, match="pipelines/build/status"):
            await client.get_pipeline_status(TOKEN, "build")

    @respx.mock
    async def test_not_found_raises_with_relative_endpoint(self, client: GocdClient):
        respx.get(f"{API_URL}/pipelines/missing/status").mock(
            return_value=httpx.Response(404, json={"message": "not found"})
        )

        with pytest.raises(GocdNotFoundError) as exc_info:
            await client.get_pipeline_status(TOKEN, "missing")

        error = exc_info.value
        assert error.status_code == 404
        assert error.status_text == "Not Found"
        assert error.endpoint == "pipelines/missing/status"
        assert "not found" in error.response_body
        assert str(error) == "GoCD API Error (404): Not Found at pipelines/missing/status"

    @pytest.mark.parametrize("status", [401, 403])
    @respx.mock
    async def test_auth_failures_raise_auth_error(self, client: GocdClient, status: int):
        respx.get(f"{API_URL}/dashboard").mock(return_value=httpx.Response(status))

        with pytest.raises(GocdAuthError) as exc_info:
            await client.list_pipelines(TOKEN)

        assert exc_info.value.status_code == status
        assert exc_info.value.endpoint == "dashboard"

    @respx.mock
    async def test_endpoint_excludes_query_string(self, client: GocdClient):
        respx.get(f"{API_URL}/pipelines/build/history").mock(
            return_value=httpx.Response(422)
        )

        with pytest.raises(GocdApiError) as exc_info:
            await client.get_pipeline_history(TOKEN, "build", page_size=5)

        assert exc_info.value.endpoint == "pipelines/build/history"
        assert not isinstance(exc_info.value, (GocdAuthError, GocdNotFoundError))


@pytest.mark.unit
class TestRetries:
    """Tests for GET retries on transient failures."""

    @respx.mock
    async def test_get_retried_after_server_error(self, client: GocdClient):
        route = respx.get(f"{API_URL}/pipelines/build/status").mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(200, json={"paused": True}),
            ]
        )

        result = await client.get_pipeline_status(TOKEN, "build")

        assert result == {"paused": True}
        assert route.call_count == 2

    @respx.mock
    async def test_get_gives_up_after_three_attempts(self, client: GocdClient):
        route = respx.get(f"{API_URL}/pipelines/build/status").mock(
            return_value=httpx.Response(502)
        )

        with pytest.raises(GocdApiError) as exc_info:
            await client.get_pipeline_status(TOKEN, "build")

        assert exc_info.value.status_code == 502
        assert route.call_count == 3

    @respx.mock
    async def test_get_retried_after_connection_error(self, client: GocdClient):
        route = respx.get(f"{API_URL}/dashboard").mock(
            side_effect=[
                httpx.ConnectError("connection refused"),
                httpx.Response(200, json={"pipeline_groups": []}),
            ]
        )

        result = await client.list_pipelines(TOKEN)

        assert result == []
        assert route.call_count == 2

    @respx.mock
    async def test_connection_error_raised_after_retries(self, client: GocdClient):
        route = respx.get(f"{API_URL}/dashboard").mock(
            side_effect=httpx.ConnectTimeout("timed out")
        )

        with pytest.raises(httpx.ConnectTimeout):
            await client.list_pipelines(TOKEN)

        assert route.call_count == 3

    @respx.mock
    async def test_client_errors_not_retried(self, client: GocdClient):
        route = respx.get(f"{API_URL}/pipelines/missing/status").mock(
            return_value=httpx.Response(404)
        )

        with pytest.raises(GocdNotFoundError):
            await client.get_pipeline_status(TOKEN, "missing")

        assert route.call_count == 1

    @respx.mock
    async def test_post_never_retried(self, client: GocdClient):
        route = respx.post(f"{API_URL}/pipelines/build/schedule").mock(
            return_value=httpx.Response(503)
        )

        with pytest.raises(GocdApiError):
            await client.trigger_pipeline(TOKEN, "build")

        assert route.call_count == 1

    @respx.mock
    async def test_retries_configurable(self):
        route = respx.get(f"{API_URL}/pipelines/build/status").mock(
            return_value=httpx.Response(500)
        )

        async with GocdClient(SERVER_URL, max_get_retries=0, retry_backoff=0) as client:
            with pytest.raises(GocdApiError):
                await client.get_pipeline_status(TOKEN, "build")

        assert route.call_count == 1


@pytest.mark.unit
class TestPathEncoding:
    """Tests for percent-encoding of names in request paths."""

    @respx.mock
    async def test_pipeline_name_fully_encoded(self, client: GocdClient):
        route = respx.route(host="gocd.example.com").mock(
            return_value=httpx.Response(200, json={"paused": False})
        )

        await client.get_pipeline_status(TOKEN, "team a/build")

        raw_path = route.calls.last.request.url.raw_path
        assert raw_path == b"/go/api/pipelines/team%20a%2Fbuild/status"

    @respx.mock
    async def test_job_locator_segments_encoded(self, client: GocdClient):
        route = respx.route(host="gocd.example.com").mock(
            return_value=httpx.Response(200, json={"name": "unit"})
        )

        await client.get_job_instance(TOKEN, "my pipe", 3, "st/age", 1, "job#1")

        raw_path = route.calls.last.request.url.raw_path
        assert raw_path == b"/go/api/jobs/my%20pipe/3/st%2Fage/1/job%231"

    @respx.mock
    async def test_artifact_path_encoded_per_segment(self, client: GocdClient):
        route = respx.route(host="gocd.example.com").mock(
            return_value=httpx.Response(200, text="<testsuite/>")
        )

        await client.get_job_artifact(TOKEN, *JOB, "test results/TEST-a b.xml")

        raw_path = route.calls.last.request.url.raw_path
        assert raw_path == b"/go/files/build/42/test/1/unit/test%20results/TEST-a%20b.xml"


@pytest.mark.unit
class TestPipelineEndpoints:
    """Tests for pipeline operations."""

    @respx.mock
    async def test_history_query_parameters(self, client: GocdClient):
        route = respx.get(f"{API_URL}/pipelines/build/history").mock(
            return_value=httpx.Response(200, json={"pipelines": []})
        )

        await client.get_pipeline_history(TOKEN, "build", page_size=5, after=10)

        params = route.calls.last.request.url.params
        assert params["page_size"] == "5"
        assert params["after"] == "10"

    @respx.mock
    async def test_history_without_paging_has_no_query(self, client: GocdClient):
        route = respx.get(f"{API_URL}/pipelines/build/history").mock(
            return_value=httpx.Response(200, json={"pipelines": []})
        )

        await client.get_pipeline_history(TOKEN, "build")

        assert route.calls.last.request.url.query == b""

    @respx.mock
    async def test_pipeline_instance(self, client: GocdClient):
        route = respx.get(f"{API_URL}/pipelines/build/42").mock(
            return_value=httpx.Response(200, json={"name": "build", "counter": 42})
        )

        result = await client.get_pipeline_instance(TOKEN, "build", 42)

        assert result["counter"] == 42
        assert route.calls.last.request.headers["accept"] == "application/vnd.go.cd.v1+json"

    @respx.mock
    async def test_trigger_with_options_sends_body(self, client: GocdClient):
        route = respx.post(f"{API_URL}/pipelines/build/schedule").mock(
            return_value=httpx.Response(202)
        )

        await client.trigger_pipeline(
            TOKEN,
            "build",
            environment_variables={"DEPLOY_ENV": "staging"},
            update_materials=False,
        )

        body = json.loads(route.calls.last.request.content)
        assert body == {
            "environment_variables": [{"name": "DEPLOY_ENV", "value": "staging"}],
            "update_materials_before_scheduling": False,
        }

    @respx.mock
    async def test_trigger_with_only_update_materials(self, client: GocdClient):
        route = respx.post(f"{API_URL}/pipelines/build/schedule").mock(
            return_value=httpx.Response(202)
        )

        await client.trigger_pipeline(TOKEN, "build", update_materials=True)

        body = json.loads(route.calls.last.request.content)
        assert body == {"update_materials_before_scheduling": True}

    @respx.mock
    async def test_trigger_without_options_sends_no_body(self, client: GocdClient):
        route = respx.post(f"{API_URL}/pipelines/build/schedule").mock(
            return_value=httpx.Response(202)
        )

        await client.trigger_pipeline(TOKEN, "build")

        assert route.calls.last.request.content == b""

    @respx.mock
    async def test_pause_with_reason_sends_pause_cause(self, client: GocdClient):
        route = respx.post(f"{API_URL}/pipelines/build/pause").mock(
            return_value=httpx.Response(200, json={"message": "ok"})
        )

        await client.pause_pipeline(TOKEN, "build", reason="release freeze")

        assert json.loads(route.calls.last.request.content) == {"pause_cause": "release freeze"}

    @respx.mock
    async def test_pause_without_reason_sends_no_body(self, client: GocdClient):
        route = respx.post(f"{API_URL}/pipelines/build/pause").mock(
            return_value=httpx.Response(200, json={"message": "ok"})
        )

        await client.pause_pipeline(TOKEN, "build")

        assert route.calls.last.request.content == b""


@pytest.mark.unit
class TestStageAndJobEndpoints:
    """Tests for stage and job operations."""

    @respx.mock
    async def test_stage_instance_uses_v3(self, client: GocdClient):
        route = respx.get(f"{API_URL}/stages/build/42/test/1").mock(
            return_value=httpx.Response(200, json={"name": "test", "jobs": []})
        )

        result = await client.get_stage_instance(TOKEN, "build", 42, "test", 1)

        assert result["name"] == "test"
        assert route.calls.last.request.headers["accept"] == "application/vnd.go.cd.v3+json"

    @respx.mock
    async def test_trigger_stage_uses_v2(self, client: GocdClient):
        route = respx.post(f"{API_URL}/stages/build/42/test/run").mock(
            return_value=httpx.Response(202)
        )

        result = await client.trigger_stage(TOKEN, "build", 42, "test")

        assert result == {"success": True}
        assert route.calls.last.request.headers["accept"] == "application/vnd.go.cd.v2+json"

    @respx.mock
    async def test_job_history_page_size(self, client: GocdClient):
        route = respx.get(f"{API_URL}/jobs/build/test/unit/history").mock(
            return_value=httpx.Response(200, json={"jobs": []})
        )

        await client.get_job_history(TOKEN, "build", "test", "unit", page_size=20)

        assert route.calls.last.request.url.params["page_size"] == "20"


@pytest.mark.unit
class TestArtifacts:
    """Tests for console log and artifact access."""

    @respx.mock
    async def test_console_log_returned_as_text(self, client: GocdClient):
        route = respx.get(f"{FILES_URL}/build/42/test/1/unit/cruise-output/console.log").mock(
            return_value=httpx.Response(200, text="BUILD FAILED\n")
        )

        result = await client.get_job_console_log(TOKEN, *JOB)

        assert result == "BUILD FAILED\n"
        request = route.calls.last.request
        assert "vnd.go.cd" not in request.headers.get("accept", "")
        assert request.headers["authorization"] == f"Bearer {TOKEN}"

    @respx.mock
    async def test_console_log_not_found(self, client: GocdClient):
        respx.get(f"{FILES_URL}/build/42/test/1/unit/cruise-output/console.log").mock(
            return_value=httpx.Response(404)
        )

        with pytest.raises(GocdNotFoundError) as exc_info:
            await client.get_job_console_log(TOKEN, *JOB)

        assert exc_info.value.endpoint == "files/build/42/test/1/unit/cruise-output/console.log"

    @respx.mock
    async def test_list_artifacts(self, client: GocdClient):
        tree = [{"name": "reports", "type": "folder", "url": "u", "files": []}]
        respx.get(f"{FILES_URL}/build/42/test/1/unit.json").mock(
            return_value=httpx.Response(200, json=tree)
        )

        result = await client.list_job_artifacts(TOKEN, *JOB)

        assert result == tree

    @respx.mock
    async def test_list_artifacts_rejects_non_list(self, client: GocdClient):
        respx.get(f"{FILES_URL}/build/42/test/1/unit.json").mock(
            return_value=httpx.Response(200, json={"unexpected": True})
        )

        with pytest.raises(GocdValidationError):
            await client.list_job_artifacts(TOKEN, *JOB)

    @respx.mock
    async def test_parse_junit_xml_literal_path(self, client: GocdClient):
        respx.get(f"{FILES_URL}/build/42/test/1/unit/test-results/junit.xml").mock(
            return_value=httpx.Response(200, text=JUNIT_XML)
        )

        results = await client.parse_junit_xml(TOKEN, *JOB, "test-results/junit.xml")

        assert results.summary.total_tests == 3
        assert results.failed_tests[0].test_name == "divides"

    @respx.mock
    async def test_parse_junit_xml_resolves_glob(self, client: GocdClient):
        tree = [
            {
                "name": "reports",
                "type": "folder",
                "url": "u",
                "files": [
                    {"name": "coverage.html", "type": "file", "url": "u"},
                    {"name": "TEST-CalculatorTest.xml", "type": "file", "url": "u"},
                ],
            }
        ]
        respx.get(f"{FILES_URL}/build/42/test/1/unit.json").mock(
            return_value=httpx.Response(200, json=tree)
        )
        report = respx.get(f"{FILES_URL}/build/42/test/1/unit/reports/TEST-CalculatorTest.xml").mock(
            return_value=httpx.Response(200, text=JUNIT_XML)
        )

        results = await client.parse_junit_xml(TOKEN, *JOB, "reports/TEST-*.xml")

        assert report.called
        assert results.summary.total_failures == 1

    @respx.mock
    async def test_parse_junit_xml_glob_without_match(self, client: GocdClient):
        respx.get(f"{FILES_URL}/build/42/test/1/unit.json").mock(
            return_value=httpx.Response(200, json=[])
        )

        with pytest.raises(GocdValidationError, match="No artifact matches"):
            await client.parse_junit_xml(TOKEN, *JOB, "reports/TEST-*.xml")

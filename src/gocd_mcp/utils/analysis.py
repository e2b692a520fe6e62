# ABOUTME: Best-effort failure analysis for a GoCD job run
# ABOUTME: Combines the first JUnit report found with the console log into one summary

"""
Job failure analysis.

Answers "why did this job fail?" in one call. Two independent sources are
tried and neither is required:

1. A JUnit report, found by guessing the usual report locations of common
   build tools (see JUNIT_PATTERNS). The first one that parses wins.
2. The job's console log.

Any error while looking (404, bad XML, network) only means "not found here";
it is logged at debug level and never reaches the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from gocd_mcp.utils.client import is_glob, iter_artifact_paths, match_artifact
from gocd_mcp.utils.errors import GocdError
from gocd_mcp.utils.junit import JUnitTestResults, parse_junit

if TYPE_CHECKING:
    from gocd_mcp.utils.client import GocdClient

logger = structlog.get_logger(__name__)

# Tried in order
JUNIT_PATTERNS = (
    "test-results/junit.xml",
    "test-results/TEST-*.xml",
    "target/surefire-reports/TEST-*.xml",  # maven
    "build/test-results/**/*.xml",  # gradle
    "reports/junit.xml",
    "reports/TEST-*.xml",
)

NOTHING_FOUND = "No test reports or logs found. Job may be running or no artifacts published."


@dataclass(frozen=True)
class FailureAnalysis:
    test_failures: JUnitTestResults | None
    console_log: str | None
    summary: str

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.test_failures is not None:
            data["testFailures"] = self.test_failures.to_dict()
        if self.console_log is not None:
            data["consoleErrors"] = self.console_log
        data["summary"] = self.summary
        return data


def summarize(test_failures: JUnitTestResults | None, console_log: str | None) -> str:
    """Describe which sources were found."""
    parts = []
    if test_failures is not None:
        failed = len(test_failures.failed_tests)
        total = test_failures.summary.total_tests
        parts.append(f"Found JUnit test report: {failed} failed of {total} tests.")
    if console_log is not None:
        if console_log:
            parts.append("Console log available for error analysis.")
        else:
            parts.append("Console log is empty.")
    if not parts:
        return NOTHING_FOUND
    return " ".join(parts)


async def analyze_job_failures(
    client: GocdClient,
    token: str,
    pipeline: str,
    pipeline_counter: int,
    stage: str,
    stage_counter: int,
    job: str,
) -> FailureAnalysis:
    """
    Collect test failures and console output for one job run.

    Glob patterns are matched against the job's artifact listing, which is
    fetched at most once. Literal patterns are fetched directly.

    Returns:
        FailureAnalysis; fields that could not be found are None.
    """
    log = logger.bind(pipeline=pipeline, pipeline_counter=pipeline_counter, stage=stage, job=job)
    locator = (pipeline, pipeline_counter, stage, stage_counter, job)

    artifact_paths: list[str] | None = None
    test_failures: JUnitTestResults | None = None

    for pattern in JUNIT_PATTERNS:
        try:
            path: str | None = pattern
            if is_glob(pattern):
                if artifact_paths is None:
                    # a failed listing is not retried for later patterns
                    artifact_paths = []
                    tree = await client.list_job_artifacts(token, *locator)
                    artifact_paths = list(iter_artifact_paths(tree))
                path = match_artifact(artifact_paths, pattern)
                if path is None:
                    log.debug("junit_pattern_no_match", pattern=pattern)
                    continue

            text = await client.get_job_artifact(token, *locator, path)
            test_failures = parse_junit(text)
            log.debug("junit_report_found", path=path)
            break
        except (GocdError, httpx.HTTPError) as e:
            log.debug("junit_pattern_failed", pattern=pattern, error=str(e))

    console_log: str | None = None
    try:
        console_log = await client.get_job_console_log(token, *locator)
    except (GocdError, httpx.HTTPError) as e:
        log.debug("console_log_unavailable", error=str(e))

    return FailureAnalysis(
        test_failures=test_failures,
        console_log=console_log,
        summary=summarize(test_failures, console_log),
    )

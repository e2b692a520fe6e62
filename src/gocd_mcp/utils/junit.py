# ABOUTME: JUnit XML report parser for GoCD MCP Server
# ABOUTME: Turns surefire/gradle/pytest JUnit documents into suites, a summary, and failed tests

"""
JUnit XML result parsing.

=============================================================================
WHAT DOES A JUNIT DOCUMENT LOOK LIKE?
=============================================================================

Build tools write test results in the (loosely specified) JUnit XML format:

    <testsuites>
      <testsuite name="CalcTest" tests="3" failures="1" errors="0" skipped="1" time="0.12">
        <testcase name="adds" classname="com.x.CalcTest" time="0.01"/>
        <testcase name="divides" classname="com.x.CalcTest" time="0.02">
          <failure message="expected 2" type="AssertionError">stack trace...</failure>
        </testcase>
        <testcase name="later" classname="com.x.CalcTest">
          <skipped/>
        </testcase>
      </testsuite>
    </testsuites>

Some tools emit a single <testsuite> as the root instead of <testsuites>.

=============================================================================
LENIENCY
=============================================================================

Different producers disagree on almost every attribute, so the parser never
fails on a bad attribute: counts that don't parse become 0, names default to
placeholders. Only XML that isn't well-formed raises GocdValidationError.

Suite counts are read from the suite's attributes and never recomputed from
its test cases. A suite with no <testcase> children still contributes its
counts to the summary.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Literal

from gocd_mcp.utils.errors import GocdValidationError

TestStatus = Literal["passed", "failed", "error", "skipped"]

# Leading-number prefixes: "12abc" -> 12, "1.5s" -> 1.5
_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _parse_count(value: str | None) -> int:
    """Parse a count attribute; missing, unparseable or negative -> 0."""
    if value is None:
        return 0
    match = _INT_PREFIX.match(value)
    if not match:
        return 0
    return max(int(match.group(1)), 0)


def _parse_time(value: str | None) -> float:
    """Parse a duration attribute in seconds; missing, unparseable or negative -> 0."""
    if value is None:
        return 0.0
    match = _FLOAT_PREFIX.match(value)
    if not match:
        return 0.0
    return max(float(match.group(1)), 0.0)


# =============================================================================
# DOMAIN OBJECTS
# =============================================================================


@dataclass(frozen=True)
class JUnitFailure:
    """A <failure> or <error> element: assertion details and stack trace."""

    message: str
    type: str
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "type": self.type, "content": self.content}


@dataclass(frozen=True)
class JUnitTestCase:
    """One <testcase>; at most one of failure/error/skipped drives the status."""

    name: str
    classname: str
    time: float
    status: TestStatus
    failure: JUnitFailure | None = None
    error: JUnitFailure | None = None
    skipped: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "classname": self.classname,
            "time": self.time,
            "status": self.status,
        }
        if self.failure is not None:
            data["failure"] = self.failure.to_dict()
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.skipped is not None:
            data["skipped"] = self.skipped
        return data


@dataclass(frozen=True)
class JUnitSuite:
    name: str
    tests: int
    failures: int
    errors: int
    skipped: int
    time: float
    timestamp: str | None = None
    test_cases: list[JUnitTestCase] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "tests": self.tests,
            "failures": self.failures,
            "errors": self.errors,
            "skipped": self.skipped,
            "time": self.time,
        }
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        data["testCases"] = [case.to_dict() for case in self.test_cases]
        return data


@dataclass(frozen=True)
class FailedTest:
    """A failed or errored case, flattened out of its suite."""

    suite_name: str
    test_name: str
    class_name: str
    message: str
    type: str
    details: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "suiteName": self.suite_name,
            "testName": self.test_name,
            "className": self.class_name,
            "message": self.message,
            "type": self.type,
            "details": self.details,
        }


@dataclass
class JUnitSummary:
    total_tests: int = 0
    total_failures: int = 0
    total_errors: int = 0
    total_skipped: int = 0
    total_time: float = 0.0

    def add(self, suite: JUnitSuite) -> None:
        self.total_tests += suite.tests
        self.total_failures += suite.failures
        self.total_errors += suite.errors
        self.total_skipped += suite.skipped
        self.total_time += suite.time

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalTests": self.total_tests,
            "totalFailures": self.total_failures,
            "totalErrors": self.total_errors,
            "totalSkipped": self.total_skipped,
            "totalTime": self.total_time,
        }


@dataclass
class JUnitTestResults:
    """
    Parsed JUnit document.

    summary is the sum of every suite's attribute counts; failed_tests lists
    failed and errored cases in suite-then-case document order.
    """

    suites: list[JUnitSuite] = field(default_factory=list)
    summary: JUnitSummary = field(default_factory=JUnitSummary)
    failed_tests: list[FailedTest] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "suites": [suite.to_dict() for suite in self.suites],
            "summary": self.summary.to_dict(),
            "failedTests": [test.to_dict() for test in self.failed_tests],
        }


# =============================================================================
# PARSER
# =============================================================================


def _problem(element: ET.Element) -> JUnitFailure:
    return JUnitFailure(
        message=element.get("message", ""),
        type=element.get("type", ""),
        content=(element.text or "").strip(),
    )


def _parse_case(element: ET.Element) -> JUnitTestCase:
    failure_el = element.find("failure")
    error_el = element.find("error")
    skipped_el = element.find("skipped")

    failure = _problem(failure_el) if failure_el is not None else None
    error = _problem(error_el) if error_el is not None else None

    skipped: str | None = None
    if skipped_el is not None:
        # <skipped>reason</skipped> vs <skipped message="reason"/>
        if skipped_el.attrib:
            skipped = skipped_el.get("message", "")
        else:
            skipped = (skipped_el.text or "").strip()

    status: TestStatus = "passed"
    if failure is not None:
        status = "failed"
    elif error is not None:
        status = "error"
    elif skipped is not None:
        status = "skipped"

    return JUnitTestCase(
        name=element.get("name", "Unknown Test"),
        classname=element.get("classname", ""),
        time=_parse_time(element.get("time")),
        status=status,
        failure=failure,
        error=error,
        skipped=skipped,
    )


def _suite_elements(root: ET.Element) -> list[ET.Element]:
    if root.tag == "testsuites":
        return root.findall("testsuite")
    if root.tag == "testsuite":
        return [root]
    return []


def parse_junit(xml_text: str) -> JUnitTestResults:
    """
    Parse a JUnit XML document.

    Args:
        xml_text: Raw document text.

    Returns:
        JUnitTestResults with suites, summary and failed tests.

    Raises:
        GocdValidationError: If the text is not well-formed XML.

    Example:
        >>> results = parse_junit('<testsuite name="s" tests="1"><testcase name="t"/></testsuite>')
        >>> results.summary.total_tests
        1
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise GocdValidationError(f"Invalid JUnit XML: {e}") from e

    results = JUnitTestResults()

    for suite_el in _suite_elements(root):
        suite_name = suite_el.get("name", "Unknown Suite")
        cases: list[JUnitTestCase] = []

        for case_el in suite_el.findall("testcase"):
            case = _parse_case(case_el)
            cases.append(case)

            problem = case.failure if case.status == "failed" else case.error
            if case.status in ("failed", "error") and problem is not None:
                results.failed_tests.append(
                    FailedTest(
                        suite_name=suite_name,
                        test_name=case.name,
                        class_name=case.classname,
                        message=problem.message,
                        type=problem.type,
                        details=problem.content,
                    )
                )

        suite = JUnitSuite(
            name=suite_name,
            tests=_parse_count(suite_el.get("tests")),
            failures=_parse_count(suite_el.get("failures")),
            errors=_parse_count(suite_el.get("errors")),
            skipped=_parse_count(suite_el.get("skipped")),
            time=_parse_time(suite_el.get("time")),
            timestamp=suite_el.get("timestamp"),
            test_cases=cases,
        )
        results.suites.append(suite)
        results.summary.add(suite)

    return results

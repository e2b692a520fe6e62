# ABOUTME: Parser for GoCD web UI URLs
# ABOUTME: Extracts pipeline, stage and job locators from links pasted out of a browser

"""
GoCD URL parsing.

Users often paste a link from the GoCD web UI instead of naming a job. The
supported forms, tried in this order:

    /go/tab/build/detail/<pipeline>/<pc>/<stage>/<sc>/<job>     job
    /go/pipelines/<pipeline>/<pc>/<stage>/<sc>                  stage
    /go/pipelines/value_stream_map/<pipeline>/<pc>              pipeline
    /go/pipelines/<pipeline>/<pc>                               pipeline

Anything after the matched part (extra segments, query string, fragment)
is ignored. Names are percent-decoded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote, urlsplit

from gocd_mcp.utils.errors import GocdValidationError

_JOB_DETAIL = re.compile(r"/go/tab/build/detail/([^/]+)/(\d+)/([^/]+)/(\d+)/([^/]+)")
_STAGE = re.compile(r"/go/pipelines/([^/]+)/(\d+)/([^/]+)/(\d+)")
_VALUE_STREAM_MAP = re.compile(r"/go/pipelines/value_stream_map/([^/]+)/(\d+)")
_PIPELINE = re.compile(r"/go/pipelines/([^/]+)/(\d+)")


@dataclass(frozen=True)
class ParsedGocdUrl:
    pipeline_name: str
    pipeline_counter: int
    stage_name: str | None = None
    stage_counter: int | None = None
    job_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "pipelineName": self.pipeline_name,
            "pipelineCounter": self.pipeline_counter,
        }
        if self.stage_name is not None:
            data["stageName"] = self.stage_name
        if self.stage_counter is not None:
            data["stageCounter"] = self.stage_counter
        if self.job_name is not None:
            data["jobName"] = self.job_name
        return data


def parse_gocd_url(url: str) -> ParsedGocdUrl:
    """
    Parse a GoCD job, stage or pipeline URL.

    Example:
        >>> parse_gocd_url("https://ci.example.com/go/pipelines/build/42/test/1")
        ParsedGocdUrl(pipeline_name='build', pipeline_counter=42, stage_name='test', stage_counter=1, job_name=None)

    Raises:
        GocdValidationError: If the text is not an absolute URL, or the path
            matches none of the known forms.
    """
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        raise GocdValidationError(f"Invalid URL format: {url}")
    path = parts.path

    match = _JOB_DETAIL.search(path)
    if match:
        return ParsedGocdUrl(
            pipeline_name=unquote(match.group(1)),
            pipeline_counter=int(match.group(2)),
            stage_name=unquote(match.group(3)),
            stage_counter=int(match.group(4)),
            job_name=unquote(match.group(5)),
        )

    match = _STAGE.search(path)
    if match:
        return ParsedGocdUrl(
            pipeline_name=unquote(match.group(1)),
            pipeline_counter=int(match.group(2)),
            stage_name=unquote(match.group(3)),
            stage_counter=int(match.group(4)),
        )

    for pattern in (_VALUE_STREAM_MAP, _PIPELINE):
        match = pattern.search(path)
        if match:
            return ParsedGocdUrl(
                pipeline_name=unquote(match.group(1)),
                pipeline_counter=int(match.group(2)),
            )

    raise GocdValidationError(f"Unrecognized GoCD URL format: {url}")

# ABOUTME: Exception hierarchy for GoCD MCP Server
# ABOUTME: Typed errors for upstream API failures, bad payloads, and missing credentials

"""
GoCD error types.

=============================================================================
WHY A HIERARCHY?
=============================================================================

Every failure that can reach a tool boundary is one of a small number of
kinds, and the boundary turns each kind into a different error code:

    GocdError                   <- base, never raised directly
    ├── GocdApiError            <- upstream answered with status >= 400
    │   ├── GocdAuthError       <- 401 (bad credentials) / 403 (no permission)
    │   └── GocdNotFoundError   <- 404
    ├── GocdValidationError     <- upstream payload had an unexpected shape
    └── MissingTokenError       <- no bearer token for this request

Callers that only care "did the API fail?" catch GocdApiError; callers that
want to react to a missing resource catch GocdNotFoundError.
"""

from __future__ import annotations


class GocdError(Exception):
    """Base class for all GoCD MCP errors."""


class GocdApiError(GocdError):
    """
    Non-2xx response from the GoCD API.

    The fields are exposed as read-only properties; an error describes a
    response that already happened and is never edited afterwards.

    USAGE:
    ------
    try:
        await client.get_pipeline_status(token, "missing")
    except GocdNotFoundError as e:
        print(e.endpoint)  # pipelines/missing/status
    """

    def __init__(
        self,
        status_code: int,
        status_text: str,
        endpoint: str,
        response_body: str | None = None,
    ) -> None:
        """
        Initialize API error.

        Args:
            status_code: HTTP status code (e.g., 404, 500)
            status_text: HTTP reason phrase ("Not Found")
            endpoint: Path relative to the API root, e.g. "pipelines/x/status"
            response_body: Raw response body, if any
        """
        self._status_code = status_code
        self._status_text = status_text
        self._endpoint = endpoint
        self._response_body = response_body
        super().__init__(f"GoCD API Error ({status_code}): {status_text} at {endpoint}")

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def status_text(self) -> str:
        return self._status_text

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def response_body(self) -> str | None:
        return self._response_body

    @classmethod
    def from_response(
        cls,
        status_code: int,
        status_text: str,
        endpoint: str,
        response_body: str | None = None,
    ) -> GocdApiError:
        """
        Build the most specific error type for a status code.

        401/403 -> GocdAuthError, 404 -> GocdNotFoundError, else GocdApiError.
        """
        error_cls: type[GocdApiError] = GocdApiError
        if status_code in (401, 403):
            error_cls = GocdAuthError
        elif status_code == 404:
            error_cls = GocdNotFoundError
        return error_cls(status_code, status_text, endpoint, response_body)


class GocdAuthError(GocdApiError):
    """401 Unauthorized or 403 Forbidden from the GoCD API."""


class GocdNotFoundError(GocdApiError):
    """404 Not Found from the GoCD API."""


class GocdValidationError(GocdError):
    """Upstream data did not have the shape we expect."""


class MissingTokenError(GocdError):
    """No GoCD API token was supplied for the current request."""

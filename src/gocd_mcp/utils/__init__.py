# ABOUTME: Utilities package initialization for GoCD MCP Server
# ABOUTME: Contains shared utilities for the client, parsing, auth, and logging

"""
GoCD MCP Utilities Package

Shared utilities:
    - client.py: GoCD API client with retry logic and dashboard normalization
    - junit.py: JUnit XML report parser
    - analysis.py: Failure analysis across test reports and console logs
    - url_parser.py: Pipeline/stage/job locators from GoCD web UI URLs
    - auth.py: Per-request bearer token resolution
    - responses.py: MCP tool result envelopes and error codes
    - errors.py: Exception hierarchy
    - logging.py: Structured logging with correlation IDs
"""

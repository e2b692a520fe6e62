# ABOUTME: GoCD MCP Server package initialization
# ABOUTME: Exposes version information

"""
GoCD MCP Server - GoCD pipelines, stages and jobs via Model Context Protocol.

=============================================================================
WHAT IS GOCD?
=============================================================================

GoCD is a continuous delivery server. Its unit of work is the PIPELINE:

    pipeline (counter 42)
      └── stage "test" (counter 1)
            ├── job "unit"         -> console log, artifacts (JUnit XML)
            └── job "integration"

Every run of a pipeline gets a new pipeline counter; re-running a stage
inside the same pipeline run bumps the stage counter. A job is addressed by
the full five-part locator: pipeline/pipelineCounter/stage/stageCounter/job.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

gocd_mcp/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── config.py            <- Configuration management (env vars, settings)
├── server.py            <- Main MCP server with all tools defined
└── utils/
    ├── __init__.py      <- Utils subpackage marker
    ├── analysis.py      <- Best-effort job failure analysis
    ├── auth.py          <- Per-request bearer token resolution
    ├── client.py        <- HTTP client for the GoCD REST API
    ├── errors.py        <- Exception hierarchy
    ├── junit.py         <- JUnit XML report parser
    ├── logging.py       <- Structured logging with audit trails
    ├── responses.py     <- MCP tool result envelopes
    └── url_parser.py    <- GoCD web UI URL parser
"""

__version__ = "0.1.0"

# The server is run via the gocd-mcp command, not by importing.
__all__ = ["__version__"]

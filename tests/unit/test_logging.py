# ABOUTME: Unit tests for logging utilities
# ABOUTME: Tests correlation IDs, configure_logging, secret masking, and AuditLogger class

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from gocd_mcp.utils.logging import (
    MASK,
    AuditLogger,
    add_correlation_id,
    configure_logging,
    correlation_id,
    get_correlation_id,
    mask_secrets,
    set_correlation_id,
)


@pytest.mark.unit
class TestCorrelationId:
    """Tests for correlation ID generation and context management."""

    def test_get_correlation_id_generates_new_when_empty(self):
        correlation_id.set("")

        cid = get_correlation_id()

        assert len(cid) == 8
        int(cid, 16)  # first 8 hex chars of a UUID4

    def test_get_correlation_id_returns_existing(self):
        set_correlation_id("test1234")

        assert get_correlation_id() == "test1234"

    def test_get_correlation_id_preserves_value(self):
        """Test that subsequent calls return the same generated ID."""
        correlation_id.set("")

        assert get_correlation_id() == get_correlation_id()

    def test_add_correlation_id_processor(self):
        set_correlation_id("proc1234")

        result = add_correlation_id(MagicMock(), "info", {"event": "gocd_request"})

        assert result == {"event": "gocd_request", "correlation_id": "proc1234"}


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_console_renderer_by_default(self):
        with patch("gocd_mcp.utils.logging.structlog") as mock_structlog:
            configure_logging()

            mock_structlog.dev.ConsoleRenderer.assert_called_once_with(colors=False)
            mock_structlog.processors.JSONRenderer.assert_not_called()
            mock_structlog.configure.assert_called_once()

    def test_json_output(self):
        with patch("gocd_mcp.utils.logging.structlog") as mock_structlog:
            configure_logging(json_output=True)

            mock_structlog.processors.JSONRenderer.assert_called_once()
            mock_structlog.dev.ConsoleRenderer.assert_not_called()

            processors = mock_structlog.configure.call_args.kwargs["processors"]
            assert processors[-2:] == [
                mock_structlog.processors.format_exc_info,
                mock_structlog.processors.JSONRenderer.return_value,
            ]

    def test_processors_end_with_renderer(self):
        with patch("gocd_mcp.utils.logging.structlog") as mock_structlog:
            configure_logging(level="DEBUG")

            processors = mock_structlog.configure.call_args.kwargs["processors"]
            assert add_correlation_id in processors
            assert processors[-1] is mock_structlog.dev.ConsoleRenderer.return_value

    def test_logs_go_to_stderr(self):
        """stdout is reserved for the stdio transport."""
        with patch("gocd_mcp.utils.logging.structlog") as mock_structlog:
            configure_logging(level="WARNING")

            mock_structlog.PrintLoggerFactory.assert_called_once_with(file=sys.stderr)

    @pytest.mark.parametrize(("level", "expected"), [("DEBUG", 10), ("error", 40), ("bogus", 20)])
    def test_level_mapping(self, level, expected):
        with patch("gocd_mcp.utils.logging.structlog") as mock_structlog:
            configure_logging(level=level)

            mock_structlog.make_filtering_bound_logger.assert_called_once_with(expected)


@pytest.mark.unit
class TestMaskSecrets:
    """Tests for mask_secrets."""

    def test_sensitive_keys_masked(self):
        data = {"name": "DEPLOY_KEY", "encrypted_value": "AES:abc", "Password": "hunter2"}

        assert mask_secrets(data) == {
            "name": "DEPLOY_KEY",
            "encrypted_value": MASK,
            "Password": MASK,
        }

    def test_nested_structures(self):
        data = {
            "environment_variables": [
                {"name": "SAFE", "value": "1"},
                {"name": "SECRET", "secure_value": "xyz"},
            ]
        }

        masked = mask_secrets(data)

        assert masked["environment_variables"][0] == {"name": "SAFE", "value": "1"}
        assert masked["environment_variables"][1]["secure_value"] == MASK

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Authorization: Bearer abc123", f"Authorization: Bearer {MASK}"),
            ('{"token": "abc123"}', f'{{"token": "{MASK}"}}'),
            ("password=hunter2 user=bob", f"password={MASK} user=bob"),
            ("api_key: k-123", f"api_key: {MASK}"),
        ],
    )
    def test_strings_masked(self, text, expected):
        assert mask_secrets(text) == expected

    def test_plain_values_unchanged(self):
        assert mask_secrets("pipeline build is paused") == "pipeline build is paused"
        assert mask_secrets(42) == 42
        assert mask_secrets(None) is None


@pytest.mark.unit
class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_log_to_file(self, tmp_path: Path):
        log_file = tmp_path / "audit.log"
        logger = AuditLogger(log_path=log_file)
        set_correlation_id("file1234")

        logger.log_read("get_pipeline_status", "build-linux")

        entry = json.loads(log_file.read_text().strip())
        assert entry["action"] == "get_pipeline_status"
        assert entry["target"] == "build-linux"
        assert entry["result"] == "success"
        assert entry["correlation_id"] == "file1234"
        assert "timestamp" in entry
        assert "details" not in entry

    def test_log_appends_to_file(self, tmp_path: Path):
        log_file = tmp_path / "audit.log"
        logger = AuditLogger(log_path=log_file)

        logger.log_read("list_pipelines", "dashboard")
        logger.log_write("pause_pipeline", "deploy", "success", {"pause_cause": "freeze"})

        lines = log_file.read_text().strip().split("\n")
        assert len(lines) == 2
        assert json.loads(lines[1])["details"] == {"pause_cause": "freeze"}

    def test_log_to_stream(self):
        logger = AuditLogger(log_path=None)

        with patch.object(logger, "_logger") as mock_logger:
            logger.log_write("trigger_pipeline", "build-linux", "success", {"update_materials": True})

            mock_logger.info.assert_called_once_with(
                "audit",
                action="trigger_pipeline",
                target="build-linux",
                result="success",
                details={"update_materials": True},
            )

    def test_log_blocked(self):
        logger = AuditLogger()

        with patch.object(logger, "log") as mock_log:
            logger.log_blocked("cancel_stage", "deploy/3/prod/1", "missing token")

            mock_log.assert_called_once_with(
                "cancel_stage", "deploy/3/prod/1", "blocked", {"reason": "missing token"}
            )

    def test_log_error(self):
        logger = AuditLogger()

        with patch.object(logger, "log") as mock_log:
            logger.log_error("get_stage_instance", "build/1/test/1", "boom")

            mock_log.assert_called_once_with("get_stage_instance", "build/1/test/1", "error", {"error": "boom"})

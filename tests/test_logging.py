"""
Tests for logging setup, workflow tagging and structured output.
"""

import io
import json
import logging

import pytest

from bucketsyncd.utils.logging import (
    ROOT_LOGGER,
    ConsoleFormatter,
    FileFormatter,
    StructuredFormatter,
    WorkflowFilter,
    get_logger,
    get_workflow,
    parse_level,
    setup_logging,
    workflow_context,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    logger = logging.getLogger(ROOT_LOGGER)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def _record(msg="hello", **extra):
    record = logging.LogRecord("bucketsyncd.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestWorkflowContext:
    """Tests for workflow_context and WorkflowFilter."""

    def test_context_sets_and_resets(self):
        assert get_workflow() is None
        with workflow_context("KSK1"):
            assert get_workflow() == "KSK1"
            with workflow_context("SCANS"):
                assert get_workflow() == "SCANS"
            assert get_workflow() == "KSK1"
        assert get_workflow() is None

    def test_filter_tags_record(self):
        record = _record()
        with workflow_context("KSK1"):
            assert WorkflowFilter().filter(record)
        assert record.workflow == "KSK1"

    def test_filter_outside_context(self):
        record = _record()
        WorkflowFilter().filter(record)
        assert record.workflow is None


class TestFormatters:
    """Tests for the console, file and JSON formatters."""

    def test_console_prefix(self):
        assert ConsoleFormatter().format(_record(workflow="KSK1")) == "[KSK1] hello"
        assert ConsoleFormatter().format(_record(workflow=None)) == "hello"

    def test_file_suffix(self):
        line = FileFormatter().format(_record(workflow="KSK1"))
        assert line.endswith("bucketsyncd.test: hello workflow=KSK1")

    def test_structured(self):
        payload = json.loads(StructuredFormatter().format(_record(workflow="KSK1", bucket="b")))
        assert payload["level"] == "INFO"
        assert payload["logger"] == "bucketsyncd.test"
        assert payload["message"] == "hello"
        assert payload["workflow"] == "KSK1"
        assert payload["bucket"] == "b"
        assert "timestamp" in payload
        assert "msg" not in payload

    def test_structured_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys

            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        payload = json.loads(StructuredFormatter().format(record))
        assert payload["exception"]["type"] == "ValueError"
        assert payload["exception"]["message"] == "boom"


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.mark.parametrize(
        "level,expected",
        [
            ("debug", logging.DEBUG),
            ("info", logging.INFO),
            ("warn", logging.WARNING),
            ("WARNING", logging.WARNING),
            ("error", logging.ERROR),
            ("unknown", logging.INFO),
            (logging.ERROR, logging.ERROR),
        ],
    )
    def test_parse_level(self, level, expected):
        assert parse_level(level) == expected

    def test_rich_handler(self):
        from rich.console import Console
        from rich.logging import RichHandler

        logger = setup_logging("debug", console=Console(file=io.StringIO()))
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], RichHandler)
        assert logger.propagate is False

    def test_json_output(self, capsys):
        setup_logging("info", json_format=True)
        with workflow_context("SCANS"):
            get_logger("bucketsyncd.sync.inbound").info("downloaded")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["message"] == "downloaded"
        assert payload["workflow"] == "SCANS"

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "bucketsyncd.log"
        setup_logging("info", json_format=True, log_file=log_file)
        with workflow_context("KSK1"):
            get_logger("bucketsyncd.sync.outbound").warning("upload failed")

        for handler in logging.getLogger(ROOT_LOGGER).handlers:
            handler.flush()
        content = log_file.read_text()
        assert "upload failed workflow=KSK1" in content

    def test_repeated_setup_does_not_duplicate(self):
        setup_logging("info", json_format=True)
        logger = setup_logging("info", json_format=True)
        assert len(logger.handlers) == 1

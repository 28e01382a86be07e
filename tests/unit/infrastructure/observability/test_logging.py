"""Tests for structured logging."""

import json
import logging

import pytest

from mutespot.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    ContextFilter,
    CustomJsonFormatter,
    configure_logging,
    get_batch_id,
    get_correlation_id,
    reset_batch_id,
    set_batch_id,
    set_correlation_id,
)


def _record(message: str = "hello", exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="mutespot.test",
        level=logging.WARNING,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=exc_info,
    )
    ContextFilter().filter(record)
    return record


class TestContextIds:
    """Test correlation and batch id context variables."""

    def test_set_and_get_correlation_id(self):
        """Test setting and getting correlation ID."""
        assert set_correlation_id("test-123-abc") == "test-123-abc"
        assert get_correlation_id() == "test-123-abc"

    def test_set_correlation_id_generates_uuid_when_none(self):
        """Test that setting None generates a UUID."""
        result = set_correlation_id(None)
        assert len(result) == 36
        assert get_correlation_id() == result

    def test_batch_id_is_reset_after_use(self):
        """Test that the executor's batch id does not leak past the run."""
        token = set_batch_id("batch-1")
        assert get_batch_id() == "batch-1"
        reset_batch_id(token)
        assert get_batch_id() == ""

    def test_filter_injects_ids(self):
        set_correlation_id("corr-1")
        token = set_batch_id("batch-9")
        try:
            record = _record()
        finally:
            reset_batch_id(token)
        assert record.correlation_id == "corr-1"
        assert record.batch_id == "batch-9"


class TestFormatters:
    """Test the text and JSON formatters."""

    def test_json_formatter_includes_context(self):
        """Test that JSON lines carry level, logger, correlation and batch id."""
        set_correlation_id("corr-json")
        token = set_batch_id("batch-json")
        try:
            record = _record("chunk failed")
        finally:
            reset_batch_id(token)

        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        data = json.loads(formatter.format(record))

        assert data["message"] == "chunk failed"
        assert data["level"] == "WARNING"
        assert data["logger"] == "mutespot.test"
        assert data["correlation_id"] == "corr-json"
        assert data["batch_id"] == "batch-json"

    def test_compact_formatter_appends_batch(self):
        token = set_batch_id("batch-txt")
        try:
            record = _record("hello")
        finally:
            reset_batch_id(token)
        output = CompactExceptionFormatter("%(message)s").format(record)
        assert output == "hello [batch=batch-txt]"

    def test_compact_formatter_prints_exception_chain(self):
        """Test that the root cause comes first, one header line per exception."""
        try:
            try:
                raise KeyError("inner")
            except KeyError as inner:
                raise RuntimeError("outer") from inner
        except RuntimeError as e:
            exc_info = (type(e), e, e.__traceback__)

        output = CompactExceptionFormatter("%(message)s").formatException(exc_info)
        headers = [line for line in output.splitlines() if line.startswith("╰─►")]
        assert headers == ["╰─► KeyError: 'inner'", "╰─► RuntimeError: outer"]


class TestLoggingConfiguration:
    """Test logging configuration."""

    @pytest.mark.parametrize("json_format", [True, False])
    def test_configure_logging_replaces_handlers(self, json_format: bool):
        """Test that configure_logging installs exactly one handler with the filter."""
        configure_logging(log_level="DEBUG", json_format=json_format, app_name="test-app")
        configure_logging(log_level="DEBUG", json_format=json_format, app_name="test-app")

        root_logger = logging.getLogger()
        assert len(root_logger.handlers) == 1
        assert root_logger.level == logging.DEBUG
        assert any(isinstance(f, ContextFilter) for f in root_logger.handlers[0].filters)

    def test_http_libraries_are_quieted(self):
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(log_level="chatty")
        assert logging.getLogger().level == logging.INFO

"""Tests for structured logging."""

import json
import logging
import sys
from collections.abc import Iterator

import pytest

from chartspot.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    CorrelationIdFilter,
    CustomJsonFormatter,
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """configure_logging replaces root handlers; put the originals back."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg: str = "hello %s", args: tuple = ("world",)) -> logging.LogRecord:
    return logging.LogRecord(
        "chartspot.test", logging.INFO, __file__, 10, msg, args, None
    )


class TestCorrelationId:
    """Test correlation ID functionality."""

    def test_set_and_get_correlation_id(self) -> None:
        result = set_correlation_id("refresh-token-1")
        assert result == "refresh-token-1"
        assert get_correlation_id() == "refresh-token-1"

    def test_set_correlation_id_generates_uuid_when_none(self) -> None:
        result = set_correlation_id(None)
        assert len(result) == 36
        assert get_correlation_id() == result

    def test_filter_stamps_record(self) -> None:
        set_correlation_id("tok-42")
        record = _record()
        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "tok-42"


class TestFormatters:
    """Test JSON and text formatters."""

    def test_json_formatter_fields(self) -> None:
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        record = _record()
        record.correlation_id = "tok-1"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "chartspot.test"
        assert payload["correlation_id"] == "tok-1"

    def test_compact_formatter_prints_root_cause_first(self) -> None:
        formatter = CompactExceptionFormatter()
        try:
            try:
                raise ValueError("inner")
            except ValueError as e:
                raise RuntimeError("outer") from e
        except RuntimeError:
            text = formatter.formatException(sys.exc_info())

        assert text.index("ValueError: inner") < text.index("RuntimeError: outer")


class TestLoggingConfiguration:
    """Test logging configuration."""

    def test_configure_logging_debug_level(self) -> None:
        configure_logging(log_level="DEBUG", json_format=False)
        assert logging.getLogger("chartspot").getEffectiveLevel() <= logging.DEBUG

    def test_configure_logging_installs_single_handler(self) -> None:
        configure_logging(log_level="INFO", json_format=True)
        configure_logging(log_level="INFO", json_format=True)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, CustomJsonFormatter)

    def test_text_format_uses_compact_formatter(self) -> None:
        configure_logging(log_level="INFO", json_format=False)
        root = logging.getLogger()
        assert isinstance(root.handlers[0].formatter, CompactExceptionFormatter)

    def test_third_party_loggers_quieted(self) -> None:
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("PIL").level == logging.WARNING

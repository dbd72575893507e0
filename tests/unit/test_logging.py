"""
Unit tests for structured logging utilities.
"""

import json
import logging
from io import StringIO

import pytest

from doraflow.utils.logging import (
    JSONFormatter,
    get_logger,
    log_api_call,
    log_error_with_context,
    log_step,
    setup_logging,
)


@pytest.fixture
def captured():
    """Attach a JSON handler to a fresh logger and return (adapter, stream)."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())

    logger = get_logger("doraflow.tests.logging")
    logger.logger.handlers = [handler]
    logger.logger.setLevel(logging.DEBUG)
    logger.logger.propagate = False
    yield logger, stream
    logger.logger.handlers = []


def _records(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_json_formatter():
    """Test JSON formatter produces valid JSON output."""
    formatter = JSONFormatter()
    record = logging.LogRecord(
        "test", logging.INFO, __file__, 10, "Fetched %d PRs", (3,), None
    )
    record.project = "Payments"
    record.batch = 2

    log_data = json.loads(formatter.format(record))

    assert "timestamp" in log_data
    assert log_data["level"] == "INFO"
    assert log_data["logger"] == "test"
    assert log_data["message"] == "Fetched 3 PRs"
    assert log_data["project"] == "Payments"
    assert log_data["context"] == {"batch": 2}
    assert log_data["source"]["line"] == 10


def test_get_logger_with_context():
    """Test getting logger with context."""
    logger = get_logger("test_module", project="Payments")
    child = logger.with_context(repository="api")

    assert logger.extra == {"project": "Payments"}
    assert child.extra == {"project": "Payments", "repository": "api"}


def test_context_is_promoted_to_top_level(captured):
    """Test adapter context and per-call extras both reach the record."""
    logger, stream = captured

    logger.with_context(project="Payments").info("hello", extra={"repository": "api"})

    log_data = _records(stream)[0]
    assert log_data["project"] == "Payments"
    assert log_data["repository"] == "api"


def test_log_api_call_success_is_debug(captured):
    logger, stream = captured

    log_api_call(logger, "azure_devops", "get_builds", duration_ms=12.3456)

    log_data = _records(stream)[0]
    assert log_data["level"] == "DEBUG"
    assert log_data["context"]["endpoint"] == "get_builds"
    assert log_data["context"]["duration_ms"] == 12.35


def test_log_api_call_failure_is_warning(captured):
    logger, stream = captured

    log_api_call(logger, "azure_devops", "get_threads", attempt=2, error="HTTP 503")

    log_data = _records(stream)[0]
    assert log_data["level"] == "WARNING"
    assert log_data["context"]["attempt"] == 2
    assert log_data["context"]["error"] == "HTTP 503"


def test_log_step_levels(captured):
    """Test step completion logging picks the level from outcome and duration."""
    logger, stream = captured

    log_step(logger, "fetch-builds", "success", 120.0)
    log_step(logger, "fetch-builds", "success", 12000.0)
    log_step(logger, "fetch-builds", "timeout", 60000.0, error="timed out")

    levels = [(r["level"], r["step"]) for r in _records(stream)]
    assert levels == [
        ("INFO", "fetch-builds"),
        ("WARNING", "fetch-builds"),
        ("ERROR", "fetch-builds"),
    ]


def test_log_error_with_context(captured):
    logger, stream = captured

    try:
        raise ValueError("bad build")
    except ValueError as e:
        log_error_with_context(logger, "Transform failed", e, project="Payments")

    log_data = _records(stream)[0]
    assert log_data["message"] == "Transform failed: bad build"
    assert log_data["project"] == "Payments"
    assert log_data["context"]["error_type"] == "ValueError"
    assert log_data["error"]["type"] == "ValueError"


def test_setup_logging_quiets_third_party_loggers():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging("DEBUG")

        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert logging.getLogger("azure").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)

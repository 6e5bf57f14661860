"""Tests for gcal_driver.core.logging."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from gcal_driver.core.logging import (
    add_otel_context,
    add_user_context,
    configure_logging,
    get_user_context,
    set_user_context,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    set_user_context(None)


def test_user_context_round_trip() -> None:
    set_user_context(42)
    assert get_user_context() == 42
    assert add_user_context(None, "info", {})["user_id"] == 42


def test_otel_context_absent_without_span() -> None:
    event = add_otel_context(None, "info", {"event": "x"})
    assert "trace_id" not in event
    assert "span_id" not in event


def test_json_output_carries_user_id(capsys) -> None:
    configure_logging(level="INFO", fmt="json")
    set_user_context(7)

    logging.getLogger("gcal_driver.test").info("Listed %d calendar(s)", 2)

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "Listed 2 calendar(s)"
    assert record["user_id"] == 7
    assert record["level"] == "info"
    assert record["logger"] == "gcal_driver.test"


def test_noise_loggers_quieted() -> None:
    configure_logging(level="DEBUG", fmt="text")

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("asyncpg").level == logging.WARNING
    assert logging.getLogger().level == logging.DEBUG


def test_log_file_written(tmp_path) -> None:
    log_file = tmp_path / "logs" / "gcal.jsonl"
    configure_logging(level="INFO", fmt="text", log_file=log_file)

    logging.getLogger("gcal_driver.test").warning("hello file")
    for handler in logging.getLogger().handlers:
        handler.flush()

    record = json.loads(log_file.read_text().strip().splitlines()[-1])
    assert record["event"] == "hello file"

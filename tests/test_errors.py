"""Tests for error types, the error log and logging configuration."""

import logging

import pytest

from kitchen.errors import (
    ConcurrencyConflict,
    DuplicateError,
    KitchenError,
    NoChangeError,
    NotFoundError,
    ProcessingError,
    ValidationError,
    log_exception,
)
from kitchen.logging_config import configure_ops_log, configure_quiet_mode, remove_ops_log


@pytest.mark.parametrize("exc_type", [
    ValidationError, NotFoundError, DuplicateError, NoChangeError,
    ConcurrencyConflict, ProcessingError,
])
def test_all_errors_are_kitchen_errors(exc_type):
    assert issubclass(exc_type, KitchenError)


def test_builtin_bases():
    assert issubclass(ValidationError, ValueError)
    assert issubclass(NotFoundError, LookupError)


def test_log_exception_writes_traceback(monkeypatch, tmp_path):
    monkeypatch.setenv("KITCHEN_STORE_PATH", str(tmp_path))
    try:
        raise ProcessingError("summarizer exploded")
    except ProcessingError as e:
        path = log_exception(e, context="kitchen process")

    assert path == tmp_path / "kitchen-errors.log"
    text = path.read_text()
    assert "kitchen process" in text
    assert "Traceback" in text
    assert "summarizer exploded" in text


def test_quiet_mode_silences_http_clients():
    configure_quiet_mode(quiet=True)
    assert logging.getLogger("httpx").level == logging.ERROR
    assert logging.getLogger("openai").level == logging.ERROR


def test_ops_log(tmp_path):
    handler = configure_ops_log(tmp_path)
    try:
        logging.getLogger("kitchen.test").info("stored something")
        handler.flush()
        assert "stored something" in (tmp_path / "kitchen-ops.log").read_text()
    finally:
        remove_ops_log(handler)
    assert handler not in logging.getLogger("kitchen").handlers

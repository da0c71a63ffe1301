"""Unit tests for managed_index.logger helper functions."""

import json
import logging

import managed_index.logger as logger_mod


def test_safe_converters_default_on_invalid_input():
    log = logging.getLogger("test.logger")

    assert logger_mod.safe_int("", 42, logger=log, context="int_field") == 42
    assert logger_mod.safe_int("17", 0) == 17

    assert logger_mod.safe_float("abc", 3.14, logger=log, context="float_field") == 3.14
    assert logger_mod.safe_float("2.5", 0.0) == 2.5
    assert logger_mod.safe_float(None, None) is None

    assert logger_mod.safe_bool("yes", False) is True
    assert logger_mod.safe_bool("NO", True) is False
    assert logger_mod.safe_bool("maybe", True, logger=log, context="bool_field") is True


def test_context_logger_injects_extra_fields(caplog):
    base_logger = logger_mod.get_logger("managed-index-test", json_format=False)
    contextual = logger_mod.ContextLogger(base_logger, workspace="/repo", stage="test")

    with caplog.at_level(logging.INFO, logger="managed-index-test"):
        contextual.bind(branch="main").info("hello", answer="ok")

    assert any("hello" in message for message in caplog.messages)
    record = caplog.records[-1]
    assert getattr(record, "extra_fields", {}).get("workspace") == "/repo"
    assert getattr(record, "extra_fields", {}).get("branch") == "main"
    assert getattr(record, "extra_fields", {}).get("answer") == "ok"


def test_context_logger_accepts_exception_instance(caplog):
    contextual = logger_mod.ContextLogger(logger_mod.get_logger("managed-index-exc"))
    try:
        raise RuntimeError("scan blew up")
    except RuntimeError as exc:
        err = exc

    with caplog.at_level(logging.ERROR, logger="managed-index-exc"):
        contextual.error("failed", exc_info=err)

    record = caplog.records[-1]
    assert record.exc_info[0] is RuntimeError
    assert record.exc_info[1] is err


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "watch %s", ("main",), None)
    record.extra_fields = {"workspace": "/repo"}
    data = json.loads(logger_mod.JSONFormatter().format(record))
    assert data["message"] == "watch main"
    assert data["level"] == "WARNING"
    assert data["workspace"] == "/repo"


def test_error_hierarchy_and_messages():
    failure = logger_mod.SetupFailureError("refs", "watch limit reached")
    assert isinstance(failure, logger_mod.ManagedIndexError)
    assert failure.channel == "refs"
    assert str(failure) == "refs: watch limit reached"
    assert logger_mod.error_message(TimeoutError()) == "TimeoutError"
    assert logger_mod.error_message(ValueError(" bad ")) == "bad"


def test_log_format_json_switches_watcher_logger_to_json(monkeypatch, capsys):
    from managed_index.git_watch_core.config import build_logger

    monkeypatch.setenv("LOG_FORMAT", "JSON")
    base = build_logger("managed-index-json-switch")

    assert not base.propagate
    assert any(isinstance(h.formatter, logger_mod.JSONFormatter) for h in base.handlers)

    logger_mod.ContextLogger(base, workspace="/repo").bind(branch="dev").warning("switched")
    data = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert data["message"] == "switched"
    assert data["workspace"] == "/repo"
    assert data["branch"] == "dev"


def test_watcher_logger_is_plain_text_by_default(monkeypatch):
    from managed_index.git_watch_core.config import build_logger

    monkeypatch.delenv("LOG_FORMAT", raising=False)
    base = build_logger("managed-index-plain-default")

    assert base.propagate
    assert not any(isinstance(h.formatter, logger_mod.JSONFormatter) for h in base.handlers)

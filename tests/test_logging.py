import json
import logging
import sys
import uuid

from app.core.logging import RequestIdFilter, StructuredJsonFormatter
from app.core.request_context import log_context, reset_request_id, set_request_id


def _record(message="export_created", **extra):
    record = logging.LogRecord("app.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _render(record):
    RequestIdFilter().filter(record)
    return json.loads(StructuredJsonFormatter().format(record))


def test_records_carry_request_and_export_context():
    export_id = uuid.uuid4()
    token = set_request_id("req-42")
    try:
        with log_context(export_id=export_id, scene_id="kitchen"):
            payload = _render(_record(trigger="background"))
    finally:
        reset_request_id(token)

    assert payload["message"] == "export_created"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "app.test"
    assert payload["request_id"] == "req-42"
    assert payload["export_id"] == str(export_id)
    assert payload["scene_id"] == "kitchen"
    assert payload["trigger"] == "background"


def test_explicit_extra_export_id_wins_over_context():
    with log_context(export_id="from-context"):
        payload = _render(_record(export_id="explicit"))
    assert payload["export_id"] == "explicit"


def test_context_is_restored_after_block():
    with log_context(export_id="outer"):
        with log_context(export_id="inner", scene_id="s"):
            pass
        payload = _render(_record())
    assert payload["export_id"] == "outer"
    assert "scene_id" not in payload


def test_missing_request_id_is_unknown():
    payload = _render(_record())
    assert payload["request_id"] == "unknown"
    assert "export_id" not in payload


def test_exceptions_are_serialised():
    try:
        raise ValueError("bad matrix")
    except ValueError:
        record = logging.LogRecord("app.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    payload = _render(record)
    assert "ValueError: bad matrix" in payload["exc_info"]

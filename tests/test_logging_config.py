"""
Tests: structured log formatting in app/middleware/logging_config.py.
"""

import json
import logging

from flask import g

from app.middleware.logging_config import JSONFormatter, ReadableFormatter, RequestContextFilter


def _record(msg="Advanced member %s", args=(7,), **extra):
    record = logging.LogRecord("app.services.progression", logging.INFO, __file__, 10,
                               msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_copies_context_fields():
    record = _record(tenant_id=3, member_id=7, duration_ms=12.5)
    payload = json.loads(JSONFormatter().format(record))

    assert payload["msg"] == "Advanced member 7"
    assert payload["level"] == "INFO"
    assert payload["tenant_id"] == 3
    assert payload["member_id"] == 7
    assert payload["duration_ms"] == 12.5
    assert "task_id" not in payload


def test_readable_formatter_tags_ids():
    line = ReadableFormatter().format(_record(tenant_id=3, stage_id=9))
    assert "[tenant=3 stage=9]" in line
    assert line.endswith("Advanced member 7")


def test_request_filter_fills_from_flask_g(app):
    with app.test_request_context("/api/v1/members"):
        g.request_id = "abc123"
        g.jwt_tenant_id = 4
        record = _record()
        assert RequestContextFilter().filter(record) is True

    assert record.request_id == "abc123"
    assert record.tenant_id == 4


def test_request_filter_keeps_explicit_tenant(app):
    with app.test_request_context("/api/v1/members"):
        g.jwt_tenant_id = 4
        record = _record(tenant_id=8)
        RequestContextFilter().filter(record)
    assert record.tenant_id == 8


def test_request_filter_outside_request_is_noop():
    record = _record()
    RequestContextFilter().filter(record)
    assert getattr(record, "request_id", None) is None

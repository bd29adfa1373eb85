"""Tests for redaction, JSON logging and correlation ids."""

import json
import logging

from wainbound.observability.correlation import (
    ensure_correlation_id,
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from wainbound.observability.logging import JsonFormatter, source_id_prefix
from wainbound.observability.redaction import redact_string, redact_value, safe_log_context


class TestRedaction:
    def test_redact_phone_number(self):
        result = redact_string("Call me at +55 11 99999-8888")
        assert "99999" not in result
        assert "[REDACTED]" in result

    def test_redact_jids_and_lids(self):
        result = redact_string("from 5511987654321@s.whatsapp.net via 123456@lid")
        assert "5511987654321" not in result
        assert "123456" not in result

    def test_redact_email(self):
        assert "user@example.com" not in redact_string("Email: user@example.com")

    def test_dict_logged_as_keys(self):
        result = redact_value({"phone": "5511987654321", "text": "oi"})
        assert "5511987654321" not in result
        assert "phone" in result

    def test_list_logged_as_length(self):
        assert redact_value(["a", "b"]) == "list(len=2)"

    def test_safe_log_context(self):
        ctx = safe_log_context(phone="+5511999998888", count=42, flag=True, none=None)
        assert "[REDACTED]" in ctx["phone"]
        assert ctx["count"] == "42"
        assert ctx["flag"] == "true"
        assert ctx["none"] == "null"


class TestJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("wainbound.test", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_extra_fields_merged(self):
        line = JsonFormatter().format(self._record(extra_fields={"inbox_id": "i1"}))
        data = json.loads(line)
        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["inbox_id"] == "i1"

    def test_correlation_id_included(self):
        token = set_correlation_id("cid-9")
        try:
            data = json.loads(JsonFormatter().format(self._record()))
        finally:
            reset_correlation_id(token)
        assert data["correlationId"] == "cid-9"

    def test_source_id_prefix(self):
        assert source_id_prefix("3EB0A1B2C3D4E5F6") == "3EB0A1B2"
        assert source_id_prefix(None) is None


class TestCorrelation:
    def test_ensure_generates_once(self):
        token = set_correlation_id("")
        try:
            cid = ensure_correlation_id()
            assert cid
            assert ensure_correlation_id() == cid
            assert get_correlation_id() == cid
        finally:
            reset_correlation_id(token)

"""Tests for logging, correlation and redaction helpers."""

import json
import logging

from wabridge.observability.correlation import correlation_scope, get_correlation_id
from wabridge.observability.logging import JsonFormatter, get_logger
from wabridge.observability.redaction import (
    mask_jid,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    def test_mask_jid_keeps_suffix_and_server(self):
        assert mask_jid("5511999998888@s.whatsapp.net") == "***8888@s.whatsapp.net"

    def test_mask_jid_with_device(self):
        assert mask_jid("5511999998888:3@s.whatsapp.net") == "***8888@s.whatsapp.net"

    def test_redact_phone_number(self):
        result = redact_string("Call me at +55 11 99999-8888")
        assert "99999" not in result
        assert "[REDACTED]" in result

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"conversation": "secret text"})
        assert "secret" not in result
        assert "conversation" in result

    def test_redact_value_list_only_len(self):
        assert redact_value(["a", "b", "c"]) == "list(len=3)"

    def test_safe_log_context(self):
        ctx = safe_log_context(chat_id="5511999998888@s.whatsapp.net", count=42, done=True, gone=None)
        assert ctx == {
            "chat_id": "***8888@s.whatsapp.net",
            "count": "42",
            "done": "true",
            "gone": "null",
        }


class TestCorrelation:
    def test_scope_sets_and_resets(self):
        assert get_correlation_id() == ""
        with correlation_scope("abc") as cid:
            assert cid == "abc"
            assert get_correlation_id() == "abc"
        assert get_correlation_id() == ""

    def test_scope_generates_id(self):
        with correlation_scope() as cid:
            assert cid
            assert get_correlation_id() == cid


class TestJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("wabridge.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_formats_json_with_extra_fields(self):
        with correlation_scope("cid-1"):
            output = JsonFormatter().format(self._record(extra_fields={"chat_id": "***8888@s.whatsapp.net"}))

        data = json.loads(output)
        assert data["message"] == "hello world"
        assert data["level"] == "INFO"
        assert data["correlationId"] == "cid-1"
        assert data["chat_id"] == "***8888@s.whatsapp.net"

    def test_no_correlation_outside_scope(self):
        data = json.loads(JsonFormatter().format(self._record()))
        assert "correlationId" not in data

    def test_get_logger_configures_once(self):
        logger = get_logger("wabridge.test.once")
        again = get_logger("wabridge.test.once")

        assert logger is again
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)
        assert logger.propagate is False

    def test_extra_fields_cannot_override_message(self):
        data = json.loads(JsonFormatter().format(self._record(extra_fields={"message": "spoof", "offset": "50"})))

        assert data["message"] == "hello world"
        assert data["offset"] == "50"

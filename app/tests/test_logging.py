"""
Tests for JSON logging and credential redaction.
"""
import json
import logging

from app.core.logging import REDACTED, ContextLogger, JsonFormatter, get_logger, scrub, scrub_text


def _record(message, **extra):
    record = logging.LogRecord("tracker", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedaction:
    def test_nested_keys(self):
        details = {"email": "a@b.c", "password": "hunter22", "nested": [{"Token": "abc"}]}
        assert scrub(details) == {"email": "a@b.c", "password": REDACTED, "nested": [{"Token": REDACTED}]}

    def test_message_pairs(self):
        assert "s3cret" not in scrub_text("login failed password=s3cret for user")


class TestJsonFormatter:
    def test_context_fields_lifted(self):
        line = JsonFormatter().format(_record("vote cast", user_id=3, vendor_id=9, action="cast_vote"))
        entry = json.loads(line)
        assert entry["message"] == "vote cast"
        assert (entry["user_id"], entry["vendor_id"], entry["action"]) == (3, 9, "cast_vote")
        assert "entity_id" not in entry

    def test_context_logger_merges_extra(self, caplog):
        log = get_logger("tracker.test", user_id=1, vendor_id=2)
        assert isinstance(log, ContextLogger)

        with caplog.at_level(logging.INFO, logger="tracker.test"):
            log.info("opened", extra={"action": "stream_open"})

        record = caplog.records[-1]
        assert (record.user_id, record.vendor_id, record.action) == (1, 2, "stream_open")

"""
Tests for structured logging

Event helpers attach the event name and its data; both formatters carry the
terminal id so logs from several terminals can be told apart.
"""

import json
import logging

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from baybook.utils.logging_config import (
    JSONFormatter,
    TextFormatter,
    clear_request_context,
    get_logger,
    set_request_context
)


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _capture(name):
    handler = RecordingHandler()
    base = logging.getLogger(name)
    base.handlers = [handler]
    base.setLevel(logging.DEBUG)
    base.propagate = False
    return get_logger(name), handler


class TestEventHelpers:
    def test_record_rejected_carries_event_data(self):
        logger, handler = _capture("baybook.tests.rejected")

        logger.record_rejected("bookings", "no-date", "missing or invalid date")

        record = handler.records[0]
        assert record.levelno == logging.WARNING
        assert record.event == "sync.record_rejected"
        assert record.event_data == {
            "collection": "bookings", "record_id": "no-date", "reason": "missing or invalid date"
        }

    def test_final_push_failure_is_an_error(self):
        logger, handler = _capture("baybook.tests.push")

        logger.push_failed("bookings", "b-1", 2, "Invalid record data", final=False)
        logger.push_failed("bookings", "b-1", 5, "Invalid record data", final=True)

        assert [r.levelno for r in handler.records] == [logging.WARNING, logging.ERROR]
        assert handler.records[1].event_data["final"] is True

    def test_connectivity_transitions(self):
        logger, handler = _capture("baybook.tests.connectivity")

        logger.connectivity_changed(False)
        logger.connectivity_changed(True)

        assert [r.event_data["online"] for r in handler.records] == [False, True]
        assert all(r.event == "sync.connectivity" for r in handler.records)


class TestFormatters:
    def test_json_line_has_terminal_request_and_event(self):
        logger, handler = _capture("baybook.tests.json")
        set_request_context("req-42")
        try:
            logger.waitlist_notified("w-1", 3, "10:00")
            line = JSONFormatter(terminal_id="terminal-7").format(handler.records[0])
        finally:
            clear_request_context()

        payload = json.loads(line)
        assert payload["terminal_id"] == "terminal-7"
        assert payload["request_id"] == "req-42"
        assert payload["event"] == "waitlist.notified"
        assert payload["data"] == {"entry_id": "w-1", "resource_id": 3, "start_time": "10:00"}

    def test_plain_messages_have_no_event(self):
        logger, handler = _capture("baybook.tests.plain")
        logger.info("Sync scheduler started")

        payload = json.loads(JSONFormatter().format(handler.records[0]))
        assert "event" not in payload
        assert "terminal_id" not in payload

    def test_text_format_appends_event_data(self):
        logger, handler = _capture("baybook.tests.text")
        logger.booking_status_changed("b-1", "confirmed", "cancelled")

        line = TextFormatter("terminal-7").format(handler.records[0])

        assert "[terminal-7]" in line
        assert line.endswith("| booking_id=b-1 old_status=confirmed new_status=cancelled")

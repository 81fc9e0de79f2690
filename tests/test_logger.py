"""Unit tests for structured JSON logging."""
import sys
sys.path.insert(0, 'backend')

import json
import logging
from logger import JSONFormatter, setup_logging


def make_record(**extra):
    record = logging.LogRecord("services.conversation_log", logging.INFO, __file__, 1, "Appended turn %d", (5,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_format_is_json_with_core_fields():
    data = json.loads(JSONFormatter().format(make_record()))

    assert data["level"] == "INFO"
    assert data["logger"] == "services.conversation_log"
    assert data["message"] == "Appended turn 5"
    assert data["timestamp"].endswith("Z")


def test_extra_fields_are_merged():
    data = json.loads(JSONFormatter().format(make_record(conversation_id="whatsapp_4917", total_before=60)))

    assert data["conversation_id"] == "whatsapp_4917"
    assert data["total_before"] == 60
    assert "pathname" not in data


def test_setup_logging_installs_single_json_handler():
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    try:
        setup_logging("DEBUG")
        setup_logging("WARNING")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved[0]:
            root.addHandler(handler)
        root.setLevel(saved[1])

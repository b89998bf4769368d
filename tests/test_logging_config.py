"""
Tests for `config/logging_config.py` - JSON log lines and bound correlation fields.
"""

import json
import logging

from config.logging_config import StructuredLogFormatter, get_logger


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_formatter_omits_unset_correlation_fields():
    record = logging.LogRecord("gateway", logging.INFO, __file__, 1, "door opened", None, None)
    record.request_id = "-"
    record.device_id = "door-1"

    line = json.loads(StructuredLogFormatter().format(record))

    assert line["message"] == "door opened"
    assert line["device_id"] == "door-1"
    assert "request_id" not in line
    assert "provider" not in line


def test_get_logger_binds_context_and_merges_extra():
    handler = ListHandler()
    base = logging.getLogger("tests.logging.bound")
    base.addHandler(handler)
    base.setLevel(logging.INFO)
    try:
        logger = get_logger("tests.logging.bound", provider="MOCK")
        logger.info("dispatch", extra={"device_id": "door-1"})
    finally:
        base.removeHandler(handler)

    line = json.loads(StructuredLogFormatter().format(handler.records[0]))
    assert line["provider"] == "MOCK"
    assert line["device_id"] == "door-1"
    assert "request_id" not in line

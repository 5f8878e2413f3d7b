"""Unit tests for structured logging"""

import json
import logging
from microloan_engine.infrastructure.observability.logging import (
    AUDIT_LOGGER_NAME,
    CustomJsonFormatter,
    get_audit_logger,
    setup_logging,
)


def test_json_formatter_adds_service_fields():
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    record = logging.LogRecord("microloan_engine.test", logging.INFO, __file__, 1, "Decision completed", None, None)
    record.application_id = "app-1"

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "Decision completed"
    assert payload["level"] == "INFO"
    assert payload["service"] == "microloan-engine"
    assert payload["application_id"] == "app-1"
    assert "timestamp" in payload


def test_audit_logger_name():
    assert get_audit_logger().name == AUDIT_LOGGER_NAME


def test_setup_logging_installs_json_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging("DEBUG")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, CustomJsonFormatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

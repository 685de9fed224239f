"""Unit tests for structured logging."""

from __future__ import annotations

import json
import logging

from trigger_orchestrator.orchestrator.logging import (
    JsonFormatter,
    TextFormatter,
    configure_logging,
)


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        "trigger_orchestrator.test", logging.INFO, __file__, 1, "Trigger fired", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields() -> None:
    line = JsonFormatter().format(_record(trigger_id="manual", removed={"webhook"}))
    payload = json.loads(line)

    assert payload["message"] == "Trigger fired"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "trigger_orchestrator.test"
    assert payload["extra"] == {"trigger_id": "manual", "removed": ["webhook"]}


def test_text_formatter_appends_extra_fields() -> None:
    line = TextFormatter().format(_record(workflow_id=3))

    assert "Trigger fired" in line
    assert line.endswith("workflow_id=3")


def test_configure_logging_installs_a_single_handler() -> None:
    configure_logging("debug")
    configure_logging("info", fmt="text")

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, TextFormatter)
    assert root.level == logging.INFO
    assert logging.getLogger("redis").level == logging.WARNING

"""Unit tests for the built-in logic and action modules."""

from __future__ import annotations

import logging

import pytest

from trigger_orchestrator.orchestrator.workflow.builtin import (
    IfCondition,
    LogMessage,
    SetValue,
    StopExecution,
)
from trigger_orchestrator.orchestrator.workflow.events import (
    ActingIdentity,
    RoamingData,
    TriggerEvent,
)


def _roaming(payload: dict) -> RoamingData:
    return RoamingData.for_walk(TriggerEvent("manual", payload), ActingIdentity(user_id=1))


@pytest.mark.parametrize(
    ("config", "expected"),
    [
        ({"path": "status", "operator": "equals", "value": "open"}, "then"),
        ({"path": "status", "operator": "not_equals", "value": "open"}, "else"),
        ({"path": "status", "operator": "in", "value": ["open", "new"]}, "then"),
        ({"path": "status", "operator": "not_in", "value": ["open"]}, "else"),
        ({"path": "tags.0", "operator": "equals", "value": "tlp:white"}, "then"),
        ({"path": "missing", "operator": "exists"}, "else"),
        ({"path": "status", "operator": "exists"}, "then"),
        ({"path": "status", "value": "open"}, "then"),
    ],
)
def test_if_condition_selects_one_output(config: dict, expected: str) -> None:
    result = IfCondition().execute(config, _roaming({"status": "open", "tags": ["tlp:white"]}))

    assert result.ok
    assert result.outputs == [expected]


@pytest.mark.parametrize(
    "config",
    [
        {},
        {"path": "status", "operator": "matches", "value": "o.*"},
        {"path": "status", "operator": "in", "value": "open"},
    ],
)
def test_if_condition_rejects_bad_configuration(config: dict) -> None:
    result = IfCondition().execute(config, _roaming({"status": "open"}))

    assert not result.ok
    assert result.errors


def test_stop_execution_always_fails() -> None:
    assert StopExecution().execute({}, _roaming({})).errors == ["Execution stopped"]
    assert StopExecution().execute({"message": "halt"}, _roaming({})).errors == ["halt"]


def test_log_message_renders_placeholders(caplog: pytest.LogCaptureFixture) -> None:
    roaming = _roaming({"event": {"info": "phishing"}})
    roaming.scratch["owner"] = "ops"

    with caplog.at_level(logging.INFO, logger="trigger_orchestrator.orchestrator.workflow.builtin"):
        result = LogMessage().execute(
            {"message": "Event {event.info} for {owner} {unknown.path}"}, roaming
        )

    assert result.ok
    assert "Event phishing for ops {unknown.path}" in caplog.messages


def test_log_message_rejects_unknown_level() -> None:
    result = LogMessage().execute({"message": "x", "level": "LOUD"}, _roaming({}))

    assert not result.ok
    assert "LOUD" in result.errors[0]


def test_set_value_writes_scratch_data() -> None:
    roaming = _roaming({"event": {"id": 42}})

    assert SetValue().execute({"key": "fixed", "value": 1}, roaming).ok
    assert SetValue().execute({"key": "copied", "from_path": "event.id"}, roaming).ok
    missing = SetValue().execute({"key": "k", "from_path": "event.nope"}, roaming)

    assert roaming.scratch == {"fixed": 1, "copied": 42}
    assert roaming.lookup("copied") == 42
    assert not missing.ok


def test_roaming_data_copies_the_payload() -> None:
    payload = {"event": {"id": 1}}
    roaming = _roaming(payload)

    roaming.data["event"]["id"] = 2  # type: ignore[index]

    assert payload == {"event": {"id": 1}}
    assert roaming.lookup("event.id") == 2
    assert roaming.lookup("event.nope", "default") == "default"

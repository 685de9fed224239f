"""Unit tests for the module registry and global module overrides."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from trigger_orchestrator.orchestrator.workflow.builtin import Trigger, default_handlers
from trigger_orchestrator.orchestrator.workflow.events import ActingIdentity, RoamingData
from trigger_orchestrator.orchestrator.workflow.graph import ModuleType
from trigger_orchestrator.orchestrator.workflow.modules import (
    DuplicateModuleError,
    ModuleOverrides,
    ModuleRegistry,
)


def test_duplicate_registration_is_rejected(handlers) -> None:
    with pytest.raises(DuplicateModuleError, match="first"):
        ModuleRegistry([handlers["first"], handlers["first"]])


def test_same_id_under_different_types_is_allowed() -> None:
    registry = ModuleRegistry([*default_handlers(), Trigger(id="log-message", name="Log")])

    assert registry.get_trigger("log-message") is not None
    assert registry.resolve(ModuleType.ACTION, "log-message") is not None
    assert registry.resolve(ModuleType.LOGIC, "log-message") is None


def test_overrides_file_and_disabled_list_are_merged(tmp_path: Path) -> None:
    path = tmp_path / "modules.json"
    path.write_text(
        json.dumps(
            {
                "action": {"log-message": {"settings": {"level": "DEBUG"}}},
                "trigger": {"webhook": {"disabled": True}},
            }
        ),
        encoding="utf-8",
    )

    overrides = ModuleOverrides.load(path, disabled=["trigger:schedule", "action:log-message"])
    registry = ModuleRegistry(default_handlers(), overrides)

    by_id = {d.id: d for d in registry.list_modules()}
    assert by_id["webhook"].disabled is True
    assert by_id["schedule"].disabled is True
    assert by_id["manual"].disabled is False
    assert by_id["log-message"].disabled is True
    assert by_id["log-message"].settings == {"level": "DEBUG"}


def test_missing_overrides_file_means_no_overrides(tmp_path: Path) -> None:
    overrides = ModuleOverrides.load(tmp_path / "absent.json")

    assert overrides.root == {}


@pytest.mark.parametrize("entry", ["manual", "trigger:", "widget:manual"])
def test_invalid_disabled_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        ModuleOverrides.load(disabled=[entry])


def test_node_config_wins_over_global_settings(handlers) -> None:
    overrides = ModuleOverrides.model_validate(
        {"action": {"first": {"settings": {"a": 1, "b": 1}}}}
    )
    registry = ModuleRegistry([handlers["first"]], overrides)
    module = registry.resolve(ModuleType.ACTION, "first")
    assert module is not None

    module.execute({"b": 2}, RoamingData(identity=ActingIdentity(), data={}))

    assert handlers["first"].calls == [{"a": 1, "b": 2}]


def test_list_modules_is_grouped_by_type_and_sorted() -> None:
    registry = ModuleRegistry(default_handlers())

    triggers = registry.list_modules(ModuleType.TRIGGER)
    assert [d.id for d in triggers] == ["manual", "schedule", "webhook"]
    assert [d.id for d in registry.get_modules_by_id(["set-value", "if", "manual"])] == [
        "manual",
        "if",
        "set-value",
    ]

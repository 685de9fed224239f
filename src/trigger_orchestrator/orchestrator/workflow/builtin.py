"""Built-in modules.

Actions and logic modules here are deterministic and side-effect free apart
from logging and writes into the walk's roaming data.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .events import RoamingData
from .graph import ModuleType
from .modules import ModuleHandler, ModuleResult

logger = logging.getLogger(__name__)

OUTPUT_THEN = "then"
OUTPUT_ELSE = "else"

_PLACEHOLDER = re.compile(r"\{([\w.\-]+)\}")
_MISSING = object()


@dataclass(frozen=True, slots=True)
class Trigger:
    """A trigger module: identifies a kind of event. Never performs work."""

    id: str
    name: str
    description: str = ""
    disabled: bool = False
    module_type: ModuleType = ModuleType.TRIGGER

    def execute(self, _config: dict[str, object], _roaming_data: RoamingData) -> ModuleResult:
        return ModuleResult.success()


@dataclass(frozen=True, slots=True)
class IfCondition:
    """Compare a payload value and follow either the `then` or the `else` output.

    Config:
      - path: dotted path into the payload (or scratch data)
      - operator: equals | not_equals | in | not_in | exists
      - value: operand for every operator except `exists`
    """

    id: str = "if"
    name: str = "IF"
    description: str = "Route execution through `then` or `else` based on a payload value"
    disabled: bool = False
    module_type: ModuleType = ModuleType.LOGIC

    def execute(self, config: dict[str, object], roaming_data: RoamingData) -> ModuleResult:
        path = config.get("path")
        if not isinstance(path, str) or not path:
            return ModuleResult.failure("Missing `path` in configuration")
        operator = config.get("operator", "equals")
        actual = roaming_data.lookup(path, _MISSING)
        expected = config.get("value")

        if operator == "exists":
            matched = actual is not _MISSING and actual is not None
        elif operator == "equals":
            matched = actual == expected
        elif operator == "not_equals":
            matched = actual != expected
        elif operator in {"in", "not_in"}:
            if not isinstance(expected, list):
                return ModuleResult.failure(f"Operator `{operator}` expects a list value")
            matched = (actual in expected) == (operator == "in")
        else:
            return ModuleResult.failure(f"Unsupported operator `{operator}`")

        return ModuleResult.success(outputs=[OUTPUT_THEN if matched else OUTPUT_ELSE])


@dataclass(frozen=True, slots=True)
class StopExecution:
    """Always fail: halts a blocking path, prunes a deferred branch."""

    id: str = "stop-execution"
    name: str = "Stop execution"
    description: str = "Stop the propagation of the current path"
    disabled: bool = False
    module_type: ModuleType = ModuleType.LOGIC

    def execute(self, config: dict[str, object], _roaming_data: RoamingData) -> ModuleResult:
        message = config.get("message") or "Execution stopped"
        return ModuleResult.failure(str(message))


@dataclass(frozen=True, slots=True)
class LogMessage:
    """Log a message. `{dotted.path}` placeholders are filled from roaming data."""

    id: str = "log-message"
    name: str = "Log message"
    description: str = "Write a message to the application log"
    disabled: bool = False
    module_type: ModuleType = ModuleType.ACTION

    def execute(self, config: dict[str, object], roaming_data: RoamingData) -> ModuleResult:
        template = config.get("message")
        if not isinstance(template, str):
            return ModuleResult.failure("Missing `message` in configuration")
        level_name = str(config.get("level", "INFO")).upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            return ModuleResult.failure(f"Unknown log level `{level_name}`")

        def _fill(match: re.Match[str]) -> str:
            value = roaming_data.lookup(match.group(1), _MISSING)
            return match.group(0) if value is _MISSING else str(value)

        logger.log(
            level,
            _PLACEHOLDER.sub(_fill, template),
            extra={"trigger_id": roaming_data.trigger_id, "user_id": roaming_data.identity.user_id},
        )
        return ModuleResult.success()


@dataclass(frozen=True, slots=True)
class SetValue:
    """Store a value in roaming scratch data for later nodes of the same walk.

    Config: `key`, and either `value` or `from_path` (copied from the payload).
    """

    id: str = "set-value"
    name: str = "Set value"
    description: str = "Store a value for the following nodes of this execution"
    disabled: bool = False
    module_type: ModuleType = ModuleType.ACTION

    def execute(self, config: dict[str, object], roaming_data: RoamingData) -> ModuleResult:
        key = config.get("key")
        if not isinstance(key, str) or not key:
            return ModuleResult.failure("Missing `key` in configuration")
        source = config.get("from_path")
        if isinstance(source, str):
            value = roaming_data.lookup(source, _MISSING)
            if value is _MISSING:
                return ModuleResult.failure(f"Nothing found at `{source}`")
        else:
            value = config.get("value")
        roaming_data.scratch[key] = value
        return ModuleResult.success()


def default_handlers() -> list[ModuleHandler]:
    return [
        Trigger(id="manual", name="Manual", description="Fired on demand"),
        Trigger(id="webhook", name="Webhook", description="Fired by an incoming HTTP request"),
        Trigger(id="schedule", name="Schedule", description="Fired by a timer"),
        IfCondition(),
        StopExecution(),
        LogMessage(),
        SetValue(),
    ]

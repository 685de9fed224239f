"""Test configuration and fixtures."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from trigger_orchestrator.orchestrator.logging import JsonFormatter, TextFormatter
from trigger_orchestrator.orchestrator.workflow.builtin import default_handlers
from trigger_orchestrator.orchestrator.workflow.dispatcher import Dispatcher, MemoryAuditSink
from trigger_orchestrator.orchestrator.workflow.events import RoamingData
from trigger_orchestrator.orchestrator.workflow.graph import ModuleType
from trigger_orchestrator.orchestrator.workflow.index import (
    InMemoryCoordinationStore,
    TriggerIndex,
)
from trigger_orchestrator.orchestrator.workflow.modules import ModuleRegistry, ModuleResult
from trigger_orchestrator.orchestrator.workflow.store import WorkflowStore


@dataclass
class RecordingHandler:
    """Module handler that records every call and returns a canned result."""

    id: str
    module_type: ModuleType = ModuleType.ACTION
    name: str = "Recording"
    description: str = ""
    disabled: bool = False
    result: object = None
    exc: Exception | None = None
    delay: float = 0.0
    calls: list[dict[str, object]] = field(default_factory=list)
    seen: list[RoamingData] = field(default_factory=list)

    def execute(self, config: dict[str, object], roaming_data: RoamingData) -> object:
        self.calls.append(dict(config))
        self.seen.append(roaming_data)
        if self.delay:
            time.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.result if self.result is not None else ModuleResult.success()


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    """CLI tests reconfigure the root logger; keep that from leaking into other tests."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, (JsonFormatter, TextFormatter)):
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def handlers() -> dict[str, RecordingHandler]:
    """Provide recording action handlers keyed by module id."""
    return {
        "first": RecordingHandler(id="first"),
        "after": RecordingHandler(id="after"),
        "sibling": RecordingHandler(id="sibling"),
        "fails": RecordingHandler(id="fails", result=ModuleResult.failure("boom")),
        "raises": RecordingHandler(id="raises", exc=RuntimeError("kaboom")),
    }


@pytest.fixture
def registry(handlers: dict[str, RecordingHandler]) -> ModuleRegistry:
    """Provide a registry with the built-in modules plus the recording handlers."""
    return ModuleRegistry([*default_handlers(), *handlers.values()])


@pytest.fixture
def coordination_store() -> InMemoryCoordinationStore:
    return InMemoryCoordinationStore()


@pytest.fixture
def index(coordination_store: InMemoryCoordinationStore) -> TriggerIndex:
    return TriggerIndex(coordination_store)


@pytest.fixture
def workflow_store(tmp_path: Path, index: TriggerIndex) -> WorkflowStore:
    """Provide a JSON-file workflow store wired to the in-memory trigger index."""
    return WorkflowStore(tmp_path / "workflows.json", index=index)


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def dispatcher(
    registry: ModuleRegistry,
    index: TriggerIndex,
    workflow_store: WorkflowStore,
    audit: MemoryAuditSink,
) -> Dispatcher:
    return Dispatcher(registry=registry, index=index, workflows=workflow_store, audit=audit)


def chain_graph(
    trigger_id: str,
    blocking: list[str] | tuple[str, ...] = (),
    non_blocking: list[str] | tuple[str, ...] = (),
    trigger_node_id: int = 1,
) -> dict[int, dict[str, object]]:
    """Build a graph with one trigger and a linear chain of actions per edge class.

    Action node ids are allocated from ``trigger_node_id + 1`` upwards, blocking
    chain first.
    """

    trigger: dict[str, object] = {
        "id": trigger_node_id,
        "module_type": "trigger",
        "module_id": trigger_id,
        "outputs": {},
    }
    graph: dict[int, dict[str, object]] = {trigger_node_id: trigger}
    next_id = trigger_node_id + 1
    for output, chain in (("blocking", blocking), ("non-blocking", non_blocking)):
        previous: dict[str, object] | None = None
        for module_id in chain:
            node: dict[str, object] = {
                "id": next_id,
                "module_type": "action",
                "module_id": module_id,
                "outputs": {},
            }
            graph[next_id] = node
            if previous is None:
                trigger["outputs"][output] = [next_id]  # type: ignore[index]
            else:
                previous["outputs"] = {"output_1": [next_id]}
            previous = node
            next_id += 1
    return graph


@pytest.fixture
def make_graph():
    """Provide the linear graph builder."""
    return chain_graph

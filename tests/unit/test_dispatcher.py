"""Unit tests for trigger dispatch across blocking and non-blocking workflows."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from trigger_orchestrator.orchestrator.workflow.builtin import default_handlers
from trigger_orchestrator.orchestrator.workflow.dispatcher import (
    Dispatcher,
    MemoryAuditSink,
    UnknownTriggerError,
    group_workflows_per_blocking_type,
)
from trigger_orchestrator.orchestrator.workflow.events import RoamingData
from trigger_orchestrator.orchestrator.workflow.graph import ModuleType
from trigger_orchestrator.orchestrator.workflow.index import (
    IndexUnavailableError,
    InMemoryCoordinationStore,
    TriggerIndex,
)
from trigger_orchestrator.orchestrator.workflow.modules import (
    ModuleOverrides,
    ModuleRegistry,
    ModuleResult,
)
from trigger_orchestrator.orchestrator.workflow.walker import PathType


def test_blocking_failure_stops_later_blocking_workflows(
    dispatcher, workflow_store, handlers, make_graph
) -> None:
    w1 = workflow_store.create(name="W1", graph=make_graph("manual", blocking=["fails"]))
    workflow_store.create(name="W2", graph=make_graph("manual", blocking=["after"]))

    result = dispatcher.fire("manual", {"event": "saved"})

    assert result.ok is False
    assert handlers["after"].calls == []
    assert len(result.errors) == 1
    assert "`fails`" in result.errors[0]
    assert f"Workflow `W1` ({w1.id})" in result.errors[0]
    assert [r.workflow_id for r in result.records] == [w1.id]


def test_non_blocking_workflows_are_isolated(
    dispatcher, workflow_store, handlers, audit, make_graph
) -> None:
    w3 = workflow_store.create(name="W3", graph=make_graph("manual", non_blocking=["fails"]))
    w4 = workflow_store.create(name="W4", graph=make_graph("manual", non_blocking=["after"]))

    result = dispatcher.fire("manual")

    assert result.ok is True
    assert result.errors == []
    assert len(handlers["after"].calls) == 1
    digests = {r.workflow_id: r.digest for r in audit.records}
    assert digests == {
        w3.id: "Node `fails` (2) stopped execution.",
        w4.id: "All nodes executed.",
    }
    assert all(r.path_type is PathType.NON_BLOCKING for r in audit.records)


def test_deferred_paths_run_after_a_blocking_failure(
    dispatcher, workflow_store, handlers, make_graph
) -> None:
    workflow_store.create(
        name="mixed", graph=make_graph("manual", blocking=["fails"], non_blocking=["sibling"])
    )
    workflow_store.create(name="later", graph=make_graph("manual", blocking=["after"]))

    result = dispatcher.fire("manual")

    assert result.ok is False
    assert handlers["after"].calls == []
    assert len(handlers["sibling"].calls) == 1


def test_unknown_trigger_raises(dispatcher) -> None:
    with pytest.raises(UnknownTriggerError, match="Unknown trigger `nope`"):
        dispatcher.fire("nope")


def test_disabled_trigger_is_a_successful_no_op(
    handlers, index, workflow_store, make_graph
) -> None:
    workflow_store.create(name="W", graph=make_graph("manual", blocking=["first"]))
    registry = ModuleRegistry(
        [*default_handlers(), *handlers.values()],
        ModuleOverrides.load(disabled=["trigger:manual"]),
    )
    dispatcher = Dispatcher(registry=registry, index=index, workflows=workflow_store)

    result = dispatcher.fire("manual")

    assert result.ok is True
    assert result.records == []
    assert handlers["first"].calls == []


def test_disabled_workflows_do_not_run(dispatcher, workflow_store, handlers, make_graph) -> None:
    record = workflow_store.create(name="W", graph=make_graph("manual", blocking=["first"]))
    workflow_store.toggle(record.id, False)

    result = dispatcher.fire("manual")

    assert result.ok is True
    assert handlers["first"].calls == []


def test_blocking_order_is_respected(
    dispatcher, workflow_store, index, audit, make_graph
) -> None:
    w1 = workflow_store.create(name="W1", graph=make_graph("manual", blocking=["first"]))
    w2 = workflow_store.create(name="W2", graph=make_graph("manual", blocking=["after"]))
    index.set_blocking_order("manual", [w2.id, w1.id])

    dispatcher.fire("manual")

    assert [r.workflow_id for r in audit.records] == [w2.id, w1.id]


def test_each_walk_gets_its_own_payload_copy(index, workflow_store, handlers, make_graph) -> None:
    class Mutating:
        id = "mutating"
        module_type = ModuleType.ACTION
        name = "Mutating"
        description = ""
        disabled = False

        def execute(self, config: dict, roaming_data: RoamingData) -> ModuleResult:
            roaming_data.data["touched"] = True
            return ModuleResult.success()

    dispatcher = Dispatcher(
        registry=ModuleRegistry([*default_handlers(), *handlers.values(), Mutating()]),
        index=index,
        workflows=workflow_store,
    )
    workflow_store.create(
        name="A", graph=make_graph("manual", blocking=["mutating"]), user_id=11
    )
    workflow_store.create(name="B", graph=make_graph("manual", blocking=["first"]), user_id=12)
    payload = {"event": "saved"}

    dispatcher.fire("manual", payload)

    seen = handlers["first"].seen[0]
    assert "touched" not in seen.data
    assert "touched" not in payload
    assert seen.identity.user_id == 12
    assert seen.trigger_id == "manual"


def test_blocking_predecessors(dispatcher, workflow_store, make_graph) -> None:
    ids = [
        workflow_store.create(name=f"W{i}", graph=make_graph("manual", blocking=["first"])).id
        for i in range(3)
    ]

    assert [w.id for w in dispatcher.blocking_predecessors("manual", ids[2])] == ids[:2]
    assert dispatcher.blocking_predecessors("manual", ids[0]) == []
    assert dispatcher.blocking_predecessors("manual", 99) == []


def test_listeners_per_trigger_includes_disabled_workflows(
    dispatcher, workflow_store, make_graph
) -> None:
    record = workflow_store.create(
        name="W", graph=make_graph("webhook", non_blocking=["first"]), enabled=False
    )

    listeners = dispatcher.listeners_per_trigger()

    assert set(listeners) == {"manual", "webhook", "schedule"}
    assert [w.id for w in listeners["webhook"].non_blocking] == [record.id]
    assert listeners["manual"].blocking == []


def test_grouping_splits_by_edge_class_and_order(workflow_store, make_graph) -> None:
    both = workflow_store.create(
        name="both", graph=make_graph("manual", blocking=["a"], non_blocking=["b"])
    )
    blocking = workflow_store.create(name="blocking", graph=make_graph("manual", blocking=["a"]))
    unordered = workflow_store.create(name="late", graph=make_graph("manual", blocking=["a"]))

    order = group_workflows_per_blocking_type(
        workflow_store.list(), "manual", [blocking.id, both.id]
    )

    assert [w.id for w in order.blocking] == [blocking.id, both.id, unordered.id]
    assert [w.id for w in order.non_blocking] == [both.id]


def test_index_outage_means_no_listeners(registry, workflow_store, make_graph) -> None:
    store = Mock(spec=InMemoryCoordinationStore)
    store.smembers.side_effect = IndexUnavailableError("down")
    dispatcher = Dispatcher(
        registry=registry,
        index=TriggerIndex(store),
        workflows=workflow_store,
        audit=MemoryAuditSink(),
    )

    result = dispatcher.fire("manual")

    assert result.ok is True
    assert result.records == []

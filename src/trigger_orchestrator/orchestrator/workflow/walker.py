"""Graph walker: execute the nodes of one workflow reachable from one trigger.

Path semantics:
- A failure on the blocking path ends the walk with ``completed=False``.
- A failure on the non-blocking path only prunes the failing branch: its
  descendants are recorded as blocked paths, independent siblings still run.

Handler errors, exceptions and timeouts never escape ``GraphWalker.walk``.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterator, MutableMapping
from dataclasses import dataclass, field, replace
from enum import Enum

from .events import RoamingData
from .graph import (
    OUTPUT_BLOCKING,
    OUTPUT_NON_BLOCKING,
    Block,
    Graph,
    GraphValidationError,
    node_id_for_trigger,
    validate_graph,
)
from .modules import ModuleRegistry, ModuleResult
from .store import WorkflowRecord

logger = logging.getLogger(__name__)

PathList = tuple[int, ...]


class PathType(str, Enum):
    BLOCKING = "blocking"
    NON_BLOCKING = "non-blocking"


class PathFilter(str, Enum):
    BLOCKING = "blocking"
    NON_BLOCKING = "non-blocking"
    ANY = "any"


class NodeExecutionError(RuntimeError):
    """A node could not be executed: missing or disabled module, exception, timeout."""


@dataclass(frozen=True, slots=True)
class GraphStep:
    node_id: int
    block: Block
    path_type: PathType
    path_list: PathList


@dataclass(slots=True)
class WalkResult:
    completed: bool = False
    executed_nodes: list[int] = field(default_factory=list)
    stopped_nodes: list[int] = field(default_factory=list)
    blocked_paths: list[PathList] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def iter_graph(
    graph: Graph,
    start_node_id: int,
    path_filter: PathFilter = PathFilter.ANY,
    selected_outputs: MutableMapping[PathList, list[str] | None] | None = None,
) -> Iterator[GraphStep]:
    """Depth-first, path-labelled enumeration of the nodes below a trigger.

    Only the first hop is filtered by edge class; deeper hops follow every edge
    and inherit the path type chosen at the first hop. Children of a step are
    expanded lazily, after the consumer had the chance to record in
    ``selected_outputs[step.path_list]`` which outputs should be followed.
    """

    selected = selected_outputs if selected_outputs is not None else {}
    start = graph[start_node_id]
    root: PathList = (start_node_id,)

    first_hops: list[tuple[int, PathType, PathList]] = []
    if path_filter in (PathFilter.BLOCKING, PathFilter.ANY):
        first_hops += [(t, PathType.BLOCKING, root) for t in start.targets(OUTPUT_BLOCKING)]
    if path_filter in (PathFilter.NON_BLOCKING, PathFilter.ANY):
        first_hops += [
            (t, PathType.NON_BLOCKING, root) for t in start.targets(OUTPUT_NON_BLOCKING)
        ]

    pending: list[Iterator[tuple[int, PathType, PathList]]] = [iter(first_hops)]
    while pending:
        hop = next(pending[-1], None)
        if hop is None:
            pending.pop()
            continue
        node_id, path_type, parent = hop
        path = parent + (node_id,)
        block = graph[node_id]
        yield GraphStep(node_id=node_id, block=block, path_type=path_type, path_list=path)

        chosen = selected.get(path)
        if chosen is None:
            children = block.targets()
        else:
            children = [t for output in chosen for t in block.targets(output)]
        pending.append(iter([(child, path_type, path) for child in children]))


def _is_blocked(path: PathList, blocked_prefixes: list[PathList]) -> bool:
    return any(path[: len(prefix)] == prefix for prefix in blocked_prefixes)


def _merge_roaming_data(target: RoamingData, source: RoamingData) -> None:
    target.data.clear()
    target.data.update(source.data)
    target.scratch.clear()
    target.scratch.update(source.scratch)


def _coerce_result(raw: object) -> ModuleResult:
    if isinstance(raw, ModuleResult):
        return raw
    # Plain `(success, errors)` tuples are accepted from third-party handlers.
    if isinstance(raw, tuple) and len(raw) == 2:
        ok, errors = raw
        return ModuleResult(ok=bool(ok), errors=[str(e) for e in (errors or [])])
    raise NodeExecutionError(f"Module returned an unexpected result: {raw!r}")


class GraphWalker:
    """Walk a workflow graph from a trigger node and execute its modules."""

    def __init__(self, registry: ModuleRegistry, *, timeout_seconds: float | None = None) -> None:
        self._registry = registry
        self._timeout_seconds = timeout_seconds

    def walk(
        self,
        workflow: WorkflowRecord,
        trigger_id: str,
        path_filter: PathFilter,
        roaming_data: RoamingData,
    ) -> WalkResult:
        result = WalkResult()
        graph = workflow.graph

        try:
            validate_graph(graph)
        except GraphValidationError as e:
            result.errors.append(f"Workflow `{workflow.name}` ({workflow.id}) is invalid: {e}")
            return result

        start = node_id_for_trigger(graph, trigger_id)
        if start is None:
            logger.warning(
                "Trigger not found in workflow",
                extra={"workflow_id": workflow.id, "trigger_id": trigger_id},
            )
            result.errors.append(
                f"Trigger `{trigger_id}` not found in Workflow `{workflow.name}` ({workflow.id})"
            )
            return result

        selected: dict[PathList, list[str] | None] = {}
        blocked_prefixes: list[PathList] = []
        for step in iter_graph(graph, start, path_filter, selected):
            if _is_blocked(step.path_list, blocked_prefixes):
                result.blocked_paths.append(step.path_list)
                continue

            try:
                outcome = self._execute_node(step.block, roaming_data)
            except NodeExecutionError as e:
                outcome = ModuleResult.failure(str(e))
            result.executed_nodes.append(step.node_id)

            if outcome.ok:
                selected[step.path_list] = outcome.outputs
                continue

            result.stopped_nodes.append(step.node_id)
            result.errors.append(
                "Node `{}` ({}) from Workflow `{}` ({}) returned the following error: {}".format(
                    step.block.module_id,
                    step.node_id,
                    workflow.name,
                    workflow.id,
                    ", ".join(outcome.errors) or "no error message",
                )
            )
            if step.path_type is PathType.BLOCKING:
                return result
            blocked_prefixes.append(step.path_list)

        result.completed = True
        return result

    def _execute_node(self, block: Block, roaming_data: RoamingData) -> ModuleResult:
        module = self._registry.resolve(block.module_type, block.module_id)
        if module is None:
            raise NodeExecutionError(f"Module `{block.module_id}` is not registered")
        if module.disabled:
            raise NodeExecutionError(f"Module `{block.module_id}` is disabled")

        if self._timeout_seconds is None:
            try:
                raw = module.execute(copy.deepcopy(block.config), roaming_data)
            except Exception as e:
                logger.exception(
                    "Error while executing module",
                    extra={"module_id": block.module_id, "node_id": block.id},
                )
                raise NodeExecutionError(f"Error while executing module: {e}") from e
            return _coerce_result(raw)

        # The worker writes into its own copy, merged back only when it finishes in time.
        isolated = replace(
            roaming_data,
            data=copy.deepcopy(roaming_data.data),
            scratch=copy.deepcopy(roaming_data.scratch),
        )
        box: dict[str, object] = {}

        def _run() -> None:
            try:
                box["result"] = module.execute(copy.deepcopy(block.config), isolated)
            except Exception as e:
                logger.exception(
                    "Error while executing module",
                    extra={"module_id": block.module_id, "node_id": block.id},
                )
                box["error"] = e

        thread = threading.Thread(
            target=_run, name=f"module-{block.module_id}-{block.id}", daemon=True
        )
        thread.start()
        thread.join(self._timeout_seconds)
        if thread.is_alive():
            raise NodeExecutionError(
                f"Module `{block.module_id}` timed out after {self._timeout_seconds}s"
            )
        _merge_roaming_data(roaming_data, isolated)
        if "error" in box:
            raise NodeExecutionError(f"Error while executing module: {box['error']}")
        return _coerce_result(box.get("result"))


def digest_execution_result(result: WalkResult, graph: Graph) -> str:
    """Human readable summary of a walk, for audit records."""

    if not result.stopped_nodes:
        return "All nodes executed."
    parts = []
    for node_id in result.stopped_nodes:
        module_id = graph[node_id].module_id if node_id in graph else "?"
        parts.append(f"Node `{module_id}` ({node_id}) stopped execution.")
    return ", ".join(parts)

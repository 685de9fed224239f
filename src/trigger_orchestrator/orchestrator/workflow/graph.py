"""Typed workflow graph model and validation predicates.

A graph maps node ids to blocks. Blocks reference each other by node id only,
so the object graph stays acyclic even when the logical graph is not.

Trigger blocks expose at most two edge classes:
- ``blocking``: executed in the explicit per-trigger order; a failure aborts the firing.
- ``non-blocking``: deferred; failures are contained to the failing branch.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from enum import Enum

from pydantic import BaseModel, Field, RootModel, ValidationError, model_validator

OUTPUT_BLOCKING = "blocking"
OUTPUT_NON_BLOCKING = "non-blocking"
TRIGGER_OUTPUTS = frozenset({OUTPUT_BLOCKING, OUTPUT_NON_BLOCKING})


class ModuleType(str, Enum):
    TRIGGER = "trigger"
    LOGIC = "logic"
    ACTION = "action"


class GraphValidationError(ValueError):
    """Base class for graphs that must not be saved or executed."""


class GraphCycleError(GraphValidationError):
    pass


class DuplicateTriggerInstanceError(GraphValidationError):
    pass


class GraphStructureError(GraphValidationError):
    pass


class Block(BaseModel):
    """A single node of a workflow graph."""

    id: int
    module_type: ModuleType
    module_id: str = Field(min_length=1)
    config: dict[str, object] = Field(default_factory=dict)
    outputs: dict[str, list[int]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_outputs(self) -> Block:
        if self.module_type is ModuleType.TRIGGER:
            unknown = set(self.outputs) - TRIGGER_OUTPUTS
            if unknown:
                raise ValueError(
                    f"Trigger `{self.module_id}` has unsupported outputs: {sorted(unknown)}"
                )
        if self.module_type is ModuleType.ACTION and len(self.outputs) > 1:
            raise ValueError(f"Action `{self.module_id}` may define at most one output")
        return self

    def targets(self, output: str | None = None) -> list[int]:
        """Node ids connected to one output, or to every output when ``output`` is None."""

        if output is not None:
            return list(self.outputs.get(output, []))
        return [target for targets in self.outputs.values() for target in targets]


class Graph(RootModel[dict[int, Block]]):
    """Mapping of node id -> block."""

    root: dict[int, Block] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_edges(self) -> Graph:
        for node_id, block in self.root.items():
            if block.id != node_id:
                raise ValueError(f"Node key {node_id} does not match block id {block.id}")
            for target in block.targets():
                if target not in self.root:
                    raise ValueError(f"Node {node_id} points to unknown node {target}")
        return self

    def __iter__(self) -> Iterator[int]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.root

    def __getitem__(self, node_id: int) -> Block:
        return self.root[node_id]

    def blocks(self) -> list[Block]:
        return list(self.root.values())


def parse_graph(data: Mapping[str, object] | Graph | None) -> Graph:
    """Parse raw JSON-ish graph data, wrapping pydantic errors in GraphStructureError."""

    if isinstance(data, Graph):
        return data
    try:
        return Graph.model_validate(data or {})
    except ValidationError as e:
        raise GraphStructureError(str(e)) from e


_WHITE, _GREY, _BLACK = 0, 1, 2


def is_acyclic(graph: Graph) -> bool:
    """Cycle detection over every outgoing edge of every node.

    Iterative three-colour DFS, O(nodes + edges).
    """

    colour = {node_id: _WHITE for node_id in graph}
    for root in graph:
        if colour[root] != _WHITE:
            continue
        colour[root] = _GREY
        stack: list[tuple[int, Iterator[int]]] = [(root, iter(graph[root].targets()))]
        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                colour[node_id] = _BLACK
                stack.pop()
                continue
            if colour[child] == _GREY:
                return False
            if colour[child] == _WHITE:
                colour[child] = _GREY
                stack.append((child, iter(graph[child].targets())))
    return True


def has_blocking_path(block: Block) -> bool:
    return bool(block.outputs.get(OUTPUT_BLOCKING))


def has_non_blocking_path(block: Block) -> bool:
    return bool(block.outputs.get(OUTPUT_NON_BLOCKING))


def extract_triggers(graph: Graph, reachable_only: bool = False) -> list[Block]:
    """Return trigger blocks, optionally without dead triggers (no outgoing edge at all)."""

    triggers = [b for b in graph.blocks() if b.module_type is ModuleType.TRIGGER]
    if reachable_only:
        triggers = [t for t in triggers if has_blocking_path(t) or has_non_blocking_path(t)]
    return triggers


def has_single_trigger_instance(graph: Graph) -> bool:
    seen: set[str] = set()
    for trigger in extract_triggers(graph):
        if trigger.module_id in seen:
            return False
        seen.add(trigger.module_id)
    return True


def node_id_for_trigger(graph: Graph, trigger_id: str) -> int | None:
    for block in extract_triggers(graph):
        if block.module_id == trigger_id:
            return block.id
    return None


def validate_graph(graph: Graph) -> None:
    """Raise if the graph may not be saved or executed."""

    if not is_acyclic(graph):
        raise GraphCycleError("Cannot save a workflow containing a cycle")
    if not has_single_trigger_instance(graph):
        raise DuplicateTriggerInstanceError(
            "Cannot save a workflow containing more than one instance of the same trigger"
        )

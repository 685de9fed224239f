"""Dispatch a fired trigger to every workflow listening on it.

Blocking workflows run one after the other in the trigger's explicit order and
the first failure stops the remaining ones. Non-blocking workflows always run,
each with its own error list; their outcome is only visible in audit records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from .events import ActingIdentity, RoamingData, TriggerEvent
from .graph import ModuleType, has_blocking_path, has_non_blocking_path
from .index import TriggerIndex
from .modules import ModuleRegistry
from .store import WorkflowRecord
from .walker import GraphWalker, PathFilter, PathType, WalkResult, digest_execution_result

logger = logging.getLogger(__name__)


class UnknownTriggerError(LookupError):
    def __init__(self, trigger_id: str) -> None:
        super().__init__(trigger_id)
        self.trigger_id = trigger_id

    def __str__(self) -> str:
        return f"Unknown trigger `{self.trigger_id}`"


class WorkflowSource(Protocol):
    """Hydrates workflow ids returned by the index into full records."""

    def fetch_listening(
        self, workflow_ids: Iterable[int], *, enabled_only: bool = False
    ) -> list[WorkflowRecord]: ...


@dataclass(frozen=True, slots=True)
class AuditRecord:
    workflow_id: int
    workflow_name: str
    trigger_id: str
    path_type: PathType
    user_id: int | None
    title: str
    digest: str
    completed: bool


class AuditSink(Protocol):
    def record(self, entry: AuditRecord) -> None: ...


class LoggingAuditSink:
    """Emit audit records through the application log."""

    def __init__(self, logger_name: str = "trigger_orchestrator.audit") -> None:
        self._logger = logging.getLogger(logger_name)

    def record(self, entry: AuditRecord) -> None:
        self._logger.info(
            entry.title,
            extra={
                "workflow_id": entry.workflow_id,
                "trigger_id": entry.trigger_id,
                "path_type": entry.path_type.value,
                "user_id": entry.user_id,
                "digest": entry.digest,
                "completed": entry.completed,
            },
        )


class MemoryAuditSink:
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def record(self, entry: AuditRecord) -> None:
        self.records.append(entry)


@dataclass(frozen=True, slots=True)
class ExecutionOrder:
    blocking: list[WorkflowRecord] = field(default_factory=list)
    non_blocking: list[WorkflowRecord] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class FireResult:
    """Outcome of a trigger firing. Only the blocking path decides ``ok``."""

    ok: bool
    errors: list[str] = field(default_factory=list)
    records: list[AuditRecord] = field(default_factory=list)


def group_workflows_per_blocking_type(
    workflows: Iterable[WorkflowRecord], trigger_id: str, ordered_ids: list[int]
) -> ExecutionOrder:
    """Split workflows by the edge classes of their trigger node.

    Blocking workflows follow ``ordered_ids``; any missing from it run last, by id.
    A workflow with both edge classes appears in both groups.
    """

    rank = {wid: i for i, wid in enumerate(ordered_ids)}
    blocking: list[WorkflowRecord] = []
    non_blocking: list[WorkflowRecord] = []
    for workflow in sorted(workflows, key=lambda w: w.id):
        for block in workflow.graph.blocks():
            if block.module_type is not ModuleType.TRIGGER or block.module_id != trigger_id:
                continue
            if has_blocking_path(block):
                blocking.append(workflow)
            if has_non_blocking_path(block):
                non_blocking.append(workflow)
    blocking.sort(key=lambda w: (w.id not in rank, rank.get(w.id, 0), w.id))
    return ExecutionOrder(blocking=blocking, non_blocking=non_blocking)


class Dispatcher:
    def __init__(
        self,
        *,
        registry: ModuleRegistry,
        index: TriggerIndex,
        workflows: WorkflowSource,
        walker: GraphWalker | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._registry = registry
        self._index = index
        self._workflows = workflows
        self._walker = walker or GraphWalker(registry)
        self._audit = audit or LoggingAuditSink()

    def get_execution_order(self, trigger_id: str, *, enabled_only: bool = True) -> ExecutionOrder:
        workflow_ids = self._index.lookup_workflows(trigger_id)
        if not workflow_ids:
            return ExecutionOrder()
        workflows = self._workflows.fetch_listening(workflow_ids, enabled_only=enabled_only)
        return group_workflows_per_blocking_type(
            workflows, trigger_id, self._index.lookup_order(trigger_id)
        )

    def fire(self, trigger_id: str, payload: dict[str, object] | None = None) -> FireResult:
        """Run every enabled workflow listening on ``trigger_id``.

        Raises:
            UnknownTriggerError: no trigger module is registered under this id.
        """

        trigger = self._registry.get_trigger(trigger_id)
        if trigger is None:
            raise UnknownTriggerError(trigger_id)
        if trigger.disabled:
            logger.debug("Trigger disabled; nothing to do", extra={"trigger_id": trigger_id})
            return FireResult(ok=True)

        event = TriggerEvent(trigger_id=trigger_id, payload=dict(payload or {}))
        order = self.get_execution_order(trigger_id, enabled_only=True)
        records: list[AuditRecord] = []
        blocking_errors: list[str] = []
        blocking_ok = True

        for workflow in order.blocking:
            result = self._run(workflow, event, PathFilter.BLOCKING, records)
            if not result.completed:
                blocking_ok = False
                blocking_errors.extend(result.errors)
                break

        for workflow in order.non_blocking:
            # Deferred walks keep their errors to themselves.
            self._run(workflow, event, PathFilter.NON_BLOCKING, records)

        logger.info(
            "Trigger fired",
            extra={
                "trigger_id": trigger_id,
                "blocking_ok": blocking_ok,
                "workflows": len(records),
            },
        )
        return FireResult(ok=blocking_ok, errors=blocking_errors, records=records)

    def _run(
        self,
        workflow: WorkflowRecord,
        event: TriggerEvent,
        path_filter: PathFilter,
        records: list[AuditRecord],
    ) -> WalkResult:
        identity = ActingIdentity(user_id=workflow.user_id, org_id=workflow.org_id)
        roaming_data = RoamingData.for_walk(event, identity)
        result = self._walker.walk(workflow, event.trigger_id, path_filter, roaming_data)

        path_type = PathType(path_filter.value)
        entry = AuditRecord(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            trigger_id=event.trigger_id,
            path_type=path_type,
            user_id=workflow.user_id,
            title=f"Executed {path_type.value} path for trigger `{event.trigger_id}`",
            digest=digest_execution_result(result, workflow.graph),
            completed=result.completed,
        )
        records.append(entry)
        self._audit.record(entry)
        return result

    def blocking_predecessors(self, trigger_id: str, workflow_id: int) -> list[WorkflowRecord]:
        """Enabled blocking workflows that run before ``workflow_id`` on this trigger.

        If any of them stops propagation, the blocking path of ``workflow_id``
        never runs; its deferred path always does.
        """

        blocking = self.get_execution_order(trigger_id, enabled_only=True).blocking
        ids = [w.id for w in blocking]
        if workflow_id not in ids:
            return []
        return blocking[: ids.index(workflow_id)]

    def listeners_per_trigger(self) -> dict[str, ExecutionOrder]:
        """Every registered trigger with its listening workflows, enabled or not."""

        out: dict[str, ExecutionOrder] = {}
        for descriptor in self._registry.list_modules(ModuleType.TRIGGER):
            out[descriptor.id] = self.get_execution_order(descriptor.id, enabled_only=False)
        return out

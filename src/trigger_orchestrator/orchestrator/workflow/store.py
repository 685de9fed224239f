"""JSON-file backed workflow persistence.

Graphs are validated before every write and the trigger index is patched
synchronously after every commit, so the index never lags a successful save by
more than one call. An index outage does not roll back the save: it is logged
and ``rebuild_index`` recovers.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid as uuid_lib
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from .graph import Graph, extract_triggers, parse_graph, validate_graph
from .index import TriggerIndex

logger = logging.getLogger(__name__)


class WorkflowRecord(BaseModel):
    """A stored workflow and its graph."""

    id: int
    uuid: str
    org_id: int | None = None
    user_id: int | None = None
    name: str
    description: str = ""
    enabled: bool = True
    timestamp: str
    graph: Graph = Field(default_factory=lambda: Graph({}))

    @property
    def listening_triggers(self) -> list[str]:
        """Ids of the triggers that can start this workflow."""

        return sorted(b.module_id for b in extract_triggers(self.graph, reachable_only=True))


class WorkflowNotFound(KeyError):
    def __str__(self) -> str:
        return f"Workflow not found: {self.args[0]!r}"


class DuplicateWorkflowUUID(ValueError):
    pass


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _is_uuid(value: str) -> bool:
    try:
        uuid_lib.UUID(value)
    except ValueError:
        return False
    return True


class WorkflowStore:
    def __init__(self, path: Path, index: TriggerIndex | None = None) -> None:
        self._path = path
        self._index = index
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[WorkflowRecord]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Workflow state file is not valid JSON; treating as empty",
                extra={"path": str(self._path)},
            )
            return []
        if not isinstance(raw, list):
            logger.warning(
                "Workflow state file has unexpected shape; treating as empty",
                extra={"path": str(self._path)},
            )
            return []
        return [WorkflowRecord.model_validate(item) for item in raw]

    def _save_unlocked(self, workflows: list[WorkflowRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [w.model_dump(mode="json") for w in workflows]
        self._path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def _sync_index(self, workflow_id: int, graph: Graph) -> None:
        if self._index is None:
            return
        if not self._index.reindex(workflow_id, graph):
            logger.warning(
                "Workflow saved but trigger index is stale; run rebuild-index",
                extra={"workflow_id": workflow_id},
            )

    def list(self, *, enabled_only: bool = False) -> list[WorkflowRecord]:
        with self._lock:
            workflows = self._load_unlocked()
        if enabled_only:
            workflows = [w for w in workflows if w.enabled]
        return workflows

    def get(self, ref: int | str) -> WorkflowRecord:
        """Find a workflow by numeric id or by UUID."""

        if isinstance(ref, str) and ref.strip().isdigit():
            ref = int(ref)
        if isinstance(ref, str) and not _is_uuid(ref):
            raise WorkflowNotFound(ref)
        for workflow in self.list():
            if workflow.id == ref or workflow.uuid == ref:
                return workflow
        raise WorkflowNotFound(ref)

    def fetch_listening(
        self, workflow_ids: Iterable[int], *, enabled_only: bool = False
    ) -> list[WorkflowRecord]:
        """Hydrate index lookups into full records. Unknown ids are skipped."""

        wanted = set(workflow_ids)
        if not wanted:
            return []
        return [w for w in self.list(enabled_only=enabled_only) if w.id in wanted]

    def create(
        self,
        *,
        name: str,
        graph: Graph | dict[str, object] | None = None,
        description: str = "",
        user_id: int | None = None,
        org_id: int | None = None,
        enabled: bool = True,
        uuid: str | None = None,
    ) -> WorkflowRecord:
        parsed = parse_graph(graph)
        validate_graph(parsed)
        if uuid is not None and not _is_uuid(uuid):
            raise ValueError("Please provide a valid RFC 4122 UUID")

        with self._lock:
            workflows = self._load_unlocked()
            record_uuid = uuid or str(uuid_lib.uuid4())
            if any(w.uuid == record_uuid for w in workflows):
                raise DuplicateWorkflowUUID("The UUID provided is not unique")
            record = WorkflowRecord(
                id=max((w.id for w in workflows), default=0) + 1,
                uuid=record_uuid,
                org_id=org_id,
                user_id=user_id,
                name=name,
                description=description,
                enabled=enabled,
                timestamp=_utc_now_iso(),
                graph=parsed,
            )
            workflows.append(record)
            self._save_unlocked(workflows)
            self._sync_index(record.id, record.graph)

        logger.info("Workflow created", extra={"workflow_id": record.id, "uuid": record.uuid})
        return record

    def update(
        self,
        workflow_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        graph: Graph | dict[str, object] | None = None,
    ) -> WorkflowRecord:
        updates: dict[str, object] = {"timestamp": _utc_now_iso()}
        if name is not None:
            updates["name"] = name
        if description is not None:
            updates["description"] = description
        if graph is not None:
            parsed = parse_graph(graph)
            validate_graph(parsed)
            updates["graph"] = parsed
        return self._replace(workflow_id, updates, reindex=graph is not None)

    def toggle(self, workflow_id: int, enabled: bool) -> WorkflowRecord:
        return self._replace(workflow_id, {"enabled": enabled}, reindex=False)

    def _replace(
        self, workflow_id: int, updates: dict[str, object], *, reindex: bool
    ) -> WorkflowRecord:
        with self._lock:
            workflows = self._load_unlocked()
            for idx, existing in enumerate(workflows):
                if existing.id != workflow_id:
                    continue
                merged = existing.model_copy(update=updates)
                workflows[idx] = merged
                self._save_unlocked(workflows)
                if reindex:
                    self._sync_index(merged.id, merged.graph)
                logger.info(
                    "Workflow updated",
                    extra={"workflow_id": workflow_id, "fields": sorted(updates)},
                )
                return merged
        raise WorkflowNotFound(workflow_id)

    def delete(self, workflow_id: int) -> WorkflowRecord:
        with self._lock:
            workflows = self._load_unlocked()
            remaining = [w for w in workflows if w.id != workflow_id]
            if len(remaining) == len(workflows):
                raise WorkflowNotFound(workflow_id)
            deleted = next(w for w in workflows if w.id == workflow_id)
            self._save_unlocked(remaining)
            if self._index is not None and not self._index.remove_workflow(workflow_id):
                logger.warning(
                    "Workflow deleted but trigger index is stale; run rebuild-index",
                    extra={"workflow_id": workflow_id},
                )
        logger.info("Workflow deleted", extra={"workflow_id": workflow_id})
        return deleted

    def rebuild_index(self) -> bool:
        if self._index is None:
            return False
        return self._index.rebuild((w.id, w.graph) for w in self.list())

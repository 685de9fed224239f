"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from trigger_orchestrator.orchestrator.workflow.dispatcher import AuditRecord, ExecutionOrder
from trigger_orchestrator.orchestrator.workflow.store import WorkflowRecord


class ApiWorkflow(BaseModel):
    id: int
    uuid: str
    name: str
    description: str
    enabled: bool
    timestamp: str
    org_id: int | None = None
    user_id: int | None = None
    listening_triggers: list[str] = Field(default_factory=list)
    graph: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: WorkflowRecord) -> ApiWorkflow:
        data = record.model_dump(mode="json")
        data["graph"] = {str(k): v for k, v in data["graph"].items()}
        return cls(**data, listening_triggers=record.listening_triggers)


class WorkflowCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    enabled: bool = True
    uuid: str | None = None
    user_id: int | None = None
    org_id: int | None = None
    graph: dict[str, Any] = Field(default_factory=dict)


class WorkflowUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    graph: dict[str, Any] | None = None


class ToggleRequest(BaseModel):
    enabled: bool


class WorkflowSummary(BaseModel):
    id: int
    name: str
    enabled: bool


class ApiExecutionOrder(BaseModel):
    trigger_id: str
    blocking: list[WorkflowSummary] = Field(default_factory=list)
    non_blocking: list[WorkflowSummary] = Field(default_factory=list)

    @classmethod
    def from_order(cls, trigger_id: str, order: ExecutionOrder) -> ApiExecutionOrder:
        def _summary(w: WorkflowRecord) -> WorkflowSummary:
            return WorkflowSummary(id=w.id, name=w.name, enabled=w.enabled)

        return cls(
            trigger_id=trigger_id,
            blocking=[_summary(w) for w in order.blocking],
            non_blocking=[_summary(w) for w in order.non_blocking],
        )


class OrderRequest(BaseModel):
    workflow_ids: list[int]


class FireRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class ApiAuditRecord(BaseModel):
    workflow_id: int
    workflow_name: str
    path_type: str
    title: str
    digest: str
    completed: bool

    @classmethod
    def from_record(cls, record: AuditRecord) -> ApiAuditRecord:
        return cls(
            workflow_id=record.workflow_id,
            workflow_name=record.workflow_name,
            path_type=record.path_type.value,
            title=record.title,
            digest=record.digest,
            completed=record.completed,
        )


class FireResponse(BaseModel):
    trigger_id: str
    ok: bool
    errors: list[str] = Field(default_factory=list)
    executions: list[ApiAuditRecord] = Field(default_factory=list)

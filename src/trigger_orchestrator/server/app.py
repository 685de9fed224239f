"""FastAPI app factory.

Endpoints are intentionally thin wrappers over the orchestrator components.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from trigger_orchestrator import __version__
from trigger_orchestrator.orchestrator.engine import Orchestrator
from trigger_orchestrator.orchestrator.workflow.dispatcher import UnknownTriggerError
from trigger_orchestrator.orchestrator.workflow.graph import GraphValidationError, ModuleType
from trigger_orchestrator.orchestrator.workflow.modules import ModuleDescriptor
from trigger_orchestrator.orchestrator.workflow.store import (
    DuplicateWorkflowUUID,
    WorkflowNotFound,
    WorkflowRecord,
)
from trigger_orchestrator.server.config import ServerSettings
from trigger_orchestrator.server.models import (
    ApiAuditRecord,
    ApiExecutionOrder,
    ApiWorkflow,
    FireRequest,
    FireResponse,
    OrderRequest,
    ToggleRequest,
    WorkflowCreateRequest,
    WorkflowUpdateRequest,
)

logger = logging.getLogger(__name__)


def create_app(orchestrator: Orchestrator | None = None) -> FastAPI:
    settings = ServerSettings()
    if orchestrator is None:
        orchestrator = Orchestrator(settings)

    app = FastAPI(
        title="Trigger Orchestrator",
        version=__version__,
        description="REST API over the trigger-orchestrator workflow components.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Expose settings and components for request handlers that want to read them.
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    workflows = orchestrator.workflows
    index = orchestrator.index
    registry = orchestrator.registry
    dispatcher = orchestrator.dispatcher

    def _get_workflow(workflow_ref: str) -> WorkflowRecord:
        try:
            return workflows.get(workflow_ref)
        except WorkflowNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    def _require_trigger(trigger_id: str) -> None:
        if registry.get_trigger(trigger_id) is None:
            raise HTTPException(status_code=404, detail=str(UnknownTriggerError(trigger_id)))

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/modules", response_model=list[ModuleDescriptor])
    def list_modules(module_type: ModuleType | None = None) -> list[ModuleDescriptor]:
        return registry.list_modules(module_type)

    @app.get("/api/workflows", response_model=list[ApiWorkflow])
    def list_workflows(enabled_only: bool = False) -> list[ApiWorkflow]:
        return [ApiWorkflow.from_record(w) for w in workflows.list(enabled_only=enabled_only)]

    @app.post("/api/workflows", response_model=ApiWorkflow, status_code=201)
    def create_workflow(req: WorkflowCreateRequest) -> ApiWorkflow:
        try:
            record = workflows.create(
                name=req.name,
                graph=req.graph,
                description=req.description,
                user_id=req.user_id,
                org_id=req.org_id,
                enabled=req.enabled,
                uuid=req.uuid,
            )
        except (GraphValidationError, DuplicateWorkflowUUID, ValueError) as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return ApiWorkflow.from_record(record)

    @app.get("/api/workflows/{workflow_ref}", response_model=ApiWorkflow)
    def get_workflow(workflow_ref: str) -> ApiWorkflow:
        return ApiWorkflow.from_record(_get_workflow(workflow_ref))

    @app.put("/api/workflows/{workflow_ref}", response_model=ApiWorkflow)
    def update_workflow(workflow_ref: str, req: WorkflowUpdateRequest) -> ApiWorkflow:
        record = _get_workflow(workflow_ref)
        try:
            updated = workflows.update(
                record.id, name=req.name, description=req.description, graph=req.graph
            )
        except GraphValidationError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return ApiWorkflow.from_record(updated)

    @app.delete("/api/workflows/{workflow_ref}", response_model=ApiWorkflow)
    def delete_workflow(workflow_ref: str) -> ApiWorkflow:
        record = _get_workflow(workflow_ref)
        return ApiWorkflow.from_record(workflows.delete(record.id))

    @app.post("/api/workflows/{workflow_ref}/toggle", response_model=ApiWorkflow)
    def toggle_workflow(workflow_ref: str, req: ToggleRequest) -> ApiWorkflow:
        record = _get_workflow(workflow_ref)
        return ApiWorkflow.from_record(workflows.toggle(record.id, req.enabled))

    @app.get("/api/triggers", response_model=list[ApiExecutionOrder])
    def list_triggers() -> list[ApiExecutionOrder]:
        return [
            ApiExecutionOrder.from_order(trigger_id, order)
            for trigger_id, order in dispatcher.listeners_per_trigger().items()
        ]

    @app.get("/api/triggers/{trigger_id}/order", response_model=ApiExecutionOrder)
    def get_order(trigger_id: str) -> ApiExecutionOrder:
        _require_trigger(trigger_id)
        order = dispatcher.get_execution_order(trigger_id, enabled_only=False)
        return ApiExecutionOrder.from_order(trigger_id, order)

    @app.put("/api/triggers/{trigger_id}/order", response_model=ApiExecutionOrder)
    def set_order(trigger_id: str, req: OrderRequest) -> ApiExecutionOrder:
        _require_trigger(trigger_id)
        if not index.set_blocking_order(trigger_id, req.workflow_ids):
            raise HTTPException(status_code=503, detail="Trigger index unavailable")
        order = dispatcher.get_execution_order(trigger_id, enabled_only=False)
        return ApiExecutionOrder.from_order(trigger_id, order)

    @app.post("/api/triggers/{trigger_id}/fire", response_model=FireResponse)
    def fire(trigger_id: str, req: FireRequest | None = None) -> FireResponse:
        payload = req.payload if req is not None else {}
        try:
            result = dispatcher.fire(trigger_id, payload)
        except UnknownTriggerError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        # A failed blocking path is a normal outcome, not an HTTP error.
        return FireResponse(
            trigger_id=trigger_id,
            ok=result.ok,
            errors=result.errors,
            executions=[ApiAuditRecord.from_record(r) for r in result.records],
        )

    @app.post("/api/index/rebuild")
    def rebuild_index() -> dict[str, object]:
        if not workflows.rebuild_index():
            raise HTTPException(status_code=503, detail="Trigger index unavailable")
        return {"status": "ok", "workflows": len(workflows.list())}

    logger.info("Server app created", extra={"index_backend": settings.index_backend})
    return app

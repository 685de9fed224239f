"""Process-wide wiring of the orchestrator components."""

from __future__ import annotations

import logging

from trigger_orchestrator.orchestrator.config import OrchestratorSettings
from trigger_orchestrator.orchestrator.workflow.builtin import default_handlers
from trigger_orchestrator.orchestrator.workflow.dispatcher import (
    AuditSink,
    Dispatcher,
    FireResult,
)
from trigger_orchestrator.orchestrator.workflow.index import (
    CoordinationStore,
    InMemoryCoordinationStore,
    RedisCoordinationStore,
    TriggerIndex,
)
from trigger_orchestrator.orchestrator.workflow.modules import (
    ModuleHandler,
    ModuleOverrides,
    ModuleRegistry,
)
from trigger_orchestrator.orchestrator.workflow.store import WorkflowStore
from trigger_orchestrator.orchestrator.workflow.walker import GraphWalker

logger = logging.getLogger(__name__)


def build_coordination_store(settings: OrchestratorSettings) -> CoordinationStore:
    if settings.index_backend == "memory":
        return InMemoryCoordinationStore()
    return RedisCoordinationStore.from_url(settings.redis_url)


def build_registry(
    settings: OrchestratorSettings, handlers: list[ModuleHandler] | None = None
) -> ModuleRegistry:
    overrides = ModuleOverrides.load(
        settings.module_overrides_path, settings.parsed_disabled_modules()
    )
    return ModuleRegistry(handlers if handlers is not None else default_handlers(), overrides)


class Orchestrator:
    """Builds the module registry, trigger index, workflow store and dispatcher once.

    Components are passed by reference to each other; nothing is global.
    """

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        *,
        handlers: list[ModuleHandler] | None = None,
        coordination_store: CoordinationStore | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.settings = settings or OrchestratorSettings()

        self.registry = build_registry(self.settings, handlers)
        self.index = TriggerIndex(coordination_store or build_coordination_store(self.settings))
        self.workflows = WorkflowStore(self.settings.workflow_store_path, index=self.index)
        self.walker = GraphWalker(
            self.registry, timeout_seconds=self.settings.handler_timeout_seconds
        )
        self.dispatcher = Dispatcher(
            registry=self.registry,
            index=self.index,
            workflows=self.workflows,
            walker=self.walker,
            audit=audit,
        )

        if coordination_store is None and self.settings.index_backend == "memory":
            # Nothing outlives the process; derive the index from the stored workflows.
            self.workflows.rebuild_index()

        logger.info(
            "Orchestrator initialized",
            extra={
                "index_backend": self.settings.index_backend,
                "workflow_store": str(self.settings.workflow_store_path),
                "modules": len(self.registry.list_modules()),
            },
        )

    def fire(self, trigger_id: str, payload: dict[str, object] | None = None) -> FireResult:
        return self.dispatcher.fire(trigger_id, payload)

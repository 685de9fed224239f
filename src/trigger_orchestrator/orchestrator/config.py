"""Configuration for the trigger orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorSettings(BaseSettings):
    """Settings for the orchestrator.

    Environment variables:
    - LOG_LEVEL                               (optional)
    - ORCHESTRATOR_LOG_FORMAT                 (optional, json|text)
    - ORCHESTRATOR_INDEX_BACKEND              (optional, redis|memory)
    - ORCHESTRATOR_REDIS_URL                  (optional)
    - ORCHESTRATOR_WORKFLOW_STORE_PATH        (optional)
    - ORCHESTRATOR_DISABLED_MODULES           (optional, e.g. "action:log-message,trigger:schedule")
    - ORCHESTRATOR_MODULE_OVERRIDES_PATH      (optional)
    - ORCHESTRATOR_HANDLER_TIMEOUT_SECONDS    (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        validation_alias="ORCHESTRATOR_LOG_FORMAT",
        description="Log output format",
    )

    index_backend: Literal["redis", "memory"] = Field(
        default="redis",
        validation_alias="ORCHESTRATOR_INDEX_BACKEND",
        description=(
            "Where the trigger index lives. 'memory' is only suitable for a single process "
            "(tests, local experiments)."
        ),
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias="ORCHESTRATOR_REDIS_URL",
        description="Redis connection URL for the trigger index",
    )

    workflow_store_path: Path = Field(
        default=Path("workflow_state/workflows.json"),
        validation_alias="ORCHESTRATOR_WORKFLOW_STORE_PATH",
        description="Path where workflow records are persisted",
    )

    disabled_modules: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_DISABLED_MODULES",
        description="Comma-separated list of 'type:id' modules to disable",
    )
    module_overrides_path: Path | None = Field(
        default=None,
        validation_alias="ORCHESTRATOR_MODULE_OVERRIDES_PATH",
        description="Optional JSON file with per-module `disabled` and `settings` overrides",
    )

    handler_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        validation_alias="ORCHESTRATOR_HANDLER_TIMEOUT_SECONDS",
        description="Upper bound for a single module call; exceeding it fails the node",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    def parsed_disabled_modules(self) -> list[str]:
        return [m.strip() for m in self.disabled_modules.split(",") if m.strip()]

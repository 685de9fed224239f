"""Module registry.

Handlers are registered explicitly at process start. Global overrides (disabled
flag, default settings) are resolved once when the registry is built, so every
module has exactly one effective descriptor for the lifetime of the process.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field, RootModel

from .events import RoamingData
from .graph import ModuleType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModuleResult:
    """Outcome of a single module invocation.

    ``outputs`` restricts which outputs of a logic node are followed; None follows all.
    """

    ok: bool
    errors: list[str] = field(default_factory=list)
    outputs: list[str] | None = None

    @classmethod
    def success(cls, outputs: list[str] | None = None) -> ModuleResult:
        return cls(ok=True, outputs=outputs)

    @classmethod
    def failure(cls, *errors: str) -> ModuleResult:
        return cls(ok=False, errors=list(errors))


class ModuleHandler(Protocol):
    """An executable trigger, logic or action module."""

    module_type: ModuleType
    id: str
    name: str
    description: str
    disabled: bool

    def execute(self, config: dict[str, object], roaming_data: RoamingData) -> ModuleResult: ...


class ModuleDescriptor(BaseModel):
    module_type: ModuleType
    id: str
    name: str
    description: str = ""
    disabled: bool = False
    settings: dict[str, object] = Field(default_factory=dict)


class ModuleOverride(BaseModel):
    disabled: bool | None = None
    settings: dict[str, object] = Field(default_factory=dict)


class ModuleOverrides(RootModel[dict[ModuleType, dict[str, ModuleOverride]]]):
    """Global per-module configuration, keyed by module type then module id."""

    root: dict[ModuleType, dict[str, ModuleOverride]] = Field(default_factory=dict)

    def get(self, module_type: ModuleType, module_id: str) -> ModuleOverride | None:
        return self.root.get(module_type, {}).get(module_id)

    @classmethod
    def load(cls, path: Path | None = None, disabled: Iterable[str] = ()) -> ModuleOverrides:
        """Merge an optional JSON overrides file with ``type:id`` disable entries."""

        raw: dict[str, object] = {}
        if path is not None and path.exists():
            raw = json.loads(path.read_text(encoding="utf-8")) or {}
        overrides = cls.model_validate(raw)
        for entry in disabled:
            module_type, sep, module_id = entry.partition(":")
            if not sep or not module_id:
                raise ValueError(f"Invalid disabled module entry {entry!r}, expected 'type:id'")
            per_type = overrides.root.setdefault(ModuleType(module_type), {})
            current = per_type.get(module_id, ModuleOverride())
            per_type[module_id] = current.model_copy(update={"disabled": True})
        return overrides


class DuplicateModuleError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class RegisteredModule:
    descriptor: ModuleDescriptor
    handler: ModuleHandler

    @property
    def disabled(self) -> bool:
        return self.descriptor.disabled

    def execute(self, config: dict[str, object], roaming_data: RoamingData) -> ModuleResult:
        # Node configuration wins over the module's global settings.
        return self.handler.execute({**self.descriptor.settings, **config}, roaming_data)


class ModuleRegistry:
    """Resolve (module type, module id) pairs to handlers."""

    def __init__(
        self,
        handlers: Iterable[ModuleHandler],
        overrides: ModuleOverrides | None = None,
    ) -> None:
        overrides = overrides or ModuleOverrides()
        self._modules: dict[ModuleType, dict[str, RegisteredModule]] = {t: {} for t in ModuleType}
        for handler in handlers:
            per_type = self._modules[handler.module_type]
            if handler.id in per_type:
                raise DuplicateModuleError(f"Module {handler.id} has already been defined")
            override = overrides.get(handler.module_type, handler.id)
            disabled = bool(getattr(handler, "disabled", False))
            settings: dict[str, object] = {}
            if override is not None:
                if override.disabled is not None:
                    disabled = override.disabled
                settings = dict(override.settings)
            descriptor = ModuleDescriptor(
                module_type=handler.module_type,
                id=handler.id,
                name=handler.name,
                description=handler.description,
                disabled=disabled,
                settings=settings,
            )
            per_type[handler.id] = RegisteredModule(descriptor=descriptor, handler=handler)

        logger.debug(
            "Module registry built",
            extra={"counts": {t.value: len(m) for t, m in self._modules.items()}},
        )

    def resolve(self, module_type: ModuleType, module_id: str) -> RegisteredModule | None:
        return self._modules[module_type].get(module_id)

    def get_trigger(self, trigger_id: str) -> RegisteredModule | None:
        return self.resolve(ModuleType.TRIGGER, trigger_id)

    def list_modules(self, module_type: ModuleType | None = None) -> list[ModuleDescriptor]:
        types = [module_type] if module_type is not None else list(ModuleType)
        out: list[ModuleDescriptor] = []
        for t in types:
            out.extend(m.descriptor for _id, m in sorted(self._modules[t].items()))
        return out

    def get_modules_by_id(self, module_ids: Iterable[str]) -> list[ModuleDescriptor]:
        wanted = set(module_ids)
        return [d for d in self.list_modules() if d.id in wanted]

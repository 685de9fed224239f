from __future__ import annotations

import copy
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class TriggerEvent:
    """A signal emitted by a trigger.

    Triggers detect external facts (saves, webhooks, timers) and emit events.
    Triggers never perform work.
    """

    trigger_id: str
    payload: dict[str, object]


@dataclass(frozen=True, slots=True)
class ActingIdentity:
    """The identity modules run under: the owner of the workflow being walked."""

    user_id: int | None = None
    org_id: int | None = None


@dataclass(slots=True)
class RoamingData:
    """Execution context shared by reference across every module call of one walk.

    ``data`` is the triggering payload. ``scratch`` is where modules accumulate
    state for later nodes of the same walk.
    """

    identity: ActingIdentity
    data: dict[str, object]
    trigger_id: str = ""
    scratch: dict[str, object] = field(default_factory=dict)

    @classmethod
    def for_walk(cls, event: TriggerEvent, identity: ActingIdentity) -> RoamingData:
        # Each walk owns its copy; blocking and deferred walks share nothing mutable.
        return cls(
            identity=identity, data=copy.deepcopy(event.payload), trigger_id=event.trigger_id
        )

    def lookup(self, path: str, default: object = None) -> object:
        """Resolve a dotted path against ``data``, falling back to ``scratch``."""

        for source in (self.data, self.scratch):
            found, value = _resolve(source, path)
            if found:
                return value
        return default


def _resolve(source: object, path: str) -> tuple[bool, object]:
    current = source
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return False, None
    return True, current

#!/usr/bin/env python3
"""Programmatic workflow example.

This demonstrates using the orchestrator components directly:

* load settings from `.env`
* store a workflow listening on the `manual` trigger
* fire the trigger and print the per-workflow digest

Run it against the in-memory index with `ORCHESTRATOR_INDEX_BACKEND=memory`.
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from trigger_orchestrator.orchestrator.config import OrchestratorSettings
from trigger_orchestrator.orchestrator.engine import Orchestrator
from trigger_orchestrator.orchestrator.logging import configure_logging

GRAPH = {
    1: {"id": 1, "module_type": "trigger", "module_id": "manual", "outputs": {"blocking": [2]}},
    2: {
        "id": 2,
        "module_type": "logic",
        "module_id": "if",
        "config": {"path": "event.severity", "operator": "in", "value": ["high", "critical"]},
        "outputs": {"then": [3], "else": [4]},
    },
    3: {
        "id": 3,
        "module_type": "action",
        "module_id": "log-message",
        "config": {"message": "Escalating {event.title}", "level": "WARNING"},
    },
    4: {
        "id": 4,
        "module_type": "action",
        "module_id": "log-message",
        "config": {"message": "Ignoring {event.title}"},
    },
}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Store a workflow and fire its trigger.")
    parser.add_argument("--title", default="Suspicious login", help="Event title")
    parser.add_argument("--severity", default="high", help="Event severity")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = OrchestratorSettings()
    configure_logging(settings.log_level, settings.log_format)

    orchestrator = Orchestrator(settings)
    record = orchestrator.workflows.create(name="Escalate severe events", graph=GRAPH)
    print(f"Stored workflow #{record.id} listening on {record.listening_triggers}")

    result = orchestrator.fire(
        "manual", {"event": {"title": args.title, "severity": args.severity}}
    )
    for entry in result.records:
        print(json.dumps({"workflow": entry.workflow_name, "digest": entry.digest}))
    return 0 if result.ok else 4


if __name__ == "__main__":
    raise SystemExit(main())

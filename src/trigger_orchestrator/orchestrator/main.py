"""CLI entrypoint for the trigger orchestrator.

Workflow management, trigger index maintenance and manual trigger firing.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from trigger_orchestrator import __version__
from trigger_orchestrator.orchestrator.config import OrchestratorSettings
from trigger_orchestrator.orchestrator.engine import Orchestrator
from trigger_orchestrator.orchestrator.logging import configure_logging
from trigger_orchestrator.orchestrator.workflow.dispatcher import UnknownTriggerError
from trigger_orchestrator.orchestrator.workflow.graph import (
    GraphValidationError,
    ModuleType,
    parse_graph,
    validate_graph,
)
from trigger_orchestrator.orchestrator.workflow.store import (
    DuplicateWorkflowUUID,
    WorkflowNotFound,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_USAGE = 2
EXIT_INVALID = 3
EXIT_BLOCKED = 4
EXIT_UNKNOWN_TRIGGER = 5


def _read_workflow_document(path: Path) -> dict[str, Any]:
    """Load a workflow file.

    Both a full document (``{"name": ..., "graph": {...}}``) and a bare graph are accepted.
    """

    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    if "graph" not in data:
        data = {"graph": data}
    data.setdefault("name", path.stem)
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trigger-orchestrator",
        description="Trigger-driven workflow orchestrator",
    )
    parser.add_argument(
        "--version", action="version", version=f"trigger-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate a workflow graph file")
    validate.add_argument("file", type=Path, help="JSON workflow document or bare graph")

    list_modules = subparsers.add_parser("list-modules", help="List registered modules")
    list_modules.add_argument(
        "--type",
        dest="module_type",
        choices=[t.value for t in ModuleType],
        default=None,
        help="Only list modules of this type",
    )

    create = subparsers.add_parser("create-workflow", help="Store a workflow from a JSON file")
    create.add_argument("file", type=Path, help="JSON workflow document or bare graph")
    create.add_argument("--name", default=None, help="Workflow name (defaults to the file's)")
    create.add_argument("--disabled", action="store_true", help="Store the workflow disabled")

    delete = subparsers.add_parser("delete-workflow", help="Delete a workflow")
    delete.add_argument("workflow", help="Workflow id or UUID")

    toggle = subparsers.add_parser("toggle-workflow", help="Enable or disable a workflow")
    toggle.add_argument("workflow", help="Workflow id or UUID")
    state = toggle.add_mutually_exclusive_group(required=True)
    state.add_argument("--enable", dest="enabled", action="store_true")
    state.add_argument("--disable", dest="enabled", action="store_false")

    reindex = subparsers.add_parser(
        "reindex",
        help="Re-sync the trigger index for one workflow (or all, without touching other keys)",
    )
    reindex.add_argument("workflow", nargs="?", default=None, help="Workflow id or UUID")

    rebuild = subparsers.add_parser(
        "rebuild-index",
        help="Delete every index key and rebuild it from the stored workflows",
    )
    rebuild.add_argument(
        "--reset-order",
        action="store_true",
        help="Do not restore the previous blocking order; fall back to workflow id order",
    )

    show_order = subparsers.add_parser(
        "show-order", help="Show the workflows listening on a trigger, in execution order"
    )
    show_order.add_argument("trigger", help="Trigger module id")

    set_order = subparsers.add_parser(
        "set-order", help="Replace the blocking execution order of a trigger"
    )
    set_order.add_argument("trigger", help="Trigger module id")
    set_order.add_argument(
        "workflow_ids", nargs="*", type=int, help="Workflow ids, first runs first"
    )

    fire = subparsers.add_parser("fire", help="Fire a trigger and run its listening workflows")
    fire.add_argument("trigger", help="Trigger module id")
    fire.add_argument("--payload", default="{}", help="JSON object passed to every workflow")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_USAGE

    configure_logging(settings.log_level, settings.log_format)

    try:
        if args.command == "validate":
            document = _read_workflow_document(args.file)
            graph = parse_graph(document["graph"])
            validate_graph(graph)
            print(f"{args.file}: OK ({len(graph)} nodes)")
            return EXIT_OK

        orchestrator = Orchestrator(settings)

        if args.command == "list-modules":
            module_type = ModuleType(args.module_type) if args.module_type else None
            for descriptor in orchestrator.registry.list_modules(module_type):
                state = " (disabled)" if descriptor.disabled else ""
                print(f"{descriptor.module_type.value}:{descriptor.id}{state} - {descriptor.name}")
            return EXIT_OK

        if args.command == "create-workflow":
            document = _read_workflow_document(args.file)
            record = orchestrator.workflows.create(
                name=args.name or str(document["name"]),
                graph=document["graph"],
                description=str(document.get("description", "")),
                user_id=document.get("user_id"),
                org_id=document.get("org_id"),
                enabled=not args.disabled and bool(document.get("enabled", True)),
                uuid=document.get("uuid"),
            )
            print(f"Created workflow #{record.id} ({record.uuid}): {record.name}")
            return EXIT_OK

        if args.command == "delete-workflow":
            record = orchestrator.workflows.get(args.workflow)
            orchestrator.workflows.delete(record.id)
            print(f"Deleted workflow #{record.id}: {record.name}")
            return EXIT_OK

        if args.command == "toggle-workflow":
            record = orchestrator.workflows.get(args.workflow)
            record = orchestrator.workflows.toggle(record.id, args.enabled)
            print(f"Workflow #{record.id} enabled={record.enabled}")
            return EXIT_OK

        if args.command == "reindex":
            if args.workflow is not None:
                targets = [orchestrator.workflows.get(args.workflow)]
            else:
                targets = orchestrator.workflows.list()
            failed = [w.id for w in targets if not orchestrator.index.reindex(w.id, w.graph)]
            if failed:
                print(f"Trigger index unavailable for workflows {failed}", file=sys.stderr)
                return EXIT_UNEXPECTED
            print(f"Reindexed {len(targets)} workflow(s)")
            return EXIT_OK

        if args.command == "rebuild-index":
            workflows = orchestrator.workflows.list()
            ok = orchestrator.index.rebuild(
                ((w.id, w.graph) for w in workflows), preserve_order=not args.reset_order
            )
            if not ok:
                print("Trigger index unavailable; rebuild failed", file=sys.stderr)
                return EXIT_UNEXPECTED
            print(f"Rebuilt trigger index from {len(workflows)} workflow(s)")
            return EXIT_OK

        if args.command == "show-order":
            if orchestrator.registry.get_trigger(args.trigger) is None:
                raise UnknownTriggerError(args.trigger)
            order = orchestrator.dispatcher.get_execution_order(args.trigger, enabled_only=False)
            print(f"Blocking ({len(order.blocking)}):")
            for position, workflow in enumerate(order.blocking, start=1):
                print(f"  {position}. #{workflow.id} {workflow.name} enabled={workflow.enabled}")
            print(f"Non-blocking ({len(order.non_blocking)}):")
            for workflow in order.non_blocking:
                print(f"  - #{workflow.id} {workflow.name} enabled={workflow.enabled}")
            return EXIT_OK

        if args.command == "set-order":
            if orchestrator.registry.get_trigger(args.trigger) is None:
                raise UnknownTriggerError(args.trigger)
            if not orchestrator.index.set_blocking_order(args.trigger, args.workflow_ids):
                print("Trigger index unavailable; order not saved", file=sys.stderr)
                return EXIT_UNEXPECTED
            print(f"Blocking order for `{args.trigger}`: {args.workflow_ids}")
            return EXIT_OK

        if args.command == "fire":
            try:
                payload = json.loads(args.payload)
            except json.JSONDecodeError as e:
                print(f"--payload is not valid JSON: {e}", file=sys.stderr)
                return EXIT_USAGE
            if not isinstance(payload, dict):
                print("--payload must be a JSON object", file=sys.stderr)
                return EXIT_USAGE

            result = orchestrator.fire(args.trigger, payload)
            for record in result.records:
                print(
                    f"#{record.workflow_id} {record.workflow_name} [{record.path_type.value}]: "
                    f"{record.digest}"
                )
            if not result.ok:
                for error in result.errors:
                    print(error, file=sys.stderr)
                return EXIT_BLOCKED
            return EXIT_OK

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_USAGE

    except (GraphValidationError, DuplicateWorkflowUUID) as e:
        logger.warning("Workflow rejected", extra={"error": str(e)})
        print(str(e), file=sys.stderr)
        return EXIT_INVALID

    except WorkflowNotFound as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    except UnknownTriggerError as e:
        print(str(e), file=sys.stderr)
        return EXIT_UNKNOWN_TRIGGER

    except (OSError, ValueError) as e:
        # Unreadable files, malformed JSON documents, bad module overrides.
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    except Exception:
        logger.exception("Command failed")
        return EXIT_UNEXPECTED


if __name__ == "__main__":
    raise SystemExit(main())

"""Shortcut for ``python -m trigger_orchestrator.cli``.

The CLI itself lives in `trigger_orchestrator.orchestrator.main`.
"""

from __future__ import annotations

from trigger_orchestrator.orchestrator.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())

"""FastAPI server adapter for trigger-orchestrator.

This module exposes a REST API over the orchestrator components.

Design intent:
- Keep business logic in `trigger_orchestrator.orchestrator.*`
- Keep server-specific concerns (routing, CORS, error mapping) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from trigger_orchestrator.server.app import create_app

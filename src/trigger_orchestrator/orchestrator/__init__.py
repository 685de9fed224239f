"""Orchestrator components.

- Settings loaded from .env
- Structured logging
- Workflow graphs, trigger index, walker and dispatcher
- A small CLI surface
"""

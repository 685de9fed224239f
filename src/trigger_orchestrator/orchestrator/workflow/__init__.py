"""Workflow domain concepts.

This package introduces first-class types for:
- Workflow graphs and their save-time validation
- Trigger events and the data that roams along a walk
- Module handlers (triggers, logic, actions) and their registry
- The trigger index shared between processes
- Graph walking and per-trigger dispatch
"""

__all__: list[str] = []

"""Trigger Orchestrator.

Trigger-driven workflow execution:
- workflow graphs validated before they are stored
- a trigger index kept in Redis (or in memory for a single process)
- blocking workflows run in an explicit order, non-blocking ones always run
"""

__version__ = "0.1.0"

from trigger_orchestrator.orchestrator.config import OrchestratorSettings

__all__ = ["__version__", "OrchestratorSettings"]

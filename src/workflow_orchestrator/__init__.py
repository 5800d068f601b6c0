"""Workflow template orchestration.

Provides:
- a condition language gating stages and activities
- workflow/stage/activity templates with materialization and seeding
- a sequencer that runs templates against per-run execution contexts
- late / eager / lazy bindings that expose the engine after startup
"""

__version__ = "0.1.0"

from workflow_orchestrator.orchestrator.config import OrchestratorSettings
from workflow_orchestrator.orchestrator.container import Container

__all__ = ["__version__", "Container", "OrchestratorSettings"]

"""Running workflow templates: context, gating, handlers, sequencing."""

from workflow_orchestrator.workflow.context import (
    ContextView,
    ExecutionContext,
    IllegalTransitionError,
    NodeStatus,
)
from workflow_orchestrator.workflow.engine import EngineDependencies, WorkflowEngine, build_engine
from workflow_orchestrator.workflow.handlers import (
    ActivityHandler,
    ActivityInvocation,
    FunctionHandler,
    HandlerRegistry,
)
from workflow_orchestrator.workflow.mapping import MappingError
from workflow_orchestrator.workflow.policy import CancelToken, GatingErrorPolicy, RunPolicy
from workflow_orchestrator.workflow.sequencer import (
    NodeResult,
    RunResult,
    RunStatus,
    WorkflowSequencer,
)

__all__ = [
    "ActivityHandler",
    "ActivityInvocation",
    "CancelToken",
    "ContextView",
    "EngineDependencies",
    "ExecutionContext",
    "FunctionHandler",
    "GatingErrorPolicy",
    "HandlerRegistry",
    "IllegalTransitionError",
    "MappingError",
    "NodeResult",
    "NodeStatus",
    "RunPolicy",
    "RunResult",
    "RunStatus",
    "WorkflowEngine",
    "WorkflowSequencer",
    "build_engine",
]

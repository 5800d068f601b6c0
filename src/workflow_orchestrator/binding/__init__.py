"""Late / eager / lazy lifecycle bindings for the workflow engine."""

from workflow_orchestrator.binding.manager import (
    DEFAULT_SLOT,
    BindingMode,
    EagerBinding,
    EngineBinding,
    LateBinding,
    LazyBinding,
    create_binding,
)
from workflow_orchestrator.binding.primitives import DeferredRegistry, Once

__all__ = [
    "DEFAULT_SLOT",
    "BindingMode",
    "DeferredRegistry",
    "EagerBinding",
    "EngineBinding",
    "LateBinding",
    "LazyBinding",
    "Once",
    "create_binding",
]

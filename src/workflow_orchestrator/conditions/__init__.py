"""Condition expressions gating stages and activities."""

from workflow_orchestrator.conditions.evaluator import (
    DECLARED_VARIABLES,
    CompiledCondition,
    ConditionEvaluator,
)
from workflow_orchestrator.conditions.values import Namespaces, Value, ValueKind

__all__ = [
    "DECLARED_VARIABLES",
    "CompiledCondition",
    "ConditionEvaluator",
    "Namespaces",
    "Value",
    "ValueKind",
]

"""Per-run execution context.

Every stage and activity of the template gets a slot up front, by position, in
``PENDING`` state. Skipped nodes keep their slot so conditions like
``has(stage[0].activity[1].output.x)`` see a null output instead of an index
error.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from workflow_orchestrator.conditions import Namespaces
from workflow_orchestrator.templates.model import WorkflowTemplate


class NodeStatus(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    EXECUTED = "executed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[NodeStatus, set[NodeStatus]] = {
    NodeStatus.PENDING: {NodeStatus.SKIPPED, NodeStatus.EXECUTED, NodeStatus.FAILED},
    NodeStatus.SKIPPED: set(),
    NodeStatus.EXECUTED: set(),
    NodeStatus.FAILED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def _check_transition(path: str, current: NodeStatus, to: NodeStatus) -> None:
    if to not in ALLOWED_TRANSITIONS[current]:
        raise IllegalTransitionError(f"Illegal transition at {path}: {current.value} -> {to.value}")


@dataclass(slots=True)
class ActivitySlot:
    name: str
    status: NodeStatus = NodeStatus.PENDING
    output: dict[str, Any] | None = None
    error: str | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "name": self.name,
            "status": self.status.value,
            "output": copy.deepcopy(self.output),
        }


@dataclass(slots=True)
class StageSlot:
    name: str
    status: NodeStatus = NodeStatus.PENDING
    activities: list[ActivitySlot] = field(default_factory=list)
    error: str | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "name": self.name,
            "status": self.status.value,
            "activity": [a.to_json() for a in self.activities],
        }


class ExecutionContext:
    """Mutable state of one run: ``input``, ``stage`` and ``computed``.

    A context belongs to exactly one run and is never shared between runs.
    """

    def __init__(self, input: Mapping[str, Any] | None, stages: list[StageSlot]) -> None:  # noqa: A002
        self._input: dict[str, Any] = copy.deepcopy(dict(input or {}))
        self._stages = stages
        self._computed: dict[str, Any] = {}

    @classmethod
    def for_template(
        cls, template: WorkflowTemplate, input: Mapping[str, Any] | None = None  # noqa: A002
    ) -> ExecutionContext:
        stages = [
            StageSlot(name=s.name, activities=[ActivitySlot(name=a.name) for a in s.activities])
            for s in template.stages
        ]
        return cls(input, stages)

    @property
    def input(self) -> dict[str, Any]:
        return copy.deepcopy(self._input)

    @property
    def computed(self) -> dict[str, Any]:
        return copy.deepcopy(self._computed)

    @property
    def stages(self) -> tuple[StageSlot, ...]:
        return tuple(self._stages)

    def stage(self, index: int) -> StageSlot:
        return self._stages[index]

    def activity(self, stage_index: int, activity_index: int) -> ActivitySlot:
        return self._stages[stage_index].activities[activity_index]

    def mark_stage(self, index: int, status: NodeStatus, *, error: str | None = None) -> None:
        slot = self._stages[index]
        _check_transition(f"stage[{index}]", slot.status, status)
        slot.status = status
        slot.error = error

    def mark_skipped(
        self, stage_index: int, activity_index: int, *, error: str | None = None
    ) -> None:
        slot = self.activity(stage_index, activity_index)
        _check_transition(
            f"stage[{stage_index}].activity[{activity_index}]", slot.status, NodeStatus.SKIPPED
        )
        slot.status = NodeStatus.SKIPPED
        slot.error = error

    def record_output(
        self, stage_index: int, activity_index: int, output: Mapping[str, Any]
    ) -> None:
        slot = self.activity(stage_index, activity_index)
        _check_transition(
            f"stage[{stage_index}].activity[{activity_index}]", slot.status, NodeStatus.EXECUTED
        )
        slot.status = NodeStatus.EXECUTED
        slot.output = copy.deepcopy(dict(output))

    def mark_failed(self, stage_index: int, activity_index: int, error: str) -> None:
        slot = self.activity(stage_index, activity_index)
        _check_transition(
            f"stage[{stage_index}].activity[{activity_index}]", slot.status, NodeStatus.FAILED
        )
        slot.status = NodeStatus.FAILED
        slot.error = error

    def set_computed(self, key: str, value: Any) -> None:
        if not key:
            raise ValueError("Computed key must be non-empty")
        self._computed[key] = copy.deepcopy(value)

    def count(self, status: NodeStatus) -> int:
        """Number of activities currently in ``status``."""

        return sum(1 for s in self._stages for a in s.activities if a.status is status)

    def snapshot(self) -> dict[str, Any]:
        """Plain-data copy of all three namespaces."""

        return {
            "input": copy.deepcopy(self._input),
            "stage": [s.to_json() for s in self._stages],
            "computed": copy.deepcopy(self._computed),
        }

    def namespaces(self) -> Namespaces:
        data = self.snapshot()
        return Namespaces.from_mappings(
            input=data["input"], stage=data["stage"], computed=data["computed"]
        )

    def view(self) -> ContextView:
        return ContextView(self.snapshot())


@dataclass(frozen=True, slots=True)
class ContextView:
    """Read-only snapshot handed to activity handlers."""

    data: dict[str, Any]

    @property
    def input(self) -> dict[str, Any]:
        return copy.deepcopy(self.data["input"])

    @property
    def computed(self) -> dict[str, Any]:
        return copy.deepcopy(self.data["computed"])

    def output(self, stage_index: int, activity_index: int) -> dict[str, Any] | None:
        """Output of an executed activity, ``None`` when skipped, pending or failed."""

        output = self.data["stage"][stage_index]["activity"][activity_index]["output"]
        return copy.deepcopy(output)

    def namespaces(self) -> Namespaces:
        return Namespaces.from_mappings(
            input=self.data["input"], stage=self.data["stage"], computed=self.data["computed"]
        )

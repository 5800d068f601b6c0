"""Materialized workflow templates.

A materialized template is the immutable, ID-bearing form of an authored
definition. Two identity spaces coexist and must not be mixed:

- ``id``: storage ID, generated once per materialized record
- ``template_id``: semantic ID, stable across versions of the same template
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any


def stage_path(workflow_id: str, index: int, name: str) -> str:
    """Address a stage as ``wf/stage[i]:Name``, unique even among same-named siblings."""

    return f"{workflow_id}/stage[{index}]:{name}"


def activity_path(parent: str, index: int, name: str) -> str:
    return f"{parent}/activity[{index}]:{name}"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, list | tuple):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True, slots=True)
class ActivityTemplate:
    id: str
    template_id: str
    stage_id: str
    name: str
    activity_type: str
    order_index: int
    condition: str = ""
    description: str = ""
    # Read-only view: nested maps are proxies and lists are tuples.
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", _freeze(self.parameters))

    def parameters_copy(self) -> dict[str, Any]:
        """Return a private, mutable copy of the parameter payload."""

        return _thaw(self.parameters)

    def to_json(self) -> dict[str, object]:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "stage_id": self.stage_id,
            "name": self.name,
            "activity_type": self.activity_type,
            "order_index": self.order_index,
            "condition": self.condition,
            "description": self.description,
            "parameters": self.parameters_copy(),
        }

    @staticmethod
    def from_json(obj: dict[str, Any]) -> ActivityTemplate:
        return ActivityTemplate(
            id=str(obj["id"]),
            template_id=str(obj["template_id"]),
            stage_id=str(obj["stage_id"]),
            name=str(obj["name"]),
            activity_type=str(obj["activity_type"]),
            order_index=int(obj["order_index"]),
            condition=str(obj.get("condition") or ""),
            description=str(obj.get("description") or ""),
            parameters=dict(obj.get("parameters") or {}),
        )


@dataclass(frozen=True, slots=True)
class StageTemplate:
    id: str
    template_id: str
    workflow_id: str
    name: str
    stage_type: str
    order_index: int
    condition: str = ""
    description: str = ""
    activities: tuple[ActivityTemplate, ...] = ()

    def to_json(self) -> dict[str, object]:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "workflow_id": self.workflow_id,
            "name": self.name,
            "stage_type": self.stage_type,
            "order_index": self.order_index,
            "condition": self.condition,
            "description": self.description,
            "activities": [a.to_json() for a in self.activities],
        }

    @staticmethod
    def from_json(obj: dict[str, Any]) -> StageTemplate:
        activities = sorted(
            (ActivityTemplate.from_json(a) for a in obj.get("activities") or []),
            key=lambda a: a.order_index,
        )
        return StageTemplate(
            id=str(obj["id"]),
            template_id=str(obj["template_id"]),
            workflow_id=str(obj["workflow_id"]),
            name=str(obj["name"]),
            stage_type=str(obj.get("stage_type") or ""),
            order_index=int(obj["order_index"]),
            condition=str(obj.get("condition") or ""),
            description=str(obj.get("description") or ""),
            activities=tuple(activities),
        )


@dataclass(frozen=True, slots=True)
class WorkflowTemplate:
    id: str
    template_id: str
    name: str
    business_type: str
    version: int
    category: str = ""
    tags: tuple[str, ...] = ()
    description: str = ""
    stages: tuple[StageTemplate, ...] = ()
    input_schema: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.input_schema is not None:
            object.__setattr__(self, "input_schema", _freeze(self.input_schema))

    def input_schema_copy(self) -> dict[str, Any] | None:
        return None if self.input_schema is None else _thaw(self.input_schema)

    @property
    def key(self) -> tuple[str, int]:
        """Semantic identity of this record: (template_id, version)."""

        return (self.template_id, self.version)

    def to_json(self) -> dict[str, object]:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "name": self.name,
            "business_type": self.business_type,
            "version": self.version,
            "category": self.category,
            "tags": list(self.tags),
            "description": self.description,
            "stages": [s.to_json() for s in self.stages],
            "input_schema": self.input_schema_copy(),
        }

    @staticmethod
    def from_json(obj: dict[str, Any]) -> WorkflowTemplate:
        stages = sorted(
            (StageTemplate.from_json(s) for s in obj.get("stages") or []),
            key=lambda s: s.order_index,
        )
        return WorkflowTemplate(
            id=str(obj["id"]),
            template_id=str(obj["template_id"]),
            name=str(obj["name"]),
            business_type=str(obj["business_type"]),
            version=int(obj["version"]),
            category=str(obj.get("category") or ""),
            tags=tuple(str(t) for t in obj.get("tags") or []),
            description=str(obj.get("description") or ""),
            stages=tuple(stages),
            input_schema=obj.get("input_schema"),
        )

"""Authored workflow template definitions.

Definitions are what template authors write (JSON files, one workflow per file).
They carry no storage IDs and no order indices: positions are derived from the
order stages and activities appear in, at materialization time.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class ActivityDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str | None = Field(default=None, description="Semantic ID; derived when omitted")
    name: str = Field(min_length=1)
    activity_type: str = Field(min_length=1, description="Selects the activity handler")
    condition: str = Field(default="", description="Gating expression; empty means always")
    description: str = Field(default="")
    parameters: dict[str, Any] = Field(default_factory=dict)


class StageDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str | None = Field(default=None, description="Semantic ID; derived when omitted")
    name: str = Field(min_length=1)
    stage_type: str = Field(default="automated")
    condition: str = Field(default="")
    description: str = Field(default="")
    activities: list[ActivityDefinition] = Field(default_factory=list)


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1, description="Semantic ID, stable across versions")
    name: str = Field(min_length=1)
    business_type: str = Field(min_length=1)
    version: int = Field(default=1, ge=1)
    category: str = Field(default="")
    tags: list[str] = Field(default_factory=list)
    description: str = Field(default="")
    input_schema: dict[str, Any] | None = Field(
        default=None, description="Shape of the run input; see templates.schema"
    )
    stages: list[StageDefinition] = Field(default_factory=list)

    @property
    def activity_count(self) -> int:
        return sum(len(stage.activities) for stage in self.stages)


class TemplateCatalog:
    """In-memory set of authored definitions, keyed by semantic ID."""

    def __init__(self, definitions: list[WorkflowDefinition] | None = None) -> None:
        self._definitions: dict[str, WorkflowDefinition] = {}
        for definition in definitions or []:
            self.add(definition)

    def add(self, definition: WorkflowDefinition) -> None:
        if definition.id in self._definitions:
            raise ValueError(f"Duplicate workflow definition: {definition.id}")
        self._definitions[definition.id] = definition

    def get(self, template_id: str) -> WorkflowDefinition | None:
        return self._definitions.get(template_id)

    def all(self) -> list[WorkflowDefinition]:
        """Return every definition in a stable (ID-sorted) order."""

        return sorted(self._definitions.values(), key=lambda d: d.id)

    def by_business_type(self, business_type: str) -> list[WorkflowDefinition]:
        return [d for d in self.all() if d.business_type == business_type]

    def __len__(self) -> int:
        return len(self._definitions)

    @classmethod
    def load_directory(cls, directory: Path) -> TemplateCatalog:
        """Load every ``*.json`` file under ``directory``.

        Raises:
            ValueError: If a file is not valid JSON or not a valid definition.
        """

        catalog = cls()
        if not directory.exists():
            logger.warning("Template directory does not exist", extra={"path": str(directory)})
            return catalog

        for path in sorted(directory.glob("*.json"), key=lambda p: p.name):
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                catalog.add(WorkflowDefinition.model_validate(raw))
            except (json.JSONDecodeError, ValidationError) as e:
                raise ValueError(f"Invalid workflow definition in {path}: {e}") from e

        logger.info(
            "Loaded workflow definitions",
            extra={"path": str(directory), "count": len(catalog)},
        )
        return catalog

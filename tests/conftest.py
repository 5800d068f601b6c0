"""Test configuration and fixtures."""

from __future__ import annotations

import itertools
import json
from collections.abc import Callable
from pathlib import Path

import pytest

from workflow_orchestrator.conditions import ConditionEvaluator
from workflow_orchestrator.templates import (
    ActivityDefinition,
    StageDefinition,
    TemplateConverter,
    WorkflowDefinition,
)

APPROVED = 'stage[0].activity[0].output.status == "approved"'


@pytest.fixture
def evaluator() -> ConditionEvaluator:
    return ConditionEvaluator()


@pytest.fixture
def id_generator() -> Callable[[], str]:
    """Deterministic storage IDs: id-1, id-2, ..."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def converter(
    id_generator: Callable[[], str], evaluator: ConditionEvaluator
) -> TemplateConverter:
    return TemplateConverter(id_generator=id_generator, evaluator=evaluator)


@pytest.fixture
def approval_definition() -> WorkflowDefinition:
    """Two stages; the second only runs when the first approved."""
    return WorkflowDefinition(
        id="approval",
        name="Approval",
        business_type="education",
        stages=[
            StageDefinition(
                name="Review",
                activities=[ActivityDefinition(name="Decide", activity_type="decide")],
            ),
            StageDefinition(
                name="Fulfil",
                activities=[
                    ActivityDefinition(
                        name="Provision", activity_type="provision", condition=APPROVED
                    )
                ],
            ),
        ],
    )


def _definition(template_id: str, business_type: str, condition: str = "") -> dict[str, object]:
    return {
        "id": template_id,
        "name": template_id.replace("-", " ").title(),
        "business_type": business_type,
        "stages": [
            {
                "name": "Intake",
                "activities": [
                    {"name": "Register", "activity_type": "register"},
                    {"name": "Notify", "activity_type": "notify", "condition": condition},
                ],
            }
        ],
    }


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    """Three `school` templates (one with a broken condition) and one `clinic` template."""
    directory = tmp_path / "templates"
    directory.mkdir()
    files = {
        "enrolment.json": _definition("enrolment", "school"),
        "graduation.json": _definition("graduation", "school", "input.notify == true"),
        "broken.json": _definition("broken", "school", "input.notify =="),
        "intake.json": _definition("intake", "clinic"),
    }
    for name, payload in files.items():
        (directory / name).write_text(json.dumps(payload), encoding="utf-8")
    return directory

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from workflow_orchestrator.conditions import ConditionEvaluator
from workflow_orchestrator.errors import InputValidationError, TemplateNotFoundError
from workflow_orchestrator.templates.model import WorkflowTemplate
from workflow_orchestrator.templates.schema import InputSchema
from workflow_orchestrator.templates.store import TemplateStore
from workflow_orchestrator.workflow.handlers import HandlerRegistry
from workflow_orchestrator.workflow.policy import CancelToken, RunPolicy
from workflow_orchestrator.workflow.sequencer import RunResult, WorkflowSequencer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineDependencies:
    """The collaborator graph an engine is built from."""

    templates: TemplateStore
    handlers: HandlerRegistry
    evaluator: ConditionEvaluator | None = None
    policy: RunPolicy | None = None


class WorkflowEngine:
    """Look up templates and run them.

    Safe to share between threads: every run gets its own context.
    """

    def __init__(
        self,
        *,
        templates: TemplateStore,
        handlers: HandlerRegistry,
        evaluator: ConditionEvaluator | None = None,
        policy: RunPolicy | None = None,
    ) -> None:
        self.templates = templates
        self.handlers = handlers
        self._sequencer = WorkflowSequencer(
            handlers=handlers, evaluator=evaluator or ConditionEvaluator(), policy=policy
        )

    @property
    def default_policy(self) -> RunPolicy:
        return self._sequencer.default_policy

    def resolve(self, template_id: str, version: int | None = None) -> WorkflowTemplate:
        """Find a template by semantic ID, latest version unless pinned.

        Raises:
            TemplateNotFoundError: If no such template (or version) is stored.
        """

        template = self.templates.find(template_id, version)
        if template is None:
            label = template_id if version is None else f"{template_id} v{version}"
            raise TemplateNotFoundError(label)
        return template

    def run(
        self,
        template_id: str,
        input: Mapping[str, Any] | None = None,  # noqa: A002
        *,
        version: int | None = None,
        policy: RunPolicy | None = None,
        cancel: CancelToken | None = None,
    ) -> RunResult:
        """Run the latest (or pinned) version of ``template_id``.

        Raises:
            TemplateNotFoundError: If no such template (or version) is stored.
            InputValidationError: If ``input`` does not satisfy the template's
                input schema.
        """

        template = self.resolve(template_id, version)
        input = _prepare_input(template, input)  # noqa: A001
        return self._sequencer.run(template, input, policy=policy, cancel=cancel)

    def run_record(
        self,
        storage_id: str,
        input: Mapping[str, Any] | None = None,  # noqa: A002
        *,
        policy: RunPolicy | None = None,
        cancel: CancelToken | None = None,
    ) -> RunResult:
        """Run the template stored under ``storage_id``.

        Raises:
            TemplateNotFoundError: If no record has that storage ID.
            InputValidationError: If ``input`` does not satisfy the template's
                input schema.
        """

        template = self.templates.get(storage_id)
        if template is None:
            raise TemplateNotFoundError(storage_id)
        input = _prepare_input(template, input)  # noqa: A001
        return self._sequencer.run(template, input, policy=policy, cancel=cancel)


def _prepare_input(
    template: WorkflowTemplate, input: Mapping[str, Any] | None  # noqa: A002
) -> Mapping[str, Any] | None:
    raw = template.input_schema_copy()
    if raw is None:
        return input
    try:
        schema = InputSchema.parse(raw)
    except ValueError as e:
        raise InputValidationError(template.template_id, [f"invalid input schema: {e}"]) from e
    return schema.validate(input, template_id=template.template_id)


def build_engine(dependencies: EngineDependencies) -> WorkflowEngine:
    logger.info(
        "Building workflow engine",
        extra={"activity_types": dependencies.handlers.activity_types()},
    )
    return WorkflowEngine(
        templates=dependencies.templates,
        handlers=dependencies.handlers,
        evaluator=dependencies.evaluator,
        policy=dependencies.policy,
    )

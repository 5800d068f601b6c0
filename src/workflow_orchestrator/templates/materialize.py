"""Materialize authored definitions into stored, ID-bearing templates.

Conversion assigns ``order_index`` from list position and generates one storage
ID per record. Each workflow is converted in full before anything is written,
so a template either lands in the store with its whole subtree or not at all.

Seeding processes templates independently: one template failing is recorded in
the report and the next template is processed.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from workflow_orchestrator.conditions import ConditionEvaluator
from workflow_orchestrator.errors import (
    CompilationError,
    OrchestrationError,
    TemplateConversionError,
    TemplateNotFoundError,
)
from workflow_orchestrator.templates.definitions import (
    ActivityDefinition,
    StageDefinition,
    TemplateCatalog,
    WorkflowDefinition,
)
from workflow_orchestrator.templates.model import (
    ActivityTemplate,
    StageTemplate,
    WorkflowTemplate,
    activity_path,
    stage_path,
)
from workflow_orchestrator.templates.schema import InputSchema
from workflow_orchestrator.templates.store import TemplateStore

logger = logging.getLogger(__name__)

IdGenerator = Callable[[], str]


def new_storage_id() -> str:
    return uuid.uuid4().hex


def _check_condition(evaluator: ConditionEvaluator, condition: str, path: str) -> None:
    if not condition.strip():
        return
    try:
        evaluator.compile(condition)
    except CompilationError as e:
        raise TemplateConversionError(path, e.reason) from e


def _check_unique(semantic_ids: list[str], path: str) -> None:
    seen: set[str] = set()
    for semantic_id in semantic_ids:
        if semantic_id in seen:
            raise TemplateConversionError(path, f"duplicate semantic ID '{semantic_id}'")
        seen.add(semantic_id)


class TemplateConverter:
    """Convert definitions into materialized templates."""

    def __init__(
        self,
        *,
        id_generator: IdGenerator = new_storage_id,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        self._new_id = id_generator
        self._evaluator = evaluator or ConditionEvaluator()

    def convert_activity(
        self,
        definition: ActivityDefinition,
        *,
        order_index: int,
        stage_id: str,
        semantic_id: str,
        path: str,
    ) -> ActivityTemplate:
        _check_condition(self._evaluator, definition.condition, path)
        try:
            # Round-trip through JSON: parameters must survive the store.
            parameters = json.loads(json.dumps(definition.parameters))
        except (TypeError, ValueError) as e:
            raise TemplateConversionError(path, f"parameters are not JSON-serializable: {e}") from e

        return ActivityTemplate(
            id=self._new_id(),
            template_id=semantic_id,
            stage_id=stage_id,
            name=definition.name,
            activity_type=definition.activity_type,
            order_index=order_index,
            condition=definition.condition.strip(),
            description=definition.description,
            parameters=parameters,
        )

    def convert_stage(
        self,
        definition: StageDefinition,
        *,
        order_index: int,
        workflow_id: str,
        semantic_id: str,
        path: str,
    ) -> StageTemplate:
        _check_condition(self._evaluator, definition.condition, path)

        activity_ids = [
            a.id or f"{semantic_id}:activity:{j}" for j, a in enumerate(definition.activities)
        ]
        _check_unique(activity_ids, path)

        stage_id = self._new_id()
        activities = tuple(
            self.convert_activity(
                activity,
                order_index=j,
                stage_id=stage_id,
                semantic_id=activity_ids[j],
                path=activity_path(path, j, activity.name),
            )
            for j, activity in enumerate(definition.activities)
        )
        return StageTemplate(
            id=stage_id,
            template_id=semantic_id,
            workflow_id=workflow_id,
            name=definition.name,
            stage_type=definition.stage_type,
            order_index=order_index,
            condition=definition.condition.strip(),
            description=definition.description,
            activities=activities,
        )

    def convert_workflow(self, definition: WorkflowDefinition) -> WorkflowTemplate:
        """Convert a full definition.

        Raises:
            TemplateConversionError: With the failing ``template/stage/activity`` path.
        """

        if definition.input_schema is not None:
            try:
                InputSchema.parse(definition.input_schema)
            except ValueError as e:
                raise TemplateConversionError(
                    f"{definition.id}/input_schema", f"invalid input schema: {e}"
                ) from e

        stage_ids = [s.id or f"{definition.id}:stage:{i}" for i, s in enumerate(definition.stages)]
        _check_unique(stage_ids, definition.id)

        workflow_id = self._new_id()
        stages = tuple(
            self.convert_stage(
                stage,
                order_index=i,
                workflow_id=workflow_id,
                semantic_id=stage_ids[i],
                path=stage_path(definition.id, i, stage.name),
            )
            for i, stage in enumerate(definition.stages)
        )
        return WorkflowTemplate(
            id=workflow_id,
            template_id=definition.id,
            name=definition.name,
            business_type=definition.business_type,
            version=definition.version,
            category=definition.category,
            tags=tuple(definition.tags),
            description=definition.description,
            stages=stages,
            input_schema=definition.input_schema,
        )


@dataclass(frozen=True, slots=True)
class SeedOptions:
    business_type: str | None = None
    template_id: str | None = None
    reset: bool = False
    dry_run: bool = False
    verbose: bool = False


@dataclass(slots=True)
class SeedReport:
    selected: list[str] = field(default_factory=list)
    created: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors


class TemplateSeeder:
    """Materialize catalog definitions into a template store."""

    def __init__(
        self,
        *,
        catalog: TemplateCatalog,
        store: TemplateStore,
        converter: TemplateConverter | None = None,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.converter = converter or TemplateConverter()

    def select(self, options: SeedOptions) -> list[WorkflowDefinition]:
        """Return the definitions in scope for ``options``.

        Raises:
            TemplateNotFoundError: If a single template was requested and is not
                in scope.
        """

        if options.business_type is not None:
            definitions = self.catalog.by_business_type(options.business_type)
        else:
            definitions = self.catalog.all()

        if options.template_id is not None:
            definitions = [d for d in definitions if d.id == options.template_id]
            if not definitions:
                raise TemplateNotFoundError(options.template_id)
        return definitions

    def seed(self, options: SeedOptions) -> SeedReport:
        definitions = self.select(options)
        report = SeedReport(selected=[d.id for d in definitions], dry_run=options.dry_run)
        level = logging.INFO if options.verbose else logging.DEBUG

        logger.info(
            "Seeding workflow templates",
            extra={
                "business_type": options.business_type,
                "template_id": options.template_id,
                "count": len(definitions),
                "reset": options.reset,
                "dry_run": options.dry_run,
            },
        )

        if options.dry_run:
            for definition in definitions:
                try:
                    self.converter.convert_workflow(definition)
                except TemplateConversionError as e:
                    report.errors.append(str(e))
                    continue
                logger.log(
                    level,
                    "Would seed template",
                    extra={
                        "template_id": definition.id,
                        "stages": len(definition.stages),
                        "activities": definition.activity_count,
                    },
                )
            return report

        if options.reset:
            for business_type in sorted({d.business_type for d in definitions}):
                deleted = self.store.delete_business_type(business_type)
                report.deleted += deleted
                logger.info(
                    "Deleted existing templates",
                    extra={"business_type": business_type, "deleted": deleted},
                )

        for definition in definitions:
            logger.log(level, "Processing template", extra={"template_id": definition.id})
            try:
                template = self.converter.convert_workflow(definition)
                self.store.add(template)
            except TemplateConversionError as e:
                report.errors.append(str(e))
                logger.warning("Template conversion failed", extra={"path": e.path})
                continue
            except (OrchestrationError, OSError, ValueError) as e:
                report.errors.append(f"{definition.id}: {e}")
                logger.warning(
                    "Template not stored",
                    extra={"template_id": definition.id, "error": str(e)},
                )
                continue

            report.created += 1
            logger.log(
                level,
                "Created template",
                extra={"template_id": definition.id, "storage_id": template.id},
            )

        logger.info(
            "Seeding finished",
            extra={"created": report.created, "errors": len(report.errors)},
        )
        return report

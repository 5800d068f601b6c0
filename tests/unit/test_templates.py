"""Unit tests for template definitions, materialization, stores and seeding."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from workflow_orchestrator.errors import (
    TemplateConversionError,
    TemplateNotFoundError,
    TemplateStoreError,
    TemplateVersionConflict,
)
from workflow_orchestrator.templates import (
    ActivityDefinition,
    InMemoryTemplateStore,
    JsonTemplateStore,
    SeedOptions,
    StageDefinition,
    TemplateCatalog,
    TemplateConverter,
    TemplateSeeder,
    WorkflowDefinition,
    WorkflowTemplate,
)


def test_conversion_assigns_order_index_and_ids(
    converter: TemplateConverter, approval_definition: WorkflowDefinition
) -> None:
    template = converter.convert_workflow(approval_definition)

    assert template.id == "id-1"
    assert template.template_id == "approval"
    assert template.key == ("approval", 1)
    assert [s.order_index for s in template.stages] == [0, 1]
    assert [s.template_id for s in template.stages] == ["approval:stage:0", "approval:stage:1"]
    assert [s.id for s in template.stages] == ["id-2", "id-4"]
    assert all(s.workflow_id == "id-1" for s in template.stages)

    fulfil = template.stages[1]
    assert fulfil.activities[0].template_id == "approval:stage:1:activity:0"
    assert fulfil.activities[0].stage_id == "id-4"
    assert fulfil.activities[0].order_index == 0
    assert fulfil.activities[0].condition.startswith("stage[0]")


def test_conversion_is_reproducible(approval_definition: WorkflowDefinition) -> None:
    a = TemplateConverter(id_generator=lambda: "x").convert_workflow(approval_definition)
    b = TemplateConverter(id_generator=lambda: "x").convert_workflow(approval_definition)
    assert a == b


def test_definitions_reject_order_index() -> None:
    with pytest.raises(ValidationError):
        ActivityDefinition.model_validate(
            {"name": "A", "activity_type": "t", "order_index": 3}
        )


def test_conversion_rejects_bad_condition_with_path(converter: TemplateConverter) -> None:
    definition = WorkflowDefinition(
        id="wf",
        name="WF",
        business_type="b",
        stages=[
            StageDefinition(
                name="S",
                activities=[ActivityDefinition(name="A", activity_type="t", condition="nope(1)")],
            )
        ],
    )
    with pytest.raises(TemplateConversionError) as exc:
        converter.convert_workflow(definition)
    assert exc.value.path == "wf/stage[0]:S/activity[0]:A"
    assert "unknown function 'nope'" in str(exc.value)


def test_conversion_rejects_duplicate_sibling_ids(converter: TemplateConverter) -> None:
    definition = WorkflowDefinition(
        id="wf",
        name="WF",
        business_type="b",
        stages=[
            StageDefinition(id="same", name="One"),
            StageDefinition(id="same", name="Two"),
        ],
    )
    with pytest.raises(TemplateConversionError, match="duplicate semantic ID 'same'"):
        converter.convert_workflow(definition)


def test_template_json_roundtrip_sorts_by_order_index(
    converter: TemplateConverter, approval_definition: WorkflowDefinition
) -> None:
    template = converter.convert_workflow(approval_definition)
    raw = template.to_json()
    raw["stages"] = list(reversed(raw["stages"]))  # type: ignore[arg-type]

    loaded = WorkflowTemplate.from_json(raw)
    assert loaded == template


def test_parameters_are_read_only_and_copies_private(converter: TemplateConverter) -> None:
    definition = WorkflowDefinition(
        id="wf",
        name="WF",
        business_type="b",
        stages=[
            StageDefinition(
                name="S",
                activities=[
                    ActivityDefinition(
                        name="A", activity_type="t", parameters={"nested": {"k": [1]}}
                    )
                ],
            )
        ],
    )
    activity = converter.convert_workflow(definition).stages[0].activities[0]
    copy = activity.parameters_copy()
    copy["nested"]["k"].append(2)
    assert activity.parameters_copy() == {"nested": {"k": [1]}}

    with pytest.raises(TypeError):
        activity.parameters["nested"]["k"] = [3]  # type: ignore[index]
    with pytest.raises(AttributeError):
        activity.parameters["nested"]["k"].append(3)
    assert activity.to_json()["parameters"] == {"nested": {"k": [1]}}


def test_in_memory_store_versions(
    converter: TemplateConverter, approval_definition: WorkflowDefinition
) -> None:
    store = InMemoryTemplateStore()
    v1 = converter.convert_workflow(approval_definition)
    v2 = converter.convert_workflow(approval_definition.model_copy(update={"version": 2}))
    store.add(v1)
    store.add(v2)

    assert store.find("approval") == v2
    assert store.find("approval", 1) == v1
    assert store.get(v1.id) == v1
    assert store.find("approval", 3) is None
    assert store.get("approval") is None  # semantic IDs are not storage IDs

    with pytest.raises(TemplateVersionConflict):
        store.add(converter.convert_workflow(approval_definition))


def test_json_store_persists_and_deletes(
    tmp_path: Path, converter: TemplateConverter, approval_definition: WorkflowDefinition
) -> None:
    path = tmp_path / "state" / "templates.json"
    store = JsonTemplateStore(path)
    template = converter.convert_workflow(approval_definition)
    store.add(template)

    reopened = JsonTemplateStore(path)
    assert reopened.get(template.id) == template
    assert [t.template_id for t in reopened.list("education")] == ["approval"]
    assert reopened.list("clinic") == []

    assert reopened.delete_business_type("education") == 1
    assert reopened.list() == []
    assert json.loads(path.read_text(encoding="utf-8")) == []


def test_catalog_loads_directory(templates_dir: Path) -> None:
    catalog = TemplateCatalog.load_directory(templates_dir)
    assert len(catalog) == 4
    assert [d.id for d in catalog.by_business_type("school")] == [
        "broken",
        "enrolment",
        "graduation",
    ]
    assert catalog.get("intake") is not None


def test_catalog_rejects_invalid_file(tmp_path: Path) -> None:
    (tmp_path / "bad.json").write_text('{"id": "x"}', encoding="utf-8")
    with pytest.raises(ValueError, match="bad.json"):
        TemplateCatalog.load_directory(tmp_path)


def test_catalog_missing_directory_is_empty(tmp_path: Path) -> None:
    assert len(TemplateCatalog.load_directory(tmp_path / "nope")) == 0


def test_seed_reports_partial_success(templates_dir: Path) -> None:
    store = InMemoryTemplateStore()
    seeder = TemplateSeeder(catalog=TemplateCatalog.load_directory(templates_dir), store=store)

    report = seeder.seed(SeedOptions(business_type="school"))

    assert report.created == 2
    assert len(report.errors) == 1
    assert report.errors[0].startswith("broken/stage[0]:Intake/activity[1]:Notify: ")
    assert not report.ok
    # the failed template left nothing behind; the other business type was not touched
    assert [t.template_id for t in store.list()] == ["enrolment", "graduation"]


def test_seed_single_template_and_unknown_template(templates_dir: Path) -> None:
    store = InMemoryTemplateStore()
    seeder = TemplateSeeder(catalog=TemplateCatalog.load_directory(templates_dir), store=store)

    report = seeder.seed(SeedOptions(business_type="clinic", template_id="intake"))
    assert report.created == 1
    assert report.ok

    with pytest.raises(TemplateNotFoundError):
        seeder.seed(SeedOptions(business_type="clinic", template_id="enrolment"))


def test_seed_dry_run_writes_nothing(templates_dir: Path) -> None:
    store = InMemoryTemplateStore()
    seeder = TemplateSeeder(catalog=TemplateCatalog.load_directory(templates_dir), store=store)

    report = seeder.seed(SeedOptions(business_type="school", dry_run=True))

    assert report.dry_run
    assert report.created == 0
    assert len(report.errors) == 1
    assert store.list() == []


def test_seed_twice_conflicts_unless_reset(templates_dir: Path) -> None:
    store = InMemoryTemplateStore()
    seeder = TemplateSeeder(catalog=TemplateCatalog.load_directory(templates_dir), store=store)
    options = SeedOptions(business_type="clinic")

    assert seeder.seed(options).created == 1

    again = seeder.seed(options)
    assert again.created == 0
    assert again.errors == ["intake: Template intake v1 already exists"]

    reset = seeder.seed(SeedOptions(business_type="clinic", reset=True))
    assert reset.deleted == 1
    assert reset.created == 1
    assert len(store.list("clinic")) == 1


def _three_workflows() -> TemplateCatalog:
    return TemplateCatalog(
        [
            WorkflowDefinition(id=name, name=name.title(), business_type="b")
            for name in ("alpha", "beta", "gamma")
        ]
    )


class _FlakyStore(InMemoryTemplateStore):
    def add(self, template: WorkflowTemplate) -> None:
        if template.template_id == "beta":
            raise OSError("disk full")
        super().add(template)


def test_seed_records_store_failures_per_template() -> None:
    store = _FlakyStore()
    report = TemplateSeeder(catalog=_three_workflows(), store=store).seed(SeedOptions())

    assert report.created == 2
    assert report.errors == ["beta: disk full"]
    assert [t.template_id for t in store.list()] == ["alpha", "gamma"]


def test_seed_reports_storage_id_clash() -> None:
    store = InMemoryTemplateStore()
    seeder = TemplateSeeder(
        catalog=_three_workflows(),
        store=store,
        converter=TemplateConverter(id_generator=lambda: "dup"),
    )

    report = seeder.seed(SeedOptions())

    assert report.created == 1
    assert report.errors == [
        "beta: Storage ID already in use: dup",
        "gamma: Storage ID already in use: dup",
    ]


def test_corrupt_json_store_is_a_store_error(tmp_path: Path) -> None:
    path = tmp_path / "templates.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonTemplateStore(path)

    with pytest.raises(TemplateStoreError, match="Cannot read template store"):
        store.list()

    report = TemplateSeeder(catalog=_three_workflows(), store=store).seed(SeedOptions())
    assert report.created == 0
    assert len(report.errors) == 3
    assert path.read_text(encoding="utf-8") == "{not json"

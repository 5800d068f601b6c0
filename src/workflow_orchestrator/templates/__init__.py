"""Workflow → Stage → Activity templates and their storage."""

from workflow_orchestrator.templates.cache import CachedTemplateStore, CacheStats
from workflow_orchestrator.templates.definitions import (
    ActivityDefinition,
    StageDefinition,
    TemplateCatalog,
    WorkflowDefinition,
)
from workflow_orchestrator.templates.materialize import (
    SeedOptions,
    SeedReport,
    TemplateConverter,
    TemplateSeeder,
    new_storage_id,
)
from workflow_orchestrator.templates.model import ActivityTemplate, StageTemplate, WorkflowTemplate
from workflow_orchestrator.templates.schema import InputSchema, SchemaField
from workflow_orchestrator.templates.store import (
    InMemoryTemplateStore,
    JsonTemplateStore,
    TemplateStore,
)

__all__ = [
    "ActivityDefinition",
    "ActivityTemplate",
    "CacheStats",
    "CachedTemplateStore",
    "InMemoryTemplateStore",
    "InputSchema",
    "JsonTemplateStore",
    "SchemaField",
    "SeedOptions",
    "SeedReport",
    "StageDefinition",
    "StageTemplate",
    "TemplateCatalog",
    "TemplateConverter",
    "TemplateSeeder",
    "TemplateStore",
    "WorkflowDefinition",
    "WorkflowTemplate",
    "new_storage_id",
]

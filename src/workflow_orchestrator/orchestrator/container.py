"""Composition root: owns the engine binding and hands the engine out."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from typing import Any

from workflow_orchestrator.binding import BindingMode, EngineBinding, create_binding
from workflow_orchestrator.binding.primitives import SlotFactory
from workflow_orchestrator.orchestrator.config import OrchestratorSettings
from workflow_orchestrator.templates.cache import CachedTemplateStore
from workflow_orchestrator.templates.store import JsonTemplateStore, TemplateStore
from workflow_orchestrator.workflow.engine import EngineDependencies, WorkflowEngine, build_engine
from workflow_orchestrator.workflow.handlers import HandlerRegistry
from workflow_orchestrator.workflow.policy import RunPolicy
from workflow_orchestrator.workflow.sequencer import RunResult

logger = logging.getLogger(__name__)


class Container:
    """Wire settings, stores and handlers into a bound workflow engine.

    Components that need the engine receive the container (or its binding)
    at construction and call :meth:`workflow_engine` when they need it.
    """

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        *,
        engine_factory: SlotFactory = build_engine,
    ) -> None:
        self.settings = settings or OrchestratorSettings()
        self.binding: EngineBinding = create_binding(
            self.settings.workflow_engine_mode, engine_factory
        )
        logger.info("Container created", extra={"mode": self.mode.value})

    @property
    def mode(self) -> BindingMode:
        return self.binding.mode

    def dependencies(
        self,
        handlers: HandlerRegistry,
        *,
        templates: TemplateStore | None = None,
    ) -> EngineDependencies:
        """Build the engine's dependency graph from settings.

        The template store (``templates`` or the configured JSON store) is put
        behind a :class:`CachedTemplateStore` unless the cache TTL is 0.
        """

        store = templates or JsonTemplateStore(self.settings.template_store_path)
        ttl = self.settings.template_cache_ttl_seconds
        if ttl > 0 and not isinstance(store, CachedTemplateStore):
            store = CachedTemplateStore(store, ttl_seconds=ttl)
        return EngineDependencies(
            templates=store,
            handlers=handlers,
            policy=RunPolicy.from_settings(self.settings),
        )

    def initialize(self, dependencies: EngineDependencies) -> bool:
        """Provide the dependency graph to the binding.

        A failure is logged rather than raised; the container stays usable and
        :meth:`workflow_engine` keeps raising ``NotReadyError``.

        Returns:
            True if the binding accepted the graph without error.
        """

        if dependencies.policy is None:
            dependencies = dataclasses.replace(
                dependencies, policy=RunPolicy.from_settings(self.settings)
            )
        try:
            self.binding.provide(dependencies)
        except Exception:
            logger.exception("Workflow engine initialization failed", extra={"mode": self.mode.value})
            return False
        logger.info(
            "Workflow engine initialized",
            extra={"mode": self.mode.value, "bound": self.binding.is_bound},
        )
        return True

    def workflow_engine(self) -> WorkflowEngine:
        """Return the engine.

        Raises:
            NotReadyError: If the binding has not resolved yet.
        """

        return self.binding.get()

    def run_workflow(
        self,
        template_id: str,
        input: Mapping[str, Any] | None = None,  # noqa: A002
        **kwargs: Any,
    ) -> RunResult:
        return self.workflow_engine().run(template_id, input, **kwargs)

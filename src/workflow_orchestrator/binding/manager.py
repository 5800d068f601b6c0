"""Lifecycle bindings that make the workflow engine reachable after startup.

The engine depends on services that are built after the components wanting to
call it, so callers hold a binding instead of an engine. The mode is chosen once
at startup:

- ``late``: the engine is built as soon as the dependency graph is provided
- ``eager``: construction is queued at bootstrap and drained when the graph is
  provided
- ``lazy``: construction happens on the first ``get`` after the graph exists

In every mode ``get`` raises :class:`NotReadyError` instead of blocking or
returning ``None`` when the engine is not available yet.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from workflow_orchestrator.binding.primitives import DeferredRegistry, Once, SlotFactory
from workflow_orchestrator.errors import NotReadyError

logger = logging.getLogger(__name__)

DEFAULT_SLOT = "workflow_engine"


class BindingMode(str, Enum):
    LATE = "late"
    EAGER = "eager"
    LAZY = "lazy"

    @classmethod
    def parse(cls, value: str | BindingMode | None) -> BindingMode:
        """Case-insensitive lookup; empty means ``late``.

        Raises:
            ValueError: For an unknown mode.
        """

        if isinstance(value, BindingMode):
            return value
        text = (value or "").strip().lower()
        if not text:
            return cls.LATE
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown workflow engine mode: {value}") from None


class EngineBinding(ABC):
    """A slot through which the engine is reached."""

    mode: BindingMode

    def __init__(self, factory: SlotFactory, *, slot: str = DEFAULT_SLOT) -> None:
        self.slot = slot
        self._factory = factory

    @abstractmethod
    def provide(self, dependencies: Any) -> None:
        """Make the dependency graph available."""

    @abstractmethod
    def get(self) -> Any:
        """Return the engine.

        Raises:
            NotReadyError: If the engine is not available yet.
        """

    @property
    @abstractmethod
    def is_bound(self) -> bool: ...


class LateBinding(EngineBinding):
    mode = BindingMode.LATE

    def __init__(self, factory: SlotFactory, *, slot: str = DEFAULT_SLOT) -> None:
        super().__init__(factory, slot=slot)
        self._lock = threading.Lock()
        self._instance: Any = None

    def bind(self, instance: Any) -> None:
        if instance is None:
            raise ValueError("Cannot bind None")
        with self._lock:
            self._instance = instance
        logger.info("Engine bound", extra={"slot": self.slot, "mode": self.mode.value})

    def provide(self, dependencies: Any) -> None:
        self.bind(self._factory(dependencies))

    def get(self) -> Any:
        with self._lock:
            instance = self._instance
        if instance is None:
            raise NotReadyError(self.slot)
        return instance

    @property
    def is_bound(self) -> bool:
        with self._lock:
            return self._instance is not None


class EagerBinding(EngineBinding):
    mode = BindingMode.EAGER

    def __init__(
        self,
        factory: SlotFactory,
        *,
        slot: str = DEFAULT_SLOT,
        registry: DeferredRegistry | None = None,
    ) -> None:
        super().__init__(factory, slot=slot)
        self.registry = registry or DeferredRegistry()
        self.registry.request(slot, factory)

    def provide(self, dependencies: Any) -> None:
        self.registry.resolve(dependencies)

    def get(self) -> Any:
        return self.registry.get(self.slot)

    @property
    def is_bound(self) -> bool:
        return self.registry.has(self.slot)


class LazyBinding(EngineBinding):
    mode = BindingMode.LAZY

    def __init__(self, factory: SlotFactory, *, slot: str = DEFAULT_SLOT) -> None:
        super().__init__(factory, slot=slot)
        self._lock = threading.Lock()
        self._dependencies: Any = None
        self._once = Once()

    def provide(self, dependencies: Any) -> None:
        with self._lock:
            self._dependencies = dependencies
        logger.info("Engine deferred until first use", extra={"slot": self.slot})

    def get(self) -> Any:
        if self._once.done:
            return self._once.value
        with self._lock:
            dependencies = self._dependencies
        if dependencies is None:
            raise NotReadyError(self.slot, "dependencies not provided")
        if self._once.running_in_current_thread:
            raise NotReadyError(self.slot, "construction in progress")
        return self._once.do(lambda: self._construct(dependencies))

    def _construct(self, dependencies: Any) -> Any:
        instance = self._factory(dependencies)
        logger.info("Engine constructed lazily", extra={"slot": self.slot})
        return instance

    @property
    def is_bound(self) -> bool:
        return self._once.done


def create_binding(
    mode: str | BindingMode,
    factory: SlotFactory,
    *,
    slot: str = DEFAULT_SLOT,
) -> EngineBinding:
    mode = BindingMode.parse(mode)
    if mode is BindingMode.EAGER:
        return EagerBinding(factory, slot=slot)
    if mode is BindingMode.LAZY:
        return LazyBinding(factory, slot=slot)
    return LateBinding(factory, slot=slot)

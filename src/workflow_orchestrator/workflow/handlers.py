from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from workflow_orchestrator.errors import HandlerError
from workflow_orchestrator.templates.model import ActivityTemplate
from workflow_orchestrator.workflow.context import ContextView
from workflow_orchestrator.workflow.policy import CancelToken


@dataclass(frozen=True, slots=True)
class ActivityInvocation:
    """Everything a handler receives for one activity execution.

    ``parameters`` is a private copy of the template payload; ``inputs`` holds
    the resolved ``input_mapping``. ``context`` is a read-only snapshot taken
    just before the handler runs.
    """

    activity: ActivityTemplate
    path: str
    parameters: dict[str, Any]
    inputs: dict[str, Any]
    context: ContextView
    cancel: CancelToken
    computed_sink: Callable[[str, Any], None]

    def set_computed(self, key: str, value: Any) -> None:
        """Publish a value under ``computed.<key>`` for later conditions."""

        self.computed_sink(key, value)


class ActivityHandler(Protocol):
    """Executes one activity type. Must be safe to call from concurrent runs."""

    def execute(self, invocation: ActivityInvocation) -> Mapping[str, Any]: ...


class FunctionHandler:
    """Adapt a plain callable to :class:`ActivityHandler`."""

    def __init__(self, fn: Callable[[ActivityInvocation], Mapping[str, Any] | None]) -> None:
        self._fn = fn

    def execute(self, invocation: ActivityInvocation) -> Mapping[str, Any]:
        return self._fn(invocation) or {}


class HandlerRegistry:
    def __init__(self, handlers: Mapping[str, ActivityHandler] | None = None) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, ActivityHandler] = dict(handlers or {})

    def register(self, activity_type: str, handler: ActivityHandler, *, replace: bool = False) -> None:
        if not activity_type:
            raise ValueError("activity_type must be non-empty")
        with self._lock:
            if activity_type in self._handlers and not replace:
                raise ValueError(f"Handler already registered for activity type: {activity_type}")
            self._handlers[activity_type] = handler

    def get(self, activity_type: str, *, path: str = "") -> ActivityHandler:
        """Return the handler for ``activity_type``.

        Raises:
            HandlerError: If no handler is registered.
        """

        with self._lock:
            handler = self._handlers.get(activity_type)
        if handler is None:
            raise HandlerError(path or activity_type, f"no handler for activity type '{activity_type}'")
        return handler

    def activity_types(self) -> list[str]:
        with self._lock:
            return sorted(self._handlers)

    def __contains__(self, activity_type: object) -> bool:
        with self._lock:
            return activity_type in self._handlers

"""Exception taxonomy shared across the orchestration core."""

from __future__ import annotations


class OrchestrationError(RuntimeError):
    """Base class for every error raised by the orchestration core."""


class CompilationError(OrchestrationError):
    """A condition expression could not be parsed or type-checked."""

    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Failed to compile condition {expression!r}: {reason}")
        self.expression = expression
        self.reason = reason


class EvaluationError(OrchestrationError):
    """A compiled condition failed while running against a context."""

    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Failed to evaluate condition {expression!r}: {reason}")
        self.expression = expression
        self.reason = reason


class NotReadyError(OrchestrationError):
    """The workflow engine was requested before its binding resolved."""

    def __init__(self, slot: str, reason: str = "engine not ready") -> None:
        super().__init__(f"{slot}: {reason}")
        self.slot = slot
        self.reason = reason


class BindingError(OrchestrationError):
    """Deferred construction of one or more binding slots failed."""

    def __init__(self, failures: dict[str, BaseException]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(f"Failed to construct binding slot(s): {names}")
        self.failures = failures


class HandlerError(OrchestrationError):
    """An activity handler failed, or no handler exists for an activity type."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class RunCancelledError(OrchestrationError):
    """A run was cancelled or exceeded its deadline."""


class TemplateConversionError(OrchestrationError):
    """An authored template could not be materialized."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class TemplateVersionConflict(OrchestrationError):
    """A (semantic ID, version) pair is already materialized."""

    def __init__(self, template_id: str, version: int) -> None:
        super().__init__(f"Template {template_id} v{version} already exists")
        self.template_id = template_id
        self.version = version


class InputValidationError(OrchestrationError):
    """Run input does not satisfy the template's input schema."""

    def __init__(self, template_id: str, problems: list[str]) -> None:
        label = f" for {template_id}" if template_id else ""
        super().__init__(f"Input validation failed{label}: " + "; ".join(problems))
        self.template_id = template_id
        self.problems = list(problems)


class TemplateStoreError(OrchestrationError):
    """A template store could not read or write its records."""


class TemplateNotFoundError(OrchestrationError, KeyError):
    """No template matches the requested identifier."""

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template not found: {template_id}")
        self.template_id = template_id

    def __str__(self) -> str:
        return str(self.args[0])

"""Walk a workflow template stage by stage, activity by activity.

Each node is gated by its condition, evaluated against the run's context as it
stands when the node is reached. The sequencer itself holds no per-run state:
one instance serves any number of concurrent runs.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from workflow_orchestrator.conditions import ConditionEvaluator
from workflow_orchestrator.errors import (
    CompilationError,
    EvaluationError,
    HandlerError,
    OrchestrationError,
    RunCancelledError,
)
from workflow_orchestrator.templates.model import (
    ActivityTemplate,
    StageTemplate,
    WorkflowTemplate,
    activity_path,
    stage_path,
)
from workflow_orchestrator.workflow.context import ExecutionContext, NodeStatus
from workflow_orchestrator.workflow.handlers import ActivityInvocation, HandlerRegistry
from workflow_orchestrator.workflow.mapping import MappingError, resolve
from workflow_orchestrator.workflow.policy import CancelToken, GatingErrorPolicy, RunPolicy

logger = logging.getLogger(__name__)

RESERVED_COMPUTED_KEYS = frozenset(
    {"current_stage", "current_activity", "executed_count", "skipped_count"}
)


class RunStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"  # finished, but with tolerated handler failures
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class NodeResult:
    path: str
    stage_index: int
    activity_index: int | None
    name: str
    status: NodeStatus
    error: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "path": self.path,
            "stage_index": self.stage_index,
            "name": self.name,
            "status": self.status.value,
        }
        if self.activity_index is not None:
            out["activity_index"] = self.activity_index
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True, slots=True)
class RunResult:
    run_id: str
    template_id: str
    template_version: int
    status: RunStatus
    nodes: tuple[NodeResult, ...]
    context: dict[str, Any]
    gating_errors: tuple[str, ...] = ()
    handler_errors: tuple[str, ...] = ()
    error: OrchestrationError | None = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.COMPLETED

    def stage_status(self, stage_index: int) -> NodeStatus:
        return self._node(stage_index, None).status

    def activity_status(self, stage_index: int, activity_index: int) -> NodeStatus:
        return self._node(stage_index, activity_index).status

    def output(self, stage_index: int, activity_index: int) -> dict[str, Any] | None:
        return self.context["stage"][stage_index]["activity"][activity_index]["output"]

    def raise_for_error(self) -> None:
        """Re-raise the error that ended a failed or cancelled run."""

        if self.status in {RunStatus.FAILED, RunStatus.CANCELLED} and self.error is not None:
            raise self.error

    def _node(self, stage_index: int, activity_index: int | None) -> NodeResult:
        for node in self.nodes:
            if node.stage_index == stage_index and node.activity_index == activity_index:
                return node
        raise IndexError(f"No node at stage[{stage_index}] activity[{activity_index}]")

    def to_json(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "template_id": self.template_id,
            "template_version": self.template_version,
            "status": self.status.value,
            "nodes": [n.to_json() for n in self.nodes],
            "gating_errors": list(self.gating_errors),
            "handler_errors": list(self.handler_errors),
            "error": None if self.error is None else str(self.error),
        }


@dataclass(slots=True)
class _Run:
    run_id: str
    template: WorkflowTemplate
    context: ExecutionContext
    policy: RunPolicy
    cancel: CancelToken
    gating_errors: list[str] = field(default_factory=list)
    handler_errors: list[str] = field(default_factory=list)


def _stage_path(template: WorkflowTemplate, stage: StageTemplate) -> str:
    return stage_path(template.template_id, stage.order_index, stage.name)


def _activity_path(parent: str, activity: ActivityTemplate) -> str:
    return activity_path(parent, activity.order_index, activity.name)


class WorkflowSequencer:
    def __init__(
        self,
        *,
        handlers: HandlerRegistry,
        evaluator: ConditionEvaluator | None = None,
        policy: RunPolicy | None = None,
    ) -> None:
        self._handlers = handlers
        self._evaluator = evaluator or ConditionEvaluator()
        self._policy = policy or RunPolicy()

    @property
    def default_policy(self) -> RunPolicy:
        return self._policy

    def run(
        self,
        template: WorkflowTemplate,
        input: Mapping[str, Any] | None = None,  # noqa: A002
        *,
        policy: RunPolicy | None = None,
        cancel: CancelToken | None = None,
        run_id: str | None = None,
    ) -> RunResult:
        """Execute ``template`` once with a fresh context.

        Errors that end the run are attached to the result rather than raised;
        call :meth:`RunResult.raise_for_error` to propagate them.
        """

        policy = policy or self._policy
        run = _Run(
            run_id=run_id or uuid.uuid4().hex,
            template=template,
            context=ExecutionContext.for_template(template, input),
            policy=policy,
            cancel=cancel or CancelToken(timeout_seconds=policy.timeout_seconds),
        )
        self._update_counts(run.context)

        logger.info(
            "Workflow run started",
            extra={
                "run_id": run.run_id,
                "template_id": template.template_id,
                "version": template.version,
                "stages": len(template.stages),
            },
        )

        error: OrchestrationError | None = None
        try:
            for i, stage in enumerate(template.stages):
                self._run_stage(run, i, stage)
        except RunCancelledError as e:
            status, error = RunStatus.CANCELLED, e
        except (CompilationError, EvaluationError, HandlerError) as e:
            status, error = RunStatus.FAILED, e
        else:
            status = RunStatus.PARTIAL if run.handler_errors else RunStatus.COMPLETED

        result = self._result(run, status, error)
        log = logger.info if status is RunStatus.COMPLETED else logger.warning
        log(
            "Workflow run finished",
            extra={
                "run_id": run.run_id,
                "template_id": template.template_id,
                "status": status.value,
                "error": None if error is None else str(error),
            },
        )
        return result

    def _run_stage(self, run: _Run, index: int, stage: StageTemplate) -> None:
        ctx = run.context
        path = _stage_path(run.template, stage)
        run.cancel.raise_if_cancelled()
        ctx.set_computed("current_stage", stage.name)
        ctx.set_computed("current_activity", None)

        try:
            proceed, gate_error = self._gate(run, stage.condition, path)
        except (CompilationError, EvaluationError) as e:
            ctx.mark_stage(index, NodeStatus.FAILED, error=str(e))
            raise

        if not proceed:
            for j in range(len(stage.activities)):
                ctx.mark_skipped(index, j)
            ctx.mark_stage(index, NodeStatus.SKIPPED, error=gate_error)
            self._update_counts(ctx)
            logger.info("Stage skipped", extra={"run_id": run.run_id, "path": path})
            return

        try:
            for j, activity in enumerate(stage.activities):
                self._run_activity(run, index, j, activity, _activity_path(path, activity))
        except (CompilationError, EvaluationError, HandlerError) as e:
            ctx.mark_stage(index, NodeStatus.FAILED, error=str(e))
            raise

        statuses = [a.status for a in ctx.stage(index).activities]
        if statuses and all(s is NodeStatus.SKIPPED for s in statuses):
            ctx.mark_stage(index, NodeStatus.SKIPPED)
        elif any(s is NodeStatus.FAILED for s in statuses):
            ctx.mark_stage(index, NodeStatus.FAILED)
        else:
            ctx.mark_stage(index, NodeStatus.EXECUTED)

    def _run_activity(
        self, run: _Run, i: int, j: int, activity: ActivityTemplate, path: str
    ) -> None:
        ctx = run.context
        run.cancel.raise_if_cancelled()
        ctx.set_computed("current_activity", activity.name)

        try:
            proceed, gate_error = self._gate(run, activity.condition, path)
        except (CompilationError, EvaluationError) as e:
            ctx.mark_failed(i, j, str(e))
            raise

        if not proceed:
            ctx.mark_skipped(i, j, error=gate_error)
            self._update_counts(ctx)
            logger.debug("Activity skipped", extra={"run_id": run.run_id, "path": path})
            return

        try:
            output = self._invoke(run, activity, path)
        except HandlerError as e:
            ctx.mark_failed(i, j, e.message)
            self._update_counts(ctx)
            if not run.policy.tolerate_handler_failures:
                raise
            run.handler_errors.append(str(e))
            logger.warning(
                "Activity failed; continuing", extra={"run_id": run.run_id, "path": path}
            )
            return

        ctx.record_output(i, j, output)
        self._update_counts(ctx)
        logger.debug("Activity executed", extra={"run_id": run.run_id, "path": path})

    def _invoke(self, run: _Run, activity: ActivityTemplate, path: str) -> dict[str, Any]:
        handler = self._handlers.get(activity.activity_type, path=path)
        parameters = activity.parameters_copy()

        def _publish(key: str, value: Any) -> None:
            if key in RESERVED_COMPUTED_KEYS:
                raise ValueError(f"computed.{key} is maintained by the sequencer")
            run.context.set_computed(key, value)

        try:
            inputs = resolve(run.context.snapshot(), parameters.get("input_mapping"))
            invocation = ActivityInvocation(
                activity=activity,
                path=path,
                parameters=parameters,
                inputs=inputs,
                context=run.context.view(),
                cancel=run.cancel,
                computed_sink=_publish,
            )
            raw = handler.execute(invocation)
            if raw is None:
                raw = {}
            if not isinstance(raw, Mapping):
                raise HandlerError(
                    path, f"handler returned {type(raw).__name__}, expected a mapping"
                )
            output = dict(raw)
            output_mapping = parameters.get("output_mapping")
            if output_mapping:
                output = resolve(output, output_mapping)
        except (HandlerError, RunCancelledError):
            raise
        except MappingError as e:
            raise HandlerError(path, str(e)) from e
        except Exception as e:  # handlers are external code
            logger.exception("Activity handler raised", extra={"run_id": run.run_id, "path": path})
            raise HandlerError(path, f"{type(e).__name__}: {e}") from e
        return output

    def _gate(self, run: _Run, condition: str, path: str) -> tuple[bool, str | None]:
        """Return ``(proceed, error)`` for a node's condition.

        Raises:
            CompilationError | EvaluationError: Under the fail-closed policy.
        """

        if not condition.strip():
            return True, None
        try:
            return self._evaluator.evaluate(condition, run.context), None
        except (CompilationError, EvaluationError) as e:
            if run.policy.gating_errors is GatingErrorPolicy.FAIL_CLOSED:
                logger.warning(
                    "Condition failed; aborting run",
                    extra={"run_id": run.run_id, "path": path, "error": str(e)},
                )
                raise
            message = f"{path}: {e}"
            run.gating_errors.append(message)
            logger.warning(
                "Condition failed; skipping node",
                extra={"run_id": run.run_id, "path": path, "error": str(e)},
            )
            return False, str(e)

    @staticmethod
    def _update_counts(ctx: ExecutionContext) -> None:
        ctx.set_computed("executed_count", ctx.count(NodeStatus.EXECUTED))
        ctx.set_computed("skipped_count", ctx.count(NodeStatus.SKIPPED))

    @staticmethod
    def _result(run: _Run, status: RunStatus, error: OrchestrationError | None) -> RunResult:
        nodes: list[NodeResult] = []
        for i, stage in enumerate(run.template.stages):
            s_path = _stage_path(run.template, stage)
            slot = run.context.stage(i)
            nodes.append(NodeResult(s_path, i, None, stage.name, slot.status, slot.error))
            for j, activity in enumerate(stage.activities):
                a_slot = slot.activities[j]
                nodes.append(
                    NodeResult(
                        _activity_path(s_path, activity),
                        i,
                        j,
                        activity.name,
                        a_slot.status,
                        a_slot.error,
                    )
                )
        return RunResult(
            run_id=run.run_id,
            template_id=run.template.template_id,
            template_version=run.template.version,
            status=status,
            nodes=tuple(nodes),
            context=run.context.snapshot(),
            gating_errors=tuple(run.gating_errors),
            handler_errors=tuple(run.handler_errors),
            error=error,
        )

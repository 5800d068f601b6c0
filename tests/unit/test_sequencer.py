"""Unit tests for running templates through the sequencer and engine."""

from __future__ import annotations

import threading
from typing import Any
from unittest.mock import Mock

import pytest

from workflow_orchestrator.errors import (
    EvaluationError,
    HandlerError,
    InputValidationError,
    RunCancelledError,
    TemplateNotFoundError,
)
from workflow_orchestrator.templates import (
    ActivityDefinition,
    InMemoryTemplateStore,
    StageDefinition,
    TemplateConverter,
    WorkflowDefinition,
    WorkflowTemplate,
)
from workflow_orchestrator.workflow import (
    ActivityInvocation,
    CancelToken,
    FunctionHandler,
    GatingErrorPolicy,
    HandlerRegistry,
    NodeStatus,
    RunPolicy,
    RunStatus,
    WorkflowEngine,
    WorkflowSequencer,
)


def _decide(invocation: ActivityInvocation) -> dict[str, Any]:
    return {"status": invocation.context.input["decision"], "client_id": "c-1"}


@pytest.fixture
def provision() -> Mock:
    handler = Mock()
    handler.execute.return_value = {"account_id": "acc-9"}
    return handler


@pytest.fixture
def handlers(provision: Mock) -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register("decide", FunctionHandler(_decide))
    registry.register("provision", provision)
    return registry


@pytest.fixture
def approval(
    converter: TemplateConverter, approval_definition: WorkflowDefinition
) -> WorkflowTemplate:
    return converter.convert_workflow(approval_definition)


def _single_stage(
    converter: TemplateConverter, *activities: ActivityDefinition, condition: str = ""
) -> WorkflowTemplate:
    return converter.convert_workflow(
        WorkflowDefinition(
            id="wf",
            name="WF",
            business_type="b",
            stages=[StageDefinition(name="Only", condition=condition, activities=list(activities))],
        )
    )


def test_approved_run_executes_gated_activity(
    approval: WorkflowTemplate, handlers: HandlerRegistry, provision: Mock
) -> None:
    result = WorkflowSequencer(handlers=handlers).run(approval, {"decision": "approved"})

    assert result.status is RunStatus.COMPLETED
    assert result.ok
    assert result.stage_status(1) is NodeStatus.EXECUTED
    assert result.activity_status(1, 0) is NodeStatus.EXECUTED
    assert result.output(1, 0) == {"account_id": "acc-9"}
    provision.execute.assert_called_once()

    computed = result.context["computed"]
    assert computed["executed_count"] == 2
    assert computed["skipped_count"] == 0
    assert computed["current_stage"] == "Fulfil"
    assert computed["current_activity"] == "Provision"


def test_rejected_run_skips_gated_stage(
    approval: WorkflowTemplate, handlers: HandlerRegistry, provision: Mock
) -> None:
    result = WorkflowSequencer(handlers=handlers).run(approval, {"decision": "rejected"})

    assert result.status is RunStatus.COMPLETED
    assert result.stage_status(0) is NodeStatus.EXECUTED
    assert result.stage_status(1) is NodeStatus.SKIPPED
    assert result.activity_status(1, 0) is NodeStatus.SKIPPED
    assert result.output(1, 0) is None
    assert result.context["computed"]["skipped_count"] == 1
    provision.execute.assert_not_called()


def test_skipped_slot_stays_addressable(
    converter: TemplateConverter, handlers: HandlerRegistry
) -> None:
    template = _single_stage(
        converter,
        ActivityDefinition(name="Never", activity_type="decide", condition="false"),
        ActivityDefinition(
            name="Fallback",
            activity_type="provision",
            condition="!has(stage[0].activity[0].output.status)",
        ),
    )
    result = WorkflowSequencer(handlers=handlers).run(template, {"decision": "x"})

    assert result.status is RunStatus.COMPLETED
    assert result.activity_status(0, 0) is NodeStatus.SKIPPED
    assert result.activity_status(0, 1) is NodeStatus.EXECUTED


def test_stage_without_activities_is_executed(converter: TemplateConverter) -> None:
    template = _single_stage(converter)
    result = WorkflowSequencer(handlers=HandlerRegistry()).run(template)
    assert result.stage_status(0) is NodeStatus.EXECUTED


def test_stage_condition_false_skips_all_activities(
    converter: TemplateConverter, handlers: HandlerRegistry, provision: Mock
) -> None:
    template = _single_stage(
        converter,
        ActivityDefinition(name="P", activity_type="provision"),
        condition="input.enabled",
    )
    result = WorkflowSequencer(handlers=handlers).run(template, {"enabled": False})

    assert result.stage_status(0) is NodeStatus.SKIPPED
    assert result.activity_status(0, 0) is NodeStatus.SKIPPED
    provision.execute.assert_not_called()


def test_gating_error_fails_closed_by_default(
    approval: WorkflowTemplate, handlers: HandlerRegistry, provision: Mock
) -> None:
    def no_status(_invocation: ActivityInvocation) -> dict[str, Any]:
        return {}

    handlers.register("decide", FunctionHandler(no_status), replace=True)
    result = WorkflowSequencer(handlers=handlers).run(approval, {})

    assert result.status is RunStatus.FAILED
    assert isinstance(result.error, EvaluationError)
    assert result.stage_status(1) is NodeStatus.FAILED
    assert result.activity_status(1, 0) is NodeStatus.FAILED
    provision.execute.assert_not_called()
    with pytest.raises(EvaluationError, match="no such key: status"):
        result.raise_for_error()


def test_gating_error_fail_open_skips_and_records(
    approval: WorkflowTemplate, handlers: HandlerRegistry
) -> None:
    handlers.register("decide", FunctionHandler(lambda _inv: {}), replace=True)
    policy = RunPolicy(gating_errors=GatingErrorPolicy.FAIL_OPEN)
    result = WorkflowSequencer(handlers=handlers).run(approval, {}, policy=policy)

    assert result.status is RunStatus.COMPLETED
    assert result.activity_status(1, 0) is NodeStatus.SKIPPED
    assert len(result.gating_errors) == 1
    assert result.gating_errors[0].startswith("approval/stage[1]:Fulfil/activity[0]:Provision: ")
    node = result.nodes[-1]
    assert node.error is not None and "no such key" in node.error
    result.raise_for_error()  # nothing to raise


def test_non_finite_input_fails_gate_instead_of_raising(
    converter: TemplateConverter, handlers: HandlerRegistry, provision: Mock
) -> None:
    template = _single_stage(
        converter,
        ActivityDefinition(name="P", activity_type="provision"),
        condition="int(input.x) > 0",
    )
    result = WorkflowSequencer(handlers=handlers).run(template, {"x": float("inf")})

    assert result.status is RunStatus.FAILED
    assert isinstance(result.error, EvaluationError)
    assert "cannot convert inf to int" in str(result.error)
    assert result.stage_status(0) is NodeStatus.FAILED
    provision.execute.assert_not_called()

    policy = RunPolicy(gating_errors=GatingErrorPolicy.FAIL_OPEN)
    result = WorkflowSequencer(handlers=handlers).run(
        template, {"x": float("nan")}, policy=policy
    )
    assert result.status is RunStatus.COMPLETED
    assert result.stage_status(0) is NodeStatus.SKIPPED
    assert len(result.gating_errors) == 1


def test_same_named_siblings_have_distinct_paths(
    converter: TemplateConverter, provision: Mock
) -> None:
    provision.execute.side_effect = [{"n": 1}, RuntimeError("second")]
    registry = HandlerRegistry({"provision": provision})
    template = converter.convert_workflow(
        WorkflowDefinition(
            id="wf",
            name="WF",
            business_type="b",
            stages=[
                StageDefinition(
                    name="Step", activities=[ActivityDefinition(name="Do", activity_type="provision")]
                ),
                StageDefinition(
                    name="Step", activities=[ActivityDefinition(name="Do", activity_type="provision")]
                ),
            ],
        )
    )
    result = WorkflowSequencer(handlers=registry).run(template)

    assert isinstance(result.error, HandlerError)
    assert result.error.path == "wf/stage[1]:Step/activity[0]:Do"
    paths = [node.path for node in result.nodes]
    assert len(set(paths)) == len(paths) == 4


def test_handler_failure_fails_run_with_path(
    approval: WorkflowTemplate, handlers: HandlerRegistry
) -> None:
    def boom(_invocation: ActivityInvocation) -> dict[str, Any]:
        raise RuntimeError("backend down")

    handlers.register("decide", FunctionHandler(boom), replace=True)
    result = WorkflowSequencer(handlers=handlers).run(approval, {"decision": "approved"})

    assert result.status is RunStatus.FAILED
    assert isinstance(result.error, HandlerError)
    assert result.error.path == "approval/stage[0]:Review/activity[0]:Decide"
    assert "backend down" in str(result.error)
    assert result.stage_status(0) is NodeStatus.FAILED
    assert result.stage_status(1) is NodeStatus.PENDING


def test_tolerated_handler_failure_is_partial(
    approval: WorkflowTemplate, handlers: HandlerRegistry, provision: Mock
) -> None:
    provision.execute.side_effect = RuntimeError("quota")
    policy = RunPolicy(tolerate_handler_failures=True)
    result = WorkflowSequencer(handlers=handlers, policy=policy).run(
        approval, {"decision": "approved"}
    )

    assert result.status is RunStatus.PARTIAL
    assert result.activity_status(1, 0) is NodeStatus.FAILED
    assert result.stage_status(1) is NodeStatus.FAILED
    assert result.handler_errors == (
        "approval/stage[1]:Fulfil/activity[0]:Provision: RuntimeError: quota",
    )


def test_missing_handler_is_a_handler_error(approval: WorkflowTemplate) -> None:
    result = WorkflowSequencer(handlers=HandlerRegistry()).run(approval, {"decision": "approved"})

    assert result.status is RunStatus.FAILED
    assert isinstance(result.error, HandlerError)
    assert "no handler for activity type 'decide'" in str(result.error)


def test_non_mapping_output_is_a_handler_error(
    converter: TemplateConverter, handlers: HandlerRegistry, provision: Mock
) -> None:
    provision.execute.return_value = ["not", "a", "map"]
    template = _single_stage(converter, ActivityDefinition(name="P", activity_type="provision"))
    result = WorkflowSequencer(handlers=handlers).run(template)

    assert result.status is RunStatus.FAILED
    assert "expected a mapping" in str(result.error)


def test_cancelled_before_start(approval: WorkflowTemplate, handlers: HandlerRegistry) -> None:
    token = CancelToken()
    token.cancel("shutdown")
    result = WorkflowSequencer(handlers=handlers).run(approval, {}, cancel=token)

    assert result.status is RunStatus.CANCELLED
    assert isinstance(result.error, RunCancelledError)
    assert all(node.status is NodeStatus.PENDING for node in result.nodes)
    with pytest.raises(RunCancelledError, match="shutdown"):
        result.raise_for_error()


def test_cancelled_by_handler_between_stages(
    approval: WorkflowTemplate, handlers: HandlerRegistry, provision: Mock
) -> None:
    def cancel_after(invocation: ActivityInvocation) -> dict[str, Any]:
        invocation.cancel.cancel("operator")
        return {"status": "approved"}

    handlers.register("decide", FunctionHandler(cancel_after), replace=True)
    result = WorkflowSequencer(handlers=handlers).run(approval, {})

    assert result.status is RunStatus.CANCELLED
    assert result.stage_status(0) is NodeStatus.EXECUTED
    assert result.stage_status(1) is NodeStatus.PENDING
    provision.execute.assert_not_called()


def test_handler_raising_cancelled_cancels_run(
    approval: WorkflowTemplate, handlers: HandlerRegistry
) -> None:
    def give_up(_invocation: ActivityInvocation) -> dict[str, Any]:
        raise RunCancelledError("deadline exceeded")

    handlers.register("decide", FunctionHandler(give_up), replace=True)
    result = WorkflowSequencer(handlers=handlers).run(approval, {})
    assert result.status is RunStatus.CANCELLED


def test_expired_deadline_cancels(approval: WorkflowTemplate, handlers: HandlerRegistry) -> None:
    result = WorkflowSequencer(handlers=handlers).run(
        approval, {}, cancel=CancelToken(timeout_seconds=0)
    )
    assert result.status is RunStatus.CANCELLED
    assert "deadline exceeded" in str(result.error)


def test_handlers_publish_computed_values(
    converter: TemplateConverter, handlers: HandlerRegistry
) -> None:
    def score(invocation: ActivityInvocation) -> dict[str, Any]:
        invocation.set_computed("score", 7)
        return {}

    handlers.register("score", FunctionHandler(score))
    template = _single_stage(
        converter,
        ActivityDefinition(name="Score", activity_type="score"),
        ActivityDefinition(name="P", activity_type="provision", condition="computed.score > 5"),
    )
    result = WorkflowSequencer(handlers=handlers).run(template)

    assert result.activity_status(0, 1) is NodeStatus.EXECUTED
    assert result.context["computed"]["score"] == 7


def test_handlers_cannot_overwrite_sequencer_keys(
    converter: TemplateConverter, handlers: HandlerRegistry
) -> None:
    handlers.register(
        "cheat", FunctionHandler(lambda inv: inv.set_computed("executed_count", 99))
    )
    template = _single_stage(converter, ActivityDefinition(name="C", activity_type="cheat"))
    result = WorkflowSequencer(handlers=handlers).run(template)

    assert result.status is RunStatus.FAILED
    assert "maintained by the sequencer" in str(result.error)


def test_input_and_output_mapping(converter: TemplateConverter, handlers: HandlerRegistry) -> None:
    captured: list[ActivityInvocation] = []

    def provision(invocation: ActivityInvocation) -> dict[str, Any]:
        captured.append(invocation)
        return {"account_id": "acc-9", "debug": "dropped"}

    handlers.register("provision", FunctionHandler(provision), replace=True)
    template = _single_stage(
        converter,
        ActivityDefinition(name="Decide", activity_type="decide"),
        ActivityDefinition(
            name="Provision",
            activity_type="provision",
            parameters={
                "input_mapping": {
                    "client.id": "$.stage[0].activity[0].output.client_id",
                    "email": {"source": "$.input.email", "required": True},
                    "greeting": "Hello ${$.input.name}",
                },
                "output_mapping": {"account": "$.account_id"},
            },
        ),
    )
    result = WorkflowSequencer(handlers=handlers).run(
        template, {"decision": "approved", "email": "ada@example.com", "name": "Ada"}
    )

    assert result.status is RunStatus.COMPLETED
    assert captured[0].inputs == {
        "client": {"id": "c-1"},
        "email": "ada@example.com",
        "greeting": "Hello Ada",
    }
    assert captured[0].parameters["output_mapping"] == {"account": "$.account_id"}
    assert result.output(0, 1) == {"account": "acc-9"}


def test_missing_required_input_fails_activity(
    converter: TemplateConverter, handlers: HandlerRegistry, provision: Mock
) -> None:
    template = _single_stage(
        converter,
        ActivityDefinition(
            name="P",
            activity_type="provision",
            parameters={"input_mapping": {"email": {"source": "$.input.email", "required": True}}},
        ),
    )
    result = WorkflowSequencer(handlers=handlers).run(template, {})

    assert result.status is RunStatus.FAILED
    assert "required source $.input.email is absent" in str(result.error)
    provision.execute.assert_not_called()


def test_nodes_run_in_order(converter: TemplateConverter) -> None:
    calls: list[str] = []
    registry = HandlerRegistry()
    registry.register("record", FunctionHandler(lambda inv: calls.append(inv.activity.name)))
    template = converter.convert_workflow(
        WorkflowDefinition(
            id="ordered",
            name="Ordered",
            business_type="b",
            stages=[
                StageDefinition(
                    name=f"S{i}",
                    activities=[
                        ActivityDefinition(name=f"S{i}A{j}", activity_type="record")
                        for j in range(3)
                    ],
                )
                for i in range(3)
            ],
        )
    )
    WorkflowSequencer(handlers=registry).run(template)

    assert calls == [f"S{i}A{j}" for i in range(3) for j in range(3)]


def test_engine_resolves_versions_and_storage_ids(
    converter: TemplateConverter,
    approval_definition: WorkflowDefinition,
    handlers: HandlerRegistry,
) -> None:
    v1 = converter.convert_workflow(approval_definition)
    v2 = converter.convert_workflow(approval_definition.model_copy(update={"version": 2}))
    engine = WorkflowEngine(templates=InMemoryTemplateStore([v1, v2]), handlers=handlers)

    assert engine.run("approval", {"decision": "approved"}).template_version == 2
    assert engine.run("approval", {"decision": "x"}, version=1).template_version == 1
    assert engine.run_record(v1.id, {"decision": "x"}).template_version == 1

    with pytest.raises(TemplateNotFoundError):
        engine.run("missing")
    with pytest.raises(KeyError):
        engine.run_record("approval")  # a semantic ID is not a storage ID


def test_concurrent_runs_are_isolated(
    approval: WorkflowTemplate, handlers: HandlerRegistry
) -> None:
    engine = WorkflowEngine(templates=InMemoryTemplateStore([approval]), handlers=handlers)
    barrier = threading.Barrier(8)
    outcomes: dict[int, NodeStatus] = {}
    lock = threading.Lock()

    def worker(n: int) -> None:
        barrier.wait()
        decision = "approved" if n % 2 else "rejected"
        result = engine.run("approval", {"decision": decision})
        with lock:
            outcomes[n] = result.stage_status(1)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes == {
        n: NodeStatus.EXECUTED if n % 2 else NodeStatus.SKIPPED for n in range(8)
    }


def test_engine_validates_input_against_template_schema(
    converter: TemplateConverter,
    approval_definition: WorkflowDefinition,
    handlers: HandlerRegistry,
) -> None:
    template = converter.convert_workflow(
        approval_definition.model_copy(
            update={
                "input_schema": {
                    "decision": {"type": "string", "required": True},
                    "priority": {"type": "int", "default": 3},
                }
            }
        )
    )
    engine = WorkflowEngine(templates=InMemoryTemplateStore([template]), handlers=handlers)

    result = engine.run("approval", {"decision": "approved"})
    assert result.status is RunStatus.COMPLETED
    assert result.context["input"] == {"decision": "approved", "priority": 3}

    with pytest.raises(InputValidationError, match="required field 'decision' is missing"):
        engine.run("approval", {})
    with pytest.raises(InputValidationError, match="field 'priority' type coercion failed"):
        engine.run_record(template.id, {"decision": "approved", "priority": "high"})

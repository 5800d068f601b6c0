#!/usr/bin/env python3
"""Programmatic workflow run example.

This demonstrates using the orchestrator components directly:

* load template definitions from `examples/templates/`
* materialize them into an in-memory store
* bind the engine through the container (mode from `CONFIG_WORKFLOW_ENGINE_MODE`)
* run `student-enrolment` with stub activity handlers
"""

from __future__ import annotations

import argparse
import json
import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from workflow_orchestrator import Container, OrchestratorSettings
from workflow_orchestrator.orchestrator.logging import configure_logging
from workflow_orchestrator.templates import (
    InMemoryTemplateStore,
    SeedOptions,
    TemplateCatalog,
    TemplateSeeder,
)
from workflow_orchestrator.workflow import ActivityInvocation, FunctionHandler, HandlerRegistry

TEMPLATES_DIR = Path(__file__).parent / "templates"


def _assess(invocation: ActivityInvocation) -> dict[str, Any]:
    age = invocation.inputs.get("age", 0)
    status = "approved" if age >= 5 else "rejected"
    invocation.set_computed("assessed_age", age)
    return {"status": status}


def _create_student(invocation: ActivityInvocation) -> dict[str, Any]:
    return {"id": f"stu-{uuid.uuid4().hex[:8]}", "name": invocation.inputs.get("display_name")}


def _send_email(invocation: ActivityInvocation) -> dict[str, Any]:
    recipients = [r["address"] for r in invocation.inputs.get("to", [])]
    return {"sent_to": recipients, "template": invocation.parameters.get("template")}


def _handlers() -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register("assess_application", FunctionHandler(_assess))
    registry.register("create_student", FunctionHandler(_create_student))
    registry.register("send_email", FunctionHandler(_send_email))
    return registry


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the student enrolment workflow.")
    parser.add_argument("--age", type=int, default=12, help="Applicant age")
    parser.add_argument("--guardian-email", default="guardian@example.com")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = OrchestratorSettings()
    configure_logging(settings.log_level)

    store = InMemoryTemplateStore()
    seeder = TemplateSeeder(catalog=TemplateCatalog.load_directory(TEMPLATES_DIR), store=store)
    report = seeder.seed(SeedOptions(business_type="education"))
    if not report.ok:
        for error in report.errors:
            print(f"Seed error: {error}")
        return 1

    container = Container(settings)
    container.initialize(container.dependencies(_handlers(), templates=store))

    result = container.run_workflow(
        "student-enrolment",
        {
            "email": "ada@example.com",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "age": args.age,
            "guardian_email": args.guardian_email,
        },
    )
    print(json.dumps(result.to_json(), indent=2))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())

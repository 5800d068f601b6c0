"""CLI entrypoint: list and seed workflow templates.

Exit codes are CI-friendly:
- 0: success
- 4: partial success (some templates failed)
- 1: failure
- 2: usage or configuration error
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from workflow_orchestrator import __version__
from workflow_orchestrator.errors import TemplateNotFoundError
from workflow_orchestrator.orchestrator.config import OrchestratorSettings
from workflow_orchestrator.orchestrator.logging import configure_logging
from workflow_orchestrator.templates import (
    JsonTemplateStore,
    SeedOptions,
    SeedReport,
    TemplateCatalog,
    TemplateSeeder,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-orchestrator",
        description="Materialize workflow templates into the template store",
    )
    parser.add_argument(
        "--version", action="version", version=f"workflow-orchestrator {__version__}"
    )
    parser.add_argument(
        "--templates-dir",
        default=None,
        help="Directory of template JSON files (default: ORCHESTRATOR_TEMPLATES_PATH)",
    )
    parser.add_argument(
        "--store",
        default=None,
        help="Template store JSON file (default: ORCHESTRATOR_TEMPLATE_STORE_PATH)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_cmd = subparsers.add_parser("list", help="List available template definitions")
    list_cmd.add_argument("--business-type", default=None, help="Only this business type")
    list_cmd.add_argument("--verbose", action="store_true", help="Show stages and activities")

    seed = subparsers.add_parser("seed", help="Materialize templates into the store")
    seed.add_argument(
        "--business-type",
        default=None,
        help="Business type to seed (default: BUSINESS_TYPE)",
    )
    seed.add_argument("--template", default=None, help="Seed only this template ID")
    seed.add_argument(
        "--reset",
        action="store_true",
        help="Delete stored templates of the selected business types first",
    )
    seed.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and preview without writing to the store",
    )
    seed.add_argument("--verbose", action="store_true", help="Log each template processed")

    return parser


def _print_catalog(catalog: TemplateCatalog, business_type: str | None, verbose: bool) -> None:
    definitions = (
        catalog.by_business_type(business_type) if business_type is not None else catalog.all()
    )
    print("Available workflow templates")
    if business_type is not None:
        print(f"Business type: {business_type}")
    if not definitions:
        print("No templates found.")
        return

    for d in definitions:
        print()
        print(f"ID:          {d.id}")
        print(f"Name:        {d.name}")
        print(f"Business:    {d.business_type}")
        print(f"Version:     v{d.version}")
        print(f"Stages:      {len(d.stages)}")
        if d.description:
            print(f"Description: {d.description}")
        if verbose:
            for i, stage in enumerate(d.stages):
                gate = f" [if {stage.condition}]" if stage.condition else ""
                print(f"  {i}. {stage.name} ({stage.stage_type}){gate}")
                for j, activity in enumerate(stage.activities):
                    gate = f" [if {activity.condition}]" if activity.condition else ""
                    print(f"     {i}.{j} {activity.name} <{activity.activity_type}>{gate}")


def _print_report(report: SeedReport) -> None:
    if report.dry_run:
        print("[DRY RUN] No changes were made to the store.")
    print(f"Selected: {len(report.selected)}")
    if report.deleted:
        print(f"Deleted:  {report.deleted}")
    print(f"Created:  {report.created}")
    if report.errors:
        print(f"Errors:   {len(report.errors)}")
        for error in report.errors:
            print(f"  - {error}")


def _exit_code(report: SeedReport) -> int:
    if report.ok:
        return 0
    succeeded = len(report.selected) - len(report.errors)
    return 4 if succeeded > 0 else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    templates_dir = Path(args.templates_dir) if args.templates_dir else settings.templates_path
    store_path = Path(args.store) if args.store else settings.template_store_path

    try:
        catalog = TemplateCatalog.load_directory(templates_dir)

        if args.command == "list":
            _print_catalog(catalog, args.business_type, args.verbose)
            return 0

        if args.command == "seed":
            options = SeedOptions(
                business_type=args.business_type or settings.business_type,
                template_id=args.template,
                reset=args.reset,
                dry_run=args.dry_run,
                verbose=args.verbose,
            )
            seeder = TemplateSeeder(catalog=catalog, store=JsonTemplateStore(store_path))
            report = seeder.seed(options)
            _print_report(report)
            return _exit_code(report)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except TemplateNotFoundError as e:
        logger.warning(str(e), extra={"template_id": e.template_id})
        print(str(e), file=sys.stderr)
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

"""Command line entry point for the API server, workflow files and the step-type list."""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import yaml

from stepflow.config import load_settings
from stepflow.domain.errors import StepflowError
from stepflow.factory import create
from stepflow.infrastructure.adapter.http.app import serve
from stepflow.log import configure_logging


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stepflow", description="Run automation steps and workflows")
    parser.add_argument("--config", help="YAML or JSON settings file (defaults to $STEPFLOW_CONFIG)")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("serve", help="Start the HTTP API")

    run_parser = subparsers.add_parser("run", help="Execute a workflow file and print the execution as JSON")
    run_parser.add_argument("file", type=Path, help="JSON or YAML file with 'steps' and optional 'inputData'")
    run_parser.add_argument("--user", default="cli", help="User id recorded in the execution context")

    validate_parser = subparsers.add_parser("validate", help="Check a workflow file without running it")
    validate_parser.add_argument("file", type=Path, help="JSON or YAML file with a 'steps' list")

    subparsers.add_parser("step-types", help="List registered step types")
    return parser


def load_workflow_file(path: Path) -> dict[str, Any]:
    """
    Read a workflow document from disk.

    :param path: A ``.json``, ``.yaml`` or ``.yml`` file
    :type path: Path
    :returns: The decoded document
    :rtype: dict[str, Any]
    :raises ValueError: If the document is not a mapping
    """
    text = path.read_text()
    data = yaml.safe_load(text) if path.suffix in (".yaml", ".yml") else json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain an object with a 'steps' list")
    return data


def main(argv: list[str] | None = None) -> int:
    args = create_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except StepflowError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 2
    configure_logging(settings.logging.level, settings.logging.format)
    client = create(settings=settings)

    try:
        if args.command == "serve":
            serve(client, settings)
            return 0

        if args.command == "step-types":
            for tag in client.step_types():
                print(tag)
            return 0

        document = load_workflow_file(args.file)
        if args.command == "validate":
            report = client.validate_workflow(document.get("steps"))
            for error in report.errors:
                print(error)
            return 0 if report.valid else 1

        execution = client.execute_workflow(
            document.get("steps"),
            document.get("inputData"),
            user_id=args.user,
            execution_id=document.get("executionId"),
        )
        print(execution.to_json())
        return 0 if execution.succeeded else 1
    except (StepflowError, OSError, ValueError, yaml.YAMLError) as e:
        print(f"error: {getattr(e, 'message', None) or e}", file=sys.stderr)
        return 2
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())

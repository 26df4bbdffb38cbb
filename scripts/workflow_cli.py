#!/usr/bin/env python3
"""
Inspect and validate workflow definition sets.

Usage:
    python3 scripts/workflow_cli.py list
    python3 scripts/workflow_cli.py describe medical_record
    python3 scripts/workflow_cli.py validate [--strict] [--config-dir DIR]

``validate`` exits non-zero when the set has errors.  With ``--strict``
ambiguous (step, action) pairs count as errors.
"""

import argparse
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from clinical_config import get_workflow_registry  # noqa: E402
from clinical_config.loader import load_workflow_set  # noqa: E402
from clinical_config.validator import validate_configuration  # noqa: E402
from clinical_kernel.exceptions import ClinicalWorkflowError  # noqa: E402

DEFAULT_CONFIG_DIR = ROOT / "clinical_config" / "sets" / "default"


def cmd_list(args: argparse.Namespace) -> int:
    registry = get_workflow_registry(args.config_dir)
    print(f"{'WORKFLOW':<28} {'MODULE':<18} {'STEPS':>5}  INITIAL")
    for wf in registry:
        print(f"{wf.name:<28} {wf.module:<18} {len(wf.steps):>5}  {wf.initial_step}")
    return 0


def cmd_describe(args: argparse.Namespace) -> int:
    registry = get_workflow_registry(args.config_dir)
    wf = registry.get_workflow(args.workflow)
    print(f"{wf.name} ({wf.module})")
    if wf.description:
        print(f"  {wf.description}")
    print(f"  initial:  {wf.initial_step}")
    print(f"  terminal: {', '.join(sorted(wf.terminal_steps)) or '-'}")
    for step_name, spec in wf.steps.items():
        marker = " [terminal]" if wf.is_terminal(step_name) else ""
        print(f"\n  {step_name}{marker}  -- {spec.display_name}")
        for action in sorted(spec.allowed_actions):
            roles = ", ".join(sorted(r.value for r in spec.roles_for(action)))
            targets = " | ".join(spec.targets(action))
            print(f"    {action:<10} -> {targets:<36} [{roles}]")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    config_dir = args.config_dir or DEFAULT_CONFIG_DIR
    print(f"Loading workflows from: {config_dir}")
    config_set = load_workflow_set(config_dir)
    print(f"  config_id: {config_set.config_id}")
    print(f"  version:   {config_set.version}")
    print(f"  checksum:  {config_set.checksum[:16]}...")
    print(f"  workflows: {len(config_set.workflows)}")

    result = validate_configuration(config_set, strict=args.strict)
    for w in result.warnings:
        print(f"  WARNING: {w}")
    if not result.is_valid:
        print("VALIDATION FAILED:")
        for err in result.errors:
            print(f"  ERROR: {err}")
        return 1
    print("OK")
    return 0


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Inspect and validate clinical workflow definitions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory of workflow YAML files (default: packaged set)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List registered workflows").set_defaults(func=cmd_list)

    describe = sub.add_parser("describe", help="Show the steps and edges of a workflow")
    describe.add_argument("workflow")
    describe.set_defaults(func=cmd_describe)

    validate = sub.add_parser("validate", help="Validate a workflow set")
    validate.add_argument(
        "--strict",
        action="store_true",
        help="Treat ambiguous (step, action) pairs as errors",
    )
    validate.add_argument(
        "--config-dir",
        type=Path,
        default=argparse.SUPPRESS,
        help="Directory of workflow YAML files",
    )
    validate.set_defaults(func=cmd_validate)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        return args.func(args)
    except (ClinicalWorkflowError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

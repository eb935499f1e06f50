"""Command-line interface router for governance-orchestrator."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from governance_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    effective_config_fingerprint,
    load_config,
)
from governance_orchestrator.control_plane.state_machine import WorkflowStateMachine
from governance_orchestrator.domain.models import WorkflowState, WorkflowType
from governance_orchestrator.domain.tables import (
    INITIAL_STATE,
    STAGE_SPECIALISTS,
    TRANSITION_TABLES,
    WORKFLOW_TYPE_LABELS,
)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="governance-orchestrator",
        description=(
            "governance-orchestrator — resumable governance workflow core.\n\n"
            "Common workflows:\n"
            "  governance-orchestrator config show       Print the effective config\n"
            "  governance-orchestrator paths C           List type C paths to a terminal\n"
            "  governance-orchestrator tables            Show transition tables\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to a governance.toml or governance.yaml file.",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--json", action="store_true", default=False, help="Emit machine-readable JSON."
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    config_parser = subparsers.add_parser("config", help="Inspect runtime configuration")
    config_sub = config_parser.add_subparsers(dest="config_command", required=True)
    show = config_sub.add_parser("show", parents=[common], help="Print the effective config")
    show.set_defaults(handler=_cmd_config_show)
    validate = config_sub.add_parser(
        "validate", parents=[common], help="Validate config and print its fingerprint"
    )
    validate.set_defaults(handler=_cmd_config_validate)

    paths = subparsers.add_parser(
        "paths", parents=[common], help="Enumerate workflow paths to a terminal state"
    )
    paths.add_argument("workflow_type", choices=[item.value for item in WorkflowType])
    paths.add_argument(
        "--from",
        dest="from_state",
        default=INITIAL_STATE.value,
        choices=[item.value for item in WorkflowState],
        help=f"Start state (default: {INITIAL_STATE.value}).",
    )
    paths.set_defaults(handler=_cmd_paths)

    tables = subparsers.add_parser(
        "tables", parents=[common], help="Show transition tables and stage specialists"
    )
    tables.set_defaults(handler=_cmd_tables)
    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_config_show(args: argparse.Namespace) -> int:
    config = _load(args)
    if args.json:
        print(dump_effective_config(config))
        return 0
    print(f"profile: {args.profile or '(default)'}")
    print(dump_effective_config(config))
    return 0


def _cmd_config_validate(args: argparse.Namespace) -> int:
    config = _load(args)
    fingerprint = effective_config_fingerprint(config)
    if args.json:
        _emit_json({"command": "config validate", "valid": True, "fingerprint": fingerprint})
    else:
        print(f"config ok ({fingerprint[:12]})")
    return 0


def _cmd_paths(args: argparse.Namespace) -> int:
    workflow_type = WorkflowType(args.workflow_type)
    start = WorkflowState(args.from_state)
    paths = WorkflowStateMachine().get_possible_paths(workflow_type, start)
    if not paths:
        raise CLIError(f"{start} is not reachable in workflow type {workflow_type}", exit_code=2)
    if args.json:
        _emit_json(
            {
                "command": "paths",
                "workflow_type": workflow_type.value,
                "from": start.value,
                "paths": [[state.value for state in path] for path in paths],
            }
        )
        return 0
    print(f"{workflow_type.value} ({WORKFLOW_TYPE_LABELS[workflow_type]}) from {start.value}:")
    for path in paths:
        print("  " + " -> ".join(state.value for state in path))
    return 0


def _cmd_tables(args: argparse.Namespace) -> int:
    payload: dict[str, Any] = {
        "transitions": {
            workflow_type.value: _table_payload(table)
            for workflow_type, table in TRANSITION_TABLES.items()
        },
        "stage_specialists": {
            state.value: [code.value for code in codes]
            for state, codes in STAGE_SPECIALISTS.items()
        },
    }
    if args.json:
        _emit_json(payload)
        return 0
    for workflow_type, table in TRANSITION_TABLES.items():
        print(f"[{workflow_type.value}] {WORKFLOW_TYPE_LABELS[workflow_type]}")
        for source, targets in table.items():
            print(f"  {source.value:<16} -> {', '.join(target.value for target in targets)}")
    print("[stage specialists]")
    for state, codes in STAGE_SPECIALISTS.items():
        print(f"  {state.value:<16} {', '.join(code.value for code in codes) or '-'}")
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load(args: argparse.Namespace) -> dict[str, Any]:
    try:
        return load_config(args.config_path, profile=args.profile)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _table_payload(
    table: Mapping[WorkflowState, tuple[WorkflowState, ...]],
) -> dict[str, list[str]]:
    return {source.value: [target.value for target in targets] for source, targets in table.items()}


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))


__all__ = ["CLIError", "build_parser", "main", "run_cli"]

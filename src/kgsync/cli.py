"""Command-line interface for kgsync.

Thin wrapper over ``SyncManager``: parses arguments, resolves config,
runs one operation and prints its report.

Exit codes:
    0 -- success, a declined confirmation, or a conflict-gated stop
    1 -- missing/unknown rollback point, store or configuration error,
         cancelled prompt
    2 -- usage error (reported by argparse)
"""

import argparse
import asyncio
import json
import logging
import sys

from . import __version__
from .config import Config
from .core.runtime import create_manager, load_runtime_config
from .errors import KgSyncError
from .logger import setup_logging
from .sync.models import SyncOptions
from .sync.prompts import ConsolePrompt
from .sync.reporter import (
    format_history,
    format_status,
    format_sync_report,
    report_to_json,
    status_to_json,
)

logger = logging.getLogger(__name__)

ACTIONS = ("status", "pull", "push", "history", "rollback")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kgsync",
        description="Keep generated code and the knowledge graph in sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # What differs between code and the knowledge graph?
  kgsync status

  # Preview, then apply code changes to the knowledge graph
  kgsync pull --dry-run
  kgsync pull --force

  # Regenerate code for two modules, resolving conflicts from code
  kgsync push --modules user,billing --strategy use_code

  # Truncate the history after an earlier sync
  kgsync rollback 2025-01-01T10:00:00+00:00
        """,
    )
    parser.add_argument("action", choices=ACTIONS, help="Operation to run")
    parser.add_argument(
        "point",
        nargs="?",
        help="Rollback point (timestamp or commit reference); same as --to",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the pending change set without applying it",
    )
    parser.add_argument(
        "--force", action="store_true", help="Apply without confirmation"
    )
    parser.add_argument(
        "--modules",
        help="Comma-separated module names to restrict the operation to",
    )
    parser.add_argument("--to", help="Rollback point")
    parser.add_argument(
        "--strategy",
        help="Conflict strategy: use_code, use_kg, merge or manual",
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt (conflicts stay manual, confirmations decline)",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print structured JSON output"
    )
    parser.add_argument("--project-root", help="Project root directory")
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write the log to this file")
    parser.add_argument(
        "--version", action="version", version=f"kgsync {__version__}"
    )
    return parser


def _parse_modules(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    modules = [m.strip() for m in raw.split(",") if m.strip()]
    return modules or None


def _emit(data: dict | list, text: str, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
    else:
        print(text)


async def run_action(args: argparse.Namespace, config: Config) -> int:
    """Run the selected action and return the process exit code."""
    options = SyncOptions(
        dry_run=args.dry_run,
        force=args.force,
        modules=_parse_modules(args.modules),
        to=args.to or args.point,
        strategy=args.strategy or config.default_strategy,
        non_interactive=config.non_interactive,
    )

    if args.action == "rollback" and not options.to:
        print(
            "Error: rollback requires a point: kgsync rollback <timestamp|commit> "
            "(or --to). Use 'kgsync history' to list points.",
            file=sys.stderr,
        )
        return 1

    manager = create_manager(config, prompt=ConsolePrompt())

    match args.action:
        case "status":
            status = await manager.status(options)
            _emit(status_to_json(status), format_status(status), args.json)
        case "pull" | "push":
            operation = manager.pull if args.action == "pull" else manager.push
            report = await operation(options)
            _emit(report_to_json(report), format_sync_report(report), args.json)
        case "history":
            entries = await manager.show_history(options)
            _emit(
                [entry.to_json_dict() for entry in entries],
                format_history(entries),
                args.json,
            )
        case "rollback":
            remaining = await manager.rollback(options.to)
            _emit(
                [entry.to_json_dict() for entry in remaining],
                f"Rolled back sync history to {options.to} "
                f"({len(remaining)} entries remain). Entity state was not "
                "changed.",
                args.json,
            )
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``kgsync`` console script."""
    args = build_parser().parse_args(argv)

    try:
        config, unified = load_runtime_config(
            {
                "project_root": args.project_root,
                "non_interactive": args.non_interactive,
                "debug": args.debug,
            }
        )
    except (ValueError, OSError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    setup_logging(
        mode="cli",
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
        level=unified.logging.level,
    )

    try:
        return asyncio.run(run_action(args, config))
    except KgSyncError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()

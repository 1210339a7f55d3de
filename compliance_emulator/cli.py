"""compliance-emulator CLI - inspect a freshly seeded store.

Commands::

    compliance-emulator tables                     - Row counts per collection
    compliance-emulator metrics [--tenant ID]      - Compliance metrics summary
    compliance-emulator dump <table> [filters]     - Print rows of one collection
    compliance-emulator overdue                    - List overdue requests

Usage::

    python -m compliance_emulator dump action_tasks --eq status=in_progress --order assigned_at
    python -m compliance_emulator metrics --json-logs
"""

from __future__ import annotations

import argparse
import json
import sys
import textwrap
from typing import Any

from compliance_emulator.config import get_settings
from compliance_emulator.database import ComplianceClient, create_client
from compliance_emulator.errors import ComplianceEmulatorError
from compliance_emulator.services import DataSubjectRequestRepository
from compliance_emulator.telemetry import configure_logging

# ------------------------------------------------------------------ #
# Formatting helpers
# ------------------------------------------------------------------ #

_RESET = "\033[0m"
_GREEN = "\033[32m"
_RED = "\033[31m"
_BOLD = "\033[1m"
_CYAN = "\033[36m"


def _ok(msg: str) -> None:
    print(f"{_GREEN}  [OK]{_RESET}  {msg}")


def _err(msg: str) -> None:
    print(f"{_RED}[ERROR]{_RESET} {msg}", file=sys.stderr)


def _info(msg: str) -> None:
    print(f"{_CYAN} [INFO]{_RESET} {msg}")


def _header(msg: str) -> None:
    print(f"\n{_BOLD}{msg}{_RESET}")


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _split_pair(raw: str) -> tuple[str, str]:
    column, sep, value = raw.partition("=")
    if not sep or not column:
        raise argparse.ArgumentTypeError(f"expected column=value, got {raw!r}")
    return column, value


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


def cmd_tables(client: ComplianceClient, args: argparse.Namespace) -> int:  # noqa: ARG001
    """Print the row count of every collection."""
    _header("Collections")
    for table, count in client.registry.counts().items():
        print(f"   {str(table):<28} {count:>5}")
    return 0


def cmd_metrics(client: ComplianceClient, args: argparse.Namespace) -> int:
    """Print the compliance metrics summary."""
    params = {"tenant_id": args.tenant} if args.tenant else {}
    result = client.rpc("get_compliance_metrics", params).execute()
    if result.error is not None:
        _err(result.error.message)
        return 1
    _print_json(result.data)
    return 0


def cmd_dump(client: ComplianceClient, args: argparse.Namespace) -> int:
    """Print the rows of one collection, optionally filtered and ordered."""
    query = client.table(args.table).select(args.columns, count="exact")
    for column, value in args.eq:
        query = query.eq(column, value)
    for column, value in args.is_:
        query = query.is_(column, None if value.lower() == "null" else value.lower() == "true")
    if args.order:
        query = query.order(args.order, desc=args.desc)
    if args.limit is not None:
        query = query.limit(args.limit)

    result = query.execute()
    if result.error is not None:
        _err(f"{result.error.code}: {result.error.message}")
        return 1
    _print_json(result.data)
    _info(f"{len(result.data)} of {result.count} row(s)")
    return 0


def cmd_overdue(client: ComplianceClient, args: argparse.Namespace) -> int:
    """List open requests past their due date."""
    requests = DataSubjectRequestRepository(client, args.tenant)
    overdue = requests.get_overdue()
    if not overdue:
        _ok("No overdue requests")
        return 0
    _header(f"{len(overdue)} overdue request(s)")
    for request in overdue:
        print(
            f"   {request.id}  {request.request_type:<14} {request.status:<12} "
            f"due {request.due_date:%Y-%m-%d}  {request.requester_email}"
        )
    return 0


# ------------------------------------------------------------------ #
# Argument parser
# ------------------------------------------------------------------ #


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser tree."""
    parser = argparse.ArgumentParser(
        prog="compliance-emulator",
        description="Inspect the in-memory compliance store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """\
            Examples:
              compliance-emulator tables
              compliance-emulator metrics
              compliance-emulator dump consent_records --eq consent_type=marketing
              compliance-emulator dump action_tasks --order assigned_at --limit 1
              compliance-emulator overdue
            """
        ),
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")
    parser.add_argument("--log-level", default=None, help="Override COMPLIANCE_LOG_LEVEL")
    parser.add_argument(
        "--empty", action="store_true", help="Start from an empty store instead of demo data"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    subparsers.add_parser("tables", help="Row counts per collection")

    metrics_parser = subparsers.add_parser("metrics", help="Compliance metrics summary")
    metrics_parser.add_argument("--tenant", default=None, help="Restrict to one tenant")

    dump_parser = subparsers.add_parser("dump", help="Print rows of one collection")
    dump_parser.add_argument("table", help="Collection name, with or without table prefix")
    dump_parser.add_argument("--columns", default="*", help="Projection (default: *)")
    dump_parser.add_argument(
        "--eq", action="append", default=[], type=_split_pair, metavar="COL=VALUE"
    )
    dump_parser.add_argument(
        "--is",
        dest="is_",
        action="append",
        default=[],
        type=_split_pair,
        metavar="COL=null|true|false",
    )
    dump_parser.add_argument("--order", default=None, help="Order by column")
    dump_parser.add_argument("--desc", action="store_true", help="Descending order")
    dump_parser.add_argument("--limit", type=int, default=None)

    overdue_parser = subparsers.add_parser("overdue", help="List overdue requests")
    overdue_parser.add_argument("--tenant", default=None, help="Tenant (default: demo tenant)")

    return parser


# ------------------------------------------------------------------ #
# Dispatch
# ------------------------------------------------------------------ #

_COMMANDS = {
    "tables": cmd_tables,
    "metrics": cmd_metrics,
    "dump": cmd_dump,
    "overdue": cmd_overdue,
}


def main(argv: list[str] | None = None) -> int:
    """Entry point for the compliance-emulator CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    command = _COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    configure_logging(
        json_logs=args.json_logs or settings.json_logs,
        log_level=args.log_level or settings.log_level,
    )
    client = create_client(settings, seed=False if args.empty else None)
    try:
        return command(client, args)
    except ComplianceEmulatorError as exc:
        _err(str(exc))
        return 1


if __name__ == "__main__":
    sys.exit(main())

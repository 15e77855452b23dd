"""Command-line interface for portsleuth."""

import argparse
import sys

from rich.console import Console
from rich.markup import escape

from portsleuth.errors import InspectionError, NotFound
from portsleuth.inspector import Inspector
from portsleuth.logs import configure_logging, get_logger
from portsleuth.models import ConnectionRecord, ProcessSnapshot
from portsleuth.render import (
    OutputFormat,
    render_ancestry,
    render_environment,
    render_port,
    render_process,
    render_process_list,
    render_warnings,
)
from portsleuth.sockets import MAX_PORT, MIN_PORT

logger = get_logger(__name__)

LOG_LEVELS = ("WARNING", "INFO", "DEBUG")


def _port(value: str) -> int:
    try:
        port = int(value, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port number: {value}") from None
    if not MIN_PORT <= port <= MAX_PORT:
        raise argparse.ArgumentTypeError(f"port must be between {MIN_PORT} and {MAX_PORT}")
    return port


def _pid(value: str) -> int:
    try:
        pid = int(value, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid PID: {value}") from None
    if pid < 1:
        raise argparse.ArgumentTypeError("PID must be positive")
    return pid


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser; cross-option rules live in parse_args."""
    parser = argparse.ArgumentParser(
        prog="portsleuth",
        description="Explain which process owns a port, and what a process is.",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--pid", type=_pid, help="explain a specific PID")
    target.add_argument("--port", type=_port, help="explain port usage")
    target.add_argument("--all", action="store_true", help="list all running processes")

    style = parser.add_mutually_exclusive_group()
    style.add_argument("--short", action="store_true", help="one-line summary")
    style.add_argument("--json", action="store_true", help="output result as JSON")
    style.add_argument("--tree", action="store_true", help="show full process ancestry tree")
    style.add_argument("--env", action="store_true", help="show the environment variables of the process")

    parser.add_argument("--warnings", action="store_true", help="show only warnings for a port")
    parser.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="offer to kill the process with 'k' (with --pid or --port)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="more logging (repeatable)")
    parser.add_argument("--log-json", action="store_true", help="emit log events as JSON")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse ``argv`` and reject option combinations that make no sense."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if (args.tree or args.env) and args.pid is None:
        parser.error("--tree and --env can only be used with --pid")
    if args.warnings and args.port is None:
        parser.error("--warnings can only be used with --port")
    if args.interactive and args.all:
        parser.error("--interactive can only be used with --pid or --port")
    if args.interactive and args.json:
        parser.error("--interactive cannot be combined with --json")
    return args


def output_format(args: argparse.Namespace) -> OutputFormat:
    """Output style selected by --json or --short."""
    if args.json:
        return OutputFormat.JSON
    if args.short:
        return OutputFormat.SHORT
    return OutputFormat.NORMAL


def resolve_owners(inspector: Inspector, records: list[ConnectionRecord]) -> dict[int, ProcessSnapshot]:
    """Snapshot every resolved owner once. Owners that exited are left out."""
    owners: dict[int, ProcessSnapshot] = {}
    for record in records:
        if not record.has_owner or record.pid in owners:
            continue
        try:
            owners[record.pid] = inspector.get_process(record.pid)
        except NotFound:
            logger.debug("connection owner exited", pid=record.pid)
    return owners


def _run_interactive(inspector: Inspector, targets: list[ProcessSnapshot]) -> None:
    from portsleuth.app import KillPromptApp

    if targets:
        KillPromptApp(inspector, targets).run()


def handle_pid(inspector: Inspector, console: Console, args: argparse.Namespace) -> int:
    """Describe one process, its ancestry or its environment."""
    proc = inspector.get_process(args.pid)
    if args.env:
        render_environment(console, inspector.get_environment(args.pid))
    elif args.tree:
        render_ancestry(console, inspector.get_ancestry(args.pid))
    else:
        render_process(console, proc, output_format(args))

    if args.interactive:
        _run_interactive(inspector, [proc])
    return 0


def handle_port(inspector: Inspector, console: Console, args: argparse.Namespace) -> int:
    """Describe the connections on a port and their owners."""
    records = inspector.resolve_port(args.port)
    if not records:
        console.print(f"[red]No connections found on port {args.port}[/red]")
        return 1

    owners = resolve_owners(inspector, records)
    if args.warnings:
        render_warnings(console, args.port, records, owners)
    else:
        render_port(console, args.port, records, owners, output_format(args))

    if args.interactive:
        _run_interactive(inspector, list(owners.values()))
    return 0


def handle_all(inspector: Inspector, console: Console, args: argparse.Namespace) -> int:
    """List every running process."""
    processes = inspector.list_all_processes()
    if not processes:
        console.print("[red]No processes found[/red]")
        return 1
    render_process_list(console, processes, output_format(args))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for the portsleuth command."""
    args = parse_args(argv)
    configure_logging(LOG_LEVELS[min(args.verbose, len(LOG_LEVELS) - 1)], json_output=args.log_json)

    console = Console()
    error_console = Console(stderr=True)
    try:
        inspector = Inspector()
        if args.pid is not None:
            return handle_pid(inspector, console, args)
        if args.port is not None:
            return handle_port(inspector, console, args)
        return handle_all(inspector, console, args)
    except InspectionError as exc:
        logger.debug("inspection failed", error=str(exc), kind=type(exc).__name__)
        error_console.print(f"[red]Error:[/red] {escape(str(exc))}", highlight=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())

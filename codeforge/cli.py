"""
CodeForge CLI - workspace container management from a terminal.

Usage:
  codeforge status                         # Readiness snapshot
  codeforge containers                     # Workspace containers
  codeforge dispatch build_image           # Run a command
  codeforge dispatch stop_container -p container_id=abc123
  codeforge logs <container_id>            # Follow container logs
  codeforge serve                          # Start the control API
"""

import argparse
import asyncio
import shlex
import sys
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from .models.containers import ContainerRecord
from .models.state import CommandOutcome, ReadinessSnapshot
from .services.container.lifecycle import ConfirmationRequest
from .services.session import WorkspaceSession
from .utils.logging import setup_logging

console = Console()


# ============================================================================
# Formatting Helpers
# ============================================================================


def format_flag(value: bool, yes: str = "yes", no: str = "no") -> Text:
    return Text(yes, style="green") if value else Text(no, style="red")


def render_snapshot(snapshot: ReadinessSnapshot, workspace: str, image: str) -> Table:
    table = Table(title="Workspace Readiness", box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Workspace", workspace)
    table.add_row("Image", image)
    table.add_row("Initialized", format_flag(snapshot.is_initialized))
    table.add_row("Image built", format_flag(snapshot.is_built))
    table.add_row("Running containers", str(snapshot.container_count))
    if snapshot.missing_components:
        table.add_row("Missing", ", ".join(snapshot.missing_components))
    for error in snapshot.errors:
        table.add_row("Error", Text(error, style="yellow"))
    return table


def render_containers(records: List[ContainerRecord]) -> Table:
    table = Table(title="Containers", box=box.ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("State")
    table.add_column("Status", style="dim")
    for record in records:
        state = Text("running", style="green") if record.running else Text("exited", style="red")
        table.add_row(record.short_id, record.name, record.type.value, state, record.status)
    return table


def render_outcome(outcome: CommandOutcome) -> None:
    if outcome.rejected:
        console.print(f"[yellow]Rejected:[/yellow] {outcome.error}")
    elif outcome.declined:
        console.print(f"[yellow]Declined:[/yellow] {outcome.command}")
    elif outcome.success:
        console.print(f"[green]Done:[/green] {outcome.command}")
        result = outcome.to_dict()["result"]
        if result not in (None, [], {}):
            console.print(result)
    else:
        console.print(f"[red]Failed ({outcome.error_type}):[/red] {outcome.error}")


def parse_params(pairs: Optional[List[str]]) -> Dict[str, Any]:
    """``key=value`` pairs; ``true``/``false`` become booleans."""
    params: Dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Parameter must be key=value: {pair}")
        lowered = value.lower()
        params[key] = {"true": True, "false": False}.get(lowered, value)
    return params


def prompt_confirmation(request: ConfirmationRequest) -> bool:
    ids = ", ".join(i[:12] for i in request.container_ids) or "no containers"
    return Confirm.ask(f"{request.operation.replace('_', ' ')} ({ids})?", default=False)


# ============================================================================
# Commands
# ============================================================================


def make_session(args, confirm=None) -> WorkspaceSession:
    return WorkspaceSession(workspace_path=args.workspace, confirm=confirm)


async def cmd_status(args) -> int:
    session = make_session(args)
    snapshot = await session.synchronizer.refresh(trigger="cli")
    console.print(render_snapshot(snapshot, session.workspace_path, session.image_name))
    return 0


async def cmd_containers(args) -> int:
    session = make_session(args)
    records = await session.registry.list_active()
    if not records:
        console.print("[dim]No containers for this workspace.[/dim]")
        return 0
    console.print(render_containers(records))
    return 0


async def cmd_dispatch(args) -> int:
    confirm = None if args.force else prompt_confirmation
    session = make_session(args, confirm=confirm)
    try:
        params = parse_params(args.param)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        return 2
    with console.status(f"Running {args.name}..."):
        outcome = await session.dispatch(args.name, **params)
    await session.gateway.wait_for_resync()
    render_outcome(outcome)
    return 0 if outcome.success else 1


async def cmd_logs(args) -> int:
    session = make_session(args)
    async for line in session.lifecycle.stream_logs(args.container_id):
        console.print(line, markup=False, highlight=False)
    return 0


async def cmd_attach(args) -> int:
    session = make_session(args)
    console.print(shlex.join(session.lifecycle.attach_args(args.container_id, args.shell)))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="CodeForge workspace container CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s status
  %(prog)s containers
  %(prog)s dispatch initialize
  %(prog)s dispatch run_command -p "command=make test"
  %(prog)s dispatch terminate_all --force
""",
    )
    parser.add_argument("-w", "--workspace", help="Workspace path (default: current directory)")
    parser.add_argument("--log-level", default="WARNING", help="Log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Readiness snapshot")
    subparsers.add_parser("containers", help="List workspace containers")

    dispatch_p = subparsers.add_parser("dispatch", help="Dispatch a command")
    dispatch_p.add_argument("name", help="Command name, e.g. build_image")
    dispatch_p.add_argument("-p", "--param", action="append", help="Parameter as key=value")
    dispatch_p.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    logs_p = subparsers.add_parser("logs", help="Follow container logs")
    logs_p.add_argument("container_id")

    attach_p = subparsers.add_parser("attach", help="Print the command to open a shell")
    attach_p.add_argument("container_id")
    attach_p.add_argument("--shell", help="Shell to run")

    subparsers.add_parser("serve", help="Start the control API")

    args = parser.parse_args()
    setup_logging(level=args.log_level, log_format="console")

    if args.command == "serve":
        from .main import run_server

        run_server()
        return

    handlers = {
        "status": cmd_status,
        "containers": cmd_containers,
        "dispatch": cmd_dispatch,
        "logs": cmd_logs,
        "attach": cmd_attach,
    }

    try:
        sys.exit(asyncio.run(handlers[args.command](args)))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()

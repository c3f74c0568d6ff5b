"""Consciousness Observer — terminal runner.

Three commands:

    listen  Run the mesh listener on its own (no HTTP API) and render a
            live panel per server as notifications arrive.
    send    Fire one signal datagram at a mesh node. With --wait, print the
            reply (e.g. the DOCK_APPROVED answer to a DOCK_REQUEST).
    report  Print the most recent derived operations as a table.

Usage:
    uv run python cli.py listen
    uv run python cli.py send DOCK_REQUEST --sender search-mcp --wait 2
    uv run python cli.py send SEARCH_COMPLETED --data '{"search_id": "s-1", "results_count": 12}'
    uv run python cli.py report --outcome failure
"""

import argparse
import asyncio
import json
import time

from rich.console import Console
from rich.table import Table

from core.config import Settings, configure_logging
from core.notifier import Notifier
from core.store import SQLiteStore
from display.live import MeshFeed
from mesh.transport import send_signal, start_listener
from schemas.records import OperationOutcome
from schemas.signal import PROTOCOL_VERSION, Signal, SignalType
from signals.router import SignalRouter

console = Console()


# ── listen ────────────────────────────────────────────────────────────────────

async def _listen(settings: Settings) -> None:
    store = SQLiteStore(settings.db_path)
    notifier = Notifier(history_size=settings.notification_history)
    router = SignalRouter(store, notifier, observer_id=settings.observer_id)

    queue: asyncio.Queue = asyncio.Queue()
    notifier.attach_queue(queue)
    feed = MeshFeed()

    transport, _ = await start_listener(router, settings.mesh_host, settings.mesh_port)

    console.rule("[bold]Consciousness Observer[/bold]")
    console.print(f"  observer  [cyan]{settings.observer_id}[/cyan]")
    console.print(f"  mesh      [cyan]{settings.mesh_host}:{settings.mesh_port}[/cyan]")
    console.print(f"  store     [cyan]{settings.db_path}[/cyan]")
    console.print()

    try:
        with feed.make_live() as live:
            await feed.consume(queue, live)
    finally:
        transport.close()
        store.close()


# ── send ──────────────────────────────────────────────────────────────────────

def _parse_type(value: str) -> int:
    """Accept a SignalType name ("HEARTBEAT") or a number ("0x0004", "4")."""
    try:
        return SignalType[value.upper()].value
    except KeyError:
        pass
    try:
        return int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"unknown signal type '{value}'") from None


def _send(args: argparse.Namespace, settings: Settings) -> None:
    payload = json.loads(args.data) if args.data else {}
    payload["sender"] = args.sender
    signal = Signal(
        signal_type=args.signal_type,
        version=PROTOCOL_VERSION,
        timestamp=int(time.time()),
        payload=payload,
    )

    host = args.host or "127.0.0.1"
    port = args.port or settings.mesh_port
    reply = send_signal(signal, host, port, timeout=args.wait)
    console.print(f"sent [cyan]{signal.name}[/cyan] to {host}:{port}")

    if reply is not None:
        console.print(f"reply [green]{reply.name}[/green]")
        console.print_json(data=reply.to_wire())
    elif args.wait > 0:
        console.print("[yellow]no reply[/yellow]")


# ── report ────────────────────────────────────────────────────────────────────

def _report(args: argparse.Namespace, settings: Settings) -> None:
    """Render the most recent operations as a table."""
    store = SQLiteStore(settings.db_path)
    try:
        outcome = OperationOutcome(args.outcome) if args.outcome else None
        operations = store.operations(limit=args.limit, server_name=args.server, outcome=outcome)
    finally:
        store.close()

    if not operations:
        console.print("\n[yellow]No operations recorded.[/yellow]")
        return

    table = Table(title="Recent Operations", show_lines=True, border_style="bright_black")
    table.add_column("Server",    style="bold",  min_width=16)
    table.add_column("Type",      width=12)
    table.add_column("Id",        style="dim",   min_width=20)
    table.add_column("Outcome",   width=10,      justify="center")
    table.add_column("Quality",   width=9,       justify="center")
    table.add_column("Input",     style="dim",   min_width=20)

    for op in operations:
        out_color = {"success": "green", "failure": "red"}.get(op.outcome.value, "yellow")
        q_color = "green" if op.quality_score >= 0.8 else "yellow" if op.quality_score >= 0.5 else "red"

        table.add_row(
            op.server_name,
            op.operation_type,
            op.operation_id,
            f"[{out_color}]{op.outcome.value}[/{out_color}]",
            f"[{q_color}]{op.quality_score:.0%}[/{q_color}]",
            op.input_summary,
        )

    console.print()
    console.print(table)


# ── Entry point ───────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="observer", description="Consciousness Observer")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("listen", help="run the mesh listener with a live display")

    send = commands.add_parser("send", help="send one signal datagram")
    send.add_argument("signal_type", type=_parse_type, help="SignalType name or number")
    send.add_argument("--sender", default="observer-cli")
    send.add_argument("--data", help="extra payload fields as a JSON object")
    send.add_argument("--host")
    send.add_argument("--port", type=int)
    send.add_argument("--wait", type=float, default=0.0, help="seconds to wait for a reply")

    report = commands.add_parser("report", help="print recent operations")
    report.add_argument("--limit", type=int, default=20)
    report.add_argument("--server")
    report.add_argument("--outcome", choices=[o.value for o in OperationOutcome])

    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_file)

    if args.command == "listen":
        try:
            asyncio.run(_listen(settings))
        except KeyboardInterrupt:
            console.print("\n[dim]observer stopped[/dim]")
    elif args.command == "send":
        _send(args, settings)
    elif args.command == "report":
        _report(args, settings)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Middleman CLI - ECoS gateway with an HSI-88 feedback bus.

Layout controllers (e.g. Rocrail) connect to this process as if it were the
ECoS. S88 feedback coming from an HSI-88 interface is presented as the
station's own feedback bus; all other traffic is relayed to the station.

Examples:
    # Relay to the station and read feedback from the HSI-88
    python gateway.py start --config middleman.json

    # Override listen port and station address
    python gateway.py start -c middleman.json --listen-port 15471 --station 192.168.1.50

    # No station, simulated feedback (for testing controller setups)
    python gateway.py start --no-station --simulate-feedback

    # Decode a line as received from the HSI-88
    python gateway.py decode i0201022c
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

# Ensure the middleman package is importable
if __name__ == "__main__":
    import os
    sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from middleman import __version__
from middleman.config import GatewayConfig, MODULE_BASE_ID, load_config
from middleman.core.feedback import to_binary, parse_device_line
from middleman.errors import ConfigurationError, MalformedFrame
from middleman.gateway import Gateway
from middleman.protocol import parse
from middleman.utils.parsing import parse_host_port, parse_serial_baud

app = typer.Typer(
    name="middleman",
    help="Middleman - ECoS gateway with HSI-88 feedback bus",
    add_completion=False,
)
console = Console()

STATS_INTERVAL = 60.0


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def build_config(
    config_path: Optional[str],
    listen_port: Optional[int],
    station: Optional[str],
    device: Optional[str],
    simulate_feedback: bool,
    no_station: bool,
) -> GatewayConfig:
    """Load the config file (if any) and apply command-line overrides."""
    cfg = load_config(config_path) if config_path else GatewayConfig()

    if listen_port is not None:
        cfg.server.port = listen_port
    if station:
        host, port = parse_host_port(station, default_port=cfg.station.port)
        cfg.station.host = host
        cfg.station.port = port
        cfg.runtime.connect_to_ecos = True
    if no_station:
        cfg.runtime.connect_to_ecos = False
    if device:
        path, baud = parse_serial_baud(device, default_baud=cfg.feedback.baudrate)
        cfg.feedback.device_path = path
        cfg.feedback.baudrate = baud
    if simulate_feedback:
        cfg.runtime.is_s88_simulation = True
        if cfg.feedback.number_max == 0:
            cfg.feedback.left = 1

    cfg.validate()
    return cfg


def print_config(cfg: GatewayConfig) -> None:
    table = Table(title="Gateway Configuration", show_header=True)
    table.add_column("Component", style="cyan")
    table.add_column("Setting", style="yellow")

    table.add_row("Listener", f"{cfg.server.host}:{cfg.server.port}")
    if cfg.station_enabled:
        table.add_row("Station", f"{cfg.station.host}:{cfg.station.port} (probe: {cfg.station.probe})")
    else:
        table.add_row("Station", "[dim]disabled[/dim]")

    if cfg.runtime.is_s88_simulation:
        feedback = "simulated"
    elif cfg.feedback.device_path:
        feedback = f"{cfg.feedback.device_path} @ {cfg.feedback.baudrate} baud"
    else:
        feedback = "[dim]none[/dim]"
    table.add_row("Feedback device", feedback)
    table.add_row(
        "Modules",
        f"{cfg.feedback.number_max} (left {cfg.feedback.left}, middle {cfg.feedback.middle}, "
        f"right {cfg.feedback.right})",
    )
    table.add_row("Debounce", f"on {cfg.debounce.on_ms:g} ms / off {cfg.debounce.off_ms:g} ms")
    if cfg.filter.enabled:
        table.add_row(
            "Filter",
            f"ids {cfg.filter.object_ids or '-'}, ranges {cfg.filter.object_id_ranges or '-'}",
        )
    if cfg.broadcast.enabled:
        table.add_row("WebSocket", f"ws://{cfg.broadcast.host}:{cfg.broadcast.port}{cfg.broadcast.path}")

    console.print(table)
    console.print()


@app.command()
def start(
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="JSON or YAML configuration file",
    ),
    listen_port: Optional[int] = typer.Option(
        None,
        "--listen-port",
        "-l",
        help="TCP port for controller connections (default: 15471)",
    ),
    station: Optional[str] = typer.Option(
        None,
        "--station",
        "-s",
        help="ECoS address as HOST or HOST:PORT",
    ),
    device: Optional[str] = typer.Option(
        None,
        "--device",
        "-d",
        help="Serial device of the HSI-88 as PATH or PATH:BAUD (e.g., COM3, /dev/ttyUSB0:9600)",
    ),
    simulate_feedback: bool = typer.Option(
        False,
        "--simulate-feedback",
        help="Use a simulated feedback interface instead of the HSI-88",
    ),
    no_station: bool = typer.Option(
        False,
        "--no-station",
        help="Do not connect to the ECoS",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """Start the gateway.

    Controllers connect to the listen port; frames for the feedback bus are
    answered locally, everything else is relayed to the ECoS.
    """
    setup_logging(verbose)

    try:
        cfg = build_config(config, listen_port, station, device, simulate_feedback, no_station)
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    print_config(cfg)
    gateway = Gateway(cfg)

    def log_event(event: dict) -> None:
        name = event["event"]
        if name in ("station_failed", "device_failed"):
            console.print(f"[red]{name}: {event['detail']}[/red]")
        elif name == "station_connected":
            console.print(f"[green]Station connected: {event['detail']}[/green]")

    gateway.add_observer(log_event)

    console.print(Panel.fit("[bold green]Starting gateway...[/bold green]"))

    async def run():
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def signal_handler():
            console.print("\n[yellow]Shutting down...[/yellow]")
            stop_event.set()

        try:
            loop.add_signal_handler(signal.SIGINT, signal_handler)
            loop.add_signal_handler(signal.SIGTERM, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

        try:
            await gateway.start()
            console.print("[bold green]Gateway running. Press Ctrl+C to stop.[/bold green]")

            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=STATS_INTERVAL)
                except asyncio.TimeoutError:
                    stats = gateway.get_stats()
                    console.print(
                        f"[dim]Stats: {stats['frames_from_controllers']} frames in, "
                        f"{stats['frames_forwarded']} forwarded, "
                        f"{stats['frames_intercepted']} intercepted, "
                        f"{stats['frames_filtered']} filtered, "
                        f"{stats['feedback_changes']} feedback changes, "
                        f"{stats['controller_clients']} clients, "
                        f"station {stats['station_state']}[/dim]"
                    )
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted[/yellow]")
        finally:
            await gateway.stop()
            console.print("[green]Gateway stopped.[/green]")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


@app.command()
def decode(
    line: str = typer.Argument(..., help="Line as received from the HSI-88, e.g. i0201022c"),
) -> None:
    """Decode an HSI-88 status line into module states."""
    decoded = parse_device_line(line)
    if decoded.is_version:
        console.print(f"[cyan]Version banner:[/cyan] {decoded.raw}")
        return
    if decoded.kind not in ("i", "m"):
        console.print(f"[red]Not a status line: {line}[/red]")
        raise typer.Exit(1)

    table = Table(
        title=f"{'Event' if decoded.is_event else 'Poll'} - {decoded.module_count} module(s)",
        show_header=True,
    )
    table.add_column("Module", style="cyan", justify="right")
    table.add_column("Object ID", justify="right")
    table.add_column("Hex", style="green")
    table.add_column("Pins 1-16", style="yellow")

    for device_id, raw_state in decoded.states.items():
        state = raw_state.upper()
        try:
            pins = to_binary(state)
        except ValueError:
            pins = "[red]invalid[/red]"
        table.add_row(str(device_id), str(MODULE_BASE_ID + device_id - 1), state, pins)

    console.print(table)
    if len(decoded.states) < decoded.module_count:
        console.print(
            f"[yellow]{decoded.module_count - len(decoded.states)} group(s) missing or malformed[/yellow]"
        )


@app.command(name="parse")
def parse_frame(
    frame: str = typer.Argument(..., help='Wire frame, e.g. "get(100, state)"'),
    keep_quotes: bool = typer.Option(False, "--keep-quotes", help="Keep quotes around parameter values"),
) -> None:
    """Parse a protocol frame and show its structure."""
    try:
        command = parse(frame, keep_quotes=keep_quotes)
    except MalformedFrame as e:
        console.print(f"[red]Malformed frame: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[cyan]Kind:[/cyan] {command.kind.name}")
    console.print(f"[cyan]Name:[/cyan] {command.name}")
    console.print(f"[cyan]Object ID:[/cyan] {command.object_id}")

    if command.arguments:
        table = Table(show_header=True)
        table.add_column("#", justify="right")
        table.add_column("Argument", style="green")
        table.add_column("Parameters", style="yellow")
        for idx, arg in enumerate(command.arguments):
            table.add_row(str(idx), arg.name, ", ".join(arg.parameters))
        console.print(table)
    console.print(f"[dim]{command.serialize()}[/dim]")


@app.command()
def info() -> None:
    """Display gateway capabilities and usage information."""
    console.print(
        Panel.fit(
            f"[bold]Middleman {__version__} - ECoS Gateway[/bold]\n\n"
            "Sits between layout controllers and the ECoS command station and\n"
            "presents an HSI-88 feedback interface as the station's S88 bus.\n\n"
            "[bold]Features:[/bold]\n"
            "  • Any number of controller connections on one port\n"
            "  • Local answers for the feedback bus (object 26) and modules 100+\n"
            "  • Asymmetric per-pin debounce of feedback contacts\n"
            "  • Object filter (ids and range expressions) for relayed commands\n"
            "  • Station reconnect with reachability probing\n"
            "  • Optional WebSocket push of feedback changes\n\n"
            "[bold]Ports:[/bold]\n"
            "  • 15471 controller listener (station protocol)\n"
            "  • 15472 WebSocket feedback channel (/s88/)\n",
            title="About",
        )
    )


if __name__ == "__main__":
    app()

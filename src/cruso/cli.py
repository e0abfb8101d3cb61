"""Command-line interface for Cruso.

Provides commands for configuration validation, offline engagement and
availability checks, and the API server.

Usage:
    python -m cruso validate-config
    python -m cruso classify --known-user --thread-opener --valid-engagement
    python -m cruso free-slots --start 2025-01-06T09:00:00Z --end 2025-01-06T17:00:00Z \\
        --busy busy.yaml
    python -m cruso serve
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import click
import yaml
from rich.console import Console
from rich.table import Table

from cruso.config import validate_config_file
from cruso.core.errors import InvalidInput
from cruso.core.logging import configure_logging

console = Console()


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Cruso - calendar management over email."""
    log_level = "DEBUG" if debug else "INFO"
    # Use human-readable output for CLI, JSON for server
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes Pydantic schema validation.
    Reports specific errors for invalid fields.
    """
    if config_path:
        console.print(f"Validating config: [cyan]{config_path}[/cyan]")
    else:
        console.print("Validating config: [cyan]config/config.yaml[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("classify")
@click.option("--known-user/--unknown-user", required=True, help="Sender has an account")
@click.option(
    "--thread-opener/--reply",
    required=True,
    help="Message is the first in its exchange",
)
@click.option(
    "--valid-engagement/--invalid-engagement",
    required=True,
    help="Exchange is within the message-count and age limits",
)
def classify(known_user: bool, thread_opener: bool, valid_engagement: bool) -> None:
    """Show which action an inbound message with these facts would trigger."""
    from cruso.exchange.classifier import classify_engagement

    action = classify_engagement(known_user, thread_opener, valid_engagement)
    console.print(f"Action: [bold cyan]{action}[/bold cyan]")


def _load_busy_file(path: Path) -> list[Any]:
    """Read busy intervals from a YAML or JSON list of {start, end, calendar_id}."""
    from cruso.calendar.intervals import BusyInterval, parse_instant

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise click.BadParameter(f"{path} is not valid YAML/JSON: {e}") from e

    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = raw.get("busy", [])
    if not isinstance(raw, list):
        raise click.BadParameter(f"{path} must contain a list of busy intervals")

    intervals = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise click.BadParameter(f"Busy interval #{i} in {path} must be a mapping")
        intervals.append(
            BusyInterval(
                parse_instant(item.get("start"), f"busy[{i}].start"),
                parse_instant(item.get("end"), f"busy[{i}].end"),
                calendar_id=str(item.get("calendar_id", "")),
            )
        )
    return intervals


@cli.command("free-slots")
@click.option("--start", required=True, help="Window start, ISO-8601 with offset")
@click.option("--end", required=True, help="Window end (exclusive), ISO-8601 with offset")
@click.option(
    "--duration",
    default=30,
    type=int,
    show_default=True,
    help="Minimum free slot length in minutes",
)
@click.option(
    "--busy",
    "busy_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML or JSON file listing busy intervals",
)
@click.option("--timezone", "-z", default="UTC", show_default=True, help="Display timezone")
@click.option("--suggest", is_flag=True, help="Show grid-aligned meeting suggestions instead")
def free_slots(
    start: str,
    end: str,
    duration: int,
    busy_path: Path | None,
    timezone: str,
    suggest: bool,
) -> None:
    """Compute free slots in a window from a list of busy intervals.

    Runs entirely offline: no calendar is contacted.
    """
    from cruso.calendar.availability import (
        AvailabilityWindow,
        SlotFormatter,
        compute_free_slots,
        suggest_slots,
    )
    from cruso.calendar.intervals import parse_instant

    try:
        window = AvailabilityWindow.between(
            parse_instant(start, "start"),
            parse_instant(end, "end"),
            duration,
            timezone,
        )
        busy = _load_busy_file(busy_path) if busy_path else []
        if suggest:
            slots = suggest_slots(window, busy, duration)
        else:
            slots = compute_free_slots(window, busy)
    except InvalidInput as e:
        console.print(f"[red]Invalid input:[/red] {e}")
        sys.exit(1)

    formatter = SlotFormatter(timezone)
    if not slots:
        console.print(f"[yellow]{formatter.format_slots(slots)}[/yellow]")
        return

    table = Table(title="Suggested slots" if suggest else "Free slots")
    table.add_column("#", justify="right")
    table.add_column(f"When ({timezone})")
    table.add_column("Minutes", justify="right")
    for i, slot in enumerate(slots, 1):
        minutes = int(slot.duration.total_seconds() // 60)
        table.add_row(str(i), formatter.format_range(slot), str(minutes))
    console.print(table)


@cli.command("serve")
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host to bind to (default: localhost only for security)",
)
@click.option(
    "--port",
    default=8000,
    type=int,
    help="Port to bind to",
)
def serve(host: str, port: int) -> None:
    """Start the scheduling API server."""
    import uvicorn

    from cruso.web.app import create_app

    if host == "0.0.0.0":  # noqa: S104
        console.print(
            "[yellow]Warning:[/yellow] Binding to 0.0.0.0 exposes the server to the network.\n"
            "The inbound webhook is unauthenticated. Use 127.0.0.1 behind a proxy."
        )

    configure_logging(log_level="INFO", json_output=True)

    app = create_app()
    console.print(f"Starting server on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run(app, host=host, port=port, log_level="info")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()

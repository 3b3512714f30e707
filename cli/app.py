from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import (
    render_activity_intervals,
    render_excess,
    render_pv_intervals,
    render_workers,
)


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the PV informant service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _resolve_range(
    state: CLIState, start: Optional[str], end: Optional[str]
) -> Tuple[str, str]:
    end_value = end or datetime.now(timezone.utc).isoformat()
    if start:
        return start, end_value
    try:
        parsed_end = datetime.fromisoformat(end_value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid --to timestamp {end_value!r}.") from exc
    return (parsed_end - timedelta(hours=state.config.window_hours)).isoformat(), end_value


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Informant API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Request timeout in seconds.",
    ),
    window_hours: Optional[float] = typer.Option(
        None,
        "--window-hours",
        help="History window used when --from is omitted.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(
        base_url=base_url,
        timeout=timeout,
        window_hours=window_hours,
    )
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("pv")
def pv_command(
    ctx: typer.Context,
    start: Optional[str] = typer.Option(None, "--from", help="Range start (ISO-8601)."),
    end: Optional[str] = typer.Option(None, "--to", help="Range end (ISO-8601), defaults to now."),
) -> None:
    """Show excess power windows."""
    state = _get_state(ctx)
    range_start, range_end = _resolve_range(state, start, end)
    render_pv_intervals(state.client.pv_intervals(range_start, range_end))


@app.command("excess")
def excess_command(ctx: typer.Context) -> None:
    """Show the latest decision of the polling loop."""
    state = _get_state(ctx)
    render_excess(state.client.excess())


@app.command("workers")
def workers_command(ctx: typer.Context) -> None:
    """List registered workers."""
    state = _get_state(ctx)
    render_workers(state.client.workers())


@app.command("worker")
def worker_command(
    ctx: typer.Context,
    address: Optional[str] = typer.Argument(
        None, help="Hardware address, e.g. AA:BB:CC:DD:EE:FF; defaults to this machine."
    ),
    start: Optional[str] = typer.Option(None, "--from", help="Range start (ISO-8601)."),
    end: Optional[str] = typer.Option(None, "--to", help="Range end (ISO-8601), defaults to now."),
) -> None:
    """Show activity windows of a worker."""
    state = _get_state(ctx)
    range_start, range_end = _resolve_range(state, start, end)
    render_activity_intervals(
        address or "this machine", state.client.worker_intervals(address, range_start, range_end)
    )


@app.command("register")
def register_command(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Hardware address to register."),
) -> None:
    """Register a worker."""
    state = _get_state(ctx)
    payload = state.client.register(address)
    if payload.get("created"):
        typer.secho(f"Registered {payload.get('address')}", fg=typer.colors.GREEN)
    else:
        typer.echo(f"{payload.get('address')} was already registered.")


@app.command("report")
def report_command(
    ctx: typer.Context,
    address: Optional[str] = typer.Argument(
        None, help="Hardware address of the reporting worker; defaults to this machine."
    ),
    working: bool = typer.Option(
        True,
        "--working/--idle",
        help="Status to report.",
    ),
) -> None:
    """Report a worker status."""
    state = _get_state(ctx)
    payload = state.client.report(address, working)
    typer.echo(f"Recorded at {payload.get('recorded_at')}")
    if payload.get("woken"):
        typer.echo("Worker was woken in the last polling round.")

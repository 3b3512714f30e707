from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

_DECISION_COLORS = {
    "Yes": typer.colors.GREEN,
    "Maybe": typer.colors.YELLOW,
    "No": typer.colors.RED,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_pv_intervals(intervals: List[Dict[str, Any]]) -> None:
    echo_heading("Excess Power")
    if not intervals:
        typer.echo("No readings in range.")
        return
    for interval in intervals:
        decision = interval.get("decision")
        typer.echo(f"  {interval.get('start')} -> {interval.get('end')}  ", nl=False)
        typer.secho(str(decision), fg=_DECISION_COLORS.get(decision))


def render_activity_intervals(address: str, intervals: List[Dict[str, Any]]) -> None:
    echo_heading(f"Activity of {address}")
    if not intervals:
        typer.echo("No activity in range.")
        return
    for interval in intervals:
        label = "working" if interval.get("status") else "idle"
        typer.echo(f"  {interval.get('start')} -> {interval.get('end')}  {label}")


def render_excess(payload: Dict[str, Any]) -> None:
    echo_heading("Current Decision")
    echo_key_values(
        [
            ("decision", payload.get("decision")),
            ("checked_at", payload.get("checked_at")),
        ]
    )


def render_workers(workers: List[Dict[str, Any]]) -> None:
    echo_heading("Workers")
    if not workers:
        typer.echo("No workers registered.")
        return
    for worker in workers:
        typer.echo(f"  - {worker.get('address')}")
        typer.echo(f"      last_reported_status: {worker.get('last_reported_status')}")
        typer.echo(f"      last_report_time: {worker.get('last_report_time')}")
        typer.echo(f"      last_wake_time: {worker.get('last_wake_time')}")

"""
Event log commands: tail, inspect
"""

import json
from typing import Optional

import typer
from rich.syntax import Syntax
from rich.table import Table

from warden.core.errors import WardenError

from ..context import EXIT_OK, console, emit_json, fail, open_ledger

app = typer.Typer()


def _payload_summary(ev) -> str:
    ref = ev.update_id
    return f"update {ref}" if ref is not None else "-"


@app.command()
def tail(
    ctx: typer.Context,
    lines: int = typer.Option(20, "--lines", "-n", help="Number of events to show"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Show the most recent events.

    Examples:
        warden log tail
        warden log tail --lines 50
        warden log tail --json
    """
    try:
        ledger = open_ledger(ctx)
        try:
            last = ledger.event_log.last()
            start = max(0, last.id - lines + 1) if last is not None and lines > 0 else 0
            events = list(ledger.event_log.read_all(from_id=start)) if last is not None else []
        finally:
            ledger.close()
    except WardenError as e:
        fail(e, json_output)

    events = events[-lines:] if lines > 0 else events

    if json_output:
        emit_json({"events": [ev.to_dict() for ev in events], "count": len(events)})
        raise typer.Exit(EXIT_OK)

    if not events:
        console.print("[yellow]Event log is empty[/yellow]")
        raise typer.Exit(EXIT_OK)

    table = Table(title="Event Log")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Kind", style="green")
    table.add_column("Reference", style="yellow")
    table.add_column("Created", style="dim")
    for ev in events:
        table.add_row(str(ev.id), ev.kind, _payload_summary(ev), ev.created_at.isoformat(timespec="seconds"))

    console.print(table)
    console.print(f"\n[bold]Events shown:[/bold] {len(events)}")
    raise typer.Exit(EXIT_OK)


@app.command()
def inspect(
    ctx: typer.Context,
    update_id: Optional[int] = typer.Option(None, "--update", "-u", help="Only events of this update"),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Filter by event kind"),
    from_id: Optional[int] = typer.Option(None, "--from", help="Start from event id"),
    to_id: Optional[int] = typer.Option(None, "--to", help="End at event id"),
    show_payload: bool = typer.Option(False, "--payload", "-p", help="Show full payload"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Inspect the event log with filters.

    Examples:
        warden log inspect --from 1 --to 10
        warden log inspect --kind update.failed
        warden log inspect --update 7 --payload --json
    """
    try:
        ledger = open_ledger(ctx)
        try:
            if update_id is not None:
                stream = ledger.event_log.read_by_reference(update_id)
            else:
                stream = ledger.event_log.read_all(from_id=from_id or 0, kind=kind)
            events = list(stream)
        finally:
            ledger.close()
    except WardenError as e:
        fail(e, json_output)

    if from_id is not None:
        events = [ev for ev in events if ev.id >= from_id]
    if to_id is not None:
        events = [ev for ev in events if ev.id <= to_id]
    if kind:
        events = [ev for ev in events if ev.kind == kind]

    if json_output:
        data = [ev.to_dict() for ev in events]
        if not show_payload:
            for rec in data:
                rec["payload"] = "<hidden>"
        emit_json({"events": data, "count": len(data)})
        raise typer.Exit(EXIT_OK)

    if not events:
        console.print("[yellow]No events match the filters[/yellow]")
        raise typer.Exit(EXIT_OK)

    for ev in events:
        console.print(f"\n[bold cyan]Event {ev.id}[/bold cyan]")
        console.print(f"  Kind: [green]{ev.kind}[/green]")
        console.print(f"  Reference: [yellow]{_payload_summary(ev)}[/yellow]")
        console.print(f"  Created: {ev.created_at.isoformat()}")

        if show_payload:
            console.print("  Payload:")
            syntax = Syntax(
                json.dumps(ev.payload, indent=2, sort_keys=True),
                "json",
                theme="monokai",
                line_numbers=False,
            )
            console.print(syntax)

    console.print(f"\n[bold]Total events:[/bold] {len(events)}")
    raise typer.Exit(EXIT_OK)

"""
Replay command: rebuild projections from the event log and verify the record cache
"""

import json
from typing import Optional

import typer
from rich.syntax import Syntax
from rich.table import Table

from warden.core.errors import WardenError
from warden.replay import replay as replay_events
from warden.replay import verify

from ..context import EXIT_OK, EXIT_REJECTED, console, emit_json, fail, open_ledger


def replay_command(
    ctx: typer.Context,
    until: Optional[int] = typer.Option(None, "--until", "-u", help="Replay until event id"),
    check: bool = typer.Option(False, "--verify", help="Compare projections with update records"),
    show_state: bool = typer.Option(False, "--show-state", "-s", help="Show projections"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Replay the event log and rebuild every update's projected state.

    With --verify, exits 3 when any record disagrees with its projection.

    Examples:
        warden replay
        warden replay --until 10 --show-state
        warden replay --verify --json
    """
    try:
        ledger = open_ledger(ctx)
        try:
            result = replay_events(ledger.event_log, to_id=until)
            mismatches = verify(ledger.event_log, ledger.store) if check else []
        finally:
            ledger.close()
    except WardenError as e:
        fail(e, json_output)

    projections = [result.state.aggregates[k] for k in sorted(result.state.aggregates)]
    states = {}
    for p in projections:
        states[p.state.value] = states.get(p.state.value, 0) + 1

    code = EXIT_REJECTED if mismatches else EXIT_OK

    if json_output:
        output = {
            "events_replayed": result.applied,
            "events_skipped": result.skipped,
            "updates": len(projections),
            "state_counts": states,
        }
        if check:
            output["mismatches"] = [m.to_dict() for m in mismatches]
        if show_state:
            output["projections"] = [p.to_dict() for p in projections]
        emit_json(output)
        raise typer.Exit(code)

    console.print(f"[green]✓ Replayed {result.applied} events[/green] ({result.skipped} skipped)")
    console.print(f"  Updates: [cyan]{len(projections)}[/cyan]")

    table = Table(title="Projected States")
    table.add_column("State", style="green")
    table.add_column("Count", style="cyan", justify="right")
    for state in sorted(states):
        table.add_row(state, str(states[state]))
    console.print(table)

    if show_state:
        console.print("\n[bold]Projections:[/bold]")
        console.print(Syntax(json.dumps([p.to_dict() for p in projections], indent=2), "json", theme="monokai"))

    if check:
        if mismatches:
            console.print(f"[red]✗ {len(mismatches)} record(s) disagree with the event log[/red]")
            for m in mismatches:
                console.print(
                    f"  update {m.update_id}: record={m.record_state} projected={m.projected_state}"
                    f" meta_matches={m.meta_matches}"
                )
        else:
            console.print("[green]✓ All records match their projections[/green]")

    raise typer.Exit(code)

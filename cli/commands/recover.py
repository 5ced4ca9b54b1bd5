"""
Recover command: repair records left pending or mid-rollback by a crash
"""

import typer
from rich.table import Table

from warden.core.errors import WardenError

from ..context import EXIT_OK, console, emit_json, fail, open_ledger


def recover_command(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Move interrupted updates out of pending and close interrupted rollbacks.

    Never re-runs an update; retry with a fresh `warden apply`.
    """
    try:
        ledger = open_ledger(ctx)
        try:
            report = ledger.recovery().run()
        finally:
            ledger.close()
    except WardenError as e:
        fail(e, json_output)

    if json_output:
        emit_json(
            {
                "scanned": report.scanned,
                "repaired": report.repaired,
                "in_flight": report.in_flight,
                "actions": [a.to_dict() for a in report.actions],
            }
        )
        raise typer.Exit(EXIT_OK)

    if report.in_flight:
        console.print(f"[yellow]{report.in_flight} update(s) still in flight in a live process[/yellow]")

    if not report.actions:
        console.print(f"[green]✓ Nothing to recover[/green] ({report.scanned} record(s) checked)")
        raise typer.Exit(EXIT_OK)

    table = Table(title="Recovery Actions")
    table.add_column("Update", style="cyan", justify="right")
    table.add_column("Action", style="yellow")
    table.add_column("From")
    table.add_column("To", style="green")
    table.add_column("Event", style="dim", justify="right")
    for a in report.actions:
        table.add_row(str(a.update_id), a.action, a.from_state, a.to_state, str(a.event_id))
    console.print(table)
    raise typer.Exit(EXIT_OK)

"""
Update commands: apply, rollback, show, list
"""

from typing import Optional

import typer
from rich.table import Table

from warden.applier import CommandApplier
from warden.core.errors import ConfigError, WardenError
from warden.core.state import UpdateRecord, UpdateState
from warden.ledger import Ledger
from warden.machine import TransitionResult
from warden.query import describe

from ..context import (
    EXIT_APPLIER_FAILED,
    EXIT_OK,
    config_from,
    console,
    emit_json,
    fail,
    open_ledger,
)


def _recover_first(ctx: typer.Context, ledger: Ledger, json_output: bool) -> None:
    if not config_from(ctx).recover_on_startup:
        return
    report = ledger.recovery().run()
    if report.repaired and not json_output:
        console.print(f"[yellow]Recovered {report.repaired} interrupted update(s)[/yellow]")


def _record_table(records, title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name", style="green")
    table.add_column("Version", style="yellow")
    table.add_column("State")
    table.add_column("Created", style="dim")
    for rec in records:
        table.add_row(
            str(rec.id),
            rec.name,
            rec.version or "-",
            _state_markup(rec),
            rec.created_at.isoformat(timespec="seconds"),
        )
    return table


def _state_markup(rec: UpdateRecord) -> str:
    color = {
        UpdateState.PENDING: "blue",
        UpdateState.APPLIED: "green",
        UpdateState.FAILED: "red",
        UpdateState.ROLLED_BACK: "magenta",
    }[rec.state]
    return f"[{color}]{rec.state.value}[/{color}]"


def _report(result: TransitionResult, verb: str, json_output: bool) -> None:
    rec = result.record
    if json_output:
        emit_json(
            {
                "update": rec.to_dict(),
                "events": [ev.to_dict() for ev in result.events],
                "error": str(result.error) if result.error else None,
            }
        )
    elif result.ok:
        console.print(f"[green]✓ {rec.identity} {verb}[/green] (update {rec.id})")
    else:
        console.print(f"[red]✗ {rec.identity} {verb} with error:[/red] {result.error}")
        console.print(f"  State: {_state_markup(rec)} (update {rec.id})")
    raise typer.Exit(EXIT_OK if result.ok else EXIT_APPLIER_FAILED)


def apply_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Update name"),
    version: Optional[str] = typer.Argument(None, help="Update version"),
    command: Optional[str] = typer.Option(
        None, "--command", "-c", help="Apply command template (overrides WARDEN_APPLY_COMMAND)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Apply an update and record the outcome.

    Examples:
        warden apply agent 2.3
        warden apply agent 2.3 --command "./install.sh {name} {version}"
    """
    cfg = config_from(ctx)
    template = command or cfg.apply_command
    try:
        if not template:
            raise ConfigError("no apply command configured (set WARDEN_APPLY_COMMAND or --command)")
        ledger = open_ledger(ctx)
        try:
            _recover_first(ctx, ledger, json_output)
            applier = CommandApplier(template, cfg.rollback_command, timeout=cfg.command_timeout_secs)
            result = ledger.machine(applier).apply(name, version)
        finally:
            ledger.close()
    except WardenError as e:
        fail(e, json_output)
    _report(result, "applied" if result.ok else "failed", json_output)


def rollback_command(
    ctx: typer.Context,
    update_id: int = typer.Argument(..., help="Update id"),
    command: Optional[str] = typer.Option(
        None, "--command", "-c", help="Rollback command template (overrides WARDEN_ROLLBACK_COMMAND)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Roll back an applied or failed update.

    The record ends rolled_back even if the rollback command fails; the
    failure is recorded and the exit code is 1.
    """
    cfg = config_from(ctx)
    template = command or cfg.rollback_command
    try:
        if not template:
            raise ConfigError("no rollback command configured (set WARDEN_ROLLBACK_COMMAND or --command)")
        ledger = open_ledger(ctx)
        try:
            _recover_first(ctx, ledger, json_output)
            applier = CommandApplier(cfg.apply_command, template, timeout=cfg.command_timeout_secs)
            result = ledger.machine(applier).rollback(update_id)
        finally:
            ledger.close()
    except WardenError as e:
        fail(e, json_output)
    _report(result, "rolled back", json_output)


def show_command(
    ctx: typer.Context,
    update_id: int = typer.Argument(..., help="Update id"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show one update record and its events."""
    try:
        ledger = open_ledger(ctx)
        try:
            data = describe(ledger.store, ledger.event_log, update_id)
        finally:
            ledger.close()
    except WardenError as e:
        fail(e, json_output)

    if json_output:
        emit_json(data)
        raise typer.Exit(EXIT_OK)

    upd = data["update"]
    console.print(f"\n[bold cyan]Update {upd['id']}[/bold cyan]")
    console.print(f"  Name: [green]{upd['name']}[/green]")
    console.print(f"  Version: [yellow]{upd['version'] or '-'}[/yellow]")
    console.print(f"  State: {upd['state']}")
    console.print(f"  Created: {upd['created_at']}")
    if upd["meta"]:
        console.print(f"  Meta: {upd['meta']}")

    table = Table(title="Events")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Kind", style="green")
    table.add_column("Created", style="dim")
    for ev in data["events"]:
        table.add_row(str(ev["id"]), ev["kind"], ev["created_at"])
    console.print(table)
    raise typer.Exit(EXIT_OK)


def list_command(
    ctx: typer.Context,
    state: Optional[UpdateState] = typer.Option(None, "--state", "-s", help="Filter by state"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List update records."""
    try:
        ledger = open_ledger(ctx)
        try:
            records = ledger.store.list_by_state(state) if state else ledger.store.list_all()
        finally:
            ledger.close()
    except WardenError as e:
        fail(e, json_output)

    if json_output:
        emit_json({"updates": [r.to_dict() for r in records], "count": len(records)})
    elif not records:
        console.print("[yellow]No updates recorded[/yellow]")
    else:
        console.print(_record_table(records, "Updates"))
    raise typer.Exit(EXIT_OK)

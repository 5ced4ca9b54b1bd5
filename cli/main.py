#!/usr/bin/env python3
"""
Warden CLI - Update ledger operations

Main entrypoint for the warden command-line tool.
"""

from typing import Optional

import typer
from rich.table import Table

from warden.config import WardenConfig
from warden.core.errors import ConfigError
from warden.logging_config import setup_logging
from warden.metrics import start_metrics_server

from cli.commands import log, recover, replay, update
from cli.context import EXIT_ERROR, console

app = typer.Typer(
    name="warden",
    help="Apply, roll back and audit local updates",
    add_completion=False,
)

app.add_typer(log.app, name="log", help="Event log operations")

app.command("apply")(update.apply_command)
app.command("rollback")(update.rollback_command)
app.command("show")(update.show_command)
app.command("list")(update.list_command)
app.command("recover")(recover.recover_command)
app.command("replay")(replay.replay_command)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", help="YAML config file (overrides WARDEN_CONFIG_PATH and ./config.yaml)"
    ),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database path (overrides WARDEN_DB_PATH)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR"),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="json or text"),
):
    """Load configuration and set up logging before any command runs."""
    try:
        cfg = WardenConfig.load(config).override(db_path=db, log_level=log_level, log_format=log_format)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(EXIT_ERROR)

    try:
        setup_logging(
            cfg.log_level,
            cfg.log_format,
            log_output=cfg.log_output,
            log_file=cfg.log_file,
            max_size_mb=cfg.log_max_size_mb,
            max_files=cfg.log_max_files,
        )
    except OSError as e:
        console.print(f"[red]Cannot open log file:[/red] {e}")
        raise typer.Exit(EXIT_ERROR)
    start_metrics_server(cfg.metrics_enabled, cfg.metrics_port)
    ctx.obj = cfg


@app.command()
def version():
    """Show version information."""
    from cli import __version__
    from warden import __version__ as core_version

    table = Table(show_header=False, box=None)
    table.add_row("[bold]Warden CLI[/bold]", f"v{__version__}")
    table.add_row("Ledger", f"v{core_version}")

    console.print(table)


def main():
    """Main entrypoint."""
    app()


if __name__ == "__main__":
    main()

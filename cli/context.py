"""
Shared CLI plumbing: configuration on the typer context, exit codes, and
error reporting in rich or JSON form.
"""

import json
from typing import Any, Dict, NoReturn

import typer
from rich.console import Console

from warden.config import WardenConfig
from warden.core.errors import ConflictError, InvalidTransitionError, WardenError
from warden.ledger import Ledger

EXIT_OK = 0
EXIT_APPLIER_FAILED = 1
EXIT_ERROR = 2
EXIT_REJECTED = 3

console = Console()


def config_from(ctx: typer.Context) -> WardenConfig:
    cfg = ctx.obj if isinstance(ctx.obj, WardenConfig) else None
    if cfg is None:
        # Invoked without the root callback (e.g. a sub-app used directly)
        cfg = WardenConfig.load()
        ctx.obj = cfg
    return cfg


def open_ledger(ctx: typer.Context) -> Ledger:
    cfg = config_from(ctx)
    return Ledger.open(cfg.db_path, busy_timeout=cfg.busy_timeout_secs)


def exit_code_for(error: WardenError) -> int:
    if isinstance(error, (ConflictError, InvalidTransitionError)):
        return EXIT_REJECTED
    return EXIT_ERROR


def emit_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def fail(error: WardenError, json_output: bool) -> NoReturn:
    """Report a ledger error and exit with its code."""
    code = exit_code_for(error)
    if json_output:
        emit_json({"error": str(error), "error_type": type(error).__name__})
    else:
        console.print(f"[red]Error ({type(error).__name__}):[/red] {error}")
    raise typer.Exit(code)

"""``shiprail history`` and ``shiprail verify RUN_ID`` — read the run ledger."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from shiprail.cli.commands._factory import load_settings
from shiprail.core.run_ledger import LedgerIntegrityError, RunLedger
from shiprail.monitor.renderer import RunRenderer

console = Console()


def _open_ledger(ledger_db: Path | None) -> RunLedger:
    path = ledger_db or load_settings(console).ledger_path
    if not Path(path).exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {path}")
        raise typer.Exit(code=1)
    return RunLedger(Path(path))


def history_cmd(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show."),
    ledger_db: Path = typer.Option(None, "--ledger", "-l", help="Ledger database."),
) -> None:
    """Show the most recent run outcomes."""
    ledger = _open_ledger(ledger_db)
    RunRenderer(console=console).print_history(ledger.get_outcomes(limit))


def verify_cmd(
    run_id: str = typer.Argument(..., help="Run ID to verify."),
    ledger_db: Path = typer.Option(None, "--ledger", "-l", help="Ledger database."),
) -> None:
    """Verify the hash chain of RUN_ID and list its transitions."""
    ledger = _open_ledger(ledger_db)
    renderer = RunRenderer(console=console)
    entries = ledger.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]No ledger entries for run[/bold red] {run_id}")
        raise typer.Exit(code=1)
    renderer.print_entries(entries)
    try:
        valid = ledger.verify_chain(run_id)
    except LedgerIntegrityError as exc:
        renderer.print_chain_verification(run_id, False)
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    renderer.print_chain_verification(run_id, valid)

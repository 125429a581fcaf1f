"""``shiprail propagate TAG --commit C`` — GitOps update for a cleared tag.

Only runs when the ledger holds a run for the commit whose security gate
passed with this immutable tag.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from shiprail.cli.commands._factory import build_orchestrator
from shiprail.core.errors import InvalidInput, PipelineError

console = Console()


def propagate_cmd(
    tag: str = typer.Argument(..., help="Immutable image tag to deploy."),
    commit: str = typer.Option(..., "--commit", help="Source commit the tag was built from."),
    ledger_db: Path = typer.Option(
        None, "--ledger", "-l", help="Ledger database (defaults to SHIPRAIL_LEDGER_PATH)."
    ),
) -> None:
    """Point the GitOps manifest at TAG."""
    orchestrator = build_orchestrator(console, ledger_path=ledger_db)
    try:
        outcome = orchestrator.propagate_recorded(commit, tag)
    except InvalidInput as exc:
        console.print(f"[bold red]Refused:[/bold red] {escape(exc.message)}")
        raise typer.Exit(code=2)
    except PipelineError as exc:
        console.print(f"[bold red]{exc.kind.value}:[/bold red] {escape(exc.message)}")
        if exc.diagnostics:
            console.print(exc.diagnostics, markup=False, highlight=False)
        raise typer.Exit(code=1)

    if outcome.applied:
        console.print(
            f"[bold green]Updated[/bold green] {outcome.patch.file_path} "
            f"{outcome.patch.old_value} -> {outcome.patch.new_value} "
            f"([cyan]{outcome.commit_id[:12]}[/cyan], {outcome.attempts} attempt(s))"
        )
    else:
        console.print(
            f"[yellow]Already at {tag}[/yellow]; no commit made "
            f"([cyan]{outcome.commit_id[:12]}[/cyan])."
        )

"""``shiprail run COMMIT`` — run the full pipeline for one pushed commit.

Exit codes: 0 succeeded (or event ignored), 3 gated by policy,
2 invalid input/configuration, 1 any other failure.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from shiprail.cli.commands._factory import build_orchestrator
from shiprail.core.errors import InvalidInput
from shiprail.models.artifacts import BuildContext
from shiprail.models.runs import RunState, TriggerEvent
from shiprail.monitor.renderer import RunRenderer

console = Console()


def run_cmd(
    commit: str = typer.Argument(..., help="Commit identifier that was pushed."),
    branch: str = typer.Option("main", "--branch", "-b", help="Branch the commit was pushed to."),
    context: str = typer.Option(".", "--context", "-c", help="Build context path or URI."),
    dockerfile: str = typer.Option("", "--file", "-f", help="Dockerfile relative to the context."),
    ledger_db: Path = typer.Option(
        None, "--ledger", "-l", help="Ledger database (defaults to SHIPRAIL_LEDGER_PATH)."
    ),
) -> None:
    """Build, push, scan, gate and propagate COMMIT."""
    orchestrator = build_orchestrator(console, ledger_path=ledger_db)
    try:
        event = TriggerEvent(
            commit_id=commit,
            branch=branch,
            context=BuildContext(location=context, dockerfile=dockerfile),
        )
        run = orchestrator.handle_event(event)
    except InvalidInput as exc:
        console.print(f"[bold red]{exc.kind.value}:[/bold red] {escape(exc.message)}")
        raise typer.Exit(code=2)

    if run is None:
        console.print(
            f"[dim]Branch {branch!r} is not tracked "
            f"({orchestrator.config.tracked_branch!r}); nothing to do.[/dim]"
        )
        raise typer.Exit(code=0)

    RunRenderer(console=console).print_run(run)
    if run.state == RunState.SUCCEEDED:
        raise typer.Exit(code=0)
    if run.state == RunState.GATED:
        raise typer.Exit(code=3)
    raise typer.Exit(code=1)

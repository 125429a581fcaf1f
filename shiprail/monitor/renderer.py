"""Rich terminal renderer for pipeline runs and outcome history.

Color scheme
------------
- green     : succeeded
- magenta   : gated (policy stop, not a fault)
- red       : failed
- yellow    : running
- dim       : pending
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from shiprail.models.ledger import LedgerEntry, RunOutcomeRecord
from shiprail.models.runs import PipelineRun, RunStatus

_STATUS_STYLES: dict[RunStatus, str] = {
    RunStatus.SUCCEEDED: "bold green",
    RunStatus.GATED: "bold magenta",
    RunStatus.FAILED: "bold red",
    RunStatus.RUNNING: "bold yellow",
    RunStatus.PENDING: "dim",
}


def status_markup(status: RunStatus, text: str | None = None) -> str:
    style = _STATUS_STYLES.get(status, "")
    return f"[{style}]{text or status.value.upper()}[/{style}]"


class RunRenderer:
    """Renders runs and ledger records as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_run(self, run: PipelineRun) -> Panel:
        """Summary panel for one run: state, tags, gate, patch, timings."""
        lines = [
            f"[bold]Run:[/bold]     {run.run_id}",
            f"[bold]Commit:[/bold]  {run.commit_id} ({run.branch})",
            f"[bold]State:[/bold]   {status_markup(run.status, run.state.value)}",
        ]
        if run.artifact is not None:
            lines.append(f"[bold]Image:[/bold]   {run.artifact.ref()}")
            lines.append(f"[bold]Tags:[/bold]    {', '.join(run.artifact.tags)}")
            lines.append(f"[bold]Digest:[/bold]  {run.artifact.digest}")
        if run.gate_decision is not None:
            lines.append(
                f"[bold]Gate:[/bold]    {run.gate_decision.verdict} "
                f"({escape(run.gate_decision.summary())})"
            )
        if run.patch_commit_id:
            lines.append(f"[bold]GitOps:[/bold]  {run.patch_commit_id}")
        if run.timings:
            lines.append(
                "[bold]Timings:[/bold] "
                + ", ".join(f"{t.stage} {t.duration_ms:.0f}ms" for t in run.timings)
            )
        if run.failure is not None:
            lines.append("")
            lines.append(
                f"[bold]Reason:[/bold]  {run.failure.kind.value}: {escape(run.failure.message)}"
            )
        return Panel(
            "\n".join(lines),
            title="[bold]Pipeline Run[/bold]",
            border_style=_STATUS_STYLES.get(run.status, "white").split()[-1],
            padding=(1, 2),
        )

    def print_run(self, run: PipelineRun, *, show_diagnostics: bool = True) -> None:
        self.console.print(self.render_run(run))
        if show_diagnostics and run.failure is not None and run.failure.diagnostics:
            # Raw tool output, shown apart from the classified reason.
            self.console.print(
                Panel(
                    Text(run.failure.diagnostics),
                    title="[dim]Tool output[/dim]",
                    border_style="dim",
                )
            )

    def render_history(self, records: list[RunOutcomeRecord]) -> Table:
        table = Table(title="Run History")
        table.add_column("Run", style="cyan")
        table.add_column("Commit")
        table.add_column("State")
        table.add_column("Tags")
        table.add_column("Gate", justify="center")
        table.add_column("GitOps commit")
        table.add_column("Reason")

        for r in records:
            table.add_row(
                r.run_id,
                r.commit_id,
                status_markup(r.status, r.final_state.value),
                ", ".join(r.artifact_tags),
                r.gate_decision or "-",
                r.patch_commit_id[:12] or "-",
                r.failure.kind.value if r.failure else "",
            )
        return table

    def print_history(self, records: list[RunOutcomeRecord]) -> None:
        if not records:
            self.console.print("[dim]No runs recorded.[/dim]")
            return
        self.console.print(self.render_history(records))

    def print_entries(self, entries: list[LedgerEntry]) -> None:
        table = Table(title="Ledger Entries")
        table.add_column("#", justify="right")
        table.add_column("Transition")
        table.add_column("Detail")
        table.add_column("Hash", style="dim")
        for index, e in enumerate(entries, start=1):
            table.add_row(str(index), e.state_transition, e.detail, e.entry_hash[:12])
        self.console.print(table)

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[bold green]Hash chain valid[/bold green] for {run_id}")
        else:
            self.console.print(f"[bold red]Hash chain BROKEN[/bold red] for {run_id}")

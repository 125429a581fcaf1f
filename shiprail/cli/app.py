"""The ``shiprail`` Typer app.

Installed as the ``shiprail`` console script; see ``pyproject.toml``.
"""

from __future__ import annotations

import typer
from rich.console import Console

from shiprail.cli.commands._factory import load_settings
from shiprail.cli.commands.demo import demo_cmd
from shiprail.cli.commands.history import history_cmd, verify_cmd
from shiprail.cli.commands.propagate import propagate_cmd
from shiprail.cli.commands.run import run_cmd
from shiprail.config import configure_logging

app = typer.Typer(
    name="shiprail",
    help="Shiprail: build, scan, gate and GitOps-propagate container images.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None, "--log-level", help="Logging level (default: SHIPRAIL_LOG_LEVEL)."
    ),
) -> None:
    """Shiprail pipeline orchestrator."""
    settings = load_settings(Console())
    configure_logging("DEBUG" if settings.debug else log_level or settings.log_level)


# Register subcommands
app.command(name="run", help="Run the pipeline for a pushed commit.")(run_cmd)
app.command(name="propagate", help="Re-run the GitOps update for a gate-cleared tag.")(propagate_cmd)
app.command(name="history", help="Show recorded run outcomes.")(history_cmd)
app.command(name="verify", help="Verify the ledger hash chain of a run.")(verify_cmd)
app.command(name="demo", help="Run the pipeline against in-memory collaborators.")(demo_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()

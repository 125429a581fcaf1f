"""Build a real-adapter orchestrator from env-driven settings."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from pydantic import ValidationError
from rich.markup import escape

from shiprail.bridge.builder import DockerBuilder
from shiprail.bridge.scanner import TrivyScanner
from shiprail.config import Settings
from shiprail.core.errors import InvalidInput
from shiprail.core.orchestrator import PipelineOrchestrator
from shiprail.models.config import PipelineConfig


def build_orchestrator(
    console: Console, *, ledger_path: Path | None = None
) -> PipelineOrchestrator:
    """Create the orchestrator, or exit 2 on configuration errors."""
    try:
        settings = Settings()
        config = PipelineConfig.from_settings(settings)
        if ledger_path is not None:
            config = config.model_copy(update={"ledger_path": ledger_path})
        return PipelineOrchestrator(
            DockerBuilder(config.registry, binary=settings.build_tool),
            TrivyScanner(
                binary=settings.scanner_tool,
                credential_ref=config.registry.credential_ref,
            ),
            config=config,
            production=settings.is_production,
        )
    except InvalidInput as exc:
        console.print(f"[bold red]{exc.kind.value}:[/bold red] {escape(exc.message)}")
        raise typer.Exit(code=2)
    except ValidationError as exc:
        report_settings_error(console, exc)
        raise typer.Exit(code=2)


def load_settings(console: Console) -> Settings:
    """Read SHIPRAIL_* settings, or exit 2 naming each malformed value."""
    try:
        return Settings()
    except ValidationError as exc:
        report_settings_error(console, exc)
        raise typer.Exit(code=2)


def report_settings_error(console: Console, exc: ValidationError) -> None:
    console.print("[bold red]invalid_input:[/bold red] malformed SHIPRAIL_* setting")
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"])
        console.print(f"  {escape(field)}: {escape(error['msg'])}")

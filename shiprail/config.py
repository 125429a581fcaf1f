"""Process configuration — env-driven via pydantic-settings.

Reads from a ``.env`` file and ``SHIPRAIL_*`` environment variables.
``PipelineConfig.from_settings`` turns this into the frozen config the
pipeline components receive.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export SHIPRAIL_TRACKED_BRANCH=main
        export SHIPRAIL_FAIL_THRESHOLD=HIGH
        export SHIPRAIL_GITOPS_REPOSITORY=acme/deployments

    Credentials are never stored here: ``*_credential_ref`` fields name the
    environment variable that holds the secret.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SHIPRAIL_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Trigger
    tracked_branch: str = "main"

    # Storage paths
    ledger_path: Path = Path(".shiprail/ledger.db")
    report_dir: Path = Path(".shiprail/reports")

    # Build and registry
    build_tool: str = "docker"
    registry_url: str = "ghcr.io"
    repository_namespace: str = ""
    image_name: str = "devops-radar"
    registry_credential_ref: str = ""
    short_tag_length: int = 7

    # Scanning and gating
    scanner_tool: str = "trivy"
    fail_threshold: str = "CRITICAL"  # LOW | MEDIUM | HIGH | CRITICAL

    # GitOps propagation
    gitops_repository: str = ""  # owner/name
    gitops_branch: str = "main"
    gitops_file_path: str = "k8s/deployment.yaml"
    gitops_field_key: str = "image"
    gitops_credential_ref: str = ""
    gitops_remote_template: str = "https://github.com/{repository}.git"

    # Bounds for external calls
    build_timeout_seconds: float = 900.0
    scan_timeout_seconds: float = 300.0
    patch_timeout_seconds: float = 60.0
    patch_max_retries: int = 3
    max_concurrent_runs: int = 4

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once, for CLI entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

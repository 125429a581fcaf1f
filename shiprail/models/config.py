"""Per-process pipeline configuration models.

``PipelineConfig`` is the frozen view of ``shiprail.config.Settings`` that
components receive.  It is read once per run and never mutated.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, field_validator

from shiprail.core.errors import InvalidInput, InvalidPolicy
from shiprail.models.severity import Severity

if TYPE_CHECKING:
    from shiprail.config import Settings

_REPOSITORY_ID = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


def validate_repository_id(value: str) -> str:
    """Return *value* if it is an ``owner/name`` identifier, else raise ``InvalidInput``."""
    if not _REPOSITORY_ID.fullmatch(value or "") or {".", ".."} & set(value.split("/")):
        raise InvalidInput(
            f"Repository identifier must be in owner/name form, got {value!r}"
        )
    return value


class GatePolicy(BaseModel):
    """Security gate threshold.  A report fails if any finding is >= threshold."""

    model_config = ConfigDict(frozen=True)

    fail_threshold: Severity = Severity.CRITICAL

    @field_validator("fail_threshold", mode="before")
    @classmethod
    def _reject_unknown(cls, value: object) -> Severity:
        # InvalidPolicy is not a ValueError, so pydantic re-raises it unwrapped.
        if isinstance(value, Severity):
            severity = value
        else:
            try:
                severity = Severity(str(value).strip().upper())
            except ValueError:
                raise InvalidPolicy(f"Unrecognised failThreshold {value!r}") from None
        if severity == Severity.UNKNOWN:
            # Would fail every non-empty report.
            raise InvalidPolicy(
                "failThreshold UNKNOWN is not allowed; use LOW, MEDIUM, HIGH or CRITICAL"
            )
        return severity


class RegistryTarget(BaseModel):
    """Where built images are pushed."""

    model_config = ConfigDict(frozen=True)

    registry_url: str = "ghcr.io"
    namespace: str = ""
    image_name: str = "devops-radar"
    credential_ref: str = ""  # name of env var holding "user:token"

    @property
    def repository(self) -> str:
        """Repository path inside the registry, e.g. ``acme/devops-radar``."""
        return f"{self.namespace}/{self.image_name}" if self.namespace else self.image_name


class FieldLocator(BaseModel):
    """Identifies the image-reference field to rewrite in a manifest.

    Matches a line ``<key>: <anything/>image_name:<tag>``, i.e. the
    ``image:`` field of the container running ``image_name``.
    """

    model_config = ConfigDict(frozen=True)

    image_name: str
    key: str = "image"

    def describe(self) -> str:
        return f"{self.key}: ...{self.image_name}:<tag>"


class GitOpsTarget(BaseModel):
    """The deployment repository the pipeline propagates into."""

    model_config = ConfigDict(frozen=True)

    repository: str  # owner/name
    file_path: str = "k8s/deployment.yaml"
    locator: FieldLocator
    branch: str = "main"
    credential_ref: str = ""  # name of env var holding a token
    remote_template: str = "https://github.com/{repository}.git"


class PipelineConfig(BaseModel):
    """Everything one orchestrator process needs, in one frozen object."""

    model_config = ConfigDict(frozen=True)

    tracked_branch: str = "main"
    registry: RegistryTarget = RegistryTarget()
    gitops: GitOpsTarget | None = None
    policy: GatePolicy = GatePolicy()
    ledger_path: Path = Path(".shiprail/ledger.db")
    report_dir: Path | None = Path(".shiprail/reports")
    short_tag_length: int = 7
    build_timeout_seconds: float = 900.0
    scan_timeout_seconds: float = 300.0
    patch_timeout_seconds: float = 60.0
    patch_max_retries: int = 3
    max_concurrent_runs: int = 4

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        """Build the frozen config from env-driven ``Settings``."""
        gitops = None
        if settings.gitops_repository:
            gitops = GitOpsTarget(
                repository=settings.gitops_repository,
                file_path=settings.gitops_file_path,
                locator=FieldLocator(
                    image_name=settings.image_name,
                    key=settings.gitops_field_key,
                ),
                branch=settings.gitops_branch,
                credential_ref=settings.gitops_credential_ref,
                remote_template=settings.gitops_remote_template,
            )
        return cls(
            tracked_branch=settings.tracked_branch,
            registry=RegistryTarget(
                registry_url=settings.registry_url,
                namespace=settings.repository_namespace,
                image_name=settings.image_name,
                credential_ref=settings.registry_credential_ref,
            ),
            gitops=gitops,
            policy=GatePolicy(fail_threshold=settings.fail_threshold),
            ledger_path=settings.ledger_path,
            report_dir=settings.report_dir,
            short_tag_length=settings.short_tag_length,
            build_timeout_seconds=settings.build_timeout_seconds,
            scan_timeout_seconds=settings.scan_timeout_seconds,
            patch_timeout_seconds=settings.patch_timeout_seconds,
            patch_max_retries=settings.patch_max_retries,
            max_concurrent_runs=settings.max_concurrent_runs,
        )

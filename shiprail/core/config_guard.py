"""Configuration guard — validate the pipeline config before any external call.

Runs once when the orchestrator is constructed and reports every violation
in one error.  Production adds credential requirements.
"""

from __future__ import annotations

import logging

from shiprail.core.errors import InvalidInput, InvalidPolicy
from shiprail.models.config import PipelineConfig, validate_repository_id
from shiprail.models.severity import Severity

logger = logging.getLogger(__name__)


def collect_violations(config: PipelineConfig, *, production: bool = False) -> list[str]:
    """Return a list of human-readable violations; empty means valid."""
    violations: list[str] = []

    if not config.tracked_branch.strip():
        violations.append("tracked_branch must not be empty.")

    if not config.registry.image_name.strip():
        violations.append("image_name must not be empty.")

    if config.gitops is not None:
        try:
            validate_repository_id(config.gitops.repository)
        except InvalidInput as exc:
            violations.append(str(exc))
        if not config.gitops.file_path.strip():
            violations.append("gitops_file_path must not be empty.")

    for name in (
        "build_timeout_seconds",
        "scan_timeout_seconds",
        "patch_timeout_seconds",
    ):
        if getattr(config, name) <= 0:
            violations.append(f"{name} must be positive.")
    if config.patch_max_retries < 0:
        violations.append("patch_max_retries must be >= 0.")
    if config.max_concurrent_runs < 1:
        violations.append("max_concurrent_runs must be >= 1.")

    if production:
        if not config.registry.credential_ref:
            violations.append(
                "registry_credential_ref is required in production. "
                "Set SHIPRAIL_REGISTRY_CREDENTIAL_REF."
            )
        if config.gitops is None:
            violations.append(
                "gitops_repository is required in production. "
                "Set SHIPRAIL_GITOPS_REPOSITORY."
            )
        elif not config.gitops.credential_ref:
            violations.append(
                "gitops_credential_ref is required in production. "
                "Set SHIPRAIL_GITOPS_CREDENTIAL_REF."
            )

    return violations


def enforce_pipeline_constraints(
    config: PipelineConfig, *, production: bool = False
) -> None:
    """Raise ``InvalidInput`` listing every violation, or return quietly.

    The gate threshold is re-checked here too: a ``PipelineConfig`` built
    with ``model_construct`` bypasses ``GatePolicy`` validation.
    """
    if config.policy.fail_threshold == Severity.UNKNOWN:
        raise InvalidPolicy("failThreshold UNKNOWN is not a valid gate policy")

    violations = collect_violations(config, production=production)
    if violations:
        msg = "Pipeline configuration guard failed.\n" + "\n".join(
            f"  - {v}" for v in violations
        )
        logger.critical(msg)
        raise InvalidInput(msg)

    logger.debug("Pipeline configuration guard passed.")

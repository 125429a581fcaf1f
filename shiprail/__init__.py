"""Shiprail: build, scan, gate and GitOps-propagate container images.

A fixed two-flow pipeline:
  - build-push-scan: resolve tags, build and push, scan the pushed digest,
    evaluate the security gate
  - gitops-update: on a passed gate, rewrite the image tag in the deployment
    manifest with bounded retry on push conflicts
Every run is recorded in an append-only, hash-chained SQLite ledger.
"""

__version__ = "0.1.0"
__description__ = "Build / scan / gate / GitOps-propagate pipeline orchestrator"

from shiprail.core.orchestrator import GitOpsUpdateFlow, PipelineOrchestrator
from shiprail.cli.app import app as cli

__all__ = ["PipelineOrchestrator", "GitOpsUpdateFlow", "cli", "__version__"]

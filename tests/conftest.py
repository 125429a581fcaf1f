"""Shared test fixtures for Shiprail."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from shiprail.bridge.memory import (
    InMemoryBuilder,
    InMemoryRegistry,
    InMemoryRepository,
    InMemoryScanner,
)
from shiprail.core.manifest_patcher import ManifestPatcher
from shiprail.core.orchestrator import GitOpsUpdateFlow, PipelineOrchestrator
from shiprail.core.run_ledger import RunLedger
from shiprail.core.run_machine import RunStateMachine
from shiprail.models.artifacts import ArtifactReference, BuildContext
from shiprail.models.config import (
    FieldLocator,
    GitOpsTarget,
    PipelineConfig,
    RegistryTarget,
)
from shiprail.models.runs import TriggerEvent
from shiprail.models.severity import Finding, Severity, SeverityReport

MANIFEST_PATH = "k8s/deployment.yaml"

SAMPLE_MANIFEST = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: devops-radar
spec:
  replicas: 2
  template:
    spec:
      containers:
        - name: devops-radar
          image: ghcr.io/acme/devops-radar:0000000
          ports:
            - containerPort: 8080
        - name: sidecar
          image: ghcr.io/acme/log-shipper:1.4.2
"""


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def run_machine(ledger: RunLedger) -> RunStateMachine:
    """Provide a RunStateMachine wired to the test ledger."""
    return RunStateMachine(ledger)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "run-test-001"


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def registry_target() -> RegistryTarget:
    return RegistryTarget(namespace="acme", image_name="devops-radar")


@pytest.fixture
def gitops_target() -> GitOpsTarget:
    return GitOpsTarget(
        repository="acme/deployments",
        file_path=MANIFEST_PATH,
        locator=FieldLocator(image_name="devops-radar"),
    )


@pytest.fixture
def registry() -> InMemoryRegistry:
    return InMemoryRegistry()


@pytest.fixture
def builder(registry: InMemoryRegistry, registry_target: RegistryTarget) -> InMemoryBuilder:
    return InMemoryBuilder(registry, registry_target)


@pytest.fixture
def scanner() -> InMemoryScanner:
    return InMemoryScanner()


@pytest.fixture
def repository() -> InMemoryRepository:
    """A deployment repository seeded with one manifest at tag 0000000."""
    return InMemoryRepository({MANIFEST_PATH: SAMPLE_MANIFEST})


@pytest.fixture
def patcher(repository: InMemoryRepository) -> ManifestPatcher:
    return ManifestPatcher(lambda _: repository, max_retries=3)


@pytest.fixture
def pipeline_config(
    tmp_dir: Path, registry_target: RegistryTarget, gitops_target: GitOpsTarget
) -> PipelineConfig:
    return PipelineConfig(
        registry=registry_target,
        gitops=gitops_target,
        ledger_path=tmp_dir / "ledger.db",
        report_dir=tmp_dir / "reports",
    )


@pytest.fixture
def make_orchestrator(
    builder: InMemoryBuilder,
    scanner: InMemoryScanner,
    patcher: ManifestPatcher,
    pipeline_config: PipelineConfig,
    gitops_target: GitOpsTarget,
) -> Callable[..., PipelineOrchestrator]:
    """Factory fixture: orchestrator wired to the in-memory fakes."""

    def _factory(**overrides: Any) -> PipelineOrchestrator:
        kwargs: dict[str, Any] = {
            "gitops": GitOpsUpdateFlow(patcher, gitops_target),
            "config": pipeline_config,
        }
        kwargs.update(overrides)
        return PipelineOrchestrator(
            kwargs.pop("builder", builder), kwargs.pop("scanner", scanner), **kwargs
        )

    return _factory


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_event() -> Callable[..., TriggerEvent]:
    """Factory fixture: build a TriggerEvent on ``main`` with a local context."""

    def _factory(commit_id: str, branch: str = "main", location: str = "./app") -> TriggerEvent:
        return TriggerEvent(
            commit_id=commit_id, branch=branch, context=BuildContext(location=location)
        )

    return _factory


@pytest.fixture
def artifact() -> ArtifactReference:
    return ArtifactReference(
        registry="ghcr.io",
        repository="acme/devops-radar",
        tags=("abc1234", "latest"),
        digest="sha256:" + "a" * 64,
    )


@pytest.fixture
def make_report(artifact: ArtifactReference) -> Callable[..., SeverityReport]:
    """Factory fixture: a report with one finding per given severity."""

    def _factory(*severities: Severity) -> SeverityReport:
        findings = tuple(
            Finding(
                finding_id=f"CVE-2024-{1000 + i}",
                severity=sev,
                component=f"pkg{i}",
                installed_version="1.0",
                fixed_version="1.1",
            )
            for i, sev in enumerate(severities)
        )
        return SeverityReport(artifact=artifact, findings=findings, scanner="memory")

    return _factory

"""In-memory collaborators for demos and tests.

These satisfy the same protocols as the real adapters and keep enough
state (pushed tags, commits) to assert on what the pipeline did.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from shiprail.core.errors import (
    InvalidInput,
    ManifestNotFound,
    PipelineError,
    PushConflict,
    ScanUnavailable,
)
from shiprail.core.hasher import content_address, sha256_hex
from shiprail.models.artifacts import ArtifactReference, BuildContext
from shiprail.models.config import RegistryTarget
from shiprail.models.manifest import FetchedFile
from shiprail.models.severity import Finding, SeverityReport


class InMemoryRegistry:
    """Maps ``repository:tag`` to a digest."""

    def __init__(self) -> None:
        self.tags: dict[str, str] = {}
        self._lock = threading.Lock()

    def push(self, repository: str, tags: Iterable[str], digest: str) -> None:
        with self._lock:
            for tag in tags:
                self.tags[f"{repository}:{tag}"] = digest

    def resolve(self, repository: str, tag: str) -> str | None:
        return self.tags.get(f"{repository}:{tag}")


class InMemoryBuilder:
    """``ArtifactBuilder`` that "builds" by hashing the context and tag.

    Parameters
    ----------
    registry:
        Where tags are recorded on success.
    target:
        Registry URL, namespace and image name.
    failures:
        Immutable tag -> error to raise instead of building.
    """

    def __init__(
        self,
        registry: InMemoryRegistry,
        target: RegistryTarget | None = None,
        *,
        failures: dict[str, PipelineError] | None = None,
    ) -> None:
        self.registry = registry
        self.target = target or RegistryTarget()
        self.failures = dict(failures or {})
        self.builds: list[tuple[str, ...]] = []

    def build(
        self, context: BuildContext, tags: Sequence[str], *, timeout: float
    ) -> ArtifactReference:
        tags = tuple(tags)
        if not tags:
            raise InvalidInput("At least one tag is required")
        self.builds.append(tags)
        failure = self.failures.get(tags[0])
        if failure is not None:
            raise failure
        digest = content_address({"context": context.location, "tag": tags[0]})
        self.registry.push(self.target.repository, tags, digest)
        return ArtifactReference(
            registry=self.target.registry_url,
            repository=self.target.repository,
            tags=tags,
            digest=digest,
        )


class InMemoryScanner:
    """``VulnerabilityScanner`` returning canned findings per immutable tag.

    Parameters
    ----------
    findings:
        Immutable tag -> findings to report.  Unlisted tags scan clean.
    unavailable:
        Immutable tags for which the scanner cannot reach the artifact.
    """

    name = "memory"

    def __init__(
        self,
        findings: dict[str, list[Finding]] | None = None,
        *,
        unavailable: Iterable[str] = (),
    ) -> None:
        self.findings = {k: list(v) for k, v in (findings or {}).items()}
        self.unavailable = set(unavailable)
        self.scanned: list[str] = []

    def scan(self, artifact: ArtifactReference, *, timeout: float) -> SeverityReport:
        self.scanned.append(artifact.pinned_ref)
        if artifact.immutable_tag in self.unavailable:
            raise ScanUnavailable(
                f"Cannot reach {artifact.pinned_ref}",
                diagnostics="unauthorized: authentication required",
            )
        return SeverityReport(
            artifact=artifact,
            findings=tuple(self.findings.get(artifact.immutable_tag, [])),
            scanner=self.name,
        )


class InMemoryRepository:
    """``GitOpsRepository`` holding files and a linear commit history.

    ``before_commit`` (if set) is invoked at the start of every ``commit``
    call, before the branch tip is compared; tests use it to interleave a
    competing writer.
    """

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self._lock = threading.RLock()
        self.files: dict[str, str] = {}
        self.history: list[dict[str, Any]] = []
        self.head = ""
        self.before_commit: Callable[[str, str], None] | None = None
        self.closed = 0
        if files:
            self._record(dict(files), "Initial commit")

    def _record(self, files: dict[str, str], message: str) -> str:
        commit_id = sha256_hex(
            f"{self.head}\n{message}\n{sorted(files.items())}".encode("utf-8")
        )[:40]
        self.files = files
        self.head = commit_id
        self.history.append({"commit_id": commit_id, "message": message, "files": dict(files)})
        return commit_id

    @property
    def commit_count(self) -> int:
        return len(self.history)

    def fetch(self, path: str) -> FetchedFile:
        with self._lock:
            if path not in self.files:
                raise ManifestNotFound(f"{path} does not exist at {self.head[:12]}")
            return FetchedFile(path=path, content=self.files[path], commit_id=self.head)

    def commit(self, path: str, content: str, *, parent: str, message: str) -> str:
        hook = self.before_commit
        if hook is not None:
            hook(path, parent)
        with self._lock:
            if parent != self.head:
                raise PushConflict(
                    f"Branch is at {self.head[:12]}, not {parent[:12]}",
                    diagnostics="! [rejected] HEAD -> main (fetch first)",
                )
            files = dict(self.files)
            files[path] = content
            return self._record(files, message)

    def close(self) -> None:
        self.closed += 1

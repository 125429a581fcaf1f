"""Built artifact references and build inputs."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class BuildContext(BaseModel):
    """Where the build tool should build from."""

    model_config = ConfigDict(frozen=True)

    location: str  # local path or remote URI understood by the build tool
    dockerfile: str = ""  # relative to location; tool default when empty

    @property
    def is_local(self) -> bool:
        return "://" not in self.location

    @property
    def path(self) -> Path:
        return Path(self.location)


class ArtifactReference(BaseModel):
    """A pushed image: registry, repository, tags, and the registry digest.

    Every tag in ``tags`` resolves to ``digest``.  The first tag is the
    immutable commit tag; ``latest`` is always present as well.
    """

    model_config = ConfigDict(frozen=True)

    registry: str  # e.g. "ghcr.io"
    repository: str  # e.g. "acme/devops-radar"
    tags: tuple[str, ...]
    digest: str  # "sha256:<hex>"

    @property
    def immutable_tag(self) -> str:
        return self.tags[0]

    @property
    def name(self) -> str:
        """``registry/repository`` without tag or digest."""
        return f"{self.registry}/{self.repository}" if self.registry else self.repository

    def ref(self, tag: str | None = None) -> str:
        """Tag reference, e.g. ``ghcr.io/acme/devops-radar:abc1234``."""
        return f"{self.name}:{tag or self.immutable_tag}"

    @property
    def pinned_ref(self) -> str:
        """Digest-pinned reference, the form scanned after push."""
        return f"{self.name}@{self.digest}"

"""GitOps manifest patch models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from shiprail.models.config import FieldLocator


class FetchedFile(BaseModel):
    """A file's content at a specific commit of the target branch."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    commit_id: str  # branch tip the content was read at


class ManifestPatch(BaseModel):
    """A single-field rewrite of an image tag in a deployment manifest."""

    model_config = ConfigDict(frozen=True)

    repository: str  # owner/name
    file_path: str
    locator: FieldLocator
    line_number: int  # 1-based
    old_value: str
    new_value: str

    @property
    def is_noop(self) -> bool:
        return self.old_value == self.new_value

    def commit_message(self) -> str:
        return (
            f"Update {self.locator.image_name} image to {self.new_value}\n\n"
            f"{self.file_path}:{self.line_number} {self.old_value} -> {self.new_value}"
        )


class PatchOutcome(BaseModel):
    """Result of ``ManifestPatcher.patch``.

    ``commit_id`` is the new commit, or the prior branch tip when the
    manifest already pointed at the requested tag (``applied`` is False).
    """

    model_config = ConfigDict(frozen=True)

    commit_id: str
    applied: bool
    patch: ManifestPatch
    attempts: int = 1

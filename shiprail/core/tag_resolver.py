"""Deterministic image tags for a commit.

A commit yields exactly two tags, in order: the immutable short-commit tag
and the mutable ``latest`` tag.
"""

from __future__ import annotations

import re

from shiprail.core.errors import InvalidInput

LATEST_TAG = "latest"
DEFAULT_SHORT_LENGTH = 7

# Registry tag grammar: [A-Za-z0-9_][A-Za-z0-9_.-]{0,127}
_COMMIT_ID = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


class TagResolver:
    """Compute ``(<short-commit-id>, "latest")`` for a commit identifier.

    Parameters
    ----------
    length:
        Number of leading characters of the commit identifier used for the
        immutable tag.  Shorter identifiers are used whole.
    """

    def __init__(self, length: int = DEFAULT_SHORT_LENGTH) -> None:
        if length < 1 or length > 128:
            raise InvalidInput(f"Short tag length must be 1..128, got {length}")
        self.length = length

    def resolve(self, commit_id: str) -> tuple[str, str]:
        return (self.immutable_tag(commit_id), LATEST_TAG)

    def immutable_tag(self, commit_id: str) -> str:
        if not isinstance(commit_id, str) or not commit_id.strip():
            raise InvalidInput("Commit identifier is empty")
        if not _COMMIT_ID.fullmatch(commit_id):
            raise InvalidInput(
                f"Commit identifier {commit_id!r} contains characters not allowed in an image tag"
            )
        short = commit_id[: self.length]
        if short == LATEST_TAG:
            raise InvalidInput(
                f"Commit identifier {commit_id!r} would collide with the mutable tag"
            )
        return short

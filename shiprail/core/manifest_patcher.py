"""ManifestPatcher — point one image field of a GitOps manifest at a new tag.

The rewrite is textual and narrow: exactly one line is located by a
``FieldLocator``, only the tag characters on that line change, and every
other byte of the file is preserved.  A locator that matches nothing (or
more than one line) raises ``ManifestNotFound``; the patcher never guesses
a location or appends a field.

Concurrent writers are handled optimistically: a ``PushConflict`` from the
repository triggers a re-fetch of the latest content and a re-application
of the patch, up to ``max_retries`` times, before escalating to
``PropagateFailed``.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable

from shiprail.bridge.repository import GitOpsRepository
from shiprail.core.errors import InvalidInput, ManifestNotFound, PropagateFailed, PushConflict
from shiprail.models.config import FieldLocator, validate_repository_id
from shiprail.models.manifest import ManifestPatch, PatchOutcome

logger = logging.getLogger(__name__)

_TAG = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")

RepositoryFactory = Callable[[str], GitOpsRepository]


def _locator_pattern(locator: FieldLocator) -> re.Pattern[str]:
    """Regex for ``<key>: [registry/][path/]<image_name>:<tag>`` on one line."""
    return re.compile(
        r"^(?P<head>\s*(?:-\s+)?" + re.escape(locator.key) + r"\s*:\s*[\"']?"
        r"(?:[^\s\"'#@/]+/)*" + re.escape(locator.image_name) + r":)"
        r"(?P<tag>[A-Za-z0-9_][A-Za-z0-9_.-]{0,127})"
        r"(?P<tail>[\"']?\s*(?:#.*)?)$"
    )


def rewrite_image_tag(
    content: str, locator: FieldLocator, new_tag: str
) -> tuple[str, int, str]:
    """Replace the tag of the single field matching *locator*.

    Returns ``(new_content, line_number, old_tag)``; ``new_content`` equals
    *content* when the field already carries *new_tag*.
    """
    pattern = _locator_pattern(locator)
    lines = content.splitlines(keepends=True)

    matches: list[tuple[int, re.Match[str], str]] = []
    for index, line in enumerate(lines):
        body = line.rstrip("\r\n")
        match = pattern.match(body)
        if match:
            matches.append((index, match, line[len(body):]))

    if not matches:
        raise ManifestNotFound(f"No field matches locator {locator.describe()!r}")
    if len(matches) > 1:
        numbers = ", ".join(str(i + 1) for i, _, _ in matches)
        raise ManifestNotFound(
            f"Locator {locator.describe()!r} is ambiguous: matches lines {numbers}"
        )

    index, match, ending = matches[0]
    old_tag = match.group("tag")
    lines[index] = f"{match.group('head')}{new_tag}{match.group('tail')}{ending}"
    return "".join(lines), index + 1, old_tag


class ManifestPatcher:
    """Applies ``ManifestPatch`` rewrites with bounded optimistic retry.

    Parameters
    ----------
    repository_factory:
        Returns a ``GitOpsRepository`` for an ``owner/name`` identifier.
    max_retries:
        Re-fetch-and-retry attempts allowed after the first conflict.
    timeout:
        Overall bound, in seconds, for one ``patch`` call including retries.
    backoff:
        Base delay between retries (multiplied by the attempt number).
    """

    def __init__(
        self,
        repository_factory: RepositoryFactory,
        *,
        max_retries: int = 3,
        timeout: float = 60.0,
        backoff: float = 0.0,
    ) -> None:
        if max_retries < 0:
            raise InvalidInput(f"max_retries must be >= 0, got {max_retries}")
        self._factory = repository_factory
        self.max_retries = max_retries
        self.timeout = timeout
        self.backoff = backoff

    def patch(
        self,
        target_repo: str,
        file_path: str,
        locator: FieldLocator,
        new_tag: str,
    ) -> PatchOutcome:
        """Point the located image field at *new_tag* and push the change.

        Idempotent: when the field already holds *new_tag* no commit is
        made and the current branch tip is returned.
        """
        validate_repository_id(target_repo)
        if not _TAG.fullmatch(new_tag or ""):
            raise InvalidInput(f"Invalid image tag {new_tag!r}")

        repo = self._factory(target_repo)
        try:
            return self._patch_with_retry(repo, target_repo, file_path, locator, new_tag)
        finally:
            repo.close()

    def _patch_with_retry(
        self,
        repo: GitOpsRepository,
        target_repo: str,
        file_path: str,
        locator: FieldLocator,
        new_tag: str,
    ) -> PatchOutcome:
        deadline = time.monotonic() + self.timeout
        attempts = 0

        while True:
            attempts += 1
            fetched = repo.fetch(file_path)
            new_content, line_number, old_tag = rewrite_image_tag(
                fetched.content, locator, new_tag
            )
            patch = ManifestPatch(
                repository=target_repo,
                file_path=file_path,
                locator=locator,
                line_number=line_number,
                old_value=old_tag,
                new_value=new_tag,
            )

            if new_content == fetched.content:
                logger.info(
                    "%s:%s already at %s; nothing to commit",
                    target_repo, file_path, new_tag,
                )
                return PatchOutcome(
                    commit_id=fetched.commit_id,
                    applied=False,
                    patch=patch,
                    attempts=attempts,
                )

            try:
                commit_id = repo.commit(
                    file_path,
                    new_content,
                    parent=fetched.commit_id,
                    message=patch.commit_message(),
                )
            except PushConflict as exc:
                if attempts > self.max_retries:
                    raise PropagateFailed(
                        f"Push to {target_repo} still conflicting after "
                        f"{attempts} attempt(s): {exc.message}",
                        diagnostics=exc.diagnostics,
                    ) from exc
                self._check_deadline(deadline, target_repo, file_path, attempts, exc)
                logger.warning(
                    "Conflict pushing %s:%s (attempt %d/%d); re-fetching",
                    target_repo, file_path, attempts, self.max_retries + 1,
                )
                if self.backoff:
                    time.sleep(min(self.backoff * attempts, deadline - time.monotonic()))
                    self._check_deadline(deadline, target_repo, file_path, attempts, exc)
                continue

            logger.info(
                "Patched %s:%s line %d %s -> %s (%s)",
                target_repo, file_path, line_number, old_tag, new_tag, commit_id[:12],
            )
            return PatchOutcome(
                commit_id=commit_id,
                applied=True,
                patch=patch,
                attempts=attempts,
            )

    def _check_deadline(
        self,
        deadline: float,
        target_repo: str,
        file_path: str,
        attempts: int,
        conflict: PushConflict,
    ) -> None:
        if time.monotonic() >= deadline:
            raise PropagateFailed(
                f"Patch of {target_repo}:{file_path} timed out after "
                f"{self.timeout}s ({attempts} attempt(s))",
                diagnostics=conflict.diagnostics,
            ) from conflict

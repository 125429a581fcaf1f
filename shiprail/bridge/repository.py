"""GitOps repository access — fetch a file at the branch tip, push a commit.

``commit`` is a compare-and-set on the branch: it must raise
``PushConflict`` when the branch tip is no longer ``parent``, which is what
drives the patcher's re-fetch-and-retry loop.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from shiprail.bridge.process import ToolResult, run_tool
from shiprail.core.errors import InvalidInput, ManifestNotFound, PropagateFailed, PushConflict
from shiprail.models.manifest import FetchedFile

logger = logging.getLogger(__name__)

_CONFLICT_MARKERS = ("non-fast-forward", "fetch first", "[rejected]", "stale info")


@runtime_checkable
class GitOpsRepository(Protocol):
    """Protocol for the deployment repository backend."""

    def fetch(self, path: str) -> FetchedFile:
        """Return *path* at the current branch tip.  ``ManifestNotFound`` if absent."""
        ...

    def commit(self, path: str, content: str, *, parent: str, message: str) -> str:
        """Write *content* to *path* as a child of *parent* and push it.

        Returns the new commit id.  Raises ``PushConflict`` if the branch
        has moved past *parent*.
        """
        ...

    def close(self) -> None:
        """Release any local state (clones, connections) held by the backend."""
        ...


def safe_relative_path(path: str) -> str:
    """Validate a repository-relative POSIX path."""
    pure = PurePosixPath(path)
    if not path or pure.is_absolute() or ".." in pure.parts:
        raise InvalidInput(f"Manifest path must be relative to the repository: {path!r}")
    return str(pure)


class GitCliRepository:
    """``GitOpsRepository`` backed by the ``git`` binary and a local clone.

    Parameters
    ----------
    repository:
        ``owner/name`` identifier, substituted into *remote_template*.
    branch:
        Target branch (default ``main``).
    credential_ref:
        Name of an env var holding an access token, injected into the
        HTTPS remote URL.
    workdir:
        Clone location; a temporary directory when omitted, removed again
        by ``close``.
    timeout:
        Bound for each git invocation, in seconds.
    """

    def __init__(
        self,
        repository: str,
        *,
        branch: str = "main",
        remote_template: str = "https://github.com/{repository}.git",
        credential_ref: str = "",
        workdir: Path | None = None,
        timeout: float = 30.0,
        author: str = "shiprail <shiprail@localhost>",
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.repository = repository
        self.branch = branch
        self.timeout = timeout
        self.author = author
        self._environ = environ if environ is not None else os.environ
        self._remote = self._remote_url(remote_template, credential_ref)
        self._owns_workdir = workdir is None
        self.workdir = Path(workdir) if workdir else Path(
            tempfile.mkdtemp(prefix="shiprail-gitops-")
        )

    def _remote_url(self, template: str, credential_ref: str) -> str:
        url = template.format(repository=self.repository)
        token = self._environ.get(credential_ref, "") if credential_ref else ""
        self._token = token
        if token and url.startswith("https://"):
            url = f"https://x-access-token:{token}@{url[len('https://'):]}"
        return url

    # ------------------------------------------------------------------
    # GitOpsRepository
    # ------------------------------------------------------------------

    def fetch(self, path: str) -> FetchedFile:
        path = safe_relative_path(path)
        self._sync()
        head = self._git("rev-parse", "HEAD").stdout.strip()
        target = self.workdir / path
        if not target.is_file():
            raise ManifestNotFound(
                f"{path} does not exist in {self.repository}@{self.branch} ({head[:12]})"
            )
        return FetchedFile(
            path=path,
            content=target.read_bytes().decode("utf-8"),
            commit_id=head,
        )

    def commit(self, path: str, content: str, *, parent: str, message: str) -> str:
        path = safe_relative_path(path)
        head = self._git("rev-parse", "HEAD").stdout.strip()
        if head != parent:
            raise PushConflict(
                f"Local clone is at {head[:12]}, expected parent {parent[:12]}"
            )

        # Bytes in and out so CRLF manifests keep their line endings.
        (self.workdir / path).write_bytes(content.encode("utf-8"))
        self._git("add", "--", path)
        name, _, email = self.author.partition(" <")
        self._git(
            "-c", f"user.name={name}",
            "-c", f"user.email={email.rstrip('>')}",
            "commit", "-m", message,
        )

        pushed = run_tool(
            ["git", "push", "origin", f"HEAD:{self.branch}"],
            timeout=self.timeout,
            cwd=str(self.workdir),
        )
        if not pushed.ok:
            # Drop the local commit so the next fetch starts clean.
            self._git("reset", "--hard", parent)
            if any(marker in pushed.stderr for marker in _CONFLICT_MARKERS):
                raise PushConflict(
                    f"{self.repository}@{self.branch} advanced past {parent[:12]}",
                    diagnostics=self._scrub(pushed.diagnostics),
                )
            raise PropagateFailed(
                f"git push to {self.repository} failed",
                diagnostics=self._scrub(pushed.diagnostics),
            )

        new_head = self._git("rev-parse", "HEAD").stdout.strip()
        logger.info("Pushed %s to %s@%s", new_head[:12], self.repository, self.branch)
        return new_head

    def close(self) -> None:
        """Remove the clone if this instance created it.  Caller-supplied workdirs are kept."""
        if self._owns_workdir and self.workdir.exists():
            shutil.rmtree(self.workdir)
            logger.debug("Removed clone %s", self.workdir)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _sync(self) -> None:
        """Clone on first use, otherwise hard-reset to the remote branch tip."""
        if not (self.workdir / ".git").exists():
            result = run_tool(
                [
                    "git", "clone", "--depth", "1", "--branch", self.branch,
                    self._remote, str(self.workdir),
                ],
                timeout=self.timeout,
            )
            self._check(result, "clone")
            return
        self._git("fetch", "--depth", "1", "origin", self.branch)
        self._git("reset", "--hard", "FETCH_HEAD")

    def _git(self, *args: str) -> ToolResult:
        result = run_tool(["git", *args], timeout=self.timeout, cwd=str(self.workdir))
        self._check(result, args[0] if args[0] != "-c" else "commit")
        return result

    def _check(self, result: ToolResult, action: str) -> None:
        if not result.ok:
            raise PropagateFailed(
                f"git {action} failed for {self.repository}",
                diagnostics=self._scrub(result.diagnostics),
            )

    def _scrub(self, text: str) -> str:
        return text.replace(self._token, "***") if self._token else text

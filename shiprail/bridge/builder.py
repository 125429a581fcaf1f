"""ArtifactBuilder — build an image and push it under every requested tag.

The stage is all-or-nothing from the caller's point of view: either every
tag is pushed and resolves to one digest, or the build raises and no
partial tag set is reported.
"""

from __future__ import annotations

import logging
import os
import re
import time
from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable

from shiprail.bridge.process import run_tool
from shiprail.core.errors import BuildFailure, InvalidInput, PushFailure
from shiprail.models.artifacts import ArtifactReference, BuildContext
from shiprail.models.config import RegistryTarget

logger = logging.getLogger(__name__)

_PUSH_DIGEST = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")


@runtime_checkable
class ArtifactBuilder(Protocol):
    """Protocol for build-and-push backends."""

    def build(
        self, context: BuildContext, tags: Sequence[str], *, timeout: float
    ) -> ArtifactReference:
        """Build *context*, push under every tag, return the pushed reference.

        Raises ``BuildFailure`` (build error, missing context, timeout) or
        ``PushFailure`` (registry auth or push rejected).
        """
        ...


class DockerBuilder:
    """Builds with ``docker build`` and pushes each tag with ``docker push``.

    Parameters
    ----------
    target:
        Registry, namespace and image name to push to.
    binary:
        Docker-compatible CLI (``docker``, ``podman``).
    environ:
        Environment used to resolve ``target.credential_ref``.  Defaults to
        ``os.environ``.
    """

    def __init__(
        self,
        target: RegistryTarget,
        *,
        binary: str = "docker",
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.target = target
        self.binary = binary
        self._environ = environ if environ is not None else os.environ

    def _ref(self, tag: str) -> str:
        return f"{self.target.registry_url}/{self.target.repository}:{tag}"

    def build(
        self, context: BuildContext, tags: Sequence[str], *, timeout: float
    ) -> ArtifactReference:
        if not tags:
            raise InvalidInput("At least one tag is required")
        if context.is_local and not context.path.exists():
            raise BuildFailure(f"Build context not found: {context.location}")

        deadline = time.monotonic() + timeout

        args = [self.binary, "build"]
        for tag in tags:
            args += ["-t", self._ref(tag)]
        if context.dockerfile:
            args += ["-f", context.dockerfile]
        args.append(context.location)

        logger.info("Building %s from %s", self._ref(tags[0]), context.location)
        result = run_tool(args, timeout=_remaining(deadline))
        if not result.ok:
            reason = "timed out" if result.timed_out else f"exited {result.returncode}"
            raise BuildFailure(
                f"{self.binary} build {reason}", diagnostics=result.diagnostics
            )

        self._login(deadline)

        digests: dict[str, str] = {}
        for tag in tags:
            ref = self._ref(tag)
            pushed = run_tool([self.binary, "push", ref], timeout=_remaining(deadline))
            if pushed.timed_out:
                raise BuildFailure(
                    f"Push of {ref} timed out", diagnostics=pushed.diagnostics
                )
            if not pushed.ok:
                raise PushFailure(
                    f"Registry rejected push of {ref}", diagnostics=pushed.diagnostics
                )
            match = _PUSH_DIGEST.search(pushed.stdout)
            if not match:
                raise PushFailure(
                    f"Push of {ref} did not report a digest",
                    diagnostics=pushed.diagnostics,
                )
            digests[tag] = match.group(1)

        if len(set(digests.values())) != 1:
            raise PushFailure(
                "Pushed tags resolved to different digests",
                diagnostics="\n".join(f"{t}: {d}" for t, d in digests.items()),
            )

        artifact = ArtifactReference(
            registry=self.target.registry_url,
            repository=self.target.repository,
            tags=tuple(tags),
            digest=digests[tags[0]],
        )
        logger.info("Pushed %s (%s)", artifact.ref(), artifact.digest)
        return artifact

    def _login(self, deadline: float) -> None:
        """Log in to the registry when a credential reference is configured."""
        if not self.target.credential_ref:
            return
        credential = self._environ.get(self.target.credential_ref, "")
        if ":" not in credential:
            raise PushFailure(
                f"Registry credential {self.target.credential_ref} is not set "
                "(expected 'user:token')"
            )
        user, token = credential.split(":", 1)
        result = run_tool(
            [
                self.binary, "login", self.target.registry_url,
                "--username", user, "--password-stdin",
            ],
            timeout=_remaining(deadline),
            input_text=token,
        )
        if not result.ok:
            raise PushFailure(
                f"Authentication to {self.target.registry_url} failed",
                diagnostics=result.diagnostics,
            )


def _remaining(deadline: float) -> float:
    """Seconds left before *deadline*; never below a small positive floor."""
    return max(deadline - time.monotonic(), 0.001)

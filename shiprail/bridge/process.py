"""Bounded subprocess execution for external tools."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping, Sequence

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class ToolResult(BaseModel):
    """Outcome of one external tool invocation."""

    model_config = ConfigDict(frozen=True)

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def diagnostics(self) -> str:
        """Combined raw output, verbatim, for failure reports."""
        parts = [p for p in (self.stdout, self.stderr) if p]
        return "\n".join(parts)


def run_tool(
    args: Sequence[str],
    *,
    timeout: float,
    input_text: str | None = None,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
) -> ToolResult:
    """Run *args* and capture output.  Never raises on non-zero exit.

    A timeout or a missing binary is reported as a failed ``ToolResult``
    (``returncode`` -1) so callers classify every failure the same way.
    """
    logger.debug("exec %s (timeout=%ss)", " ".join(args), timeout)
    try:
        proc = subprocess.run(
            list(args),
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("%s timed out after %ss", args[0], timeout)
        return ToolResult(
            args=tuple(args),
            returncode=-1,
            stdout=_text(exc.stdout),
            stderr=_text(exc.stderr) + f"\n{args[0]} timed out after {timeout}s",
            timed_out=True,
        )
    except OSError as exc:
        logger.error("%s could not be started: %s", args[0], exc)
        return ToolResult(args=tuple(args), returncode=-1, stdout="", stderr=str(exc))
    return ToolResult(
        args=tuple(args),
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )


def _text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value

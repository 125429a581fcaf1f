"""Classified error taxonomy for pipeline runs.

Every failure that ends a run is one of the ``ErrorKind`` values below.
Exceptions carry the classified kind plus the external tool's raw output
(``diagnostics``) verbatim, so a reason and its evidence are never merged
into a single string.

``Gated`` has no exception: a policy stop is a correct outcome, recorded
as a failed ``GateDecision`` rather than raised.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classified reasons a run can stop."""

    INVALID_INPUT = "invalid_input"
    INVALID_POLICY = "invalid_policy"
    BUILD_FAILURE = "build_failure"
    PUSH_FAILURE = "push_failure"
    SCAN_UNAVAILABLE = "scan_unavailable"
    GATED = "gated"
    MANIFEST_NOT_FOUND = "manifest_not_found"
    PUSH_CONFLICT = "push_conflict"
    PROPAGATE_FAILED = "propagate_failed"


class PipelineError(RuntimeError):
    """Base class for every classified pipeline failure.

    Parameters
    ----------
    message:
        Concise, human-readable reason.
    diagnostics:
        Raw output of the external tool involved, if any.  Stored verbatim.
    """

    kind: ErrorKind = ErrorKind.PROPAGATE_FAILED

    def __init__(self, message: str, *, diagnostics: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.diagnostics = diagnostics


class InvalidInput(PipelineError):
    """Malformed trigger, identifier, or configuration.  Raised before any external call."""

    kind = ErrorKind.INVALID_INPUT


class InvalidPolicy(InvalidInput):
    """Gate policy configuration is not acceptable (e.g. UNKNOWN threshold)."""

    kind = ErrorKind.INVALID_POLICY


class BuildFailure(PipelineError):
    """The external build tool failed, timed out, or the context is missing."""

    kind = ErrorKind.BUILD_FAILURE


class PushFailure(PipelineError):
    """The registry rejected authentication or the push."""

    kind = ErrorKind.PUSH_FAILURE


class ScanUnavailable(PipelineError):
    """The scanner could not produce a report.  Never equivalent to a pass."""

    kind = ErrorKind.SCAN_UNAVAILABLE


class ManifestNotFound(PipelineError):
    """The target file or field does not exist (or is ambiguous) in the manifest."""

    kind = ErrorKind.MANIFEST_NOT_FOUND


class PushConflict(PipelineError):
    """The GitOps branch advanced between fetch and push."""

    kind = ErrorKind.PUSH_CONFLICT


class PropagateFailed(PipelineError):
    """Propagation could not complete (retries exhausted, timeout, git failure)."""

    kind = ErrorKind.PROPAGATE_FAILED

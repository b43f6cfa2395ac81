"""Domain exceptions.

Every fatal outcome of a public operation is a ``CmuxError`` carrying one
``ErrorCode``.  Callers (the CLI, tests) branch on ``exc.code``; the message
is for humans only.  Non-fatal problems are never raised -- they are returned
as warnings on the result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cmuxlink.models.enums import ErrorCode

if TYPE_CHECKING:
    from cmuxlink.models.results import ResumeResult


class CmuxError(Exception):
    """Base class: a stable code plus a human message."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidArgumentError(CmuxError, ValueError):
    code = ErrorCode.INVALID_ARGUMENT


class CapabilityMissingError(CmuxError):
    code = ErrorCode.CMUX_CAPABILITY_MISSING


class StateWriteError(CmuxError):
    """Loading or persisting local state failed."""

    code = ErrorCode.STATE_WRITE_FAILED


class NotMappedError(CmuxError, LookupError):
    code = ErrorCode.CMUX_NOT_MAPPED


class AmbiguousTargetError(CmuxError):
    code = ErrorCode.CMUX_AMBIGUOUS_TARGET


class SelectionRequiredError(CmuxError):
    """An interactive choice is needed but none can be made."""

    code = ErrorCode.NON_INTERACTIVE_SELECTION_REQUIRED


class RuntimeUnavailableError(CmuxError):
    code = ErrorCode.CMUX_RUNTIME_UNAVAILABLE


class WorkspaceNotFoundError(CmuxError, LookupError):
    code = ErrorCode.WORKSPACE_NOT_FOUND

    def __init__(self, workspace_id: str) -> None:
        super().__init__(f"workspace not found: {workspace_id}")


class WorkspaceNotActiveError(CmuxError):
    code = ErrorCode.WORKSPACE_NOT_ACTIVE

    def __init__(self, workspace_id: str) -> None:
        super().__init__(f"workspace is archived: {workspace_id}")


class SessionNotFoundError(CmuxError, LookupError):
    code = ErrorCode.SESSION_NOT_FOUND


class CancelledError(CmuxError):
    """The caller's cancel event was set before the operation finished.

    Steps already performed are not rolled back.
    """

    code = ErrorCode.INTERNAL_ERROR


class SessionRestorePartialError(CmuxError):
    """Strict resume finished every step but collected warnings.

    All side effects have already happened; ``result`` reports what was
    actually restored.
    """

    code = ErrorCode.SESSION_RESTORE_PARTIAL

    def __init__(self, result: ResumeResult) -> None:
        super().__init__("resume completed with unresolved restore items in strict mode")
        self.result = result


class UnsupportedVersionError(ValueError):
    """A state file was written by an incompatible version."""

    def __init__(self, kind: str, version: int) -> None:
        super().__init__(f"unsupported {kind} version: {version}")


class SelectionError(Exception):
    """Raised by a ``Selector`` when the user aborts or the choice fails."""

"""Pydantic models for state files, runtime views and operation results."""

from cmuxlink.models.enums import ErrorCode, ProbeStatus, WarningCode
from cmuxlink.models.mapping import MappingFile, RuntimeEntry, WorkspaceMapping
from cmuxlink.models.results import (
    ListResult,
    ListRow,
    OpenFailure,
    OpenResult,
    OpenResultItem,
    OpenTarget,
    ResultWarning,
    ResumeRequest,
    ResumeResult,
    SaveRequest,
    SaveResult,
    StatusResult,
    StatusRow,
    SwitchEntryCandidate,
    SwitchResult,
    SwitchWorkspaceCandidate,
)
from cmuxlink.models.runtime import Capabilities, Pane, RuntimeWorkspace, Surface
from cmuxlink.models.session import (
    SessionDocument,
    SessionEntry,
    SessionIndexFile,
    SessionPane,
    SessionSurface,
    WorkspaceSessions,
)

__all__ = [
    "Capabilities",
    "ErrorCode",
    "ListResult",
    "ListRow",
    "MappingFile",
    "OpenFailure",
    "OpenResult",
    "OpenResultItem",
    "OpenTarget",
    "Pane",
    "ProbeStatus",
    "ResultWarning",
    "ResumeRequest",
    "ResumeResult",
    "RuntimeEntry",
    "RuntimeWorkspace",
    "SaveRequest",
    "SaveResult",
    "SessionDocument",
    "SessionEntry",
    "SessionIndexFile",
    "SessionPane",
    "SessionSurface",
    "StatusResult",
    "StatusRow",
    "Surface",
    "SwitchEntryCandidate",
    "SwitchResult",
    "SwitchWorkspaceCandidate",
    "WarningCode",
    "WorkspaceMapping",
    "WorkspaceSessions",
]

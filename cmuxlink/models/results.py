"""Request / result models for the public operations.

Results are plain data: a failing operation raises ``CmuxError`` instead of
returning a result, while non-fatal problems ride along as warnings.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from cmuxlink.models.enums import ErrorCode, WarningCode

# -- Shared ------------------------------------------------------------------


class ResultWarning(BaseModel):
    code: WarningCode
    message: str


# -- Open --------------------------------------------------------------------


class OpenTarget(BaseModel):
    workspace_id: str
    workspace_path: str
    title: str = ""


class OpenResultItem(BaseModel):
    workspace_id: str
    workspace_path: str
    cmux_workspace_id: str
    ordinal: int
    title: str
    reused_existing: bool = False


class OpenFailure(BaseModel):
    workspace_id: str
    code: ErrorCode
    message: str


class OpenResult(BaseModel):
    results: list[OpenResultItem] = Field(default_factory=list)
    failures: list[OpenFailure] = Field(default_factory=list)


# -- List / Status -----------------------------------------------------------


class ListRow(BaseModel):
    workspace_id: str
    cmux_workspace_id: str
    ordinal: int
    title: str
    last_used_at: datetime | None = None


class ListResult(BaseModel):
    rows: list[ListRow] = Field(default_factory=list)
    runtime_checked: bool = False
    pruned_count: int = 0
    runtime_warning: str = ""


class StatusRow(BaseModel):
    workspace_id: str
    cmux_workspace_id: str
    ordinal: int
    title: str
    exists: bool


class StatusResult(BaseModel):
    rows: list[StatusRow] = Field(default_factory=list)


# -- Switch ------------------------------------------------------------------


class SwitchWorkspaceCandidate(BaseModel):
    workspace_id: str
    mapped_count: int


class SwitchEntryCandidate(BaseModel):
    cmux_workspace_id: str
    ordinal: int
    title: str


class SwitchResult(BaseModel):
    workspace_id: str
    cmux_workspace_id: str
    ordinal: int
    title: str


# -- Save / Resume -----------------------------------------------------------


class SaveRequest(BaseModel):
    root: str
    workspace_id: str
    label: str = ""
    include_browser_state: bool = True
    screen_lines: int = 0
    """Lines of screen buffer to capture; values < 1 use the default (120)."""


class SaveResult(BaseModel):
    session_id: str
    label: str = ""
    path: str
    saved_at: datetime
    pane_count: int = 0
    surface_count: int = 0
    browser_state_saved: bool = False
    warnings: list[ResultWarning] = Field(default_factory=list)


class ResumeRequest(BaseModel):
    root: str
    workspace_id: str
    session_id: str
    strict: bool = False
    skip_browser: bool = False


class ResumeResult(BaseModel):
    session_id: str
    session_label: str = ""
    resumed_at: datetime
    workspace_selected: bool = False
    focus_restored: bool = False
    browser_restored: bool = False
    warnings: list[ResultWarning] = Field(default_factory=list)

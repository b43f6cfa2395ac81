"""Captured session models: the per-root index and the per-session document."""

from __future__ import annotations

from datetime import datetime

from typing import Any

from pydantic import BaseModel, Field, field_validator

SESSION_INDEX_VERSION = 1
SESSION_DOCUMENT_VERSION = 1

# -- Index -------------------------------------------------------------------


class SessionEntry(BaseModel):
    """Session index row.  Lightweight; the full snapshot lives in ``path``."""

    session_id: str
    label: str = ""
    created_at: datetime | None = None
    path: str = Field(description="Session directory, relative to root")
    pane_count: int = 0
    surface_count: int = 0
    browser_state_saved: bool = False


class WorkspaceSessions(BaseModel):
    sessions: list[SessionEntry] = Field(default_factory=list)

    @field_validator("sessions", mode="before")
    @classmethod
    def _null_sessions(cls, v: Any) -> Any:
        return [] if v is None else v


class SessionIndexFile(BaseModel):
    version: int = SESSION_INDEX_VERSION
    workspaces: dict[str, WorkspaceSessions] = Field(default_factory=dict)

    @field_validator("workspaces", mode="before")
    @classmethod
    def _null_workspaces(cls, v: Any) -> Any:
        return {} if v is None else v


# -- Document ----------------------------------------------------------------


class SessionSurface(BaseModel):
    surface_id: str = ""
    surface_ref: str = ""
    title: str = ""
    type: str = ""
    selected: bool = False
    screen_path: str = ""
    browser_state_path: str = ""

    @property
    def handle(self) -> str:
        return first_non_empty(self.surface_id, self.surface_ref)


class SessionPane(BaseModel):
    pane_id: str = ""
    pane_ref: str = ""
    focused: bool = False
    surfaces: list[SessionSurface] = Field(default_factory=list)

    @property
    def handle(self) -> str:
        return first_non_empty(self.pane_id, self.pane_ref)


class SessionDocument(BaseModel):
    """Full snapshot of one runtime session, stored as ``session.json``."""

    version: int = SESSION_DOCUMENT_VERSION
    session_id: str
    workspace_id: str
    cmux_workspace_id: str
    label: str = ""
    created_at: datetime | None = None
    focus_pane_id: str = ""
    panes: list[SessionPane] = Field(default_factory=list)


def first_non_empty(*values: str) -> str:
    """Return the first value that is non-blank after stripping."""
    for value in values:
        value = value.strip()
        if value:
            return value
    return ""

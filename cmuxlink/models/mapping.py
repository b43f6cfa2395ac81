"""Workspace <-> runtime mapping models.

One ``MappingFile`` per root.  Each logical workspace owns a monotonic
ordinal counter and its list of runtime entries (at most one live entry
under the current 1:1 open policy).
"""

from __future__ import annotations

from datetime import datetime

from typing import Any

from pydantic import BaseModel, Field, field_validator

MAPPING_VERSION = 1


class RuntimeEntry(BaseModel):
    """Binding between a logical workspace and one cmux workspace."""

    cmux_workspace_id: str
    ordinal: int
    title_snapshot: str = ""
    created_at: datetime | None = None
    last_used_at: datetime | None = None

    @property
    def handle(self) -> str:
        """Synthetic handle, e.g. ``workspace:3``."""
        return f"workspace:{self.ordinal}"


class WorkspaceMapping(BaseModel):
    next_ordinal: int = 1
    entries: list[RuntimeEntry] = Field(default_factory=list)

    @field_validator("entries", mode="before")
    @classmethod
    def _null_entries(cls, v: Any) -> Any:
        return [] if v is None else v


class MappingFile(BaseModel):
    version: int = MAPPING_VERSION
    workspaces: dict[str, WorkspaceMapping] = Field(default_factory=dict)

    @field_validator("workspaces", mode="before")
    @classmethod
    def _null_workspaces(cls, v: Any) -> Any:
        return {} if v is None else v

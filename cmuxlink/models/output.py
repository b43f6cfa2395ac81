"""JSON envelope printed by the CLI in ``--format json`` mode."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ErrorBody(BaseModel):
    code: str
    message: str


class Envelope(BaseModel):
    """``{ok, action, workspace_id, result, error}`` -- one per invocation."""

    ok: bool
    action: str
    workspace_id: str = ""
    result: Any = None
    error: ErrorBody | None = None

"""Ordinal allocation and canonical runtime titles."""

from __future__ import annotations

from cmuxlink.models.mapping import MappingFile, WorkspaceMapping


def allocate_ordinal(mapping: MappingFile, workspace_id: str) -> int:
    """Return the workspace's next ordinal and advance its counter.

    An unknown workspace starts at 1.  Callers sharing ``mapping`` across
    threads must hold the mapping lock.
    """
    workspace_id = workspace_id.strip()
    if not workspace_id:
        msg = "workspace id is required"
        raise ValueError(msg)
    ws = mapping.workspaces.setdefault(workspace_id, WorkspaceMapping())
    if ws.next_ordinal < 1:
        ws.next_ordinal = 1
    ordinal = ws.next_ordinal
    ws.next_ordinal += 1
    return ordinal


def format_workspace_title(workspace_id: str, title: str, ordinal: int) -> str:
    """Canonical runtime title, e.g. ``"WS1 | hello world [1]"``.

    Deterministic so that renaming an already-titled workspace is idempotent.
    """
    workspace_id = workspace_id.strip()
    if not workspace_id:
        msg = "workspace id is required"
        raise ValueError(msg)
    if ordinal < 1:
        msg = f"ordinal must be >= 1, got {ordinal}"
        raise ValueError(msg)
    title = " ".join(title.split())
    if not title:
        return f"{workspace_id} [{ordinal}]"
    return f"{workspace_id} | {title} [{ordinal}]"

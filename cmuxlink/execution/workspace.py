"""Logical workspace lookup on disk.

Workspaces are owned by an external lifecycle store; this module only reads
its directory layout::

    {root}/workspaces/{workspace_id}/     active
    {root}/archive/{workspace_id}/        archived

and the optional meta file inside an active workspace for its title.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import BaseModel

from cmuxlink.errors import InvalidArgumentError, WorkspaceNotActiveError, WorkspaceNotFoundError
from cmuxlink.models.results import OpenTarget

ACTIVE_DIR = "workspaces"
ARCHIVE_DIR = "archive"
DEFAULT_META_FILENAME = ".gionx.meta.json"


class _MetaWorkspace(BaseModel):
    title: str | None = None


class WorkspaceMeta(BaseModel):
    """The part of a workspace meta file this package reads."""

    workspace: _MetaWorkspace | None = None


def validate_workspace_id(workspace_id: str) -> str:
    """Return the stripped id.  Raises ``InvalidArgumentError`` if unusable."""
    workspace_id = workspace_id.strip()
    if not workspace_id:
        msg = "invalid workspace id: id is required"
        raise InvalidArgumentError(msg)
    if "/" in workspace_id or "\\" in workspace_id:
        msg = f"invalid workspace id {workspace_id!r}: must not contain path separators"
        raise InvalidArgumentError(msg)
    return workspace_id


def resolve_active_workspace_path(root: str | Path, workspace_id: str) -> Path:
    """Return the active workspace directory.

    Raises ``WorkspaceNotActiveError`` if it is archived and
    ``WorkspaceNotFoundError`` if it exists in neither location.
    """
    active = Path(root) / ACTIVE_DIR / workspace_id
    if active.is_dir():
        return active
    if (Path(root) / ARCHIVE_DIR / workspace_id).is_dir():
        raise WorkspaceNotActiveError(workspace_id)
    raise WorkspaceNotFoundError(workspace_id)


def load_workspace_title(workspace_path: Path, meta_filename: str = DEFAULT_META_FILENAME) -> str:
    """Read ``workspace.title`` from the meta file; "" if absent or unreadable."""
    path = workspace_path / meta_filename
    try:
        meta = WorkspaceMeta.model_validate_json(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return ""
    except (OSError, ValueError):
        logger.warning("Ignoring unreadable workspace meta file {}", path)
        return ""
    if meta.workspace is None or meta.workspace.title is None:
        return ""
    return meta.workspace.title.strip()


def resolve_open_targets(
    root: str | Path,
    workspace_ids: list[str],
    *,
    meta_filename: str = DEFAULT_META_FILENAME,
) -> list[OpenTarget]:
    """Build open targets for the given ids, in order, skipping duplicates."""
    targets: list[OpenTarget] = []
    seen: set[str] = set()
    for raw_id in workspace_ids:
        workspace_id = validate_workspace_id(raw_id)
        if workspace_id in seen:
            continue
        seen.add(workspace_id)
        path = resolve_active_workspace_path(root, workspace_id)
        targets.append(
            OpenTarget(
                workspace_id=workspace_id,
                workspace_path=str(path),
                title=load_workspace_title(path, meta_filename),
            )
        )
    return targets


def list_active_workspace_ids(root: str | Path) -> list[str]:
    """Sorted ids of every active workspace directory."""
    base = Path(root) / ACTIVE_DIR
    if not base.is_dir():
        return []
    return sorted(p.name for p in base.iterdir() if p.is_dir())

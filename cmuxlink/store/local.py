"""Local filesystem stores.

Both files live under the root's state directory::

    {root}/.cmuxlink/state/cmux-workspaces.json
    {root}/.cmuxlink/state/cmux-sessions.json

Writes are atomic: data is written to a temporary file in the same directory,
then renamed over the target path.  A missing file loads as an empty document
at the current version.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

from loguru import logger

from cmuxlink.errors import UnsupportedVersionError
from cmuxlink.models.mapping import MAPPING_VERSION, MappingFile
from cmuxlink.models.session import SESSION_INDEX_VERSION, SessionIndexFile

STATE_DIR = Path(".cmuxlink") / "state"
MAPPING_FILENAME = "cmux-workspaces.json"
SESSIONS_FILENAME = "cmux-sessions.json"


def mapping_path(root: str | Path) -> Path:
    return Path(root) / STATE_DIR / MAPPING_FILENAME


def sessions_path(root: str | Path) -> Path:
    return Path(root) / STATE_DIR / SESSIONS_FILENAME


class LocalMappingStore:
    """Filesystem implementation of the ``MappingStore`` protocol."""

    def __init__(self, root: str | Path) -> None:
        self.path = mapping_path(root)

    def load(self) -> MappingFile:
        try:
            raw = _read_file(self.path)
        except FileNotFoundError:
            return MappingFile()
        mapping = MappingFile.model_validate_json(raw)
        _normalize_mapping(mapping)
        return mapping

    def save(self, mapping: MappingFile) -> None:
        _normalize_mapping(mapping)
        _atomic_write(self.path, mapping.model_dump_json(indent=2) + "\n")
        logger.debug("Saved cmux mapping ({} workspaces) to {}", len(mapping.workspaces), self.path)


class LocalSessionStore:
    """Filesystem implementation of the ``SessionStore`` protocol."""

    def __init__(self, root: str | Path) -> None:
        self.path = sessions_path(root)

    def load(self) -> SessionIndexFile:
        try:
            raw = _read_file(self.path)
        except FileNotFoundError:
            return SessionIndexFile()
        index = SessionIndexFile.model_validate_json(raw)
        _normalize_sessions(index)
        return index

    def save(self, index: SessionIndexFile) -> None:
        _normalize_sessions(index)
        _atomic_write(self.path, index.model_dump_json(indent=2) + "\n")
        logger.debug("Saved cmux session index to {}", self.path)


# -- Normalisation -------------------------------------------------------------


def _normalize_mapping(mapping: MappingFile) -> None:
    if mapping.version == 0:
        mapping.version = MAPPING_VERSION
    if mapping.version != MAPPING_VERSION:
        raise UnsupportedVersionError("cmux mapping", mapping.version)
    for ws in mapping.workspaces.values():
        if ws.next_ordinal < 1:
            ws.next_ordinal = 1


def _normalize_sessions(index: SessionIndexFile) -> None:
    """Validate session ids and sort each workspace newest first.

    Ties on ``created_at`` fall back to ``session_id`` descending.
    """
    if index.version == 0:
        index.version = SESSION_INDEX_VERSION
    if index.version != SESSION_INDEX_VERSION:
        raise UnsupportedVersionError("cmux session", index.version)
    for ws_id, ws in index.workspaces.items():
        seen: set[str] = set()
        for entry in ws.sessions:
            sid = entry.session_id.strip()
            if not sid:
                msg = f"workspace {ws_id} contains empty session_id"
                raise ValueError(msg)
            if sid in seen:
                msg = f"workspace {ws_id} contains duplicate session_id: {sid}"
                raise ValueError(msg)
            seen.add(sid)
        ws.sessions.sort(
            key=lambda e: (e.created_at.timestamp() if e.created_at else float("-inf"), e.session_id),
            reverse=True,
        )


# -- File helpers ----------------------------------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename.

    The temp file is created in the same directory so the rename never
    crosses filesystems.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str:
    """Read file contents.  Raises ``FileNotFoundError`` if missing."""
    return path.read_text(encoding="utf-8")

"""Session capture: snapshot a runtime workspace's panes, screens and browsers.

Artifacts for one session live inside the logical workspace::

    {workspace}/artifacts/cmux/sessions/{session_id}/
        screen/{surface}.txt
        browser/{surface}.state.json
        session.json

Capture is best-effort per pane and per surface: listing, reading or saving
failures become warnings on the result.  Only the preconditions, the pane
listing and the final document/index writes are fatal.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from loguru import logger

from cmuxlink.errors import InvalidArgumentError, NotMappedError, RuntimeUnavailableError, StateWriteError
from cmuxlink.execution.common import (
    Clock,
    check_cancelled,
    normalize_relative_path,
    sanitize_path_component,
    slugify_label,
    utc_now,
)
from cmuxlink.execution.workspace import resolve_active_workspace_path, validate_workspace_id
from cmuxlink.models.enums import WarningCode
from cmuxlink.models.mapping import MappingFile
from cmuxlink.models.results import ResultWarning, SaveRequest, SaveResult
from cmuxlink.models.session import SessionDocument, SessionEntry, SessionPane, SessionSurface, WorkspaceSessions
from cmuxlink.runtime.base import ClientFactory, RuntimeCallError, RuntimeClient
from cmuxlink.store.base import MappingStore, SessionStore
from cmuxlink.store.local import LocalMappingStore, LocalSessionStore

DEFAULT_SCREEN_LINES = 120
SESSIONS_DIR = Path("artifacts") / "cmux" / "sessions"
SESSION_DOCUMENT_FILENAME = "session.json"

MappingStoreFactory = Callable[[str], MappingStore]
SessionStoreFactory = Callable[[str], SessionStore]


class SessionCaptureEngine:
    """Saves runtime sessions for logical workspaces."""

    def __init__(
        self,
        client_factory: ClientFactory,
        mapping_store_factory: MappingStoreFactory = LocalMappingStore,
        session_store_factory: SessionStoreFactory = LocalSessionStore,
        *,
        clock: Clock = datetime.now,
    ) -> None:
        self._client_factory = client_factory
        self._mapping_store_factory = mapping_store_factory
        self._session_store_factory = session_store_factory
        self._clock = clock

    def save(self, req: SaveRequest, *, cancel: threading.Event | None = None) -> SaveResult:
        """Capture the mapped runtime workspace of ``req.workspace_id``.

        ``cancel`` is checked between panes and surfaces; a cancelled save
        leaves partial artifacts on disk but no index entry.
        """
        root = req.root.strip()
        if not root or not req.workspace_id.strip():
            msg = "root and workspace_id are required"
            raise InvalidArgumentError(msg)
        workspace_id = validate_workspace_id(req.workspace_id)
        workspace_path = resolve_active_workspace_path(root, workspace_id)

        mapping = load_mapping(self._mapping_store_factory(root))
        cmux_id = mapped_runtime_id(mapping, workspace_id)

        check_cancelled(cancel, "cmux save")
        client = self._client_factory()
        try:
            client.identify(cmux_id)
        except RuntimeCallError as exc:
            msg = f"identify cmux workspace: {exc}"
            raise RuntimeUnavailableError(msg) from exc

        session_store = self._session_store_factory(root)
        try:
            index = session_store.load()
        except (OSError, ValueError) as exc:
            msg = f"load cmux sessions: {exc}"
            raise StateWriteError(msg) from exc

        now = utc_now(self._clock)
        existing = index.workspaces.get(workspace_id, WorkspaceSessions()).sessions
        session_id = allocate_session_id(existing, now, req.label)
        session_dir = workspace_path / SESSIONS_DIR / session_id

        capture = _Capture(
            client=client,
            root=root,
            cmux_id=cmux_id,
            session_dir=session_dir,
            include_browser=req.include_browser_state,
            lines=req.screen_lines if req.screen_lines >= 1 else DEFAULT_SCREEN_LINES,
            cancel=cancel,
        )
        capture.prepare_dirs()
        doc = SessionDocument(
            session_id=session_id,
            workspace_id=workspace_id,
            cmux_workspace_id=cmux_id,
            label=req.label.strip(),
            created_at=now,
        )
        capture.run(doc)

        try:
            (session_dir / SESSION_DOCUMENT_FILENAME).write_text(doc.model_dump_json(indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            msg = f"write session metadata: {exc}"
            raise StateWriteError(msg) from exc

        entry = SessionEntry(
            session_id=session_id,
            label=doc.label,
            created_at=now,
            path=normalize_relative_path(root, session_dir),
            pane_count=len(doc.panes),
            surface_count=capture.surface_count,
            browser_state_saved=capture.browser_saved > 0,
        )
        index.workspaces.setdefault(workspace_id, WorkspaceSessions()).sessions.append(entry)
        try:
            session_store.save(index)
        except (OSError, ValueError) as exc:
            msg = f"save cmux sessions: {exc}"
            raise StateWriteError(msg) from exc

        if capture.warnings:
            logger.warning("Session {} saved with {} warnings", session_id, len(capture.warnings))
        logger.info(
            "Saved cmux session {} for {} ({} panes, {} surfaces)",
            session_id,
            workspace_id,
            entry.pane_count,
            entry.surface_count,
        )
        return SaveResult(
            session_id=entry.session_id,
            label=entry.label,
            path=entry.path,
            saved_at=now,
            pane_count=entry.pane_count,
            surface_count=entry.surface_count,
            browser_state_saved=entry.browser_state_saved,
            warnings=capture.warnings,
        )


class _Capture:
    """Walks panes and surfaces of one runtime workspace, collecting warnings."""

    def __init__(
        self,
        *,
        client: RuntimeClient,
        root: str,
        cmux_id: str,
        session_dir: Path,
        include_browser: bool,
        lines: int,
        cancel: threading.Event | None = None,
    ) -> None:
        self.client = client
        self.root = root
        self.cmux_id = cmux_id
        self.screen_dir = session_dir / "screen"
        self.browser_dir = session_dir / "browser"
        self.include_browser = include_browser
        self.lines = lines
        self.cancel = cancel
        self.warnings: list[ResultWarning] = []
        self.surface_count = 0
        self.browser_saved = 0

    def prepare_dirs(self) -> None:
        try:
            self.screen_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"create session screen dir: {exc}"
            raise StateWriteError(msg) from exc
        if self.include_browser:
            try:
                self.browser_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                msg = f"create session browser dir: {exc}"
                raise StateWriteError(msg) from exc

    def run(self, doc: SessionDocument) -> None:
        try:
            panes = self.client.list_panes(self.cmux_id)
        except RuntimeCallError as exc:
            msg = f"list cmux panes: {exc}"
            raise RuntimeUnavailableError(msg) from exc

        for pane in panes:
            check_cancelled(self.cancel, "cmux save")
            pane_handle = pane.handle
            if not pane_handle:
                continue
            try:
                surfaces = self.client.list_pane_surfaces(self.cmux_id, pane_handle)
            except RuntimeCallError as exc:
                self._warn(WarningCode.SURFACE_LIST_FAILED, f"list pane surfaces ({pane_handle}): {exc}")
                continue

            doc_pane = SessionPane(pane_id=pane.id.strip(), pane_ref=pane.ref.strip(), focused=pane.focused)
            if pane.focused and not doc.focus_pane_id:
                doc.focus_pane_id = doc_pane.handle
            for surface in surfaces:
                check_cancelled(self.cancel, "cmux save")
                self.surface_count += 1
                doc_surface = SessionSurface(
                    surface_id=surface.id.strip(),
                    surface_ref=surface.ref.strip(),
                    title=surface.title.strip(),
                    type=surface.type.strip(),
                    selected=surface.selected,
                )
                doc_pane.surfaces.append(doc_surface)
                handle = doc_surface.handle
                if not handle:
                    self._warn(WarningCode.SURFACE_CAPTURE_FAILED, "surface id/ref is empty")
                    continue
                self._capture_screen(doc_surface, handle)
                if self.include_browser and surface.is_browser:
                    self._capture_browser(doc_surface, handle)
            doc.panes.append(doc_pane)

        doc.panes.sort(key=lambda p: p.handle)

    def _capture_screen(self, doc_surface: SessionSurface, handle: str) -> None:
        path = self.screen_dir / f"{sanitize_path_component(handle)}.txt"
        try:
            text = self.client.read_screen(self.cmux_id, handle, self.lines, True)
        except RuntimeCallError as exc:
            self._warn(WarningCode.SCREEN_CAPTURE_FAILED, f"read screen ({handle}): {exc}")
            return
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            self._warn(WarningCode.STATE_WRITE_FAILED, f"write screen snapshot ({handle}): {exc}")
            return
        doc_surface.screen_path = normalize_relative_path(self.root, path)

    def _capture_browser(self, doc_surface: SessionSurface, handle: str) -> None:
        path = self.browser_dir / f"{sanitize_path_component(handle)}.state.json"
        try:
            self.client.browser_state_save(self.cmux_id, handle, str(path))
        except RuntimeCallError as exc:
            self._warn(WarningCode.BROWSER_STATE_SAVE_FAILED, f"save browser state ({handle}): {exc}")
            return
        doc_surface.browser_state_path = normalize_relative_path(self.root, path)
        self.browser_saved += 1

    def _warn(self, code: WarningCode, message: str) -> None:
        logger.warning("{}: {}", code, message)
        self.warnings.append(ResultWarning(code=code, message=message))


# ---------------------------------------------------------------------------
# Helpers shared with resume
# ---------------------------------------------------------------------------


def load_mapping(store: MappingStore) -> MappingFile:
    try:
        return store.load()
    except (OSError, ValueError) as exc:
        msg = f"load cmux mapping: {exc}"
        raise StateWriteError(msg) from exc


def mapped_runtime_id(mapping: MappingFile, workspace_id: str) -> str:
    """The runtime id of the workspace's single mapped entry."""
    ws = mapping.workspaces.get(workspace_id)
    entries = ws.entries if ws else []
    if len(entries) > 1:
        msg = f"multiple cmux mappings found for workspace: {workspace_id}"
        raise NotMappedError(msg)
    cmux_id = entries[0].cmux_workspace_id.strip() if entries else ""
    if not cmux_id:
        msg = f"no cmux mapping found for workspace: {workspace_id}"
        raise NotMappedError(msg)
    return cmux_id


def allocate_session_id(existing: list[SessionEntry], now: datetime, label: str) -> str:
    """``YYYYMMDDTHHMMSSZ[-label-slug]``, suffixed ``-2``, ``-3``... on collision."""
    base = now.strftime("%Y%m%dT%H%M%SZ")
    slug = slugify_label(label)
    if slug:
        base = f"{base}-{slug}"
    seen = {e.session_id.strip() for e in existing}
    if base not in seen:
        return base
    n = 2
    while f"{base}-{n}" in seen:
        n += 1
    return f"{base}-{n}"

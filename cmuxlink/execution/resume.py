"""Session resume: bring a captured session back into the runtime.

Every restore step is independent and best-effort.  Strict mode runs the
same steps; it only turns a result with warnings into
``SessionRestorePartialError``.
"""

from __future__ import annotations

import threading
from datetime import datetime

from loguru import logger

from cmuxlink.errors import (
    InvalidArgumentError,
    RuntimeUnavailableError,
    SessionNotFoundError,
    SessionRestorePartialError,
    StateWriteError,
)
from cmuxlink.execution.capture import (
    SESSION_DOCUMENT_FILENAME,
    MappingStoreFactory,
    SessionStoreFactory,
    load_mapping,
    mapped_runtime_id,
)
from cmuxlink.execution.common import Clock, check_cancelled, resolve_stored_path, utc_now
from cmuxlink.execution.workspace import resolve_active_workspace_path, validate_workspace_id
from cmuxlink.models.enums import WarningCode
from cmuxlink.models.results import ResultWarning, ResumeRequest, ResumeResult
from cmuxlink.models.session import SessionDocument, SessionEntry, SessionIndexFile
from cmuxlink.runtime.base import ClientFactory, RuntimeCallError
from cmuxlink.store.base import SessionStore
from cmuxlink.store.local import LocalMappingStore, LocalSessionStore


class SessionResumeEngine:
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

    def list_sessions(self, root: str, workspace_id: str) -> list[SessionEntry]:
        """Saved sessions of a workspace, newest first."""
        root = root.strip()
        if not root or not workspace_id.strip():
            msg = "root and workspace_id are required"
            raise InvalidArgumentError(msg)
        index = _load_index(self._session_store_factory(root))
        ws = index.workspaces.get(workspace_id.strip())
        return list(ws.sessions) if ws else []

    def resume(self, req: ResumeRequest, *, cancel: threading.Event | None = None) -> ResumeResult:
        root = req.root.strip()
        session_id = req.session_id.strip()
        if not root or not req.workspace_id.strip() or not session_id:
            msg = "root, workspace_id, and session_id are required"
            raise InvalidArgumentError(msg)
        workspace_id = validate_workspace_id(req.workspace_id)
        resolve_active_workspace_path(root, workspace_id)

        mapping = load_mapping(self._mapping_store_factory(root))
        cmux_id = mapped_runtime_id(mapping, workspace_id)
        index = _load_index(self._session_store_factory(root))
        entry = _find_session(index, workspace_id, session_id)
        doc = _load_document(root, entry)

        check_cancelled(cancel, "cmux resume")
        client = self._client_factory()
        try:
            client.select_workspace(cmux_id)
        except RuntimeCallError as exc:
            msg = f"select cmux workspace: {exc}"
            raise RuntimeUnavailableError(msg) from exc

        warnings: list[ResultWarning] = []
        focus_restored = False
        focus_pane = doc.focus_pane_id.strip()
        if focus_pane:
            check_cancelled(cancel, "cmux resume")
            try:
                client.focus_pane(focus_pane, cmux_id)
            except RuntimeCallError as exc:
                warnings.append(
                    ResultWarning(code=WarningCode.FOCUS_RESTORE_FAILED, message=f"focus pane ({focus_pane}): {exc}")
                )
            else:
                focus_restored = True

        browser_restored = False
        if not req.skip_browser:
            for pane in doc.panes:
                for surface in pane.surfaces:
                    if not surface.browser_state_path.strip():
                        continue
                    check_cancelled(cancel, "cmux resume")
                    handle = surface.handle
                    if not handle:
                        warnings.append(
                            ResultWarning(
                                code=WarningCode.BROWSER_STATE_RESTORE_FAILED,
                                message="surface id/ref is empty for browser restore",
                            )
                        )
                        continue
                    state_path = resolve_stored_path(root, surface.browser_state_path)
                    try:
                        client.browser_state_load(cmux_id, handle, str(state_path))
                    except RuntimeCallError as exc:
                        warnings.append(
                            ResultWarning(
                                code=WarningCode.BROWSER_STATE_RESTORE_FAILED,
                                message=f"load browser state ({handle}): {exc}",
                            )
                        )
                        continue
                    browser_restored = True

        for w in warnings:
            logger.warning("{}: {}", w.code, w.message)
        result = ResumeResult(
            session_id=entry.session_id,
            session_label=entry.label,
            resumed_at=utc_now(self._clock),
            workspace_selected=True,
            focus_restored=focus_restored,
            browser_restored=browser_restored,
            warnings=warnings,
        )
        if req.strict and warnings:
            raise SessionRestorePartialError(result)
        logger.info("Resumed cmux session {} for {}", entry.session_id, workspace_id)
        return result


def _load_index(store: SessionStore) -> SessionIndexFile:
    try:
        return store.load()
    except (OSError, ValueError) as exc:
        msg = f"load cmux sessions: {exc}"
        raise StateWriteError(msg) from exc


def _find_session(index: SessionIndexFile, workspace_id: str, session_id: str) -> SessionEntry:
    ws = index.workspaces.get(workspace_id)
    for entry in ws.sessions if ws else []:
        if entry.session_id.strip() == session_id:
            return entry
    msg = f"session not found: {session_id}"
    raise SessionNotFoundError(msg)


def _load_document(root: str, entry: SessionEntry) -> SessionDocument:
    path = resolve_stored_path(root, entry.path) / SESSION_DOCUMENT_FILENAME
    try:
        return SessionDocument.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        msg = f"load session metadata: {exc}"
        raise SessionNotFoundError(msg) from exc

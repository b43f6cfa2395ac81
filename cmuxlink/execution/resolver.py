"""Switch-target resolution.

Precedence, most specific first:

1. workspace + handle: match within that workspace.
2. workspace only: resolve among its entries.
3. handle only: search every workspace; a unique match wins, anything else
   falls through to (4) when interactive.
4. nothing: interactive workspace selection, then (2).

A handle matches an entry by exact runtime id or by ``workspace:<ordinal>``.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from datetime import datetime

from loguru import logger

from cmuxlink.errors import (
    AmbiguousTargetError,
    CmuxError,
    NotMappedError,
    SelectionError,
    SelectionRequiredError,
    StateWriteError,
)
from cmuxlink.execution.common import Clock, check_cancelled, utc_now
from cmuxlink.execution.reconcile import reconcile_mapping
from cmuxlink.models.enums import ErrorCode
from cmuxlink.models.mapping import MappingFile, RuntimeEntry
from cmuxlink.models.results import SwitchEntryCandidate, SwitchResult, SwitchWorkspaceCandidate
from cmuxlink.runtime.base import RuntimeCallError, RuntimeClient
from cmuxlink.selector import Selector
from cmuxlink.store.base import MappingStore


def resolve_switch_target(
    mapping: MappingFile,
    workspace_id: str = "",
    handle: str = "",
    *,
    non_interactive: bool,
    selector: Selector | None = None,
) -> tuple[str, RuntimeEntry]:
    """Return ``(workspace_id, entry)`` for the switch target."""
    workspace_id = workspace_id.strip()
    handle = handle.strip()

    if workspace_id:
        ws = mapping.workspaces.get(workspace_id)
        if ws is None or not ws.entries:
            msg = f"no cmux mapping found for workspace: {workspace_id}"
            raise NotMappedError(msg)
        if not handle:
            return _resolve_entry(workspace_id, ws.entries, non_interactive, selector)
        matches = _filter_entries(ws.entries, handle)
        if len(matches) == 1:
            return workspace_id, matches[0]
        if not matches:
            if non_interactive:
                msg = f"cmux target not found in workspace {workspace_id}: {handle}"
                raise NotMappedError(msg)
            return _resolve_entry(workspace_id, ws.entries, non_interactive, selector)
        if non_interactive:
            msg = f"multiple cmux targets matched: {handle}"
            raise AmbiguousTargetError(msg)
        return _resolve_entry(workspace_id, matches, non_interactive, selector)

    if handle:
        found = [
            (ws_id, e)
            for ws_id in sorted(mapping.workspaces)
            for e in _filter_entries(mapping.workspaces[ws_id].entries, handle)
        ]
        if len(found) == 1:
            return found[0]
        if non_interactive:
            if not found:
                msg = f"cmux target not found: {handle}"
                raise NotMappedError(msg)
            msg = f"multiple cmux targets matched: {handle}"
            raise AmbiguousTargetError(msg)

    if non_interactive:
        msg = "switch requires --workspace/--cmux in --format json mode"
        raise SelectionRequiredError(msg)
    selected = _select_workspace(mapping, selector)
    return _resolve_entry(selected, mapping.workspaces[selected].entries, non_interactive, selector)


def _select_workspace(mapping: MappingFile, selector: Selector | None) -> str:
    ids = sorted(ws_id for ws_id, ws in mapping.workspaces.items() if ws.entries)
    if not ids:
        msg = "no cmux mappings available"
        raise NotMappedError(msg)
    if len(ids) == 1:
        return ids[0]
    if selector is None:
        msg = "interactive workspace selection requires a TTY"
        raise SelectionRequiredError(msg)

    candidates = [
        SwitchWorkspaceCandidate(workspace_id=ws_id, mapped_count=len(mapping.workspaces[ws_id].entries))
        for ws_id in ids
    ]
    try:
        selected = selector.select_workspace(candidates)
    except SelectionError as exc:
        msg = str(exc).strip() or "interactive workspace selection failed"
        raise NotMappedError(msg) from exc
    selected = selected.strip()
    if not selected:
        msg = "cmux switch requires exactly one workspace selected"
        raise NotMappedError(msg)
    if selected not in mapping.workspaces:
        msg = f"selected workspace not found: {selected}"
        raise NotMappedError(msg)
    return selected


def _resolve_entry(
    workspace_id: str,
    entries: Sequence[RuntimeEntry],
    non_interactive: bool,
    selector: Selector | None,
) -> tuple[str, RuntimeEntry]:
    if not entries:
        msg = f"no cmux mapping found for workspace: {workspace_id}"
        raise NotMappedError(msg)
    if len(entries) == 1:
        return workspace_id, entries[0]
    if non_interactive:
        msg = "multiple cmux mappings found; provide --cmux"
        raise AmbiguousTargetError(msg)
    if selector is None:
        msg = "interactive cmux selection requires a TTY"
        raise SelectionRequiredError(msg)

    candidates = [
        SwitchEntryCandidate(
            cmux_workspace_id=e.cmux_workspace_id,
            ordinal=e.ordinal,
            title=e.title_snapshot.strip() or f"ordinal={e.ordinal}",
        )
        for e in entries
    ]
    try:
        selected = selector.select_entry(workspace_id, candidates)
    except SelectionError as exc:
        msg = str(exc).strip() or "interactive cmux selection failed"
        raise NotMappedError(msg) from exc
    selected = selected.strip()
    if not selected:
        msg = "cmux switch requires exactly one target selected"
        raise NotMappedError(msg)
    for e in entries:
        if e.cmux_workspace_id == selected:
            return workspace_id, e
    msg = f"selected cmux target not found: {selected}"
    raise NotMappedError(msg)


def _filter_entries(entries: Sequence[RuntimeEntry], handle: str) -> list[RuntimeEntry]:
    handle = handle.strip()
    return [e for e in entries if handle in (e.cmux_workspace_id, e.handle)]


# ---------------------------------------------------------------------------
# Switch
# ---------------------------------------------------------------------------


def switch_workspace(
    store: MappingStore,
    client: RuntimeClient,
    workspace_id: str = "",
    handle: str = "",
    *,
    non_interactive: bool,
    selector: Selector | None = None,
    clock: Clock = datetime.now,
    cancel: threading.Event | None = None,
) -> SwitchResult:
    """Resolve a target, select it in the runtime and refresh ``last_used_at``."""
    try:
        mapping = store.load()
    except (OSError, ValueError) as exc:
        msg = f"load cmux mapping: {exc}"
        raise StateWriteError(msg) from exc

    check_cancelled(cancel, "cmux switch")
    try:
        runtime = client.list_workspaces()
    except RuntimeCallError as exc:
        logger.debug("Skipping reconcile before switch: {}", exc)
    else:
        try:
            mapping, _, _ = reconcile_mapping(store, mapping, runtime, prune=True)
        except (OSError, ValueError) as exc:
            msg = f"reconcile cmux mapping: {exc}"
            raise StateWriteError(msg) from exc

    ws_id, entry = resolve_switch_target(
        mapping, workspace_id, handle, non_interactive=non_interactive, selector=selector
    )
    check_cancelled(cancel, "cmux switch")
    try:
        client.select_workspace(entry.cmux_workspace_id)
    except RuntimeCallError as exc:
        msg = f"select cmux workspace: {exc}"
        raise CmuxError(msg, code=ErrorCode.CMUX_SELECT_FAILED) from exc

    for e in mapping.workspaces[ws_id].entries:
        if e.cmux_workspace_id == entry.cmux_workspace_id:
            e.last_used_at = utc_now(clock)
            entry = e
            break
    try:
        store.save(mapping)
    except (OSError, ValueError) as exc:
        msg = f"save cmux mapping: {exc}"
        raise StateWriteError(msg) from exc

    logger.info("Switched to cmux workspace {} ({})", entry.cmux_workspace_id, ws_id)
    return SwitchResult(
        workspace_id=ws_id,
        cmux_workspace_id=entry.cmux_workspace_id,
        ordinal=entry.ordinal,
        title=entry.title_snapshot,
    )

"""Reconcile stored mappings with live runtime state.

An empty runtime listing is never taken to mean "everything is gone": the
runtime may just be unreachable.  Callers that still want staleness
detection fall back to probing each mapped id with ``identify``, and prune
only when at least one probe gave a definitive answer.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

from loguru import logger

from cmuxlink.errors import CmuxError
from cmuxlink.execution.common import check_cancelled
from cmuxlink.models.enums import ErrorCode, ProbeStatus
from cmuxlink.models.mapping import MappingFile
from cmuxlink.models.results import ListResult, ListRow, StatusResult, StatusRow
from cmuxlink.models.runtime import RuntimeWorkspace
from cmuxlink.runtime.base import RuntimeCallError, RuntimeClient, is_not_found_error
from cmuxlink.store.base import MappingStore

PROBE_SKIPPED_WARNING = "cmux probe could not verify any workspace; skipped stale pruning"


def reconcile_mapping(
    store: MappingStore,
    mapping: MappingFile,
    runtime: Sequence[RuntimeWorkspace],
    *,
    prune: bool,
) -> tuple[MappingFile, set[str], int]:
    """Drop entries whose runtime workspace is absent from ``runtime``.

    Returns ``(mapping, exists, pruned_count)``.  Nothing is pruned when
    ``prune`` is false or the listing is empty.  When anything was pruned
    the mapping is saved immediately; save errors propagate.
    """
    exists = {row.id.strip() for row in runtime if row.id.strip()}
    if not prune or not exists:
        return mapping, exists, 0

    pruned = 0
    for workspace_id, ws in mapping.workspaces.items():
        keep = [e for e in ws.entries if e.cmux_workspace_id.strip() in exists]
        dropped = len(ws.entries) - len(keep)
        if dropped:
            logger.info("Pruning {} stale cmux entries for {}", dropped, workspace_id)
        pruned += dropped
        ws.entries = keep

    if pruned:
        store.save(mapping)
    return mapping, exists, pruned


def probe_and_prune(
    store: MappingStore,
    mapping: MappingFile,
    client: RuntimeClient,
    *,
    cancel: threading.Event | None = None,
) -> tuple[int, str]:
    """Probe every distinct mapped id and prune the ones reported gone.

    Returns ``(pruned_count, warning)``.  If no probe was definitive the
    mapping is left untouched and the warning explains why.
    """
    status: dict[str, ProbeStatus] = {}
    for ws in mapping.workspaces.values():
        for entry in ws.entries:
            cmux_id = entry.cmux_workspace_id.strip()
            if not cmux_id or cmux_id in status:
                continue
            check_cancelled(cancel, "cmux probe")
            status[cmux_id] = _probe(client, cmux_id)

    if not any(st != ProbeStatus.INDETERMINATE for st in status.values()):
        logger.warning(PROBE_SKIPPED_WARNING)
        return 0, PROBE_SKIPPED_WARNING

    pruned = 0
    for ws in mapping.workspaces.values():
        keep = [
            e
            for e in ws.entries
            if status.get(e.cmux_workspace_id.strip(), ProbeStatus.INDETERMINATE) != ProbeStatus.NOT_FOUND
        ]
        pruned += len(ws.entries) - len(keep)
        ws.entries = keep

    if pruned:
        logger.info("Pruned {} stale cmux entries after probing", pruned)
        try:
            store.save(mapping)
        except (OSError, ValueError) as exc:
            return 0, f"save cmux mapping after probe prune: {exc}"
    return pruned, ""


def _probe(client: RuntimeClient, cmux_id: str) -> ProbeStatus:
    try:
        client.identify(cmux_id)
    except RuntimeCallError as exc:
        if is_not_found_error(exc):
            return ProbeStatus.NOT_FOUND
        logger.debug("Probe of {} was inconclusive: {}", cmux_id, exc)
        return ProbeStatus.INDETERMINATE
    return ProbeStatus.LIVE


# ---------------------------------------------------------------------------
# List / Status
# ---------------------------------------------------------------------------


def list_mappings(
    store: MappingStore,
    client: RuntimeClient,
    workspace_id: str | None = None,
    *,
    cancel: threading.Event | None = None,
) -> ListResult:
    """List mapped entries, pruning stale ones on the way.

    A runtime listing failure is only a warning; rows then come from local
    state as-is.
    """
    mapping = _load(store)
    result = ListResult()
    check_cancelled(cancel, "cmux list")

    try:
        runtime = client.list_workspaces()
    except RuntimeCallError as exc:
        result.runtime_warning = f"list cmux workspaces: {exc}"
        logger.warning("{}", result.runtime_warning)
    else:
        result.runtime_checked = True
        try:
            mapping, _, result.pruned_count = reconcile_mapping(store, mapping, runtime, prune=True)
        except (OSError, ValueError) as exc:
            msg = f"save cmux mapping: {exc}"
            raise CmuxError(msg, code=ErrorCode.INTERNAL_ERROR) from exc
        if not runtime:
            probe_pruned, warning = probe_and_prune(store, mapping, client, cancel=cancel)
            result.pruned_count += probe_pruned
            if warning:
                result.runtime_warning = warning

    for ws_id in _selected_ids(mapping, workspace_id):
        for e in mapping.workspaces[ws_id].entries:
            result.rows.append(
                ListRow(
                    workspace_id=ws_id,
                    cmux_workspace_id=e.cmux_workspace_id,
                    ordinal=e.ordinal,
                    title=e.title_snapshot,
                    last_used_at=e.last_used_at,
                )
            )
    return result


def mapping_status(
    store: MappingStore,
    client: RuntimeClient,
    workspace_id: str | None = None,
    *,
    cancel: threading.Event | None = None,
) -> StatusResult:
    """Report whether each mapped entry exists in the runtime.  Never prunes."""
    mapping = _load(store)
    check_cancelled(cancel, "cmux status")
    try:
        runtime = client.list_workspaces()
    except RuntimeCallError as exc:
        msg = f"list cmux workspaces: {exc}"
        raise CmuxError(msg, code=ErrorCode.CMUX_LIST_FAILED) from exc
    _, exists, _ = reconcile_mapping(store, mapping, runtime, prune=False)

    result = StatusResult()
    for ws_id in _selected_ids(mapping, workspace_id):
        for e in mapping.workspaces[ws_id].entries:
            result.rows.append(
                StatusRow(
                    workspace_id=ws_id,
                    cmux_workspace_id=e.cmux_workspace_id,
                    ordinal=e.ordinal,
                    title=e.title_snapshot,
                    exists=e.cmux_workspace_id.strip() in exists,
                )
            )
    return result


def _load(store: MappingStore) -> MappingFile:
    try:
        return store.load()
    except (OSError, ValueError) as exc:
        msg = f"load cmux mapping: {exc}"
        raise CmuxError(msg, code=ErrorCode.INTERNAL_ERROR) from exc


def _selected_ids(mapping: MappingFile, workspace_id: str | None) -> list[str]:
    return sorted(ws_id for ws_id in mapping.workspaces if not workspace_id or ws_id == workspace_id)

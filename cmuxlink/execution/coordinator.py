"""Open coordinator -- attach or create cmux workspaces for logical workspaces.

Per-target policy (1:1 open):

1. **Reuse**: if the workspace already has a mapped runtime entry and
   ``identify`` succeeds, select it and refresh ``last_used_at``.
2. **Stale**: if ``identify`` reports the runtime workspace as gone, drop the
   entries, reset the ordinal counter and fall through to create.  Any other
   ``identify`` failure is fatal for the target.
3. **Create**: create a runtime workspace that ``cd``s into the workspace,
   allocate an ordinal, rename it to the canonical title, select it and
   record the new entry.

Execution modes:

- **Sequential** (``multi=False`` or ``concurrency <= 1``): targets in input
  order, stopping at the first failure.
- **Concurrent**: a fixed pool of worker threads, each with its own runtime
  client, fed from a bounded job queue.  Every target is attempted; results
  are re-ordered by input index before being returned.

The in-memory mapping is the only state shared between workers.  It is
guarded by one lock that is never held across a runtime call.  The mapping is
persisted once, after all targets finish, and only if something succeeded.
"""

from __future__ import annotations

import os
import queue
import threading
from collections.abc import Sequence
from datetime import datetime

from loguru import logger

from cmuxlink.errors import CapabilityMissingError, CmuxError, StateWriteError
from cmuxlink.execution.common import Clock, utc_now
from cmuxlink.models.enums import ErrorCode
from cmuxlink.models.mapping import MappingFile, RuntimeEntry, WorkspaceMapping
from cmuxlink.models.results import OpenFailure, OpenResult, OpenResultItem, OpenTarget
from cmuxlink.runtime.base import ClientFactory, RuntimeCallError, RuntimeClient, is_not_found_error
from cmuxlink.store.base import MappingStore
from cmuxlink.store.ordinals import allocate_ordinal, format_workspace_title

REQUIRED_CAPABILITIES = ("workspace.create", "workspace.rename", "workspace.select")

_Outcome = OpenResultItem | OpenFailure


class OpenCoordinator:
    """Opens runtime workspaces for a batch of logical workspaces.

    ``client_factory`` is called once for the capability check and once per
    worker thread in concurrent mode; clients are never shared across threads.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        store: MappingStore,
        *,
        clock: Clock = datetime.now,
    ) -> None:
        self._client_factory = client_factory
        self._store = store
        self._clock = clock

    def open(
        self,
        targets: Sequence[OpenTarget],
        *,
        concurrency: int = 1,
        multi: bool = False,
        cancel: threading.Event | None = None,
    ) -> OpenResult:
        """Open every target and persist the mapping.

        Raises ``CapabilityMissingError`` before touching anything if the
        runtime lacks a required method, and ``StateWriteError`` if the
        mapping cannot be loaded or saved.  Per-target failures are returned
        in ``OpenResult.failures``.
        """
        client = self._client_factory()
        self._check_capabilities(client)

        try:
            mapping = self._store.load()
        except (OSError, ValueError) as exc:
            msg = f"load cmux mapping: {exc}"
            raise StateWriteError(msg) from exc

        lock = threading.Lock()
        if multi and concurrency > 1:
            result = self._open_concurrent(targets, concurrency, mapping, lock, cancel)
        else:
            result = self._open_sequential(client, targets, mapping, lock, cancel)

        if result.results:
            self._persist(mapping, result)
        logger.info(
            "cmux open finished: {} opened, {} failed",
            len(result.results),
            len(result.failures),
        )
        return result

    # -- Preconditions ---------------------------------------------------------

    @staticmethod
    def _check_capabilities(client: RuntimeClient) -> None:
        try:
            caps = client.capabilities()
        except RuntimeCallError as exc:
            msg = f"read cmux capabilities: {exc}"
            raise CapabilityMissingError(msg) from exc
        missing = caps.missing(list(REQUIRED_CAPABILITIES))
        if missing:
            msg = f"cmux capability missing: {missing[0]}"
            raise CapabilityMissingError(msg)

    def _persist(self, mapping: MappingFile, result: OpenResult) -> None:
        try:
            self._store.save(mapping)
        except (OSError, ValueError) as exc:
            orphaned = [r.cmux_workspace_id for r in result.results if not r.reused_existing]
            if orphaned:
                logger.warning("cmux workspaces created without a persisted mapping: {}", ", ".join(orphaned))
            msg = f"save cmux mapping: {exc}"
            raise StateWriteError(msg) from exc

    # -- Execution modes -------------------------------------------------------

    def _open_sequential(
        self,
        client: RuntimeClient,
        targets: Sequence[OpenTarget],
        mapping: MappingFile,
        lock: threading.Lock,
        cancel: threading.Event | None,
    ) -> OpenResult:
        result = OpenResult()
        for target in targets:
            outcome = self._attempt(client, target, mapping, lock, cancel)
            if isinstance(outcome, OpenFailure):
                result.failures.append(outcome)
                break
            result.results.append(outcome)
        return result

    def _open_concurrent(
        self,
        targets: Sequence[OpenTarget],
        concurrency: int,
        mapping: MappingFile,
        lock: threading.Lock,
        cancel: threading.Event | None,
    ) -> OpenResult:
        workers = max(1, min(concurrency, len(targets)))
        jobs: queue.Queue[tuple[int, OpenTarget] | None] = queue.Queue(maxsize=workers)
        # Sized to the target count so producers never block once workers exit.
        out: queue.Queue[tuple[int, _Outcome]] = queue.Queue(maxsize=max(1, len(targets)))

        def work() -> None:
            try:
                client: RuntimeClient | None = self._client_factory()
                client_error = ""
            except Exception as exc:
                logger.exception("Failed to create cmux client for open worker")
                client, client_error = None, f"create cmux client: {exc}"
            while (job := jobs.get()) is not None:
                index, target = job
                if client is None:
                    out.put((index, _failure(target, ErrorCode.INTERNAL_ERROR, client_error)))
                    continue
                out.put((index, self._attempt(client, target, mapping, lock, cancel)))

        threads = [threading.Thread(target=work, name=f"cmux-open-{i}", daemon=True) for i in range(workers)]
        for t in threads:
            t.start()
        for index, target in enumerate(targets):
            jobs.put((index, target))
        for _ in threads:
            jobs.put(None)
        for t in threads:
            t.join()

        collected: list[tuple[int, _Outcome]] = []
        while not out.empty():
            collected.append(out.get_nowait())
        collected.sort(key=lambda pair: pair[0])

        result = OpenResult()
        for _, outcome in collected:
            if isinstance(outcome, OpenFailure):
                result.failures.append(outcome)
            else:
                result.results.append(outcome)
        return result

    # -- Per-target ------------------------------------------------------------

    def _attempt(
        self,
        client: RuntimeClient,
        target: OpenTarget,
        mapping: MappingFile,
        lock: threading.Lock,
        cancel: threading.Event | None,
    ) -> _Outcome:
        """Run one target and turn any failure into an ``OpenFailure``."""
        if cancel is not None and cancel.is_set():
            return _failure(target, ErrorCode.INTERNAL_ERROR, "cancelled before start")
        try:
            return self._open_one(client, target, mapping, lock)
        except CmuxError as exc:
            logger.warning("cmux open {} failed: {} ({})", target.workspace_id, exc.message, exc.code)
            return _failure(target, exc.code, exc.message)
        except Exception as exc:
            logger.exception("cmux open {} failed unexpectedly", target.workspace_id)
            return _failure(target, ErrorCode.INTERNAL_ERROR, str(exc))

    def _open_one(
        self,
        client: RuntimeClient,
        target: OpenTarget,
        mapping: MappingFile,
        lock: threading.Lock,
    ) -> OpenResultItem:
        workspace_id = target.workspace_id

        with lock:
            ws = mapping.workspaces.get(workspace_id)
            existing = [e.model_copy() for e in ws.entries] if ws else []

        if existing:
            entry = existing[0]
            try:
                client.identify(entry.cmux_workspace_id)
            except RuntimeCallError as exc:
                if not is_not_found_error(exc):
                    msg = f"identify cmux workspace: {exc}"
                    raise CmuxError(msg, code=ErrorCode.CMUX_IDENTIFY_FAILED) from exc
                logger.info("Stale cmux mapping for {}: {} is gone", workspace_id, entry.cmux_workspace_id)
                with lock:
                    ws = mapping.workspaces.setdefault(workspace_id, WorkspaceMapping())
                    ws.entries = []
                    ws.next_ordinal = 1
            else:
                return self._reuse(client, target, entry, mapping, lock)

        return self._create(client, target, mapping, lock)

    def _reuse(
        self,
        client: RuntimeClient,
        target: OpenTarget,
        entry: RuntimeEntry,
        mapping: MappingFile,
        lock: threading.Lock,
    ) -> OpenResultItem:
        try:
            client.select_workspace(entry.cmux_workspace_id)
        except RuntimeCallError as exc:
            msg = f"select cmux workspace: {exc}"
            raise CmuxError(msg, code=ErrorCode.CMUX_SELECT_FAILED) from exc

        entry.last_used_at = utc_now(self._clock)
        with lock:
            ws = mapping.workspaces.setdefault(target.workspace_id, WorkspaceMapping())
            ws.entries = [entry]
        logger.info("Reused cmux workspace {} for {}", entry.cmux_workspace_id, target.workspace_id)
        return OpenResultItem(
            workspace_id=target.workspace_id,
            workspace_path=target.workspace_path,
            cmux_workspace_id=entry.cmux_workspace_id,
            ordinal=entry.ordinal,
            title=entry.title_snapshot,
            reused_existing=True,
        )

    def _create(
        self,
        client: RuntimeClient,
        target: OpenTarget,
        mapping: MappingFile,
        lock: threading.Lock,
    ) -> OpenResultItem:
        command = f"cd {shell_quote_cd_path(target.workspace_path)}"
        try:
            cmux_id = client.create_workspace_with_command(command)
        except RuntimeCallError as exc:
            msg = f"create cmux workspace: {exc}"
            raise CmuxError(msg, code=ErrorCode.CMUX_CREATE_FAILED) from exc

        with lock:
            try:
                ordinal = allocate_ordinal(mapping, target.workspace_id)
            except ValueError as exc:
                msg = f"allocate cmux ordinal: {exc}"
                raise CmuxError(msg, code=ErrorCode.STATE_WRITE_FAILED) from exc

        try:
            title = format_workspace_title(target.workspace_id, target.title, ordinal)
        except ValueError as exc:
            msg = f"format cmux workspace title: {exc}"
            raise CmuxError(msg, code=ErrorCode.CMUX_RENAME_FAILED) from exc
        try:
            client.rename_workspace(cmux_id, title)
        except RuntimeCallError as exc:
            msg = f"rename cmux workspace: {exc}"
            raise CmuxError(msg, code=ErrorCode.CMUX_RENAME_FAILED) from exc
        try:
            client.select_workspace(cmux_id)
        except RuntimeCallError as exc:
            msg = f"select cmux workspace: {exc}"
            raise CmuxError(msg, code=ErrorCode.CMUX_SELECT_FAILED) from exc

        now = utc_now(self._clock)
        entry = RuntimeEntry(
            cmux_workspace_id=cmux_id,
            ordinal=ordinal,
            title_snapshot=title,
            created_at=now,
            last_used_at=now,
        )
        with lock:
            ws = mapping.workspaces.setdefault(target.workspace_id, WorkspaceMapping())
            ws.entries = [entry]
        logger.info("Created cmux workspace {} ({!r}) for {}", cmux_id, title, target.workspace_id)
        return OpenResultItem(
            workspace_id=target.workspace_id,
            workspace_path=target.workspace_path,
            cmux_workspace_id=cmux_id,
            ordinal=ordinal,
            title=title,
            reused_existing=False,
        )


# ---------------------------------------------------------------------------
# Shell quoting
# ---------------------------------------------------------------------------


def shell_quote_single(value: str) -> str:
    """Single-quote ``value`` for POSIX shells."""
    if not value:
        return "''"
    return "'" + value.replace("'", "'\"'\"'") + "'"


def shell_escape_double(value: str) -> str:
    """Escape ``value`` for use inside double quotes."""
    for ch in ("\\", '"', "$", "`"):
        value = value.replace(ch, "\\" + ch)
    return value


def shell_quote_cd_path(path: str, home: str | None = None) -> str:
    """Quote a ``cd`` target, preferring ``"$HOME/..."`` under the home dir.

    Keeps the command stable across machines with different home paths.
    """
    if home is None:
        home = os.path.expanduser("~")
        if home == "~":
            home = ""
    home = home.rstrip(os.sep)
    if home:
        if path == home:
            return '"$HOME"'
        prefix = home + os.sep
        if path.startswith(prefix):
            return '"$HOME/' + shell_escape_double(path.removeprefix(prefix)) + '"'
    return shell_quote_single(path)


def _failure(target: OpenTarget, code: ErrorCode, message: str) -> OpenFailure:
    return OpenFailure(workspace_id=target.workspace_id, code=code, message=message)

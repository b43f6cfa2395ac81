"""Unit tests for OpenCoordinator."""

from __future__ import annotations

import random
import threading
import time
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import FakeClient

from cmuxlink.errors import CapabilityMissingError, StateWriteError
from cmuxlink.execution.coordinator import OpenCoordinator, shell_quote_cd_path, shell_quote_single
from cmuxlink.models.enums import ErrorCode
from cmuxlink.models.mapping import MappingFile, RuntimeEntry, WorkspaceMapping
from cmuxlink.models.results import OpenTarget
from cmuxlink.runtime.base import RuntimeCallError
from cmuxlink.store.local import LocalMappingStore

NOW = datetime(2026, 3, 1, 9, 30, 0, tzinfo=UTC)
EARLIER = datetime(2026, 1, 1, 0, 0, 0, tzinfo=UTC)


def _target(workspace_id: str, title: str = "") -> OpenTarget:
    return OpenTarget(workspace_id=workspace_id, workspace_path=f"/srv/ws/{workspace_id}", title=title)


def _coordinator(client: FakeClient, store: LocalMappingStore) -> OpenCoordinator:
    return OpenCoordinator(lambda: client, store, clock=lambda: NOW)


def _seed(
    store: LocalMappingStore, workspace_id: str, cmux_id: str, *, ordinal: int = 1, next_ordinal: int = 2
) -> None:
    entry = RuntimeEntry(
        cmux_workspace_id=cmux_id,
        ordinal=ordinal,
        title_snapshot=f"{workspace_id} [{ordinal}]",
        created_at=EARLIER,
        last_used_at=EARLIER,
    )
    store.save(MappingFile(workspaces={workspace_id: WorkspaceMapping(next_ordinal=next_ordinal, entries=[entry])}))


@pytest.fixture
def store(tmp_path: Path) -> LocalMappingStore:
    return LocalMappingStore(tmp_path)


# ---------------------------------------------------------------------------
# Create / reuse / stale
# ---------------------------------------------------------------------------


def test_open_creates_and_records_entry(client: FakeClient, store: LocalMappingStore) -> None:
    result = _coordinator(client, store).open([_target("WS1", "hello world")])

    assert result.failures == []
    [item] = result.results
    assert item.cmux_workspace_id == "CMUX-1"
    assert item.ordinal == 1
    assert item.title == "WS1 | hello world [1]"
    assert item.reused_existing is False
    assert client.called("create") == [("cd '/srv/ws/WS1'",)]
    assert client.called("rename") == [("CMUX-1", "WS1 | hello world [1]")]
    assert client.called("select") == [("CMUX-1",)]

    ws = store.load().workspaces["WS1"]
    assert ws.next_ordinal == 2
    assert [e.cmux_workspace_id for e in ws.entries] == ["CMUX-1"]
    assert ws.entries[0].created_at == NOW
    assert ws.entries[0].last_used_at == NOW


def test_open_reuses_live_entry(client: FakeClient, store: LocalMappingStore) -> None:
    _seed(store, "WS1", "CMUX-9", ordinal=3, next_ordinal=4)
    client.live.add("CMUX-9")

    result = _coordinator(client, store).open([_target("WS1")])

    [item] = result.results
    assert item.reused_existing is True
    assert item.cmux_workspace_id == "CMUX-9"
    assert item.ordinal == 3
    assert client.called("create") == []
    assert client.called("select") == [("CMUX-9",)]
    entry = store.load().workspaces["WS1"].entries[0]
    assert entry.last_used_at == NOW
    assert entry.created_at == EARLIER


def test_stale_entry_resets_ordinal(client: FakeClient, store: LocalMappingStore) -> None:
    _seed(store, "WS1", "CMUX-GONE", ordinal=4, next_ordinal=5)
    client.errors["identify"] = RuntimeCallError("cmux identify: unknown workspace CMUX-GONE")

    result = _coordinator(client, store).open([_target("WS1")])

    [item] = result.results
    assert item.ordinal == 1
    assert item.reused_existing is False
    ws = store.load().workspaces["WS1"]
    assert [e.cmux_workspace_id for e in ws.entries] == ["CMUX-1"]
    assert ws.next_ordinal == 2


def test_unclassified_identify_failure_is_fatal(client: FakeClient, store: LocalMappingStore) -> None:
    _seed(store, "WS1", "CMUX-9")
    client.errors["identify"] = RuntimeCallError("cmux identify: connection refused")

    result = _coordinator(client, store).open([_target("WS1")])

    assert result.results == []
    [failure] = result.failures
    assert failure.code == ErrorCode.CMUX_IDENTIFY_FAILED
    assert "connection refused" in failure.message
    assert client.called("create") == []
    # Nothing succeeded, so nothing was written.
    assert store.load().workspaces["WS1"].entries[0].last_used_at == EARLIER


@pytest.mark.parametrize(
    ("op", "code"),
    [
        ("create", ErrorCode.CMUX_CREATE_FAILED),
        ("rename", ErrorCode.CMUX_RENAME_FAILED),
        ("select", ErrorCode.CMUX_SELECT_FAILED),
    ],
)
def test_create_path_failure_codes(client: FakeClient, store: LocalMappingStore, op: str, code: ErrorCode) -> None:
    client.errors[op] = RuntimeCallError(f"cmux {op}: boom")

    result = _coordinator(client, store).open([_target("WS1")])

    assert [f.code for f in result.failures] == [code]


# ---------------------------------------------------------------------------
# Preconditions and persistence
# ---------------------------------------------------------------------------


def test_missing_capability_aborts_before_mutation(client: FakeClient, store: LocalMappingStore) -> None:
    client.methods.discard("workspace.rename")

    with pytest.raises(CapabilityMissingError, match="workspace.rename") as exc_info:
        _coordinator(client, store).open([_target("WS1")])

    assert exc_info.value.code == ErrorCode.CMUX_CAPABILITY_MISSING
    assert client.called("create") == []
    assert not store.path.exists()


def test_capabilities_failure_is_capability_missing(client: FakeClient, store: LocalMappingStore) -> None:
    client.errors["capabilities"] = RuntimeCallError("cmux capabilities: socket closed")

    with pytest.raises(CapabilityMissingError):
        _coordinator(client, store).open([_target("WS1")])


def test_mapping_load_failure(client: FakeClient, store: LocalMappingStore) -> None:
    store.path.parent.mkdir(parents=True)
    store.path.write_text('{"version": 2}')

    with pytest.raises(StateWriteError, match="load cmux mapping"):
        _coordinator(client, store).open([_target("WS1")])


def test_save_failure_raises_state_write_failed(client: FakeClient) -> None:
    store = MagicMock()
    store.load.return_value = MappingFile()
    store.save.side_effect = OSError("disk full")

    with pytest.raises(StateWriteError, match="disk full") as exc_info:
        OpenCoordinator(lambda: client, store).open([_target("WS1")])

    assert exc_info.value.code == ErrorCode.STATE_WRITE_FAILED
    store.save.assert_called_once()


def test_no_save_when_everything_failed(client: FakeClient) -> None:
    store = MagicMock()
    store.load.return_value = MappingFile()
    client.errors["create"] = RuntimeCallError("cmux new-workspace: boom")

    OpenCoordinator(lambda: client, store).open([_target("WS1")])

    store.save.assert_not_called()


# ---------------------------------------------------------------------------
# Sequential vs concurrent
# ---------------------------------------------------------------------------


def test_sequential_stops_at_first_failure(client: FakeClient, store: LocalMappingStore) -> None:
    client.errors["create:cd '/srv/ws/WS2'"] = RuntimeCallError("cmux new-workspace: boom")

    result = _coordinator(client, store).open([_target("WS1"), _target("WS2"), _target("WS3")])

    assert [r.workspace_id for r in result.results] == ["WS1"]
    assert [f.workspace_id for f in result.failures] == ["WS2"]
    assert len(client.called("create")) == 2
    assert set(store.load().workspaces) == {"WS1"}


def test_concurrent_preserves_input_order(store: LocalMappingStore) -> None:
    clients: list[FakeClient] = []
    lock = threading.Lock()

    def factory() -> FakeClient:
        c = FakeClient()
        c.hooks["create"] = lambda _: time.sleep(random.uniform(0, 0.02))
        c.errors["create:cd '/srv/ws/WS3'"] = RuntimeCallError("cmux new-workspace: boom")
        c.errors["create:cd '/srv/ws/WS7'"] = RuntimeCallError("cmux new-workspace: boom")
        with lock:
            clients.append(c)
        return c

    targets = [_target(f"WS{i}") for i in range(10)]
    result = OpenCoordinator(factory, store).open(targets, concurrency=4, multi=True)

    expected_ok = [f"WS{i}" for i in range(10) if i not in (3, 7)]
    assert [r.workspace_id for r in result.results] == expected_ok
    assert [f.workspace_id for f in result.failures] == ["WS3", "WS7"]
    # One client for the capability check plus one per worker.
    assert len(clients) == 5
    assert set(store.load().workspaces) == set(expected_ok)


def test_concurrent_allocates_independent_ordinals(store: LocalMappingStore) -> None:
    targets = [_target(f"WS{i}") for i in range(6)]

    result = OpenCoordinator(FakeClient, store).open(targets, concurrency=3, multi=True)

    assert [r.ordinal for r in result.results] == [1] * 6
    assert all(ws.next_ordinal == 2 for ws in store.load().workspaces.values())


def test_multi_with_concurrency_one_is_sequential(client: FakeClient, store: LocalMappingStore) -> None:
    client.errors["create:cd '/srv/ws/WS1'"] = RuntimeCallError("cmux new-workspace: boom")

    result = _coordinator(client, store).open([_target("WS1"), _target("WS2")], concurrency=1, multi=True)

    assert [f.workspace_id for f in result.failures] == ["WS1"]
    assert result.results == []


def test_cancelled_targets_are_not_started(client: FakeClient, store: LocalMappingStore) -> None:
    cancel = threading.Event()
    cancel.set()

    targets = [_target("WS1"), _target("WS2")]
    result = _coordinator(client, store).open(targets, concurrency=2, multi=True, cancel=cancel)

    assert [f.message for f in result.failures] == ["cancelled before start"] * 2
    assert all(f.code == ErrorCode.INTERNAL_ERROR for f in result.failures)
    assert client.called("create") == []


# ---------------------------------------------------------------------------
# Shell quoting
# ---------------------------------------------------------------------------


def test_shell_quote_single() -> None:
    assert shell_quote_single("") == "''"
    assert shell_quote_single("/tmp/a b") == "'/tmp/a b'"
    assert shell_quote_single("it's") == "'it'\"'\"'s'"


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/home/me", '"$HOME"'),
        ("/home/me/work/WS1", '"$HOME/work/WS1"'),
        ("/home/me/a $b", '"$HOME/a \\$b"'),
        ("/home/meow/x", "'/home/meow/x'"),
        ("/srv/ws/WS1", "'/srv/ws/WS1'"),
    ],
)
def test_shell_quote_cd_path(path: str, expected: str) -> None:
    assert shell_quote_cd_path(path, home="/home/me") == expected


def test_shell_quote_cd_path_uses_home_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", "/home/tester")
    assert shell_quote_cd_path("/home/tester/ws") == '"$HOME/ws"'

"""CLI tests via click's CliRunner with an in-memory runtime client."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner
from conftest import FakeClient, make_workspace

from cmuxlink import cli
from cmuxlink.models.mapping import RuntimeEntry, WorkspaceMapping
from cmuxlink.models.runtime import Pane, RuntimeWorkspace, Surface
from cmuxlink.runtime.base import RuntimeCallError
from cmuxlink.store.local import LocalMappingStore


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def fake_factory(monkeypatch: pytest.MonkeyPatch, client: FakeClient) -> FakeClient:
    monkeypatch.setattr(cli, "make_client_factory", lambda settings, cancel=None: lambda: client)
    return client


def _invoke(runner: CliRunner, root: Path, *args: str):
    return runner.invoke(cli.main, ["--root", str(root), *args])


def _envelope(result) -> dict:
    return json.loads(result.stdout)


def _map(root: Path, workspace_id: str, *cmux_ids: str) -> None:
    store = LocalMappingStore(root)
    mapping = store.load()
    mapping.workspaces[workspace_id] = WorkspaceMapping(
        next_ordinal=len(cmux_ids) + 1,
        entries=[
            RuntimeEntry(cmux_workspace_id=c, ordinal=i, title_snapshot=f"{workspace_id} [{i}]")
            for i, c in enumerate(cmux_ids, start=1)
        ],
    )
    store.save(mapping)


# ---------------------------------------------------------------------------
# open
# ---------------------------------------------------------------------------


def test_open_json_single(runner: CliRunner, root: Path) -> None:
    make_workspace(root, "WS1", "hello world")

    result = _invoke(runner, root, "open", "WS1", "--format", "json")

    assert result.exit_code == 0, result.output
    env = _envelope(result)
    assert env["ok"] is True
    assert env["action"] == "cmux open"
    assert env["workspace_id"] == "WS1"
    assert env["result"]["title"] == "WS1 | hello world [1]"
    assert env["error"] is None


def test_open_human_single(runner: CliRunner, root: Path) -> None:
    make_workspace(root, "WS1")

    result = _invoke(runner, root, "open", "WS1")

    assert result.exit_code == 0
    assert "opened cmux workspace" in result.stdout
    assert "title: WS1 [1]" in result.stdout


def test_open_multi_partial_failure(runner: CliRunner, root: Path, client: FakeClient) -> None:
    make_workspace(root, "WS1")
    make_workspace(root, "WS2")
    client.errors["rename:CMUX-2"] = RuntimeCallError("cmux rename-workspace: boom")

    result = _invoke(runner, root, "open", "--multi", "--concurrency", "1", "WS1", "WS2", "--format", "json")

    assert result.exit_code == 1
    env = _envelope(result)
    assert env["ok"] is False
    assert env["result"]["succeeded"] == 1
    assert env["result"]["failures"][0]["workspace_id"] == "WS2"
    assert env["error"]["code"] == "cmux_rename_failed"


def test_open_usage_errors(runner: CliRunner, root: Path) -> None:
    result = _invoke(runner, root, "open", "WS1", "WS2", "--format", "json")
    assert result.exit_code == 2
    assert _envelope(result)["error"] == {"code": "invalid_argument", "message": "multiple targets require --multi"}

    result = _invoke(runner, root, "open", "WS1", "--concurrency", "3")
    assert result.exit_code == 2
    assert "cmux open: --concurrency requires --multi" in result.stderr


def test_open_archived_workspace(runner: CliRunner, root: Path) -> None:
    make_workspace(root, "OLD", archived=True)

    result = _invoke(runner, root, "open", "OLD")

    assert result.exit_code == 1
    assert "cmux open (OLD): workspace is archived: OLD" in result.stderr


def test_open_capability_missing(runner: CliRunner, root: Path, client: FakeClient) -> None:
    make_workspace(root, "WS1")
    client.methods.clear()

    result = _invoke(runner, root, "open", "WS1", "--format", "json")

    assert result.exit_code == 1
    assert _envelope(result)["error"]["code"] == "cmux_capability_missing"


# ---------------------------------------------------------------------------
# switch / list / status
# ---------------------------------------------------------------------------


def test_switch_json_requires_target(runner: CliRunner, root: Path) -> None:
    _map(root, "WS1", "C1")

    result = _invoke(runner, root, "switch", "--format", "json")

    assert result.exit_code == 1
    assert _envelope(result)["error"]["code"] == "non_interactive_selection_required"


def test_switch_by_handle(runner: CliRunner, root: Path, client: FakeClient) -> None:
    _map(root, "WS1", "C1", "C2")

    result = _invoke(runner, root, "switch", "--workspace", "WS1", "--cmux", "workspace:2", "--format", "json")

    assert result.exit_code == 0, result.output
    assert _envelope(result)["result"]["cmux_workspace_id"] == "C2"
    assert client.called("select") == [("C2",)]


def test_list_human(runner: CliRunner, root: Path, client: FakeClient) -> None:
    _map(root, "WS1", "C1", "C2")
    client.workspaces = [RuntimeWorkspace(id="C1")]

    result = _invoke(runner, root, "list")

    assert result.exit_code == 0
    assert "WS1:" in result.stdout
    assert "C1" in result.stdout
    assert "C2" not in result.stdout
    assert "pruned 1 stale mapping(s)" in result.stdout


def test_status_json(runner: CliRunner, root: Path, client: FakeClient) -> None:
    _map(root, "WS1", "C1")

    result = _invoke(runner, root, "status", "--format", "json")

    assert result.exit_code == 0
    assert _envelope(result)["result"]["rows"][0]["exists"] is False


# ---------------------------------------------------------------------------
# save / resume / sessions
# ---------------------------------------------------------------------------


@pytest.fixture
def mapped_workspace(root: Path, client: FakeClient) -> None:
    make_workspace(root, "WS1")
    _map(root, "WS1", "C1")
    client.live.add("C1")
    client.panes = [Pane(id="P1", focused=True)]
    client.surfaces = {"P1": [Surface(id="S1", type="browser")]}


@pytest.mark.usefixtures("mapped_workspace")
def test_save_resume_and_sessions(runner: CliRunner, root: Path, client: FakeClient) -> None:
    saved = _invoke(runner, root, "save", "--workspace", "WS1", "--label", "demo", "--format", "json")
    assert saved.exit_code == 0, saved.output
    session_id = _envelope(saved)["result"]["session_id"]
    assert session_id.endswith("-demo")

    listed = _invoke(runner, root, "sessions", "--workspace", "WS1", "--format", "json")
    assert [s["session_id"] for s in _envelope(listed)["result"]] == [session_id]

    resumed = _invoke(runner, root, "resume", session_id, "--workspace", "WS1", "--format", "json")
    assert resumed.exit_code == 0, resumed.output
    assert _envelope(resumed)["result"]["browser_restored"] is True


@pytest.mark.usefixtures("mapped_workspace")
def test_strict_resume_partial(runner: CliRunner, root: Path, client: FakeClient) -> None:
    saved = _invoke(runner, root, "save", "--workspace", "WS1", "--format", "json")
    session_id = _envelope(saved)["result"]["session_id"]
    client.errors["focus"] = RuntimeCallError("cmux focus-pane: boom")

    result = _invoke(runner, root, "resume", session_id, "--workspace", "WS1", "--strict", "--format", "json")

    assert result.exit_code == 1
    env = _envelope(result)
    assert env["error"]["code"] == "session_restore_partial"
    assert env["result"]["focus_restored"] is False
    assert env["result"]["browser_restored"] is True


def test_save_requires_workspace(runner: CliRunner, root: Path) -> None:
    result = _invoke(runner, root, "save")

    assert result.exit_code == 2
    assert "cmux save: invalid workspace id: id is required" in result.stderr


def test_resume_unknown_session_human(runner: CliRunner, root: Path) -> None:
    make_workspace(root, "WS1")
    _map(root, "WS1", "C1")

    result = _invoke(runner, root, "resume", "nope", "--workspace", "WS1")

    assert result.exit_code == 1
    assert "cmux resume (WS1): session not found: nope" in result.stderr


# ---------------------------------------------------------------------------
# Interrupts
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("args", "op"),
    [
        (("list",), "list"),
        (("status",), "list"),
        (("switch", "--workspace", "WS1"), "list"),
        (("save", "--workspace", "WS1"), "list_panes"),
    ],
)
@pytest.mark.usefixtures("mapped_workspace")
def test_interrupt_sets_cancel_event(
    runner: CliRunner,
    root: Path,
    client: FakeClient,
    monkeypatch: pytest.MonkeyPatch,
    args: tuple[str, ...],
    op: str,
) -> None:
    events = []

    def factory(settings, cancel=None):
        events.append(cancel)
        return lambda: client

    monkeypatch.setattr(cli, "make_client_factory", factory)
    client.errors[op] = KeyboardInterrupt()

    result = _invoke(runner, root, *args)

    assert result.exit_code == 1
    assert len(events) == 1
    assert events[0] is not None and events[0].is_set()

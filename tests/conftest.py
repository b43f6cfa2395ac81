"""Shared test fixtures: an in-memory runtime client and a workspace root.

No cmux binary is needed -- ``FakeClient`` records every call and can be
told to fail individual operations.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from cmuxlink.models.runtime import Capabilities, Pane, RuntimeWorkspace, Surface
from cmuxlink.runtime.base import RuntimeCallError
from cmuxlink.settings import _get_settings_cached

ALL_METHODS = {"workspace.create", "workspace.rename", "workspace.select"}


class FakeClient:
    """Scriptable ``RuntimeClient``.

    ``errors`` maps an operation name (optionally ``"op:arg"``) to the error
    raised when it is called.  ``hooks`` run before an operation, e.g. to
    sleep.  Safe to share between threads.
    """

    def __init__(self) -> None:
        self.methods: set[str] = set(ALL_METHODS)
        self.live: set[str] = set()
        self.workspaces: list[RuntimeWorkspace] = []
        self.panes: list[Pane] = []
        self.surfaces: dict[str, list[Surface]] = {}
        self.screens: dict[str, str] = {}
        self.errors: dict[str, BaseException] = {}
        self.hooks: dict[str, Callable[[str], None]] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._lock = threading.Lock()
        self._next_id = 0

    # -- Helpers ---------------------------------------------------------------

    def _record(self, op: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((op, args))
        key = f"{op}:{args[0]}" if args else op
        if op in self.hooks:
            self.hooks[op](str(args[0]) if args else "")
        for name in (key, op):
            if name in self.errors:
                raise self.errors[name]

    def called(self, op: str) -> list[tuple[Any, ...]]:
        with self._lock:
            return [args for name, args in self.calls if name == op]

    # -- RuntimeClient ---------------------------------------------------------

    def capabilities(self) -> Capabilities:
        self._record("capabilities")
        return Capabilities(methods=set(self.methods))

    def create_workspace_with_command(self, command: str) -> str:
        self._record("create", command)
        with self._lock:
            self._next_id += 1
            cmux_id = f"CMUX-{self._next_id}"
            self.live.add(cmux_id)
        return cmux_id

    def rename_workspace(self, workspace: str, title: str) -> None:
        self._record("rename", workspace, title)

    def select_workspace(self, workspace: str) -> None:
        self._record("select", workspace)

    def list_workspaces(self) -> list[RuntimeWorkspace]:
        self._record("list")
        return list(self.workspaces)

    def identify(self, workspace: str, surface: str = "") -> dict[str, Any]:
        self._record("identify", workspace)
        if workspace not in self.live:
            msg = f"cmux identify: workspace not found: {workspace}"
            raise RuntimeCallError(msg)
        return {"workspace": workspace}

    def list_panes(self, workspace: str) -> list[Pane]:
        self._record("list_panes", workspace)
        return list(self.panes)

    def list_pane_surfaces(self, workspace: str, pane: str) -> list[Surface]:
        self._record("list_pane_surfaces", pane)
        return list(self.surfaces.get(pane, []))

    def read_screen(self, workspace: str, surface: str, lines: int, scrollback: bool) -> str:
        self._record("read_screen", surface, lines, scrollback)
        return self.screens.get(surface, "")

    def browser_state_save(self, workspace: str, surface: str, path: str) -> None:
        self._record("browser_save", surface, path)
        Path(path).write_text('{"cookies": []}', encoding="utf-8")

    def browser_state_load(self, workspace: str, surface: str, path: str) -> None:
        self._record("browser_load", surface, path)

    def focus_pane(self, pane: str, workspace: str) -> None:
        self._record("focus", pane)


def make_workspace(root: Path, workspace_id: str, title: str = "", *, archived: bool = False) -> Path:
    """Create a workspace directory, optionally with a titled meta file."""
    path = root / ("archive" if archived else "workspaces") / workspace_id
    path.mkdir(parents=True)
    if title:
        meta = {"workspace": {"id": workspace_id, "title": title}}
        (path / ".gionx.meta.json").write_text(json.dumps(meta), encoding="utf-8")
    return path


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def root(tmp_path: Path) -> Path:
    (tmp_path / "workspaces").mkdir()
    (tmp_path / "archive").mkdir()
    return tmp_path


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    _get_settings_cached.cache_clear()

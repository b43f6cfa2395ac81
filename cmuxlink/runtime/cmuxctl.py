"""``cmux`` CLI adapter.

Implements ``RuntimeClient`` by running the ``cmux`` binary once per call::

    cmux [--socket PATH] [--password PW] [--json [--id-format both]] <command> ...

JSON commands first ask for ``--id-format both`` and retry without it when
an older runtime rejects the option.  Each call honours a timeout and an
optional cancel event; either kills the child process.
"""

from __future__ import annotations

import json
import subprocess
import threading
import time
from collections.abc import Callable
from typing import Any

from loguru import logger

from cmuxlink.models.runtime import Capabilities, Pane, RuntimeWorkspace, Surface
from cmuxlink.runtime.base import RuntimeCallError

Runner = Callable[[list[str]], "subprocess.CompletedProcess[str]"]

DEFAULT_TIMEOUT = 30.0
_POLL_INTERVAL = 0.1


class CmuxClient:
    """Subprocess-backed runtime client.  One instance per thread."""

    def __init__(
        self,
        *,
        binary: str = "cmux",
        socket_path: str | None = None,
        password: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        cancel: threading.Event | None = None,
        runner: Runner | None = None,
    ) -> None:
        self.binary = binary
        self.socket_path = (socket_path or "").strip()
        self.password = (password or "").strip()
        self.timeout = timeout
        self.cancel = cancel
        self._runner = runner or self._run_process

    # -- Workspaces ------------------------------------------------------------

    def capabilities(self) -> Capabilities:
        payload = self._run_json("capabilities")
        methods = {str(m).strip() for m in payload.get("methods") or []}
        return Capabilities(methods=methods)

    def identify(self, workspace: str, surface: str = "") -> dict[str, Any]:
        args = ["identify"]
        if workspace.strip():
            args += ["--workspace", workspace.strip()]
        if surface.strip():
            args += ["--surface", surface.strip()]
        return self._run_json(*args)

    def list_workspaces(self) -> list[RuntimeWorkspace]:
        payload = self._run_json("list-workspaces")
        rows = [_workspace_row(row) for row in payload.get("workspaces") or []]
        if rows:
            return rows
        # Some runtime builds only report workspaces through the window tree.
        try:
            return self._list_workspaces_from_tree()
        except RuntimeCallError:
            logger.debug("cmux tree fallback failed", exc_info=True)
            return rows

    def _list_workspaces_from_tree(self) -> list[RuntimeWorkspace]:
        payload = self._run_json("tree", "--all")
        out: list[RuntimeWorkspace] = []
        seen: set[str] = set()
        for window in payload.get("windows") or []:
            for row in window.get("workspaces") or []:
                ws = _workspace_row(row)
                if not ws.id or ws.id in seen:
                    continue
                seen.add(ws.id)
                ws.selected = bool(row.get("selected") or row.get("current") or row.get("active"))
                out.append(ws)
        return out

    def create_workspace_with_command(self, command: str) -> str:
        args = ["new-workspace"]
        if command.strip():
            args += ["--command", command.strip()]
        raw = self._run_text(*args).strip()
        if not raw.startswith("OK "):
            msg = f"cmux new-workspace: unexpected response: {raw!r}"
            raise RuntimeCallError(msg)
        workspace_id = raw.removeprefix("OK ").strip()
        if not workspace_id:
            msg = "cmux new-workspace: empty workspace id"
            raise RuntimeCallError(msg)
        return workspace_id

    def rename_workspace(self, workspace: str, title: str) -> None:
        workspace = _required(workspace, "workspace")
        title = _required(title, "title")
        self._run_text("rename-workspace", "--workspace", workspace, title)

    def select_workspace(self, workspace: str) -> None:
        workspace = _required(workspace, "workspace")
        self._run_text("select-workspace", "--workspace", workspace)

    # -- Panes / surfaces ------------------------------------------------------

    def list_panes(self, workspace: str) -> list[Pane]:
        workspace = _required(workspace, "workspace")
        payload = self._run_json("list-panes", "--workspace", workspace)
        return [
            Pane(
                id=_str(row.get("id")),
                ref=_str(row.get("ref")),
                index=_int(row.get("index")),
                focused=bool(row.get("focused")),
            )
            for row in payload.get("panes") or []
        ]

    def list_pane_surfaces(self, workspace: str, pane: str) -> list[Surface]:
        workspace = _required(workspace, "workspace")
        pane = _required(pane, "pane")
        payload = self._run_json("list-pane-surfaces", "--workspace", workspace, "--pane", pane)
        return [
            Surface(
                id=_str(row.get("id")),
                ref=_str(row.get("ref")),
                index=_int(row.get("index")),
                title=_str(row.get("title")),
                type=_str(row.get("type")),
                selected=bool(row.get("selected")),
                pane_id=_str(row.get("pane_id")),
            )
            for row in payload.get("surfaces") or []
        ]

    def focus_pane(self, pane: str, workspace: str) -> None:
        args = ["focus-pane", "--pane", _required(pane, "pane")]
        if workspace.strip():
            args += ["--workspace", workspace.strip()]
        self._run_text(*args)

    def read_screen(self, workspace: str, surface: str, lines: int, scrollback: bool) -> str:
        workspace = _required(workspace, "workspace")
        surface = _required(surface, "surface")
        if lines < 1:
            lines = 120
        args = ["read-screen", "--workspace", workspace, "--surface", surface, "--lines", str(lines)]
        if scrollback:
            args.append("--scrollback")
        text = self._run_json(*args).get("text")
        return text if isinstance(text, str) else ""

    # Browser subcommands route by surface; ``workspace`` is accepted for
    # interface symmetry only.

    def browser_state_save(self, workspace: str, surface: str, path: str) -> None:
        surface = _required(surface, "surface")
        path = _required(path, "path")
        self._run_text("browser", "--surface", surface, "state", "save", path)

    def browser_state_load(self, workspace: str, surface: str, path: str) -> None:
        surface = _required(surface, "surface")
        path = _required(path, "path")
        self._run_text("browser", "--surface", surface, "state", "load", path)

    # -- Process plumbing ------------------------------------------------------

    def _argv(self, args: tuple[str, ...], *, json_output: bool, id_format_both: bool) -> list[str]:
        argv = [self.binary]
        if self.socket_path:
            argv += ["--socket", self.socket_path]
        if self.password:
            argv += ["--password", self.password]
        if json_output:
            argv.append("--json")
            if id_format_both:
                argv += ["--id-format", "both"]
        argv.extend(args)
        return argv

    def _run_text(self, *args: str) -> str:
        proc = self._runner(self._argv(args, json_output=False, id_format_both=False))
        if proc.returncode != 0:
            raise _command_error(args[0], proc)
        return proc.stdout or ""

    def _run_json(self, *args: str) -> dict[str, Any]:
        proc = self._runner(self._argv(args, json_output=True, id_format_both=True))
        if proc.returncode != 0 and _is_unsupported_id_format(proc):
            proc = self._runner(self._argv(args, json_output=True, id_format_both=False))
        if proc.returncode != 0:
            raise _command_error(" ".join(args), proc)
        try:
            payload = json.loads(proc.stdout or "")
        except json.JSONDecodeError as exc:
            msg = f"decode cmux json output: {exc}"
            raise RuntimeCallError(msg) from exc
        if not isinstance(payload, dict):
            msg = f"decode cmux json output: expected an object, got {type(payload).__name__}"
            raise RuntimeCallError(msg)
        return payload

    def _run_process(self, argv: list[str]) -> subprocess.CompletedProcess[str]:
        """Run one cmux invocation, polling for cancellation and timeout."""
        logger.debug("cmux: {}", " ".join(_redact(argv)))
        try:
            proc = subprocess.Popen(  # noqa: S603
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            msg = f"cmux {argv[1] if len(argv) > 1 else ''}: {exc}".strip()
            raise RuntimeCallError(msg) from exc

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                if self.cancel is not None and self.cancel.is_set():
                    _kill(proc)
                    msg = "cmux call cancelled"
                    raise RuntimeCallError(msg) from None
                if time.monotonic() >= deadline:
                    _kill(proc)
                    msg = f"cmux call timed out after {self.timeout:g}s"
                    raise RuntimeCallError(msg) from None
            except KeyboardInterrupt:
                _kill(proc)
                raise
            else:
                return subprocess.CompletedProcess(argv, proc.returncode, stdout, stderr)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _kill(proc: subprocess.Popen[str]) -> None:
    proc.kill()
    proc.communicate()


def _workspace_row(row: dict[str, Any]) -> RuntimeWorkspace:
    return RuntimeWorkspace(
        id=_str(row.get("id")),
        ref=_str(row.get("ref")),
        index=_int(row.get("index")),
        title=_str(row.get("title")),
        selected=bool(row.get("selected")),
    )


def _str(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def _int(value: object) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        msg = f"decode cmux json output: invalid index {value!r}"
        raise RuntimeCallError(msg) from exc


def _required(value: str, name: str) -> str:
    value = value.strip()
    if not value:
        msg = f"{name} is required"
        raise RuntimeCallError(msg)
    return value


def _is_unsupported_id_format(proc: subprocess.CompletedProcess[str]) -> bool:
    msg = (proc.stderr or "").strip().lower()
    if "id-format" not in msg:
        return False
    return any(s in msg for s in ("unknown option", "unrecognized option", "unknown flag"))


def _command_error(command: str, proc: subprocess.CompletedProcess[str]) -> RuntimeCallError:
    stderr = (proc.stderr or "").strip()
    if not stderr:
        return RuntimeCallError(f"cmux {command}: exit status {proc.returncode}")
    return RuntimeCallError(f"cmux {command}: {stderr}: exit status {proc.returncode}")


def _redact(argv: list[str]) -> list[str]:
    out = list(argv)
    for i, arg in enumerate(out[:-1]):
        if arg == "--password":
            out[i + 1] = "***"
    return out

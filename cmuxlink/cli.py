"""``cmuxlink`` command line.

Human output goes to stdout, diagnostics to stderr.  With ``--format json``
every command prints exactly one envelope on stdout and never prompts.

Exit codes: 0 success, 1 failure, 2 usage error.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click
from pydantic import BaseModel

from cmuxlink.errors import CmuxError, InvalidArgumentError, SelectionError, SessionRestorePartialError
from cmuxlink.execution.capture import SessionCaptureEngine
from cmuxlink.execution.coordinator import OpenCoordinator
from cmuxlink.execution.reconcile import list_mappings, mapping_status
from cmuxlink.execution.resolver import switch_workspace
from cmuxlink.execution.resume import SessionResumeEngine
from cmuxlink.execution.workspace import list_active_workspace_ids, resolve_open_targets, validate_workspace_id
from cmuxlink.log import setup_logging
from cmuxlink.models.enums import ErrorCode
from cmuxlink.models.output import Envelope, ErrorBody
from cmuxlink.models.results import (
    ListResult,
    OpenResult,
    ResumeRequest,
    ResumeResult,
    SaveRequest,
    SaveResult,
    StatusResult,
    SwitchResult,
)
from cmuxlink.runtime.base import ClientFactory
from cmuxlink.runtime.cmuxctl import CmuxClient
from cmuxlink.selector import PromptSelector, prompt_workspace_ids
from cmuxlink.settings import CmuxlinkSettings, get_settings
from cmuxlink.store.local import LocalMappingStore

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


def make_client_factory(settings: CmuxlinkSettings, cancel: threading.Event | None = None) -> ClientFactory:
    """Build a factory of ``CmuxClient`` instances configured from settings."""
    password = settings.password.get_secret_value() if settings.password else None

    def factory() -> CmuxClient:
        return CmuxClient(
            binary=settings.cmux_bin,
            socket_path=settings.socket_path,
            password=password,
            timeout=settings.command_timeout,
            cancel=cancel,
        )

    return factory


class _App:
    def __init__(self, settings: CmuxlinkSettings, root: str) -> None:
        self.settings = settings
        self.root = root


_format_option = click.option(
    "--format",
    "fmt",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
    help="Output format.  json is non-interactive.",
)


@click.group()
@click.option("--root", default=None, help="Workspace root (default: from CMUXLINK_ROOT or cwd).")
@click.option("--log-level", default=None, help="Log level (default: from CMUXLINK_LOG_LEVEL or WARNING).")
@click.pass_context
def main(ctx: click.Context, root: str | None, log_level: str | None) -> None:
    """cmuxlink - bind workspaces to cmux sessions and save / resume them."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    resolved = Path(root or settings.root).expanduser().resolve()
    ctx.obj = _App(settings=settings, root=str(resolved))


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def _fail(
    action: str,
    fmt: str,
    workspace_id: str,
    code: ErrorCode | str,
    message: str,
    result: Any = None,
) -> NoReturn:
    exit_code = EXIT_USAGE if code == ErrorCode.INVALID_ARGUMENT else EXIT_ERROR
    if fmt == "json":
        envelope = Envelope(
            ok=False,
            action=action,
            workspace_id=workspace_id,
            result=_dump(result),
            error=ErrorBody(code=str(code), message=message),
        )
        click.echo(envelope.model_dump_json())
    else:
        prefix = f"{action} ({workspace_id})" if workspace_id else action
        click.echo(f"{prefix}: {message}", err=True)
    click.get_current_context().exit(exit_code)


def _succeed(action: str, fmt: str, workspace_id: str, result: Any, render: Callable[[], None]) -> None:
    if fmt == "json":
        click.echo(Envelope(ok=True, action=action, workspace_id=workspace_id, result=_dump(result)).model_dump_json())
    else:
        render()


T = TypeVar("T")


def _run(
    action: str,
    fmt: str,
    workspace_id: str,
    call: Callable[[], T],
    cancel: threading.Event | None = None,
) -> T:
    """Run ``call``, reporting a ``CmuxError`` and exiting on failure.

    Ctrl-C sets ``cancel`` so in-flight cmux processes are killed.
    """
    try:
        return call()
    except KeyboardInterrupt:
        if cancel is not None:
            cancel.set()
        raise
    except CmuxError as exc:
        _fail(action, fmt, workspace_id, exc.code, exc.message, getattr(exc, "result", None))


# ---------------------------------------------------------------------------
# open
# ---------------------------------------------------------------------------


@main.command("open")
@click.argument("workspace_ids", nargs=-1)
@click.option("--multi", is_flag=True, default=False, help="Open several workspaces.")
@click.option("--concurrency", type=int, default=None, help="Parallel workers with --multi.")
@_format_option
@click.pass_obj
def open_cmd(app: _App, workspace_ids: tuple[str, ...], multi: bool, concurrency: int | None, fmt: str) -> None:
    """Open (or reuse) a cmux workspace for each logical workspace."""
    action = "cmux open"
    ids = list(dict.fromkeys(i.strip() for i in workspace_ids if i.strip()))
    hint = ids[0] if len(ids) == 1 else ""

    if concurrency is None:
        concurrency = app.settings.open_concurrency if multi else 1
    if concurrency < 1:
        _fail(action, fmt, "", ErrorCode.INVALID_ARGUMENT, "--concurrency must be >= 1")
    if concurrency > 1 and not multi:
        _fail(action, fmt, "", ErrorCode.INVALID_ARGUMENT, "--concurrency requires --multi")
    if not multi and len(ids) > 1:
        _fail(action, fmt, "", ErrorCode.INVALID_ARGUMENT, "multiple targets require --multi")
    if not ids:
        if fmt == "json":
            _fail(action, fmt, "", ErrorCode.INVALID_ARGUMENT, "workspace id is required in --format json mode")
        candidates = list_active_workspace_ids(app.root)
        if not candidates:
            _fail(action, fmt, "", ErrorCode.WORKSPACE_NOT_FOUND, "no active workspaces available")
        try:
            ids = prompt_workspace_ids(candidates, multi=multi)
        except SelectionError as exc:
            _fail(action, fmt, "", ErrorCode.WORKSPACE_NOT_FOUND, str(exc))

    targets = _run(
        action,
        fmt,
        hint,
        lambda: resolve_open_targets(app.root, ids, meta_filename=app.settings.workspace_meta_filename),
    )
    cancel = threading.Event()
    coordinator = OpenCoordinator(make_client_factory(app.settings, cancel), LocalMappingStore(app.root))
    result = _run(
        action,
        fmt,
        hint,
        lambda: coordinator.open(targets, concurrency=concurrency, multi=multi, cancel=cancel),
        cancel,
    )

    _report_open(action, fmt, multi, result)


def _report_open(action: str, fmt: str, multi: bool, result: OpenResult) -> None:
    single = not multi and len(result.results) == 1 and not result.failures
    if fmt == "json":
        if single:
            item = result.results[0]
            _succeed(action, fmt, item.workspace_id, item, lambda: None)
            return
        payload = {
            "count": len(result.results) + len(result.failures),
            "succeeded": len(result.results),
            "failed": len(result.failures),
            "items": _dump(result.results),
            "failures": _dump(result.failures),
        }
        if result.failures:
            first = result.failures[0]
            _fail(action, fmt, "", first.code, "some workspaces failed to open", payload)
        click.echo(Envelope(ok=True, action=action, result=payload).model_dump_json())
        return

    if single:
        item = result.results[0]
        click.echo("reused cmux workspace" if item.reused_existing else "opened cmux workspace")
        click.echo(f"  workspace: {item.workspace_id}")
        click.echo(f"  cmux: {item.cmux_workspace_id}")
        click.echo(f"  title: {item.title}")
        click.echo(f"  cwd: {item.workspace_path}")
        return
    total = len(result.results) + len(result.failures)
    click.echo(f"opened cmux workspaces: {len(result.results)} succeeded / {total} total")
    for item in sorted(result.results, key=lambda r: r.workspace_id):
        click.echo(f"  - {item.workspace_id} => {item.cmux_workspace_id} ({item.title})")
    for fail in result.failures:
        click.echo(f"{action} ({fail.workspace_id}): {fail.message}", err=True)
    if result.failures:
        click.get_current_context().exit(EXIT_ERROR)


# ---------------------------------------------------------------------------
# switch / list / status
# ---------------------------------------------------------------------------


@main.command("switch")
@click.option("--workspace", "workspace_id", default="", help="Logical workspace id.")
@click.option("--cmux", "handle", default="", help="cmux workspace id or workspace:<ordinal>.")
@_format_option
@click.pass_obj
def switch_cmd(app: _App, workspace_id: str, handle: str, fmt: str) -> None:
    """Select a mapped cmux workspace."""
    action = "cmux switch"
    non_interactive = fmt == "json"
    cancel = threading.Event()
    client = make_client_factory(app.settings, cancel)()
    result: SwitchResult = _run(
        action,
        fmt,
        workspace_id,
        lambda: switch_workspace(
            LocalMappingStore(app.root),
            client,
            workspace_id,
            handle,
            non_interactive=non_interactive,
            selector=None if non_interactive else PromptSelector(),
            cancel=cancel,
        ),
        cancel,
    )

    def render() -> None:
        click.echo("switched cmux workspace")
        click.echo(f"  workspace: {result.workspace_id}")
        click.echo(f"  cmux: {result.cmux_workspace_id}")
        click.echo(f"  title: {result.title}")

    _succeed(action, fmt, result.workspace_id, result, render)


@main.command("list")
@click.option("--workspace", "workspace_id", default="", help="Only this workspace.")
@_format_option
@click.pass_obj
def list_cmd(app: _App, workspace_id: str, fmt: str) -> None:
    """List mapped cmux workspaces, pruning stale entries."""
    action = "cmux list"
    cancel = threading.Event()
    client = make_client_factory(app.settings, cancel)()
    result: ListResult = _run(
        action,
        fmt,
        workspace_id,
        lambda: list_mappings(LocalMappingStore(app.root), client, workspace_id or None, cancel=cancel),
        cancel,
    )

    def render() -> None:
        if result.runtime_warning:
            click.echo(f"warning: {result.runtime_warning}", err=True)
        if not result.rows:
            click.echo("no cmux mappings")
            return
        current = ""
        for row in result.rows:
            if row.workspace_id != current:
                current = row.workspace_id
                click.echo(f"{current}:")
            last_used = row.last_used_at.isoformat() if row.last_used_at else "-"
            click.echo(f"  [{row.ordinal}] {row.cmux_workspace_id}  {row.title}  (last used {last_used})")
        if result.pruned_count:
            click.echo(f"pruned {result.pruned_count} stale mapping(s)")

    _succeed(action, fmt, workspace_id, result, render)


@main.command("status")
@click.option("--workspace", "workspace_id", default="", help="Only this workspace.")
@_format_option
@click.pass_obj
def status_cmd(app: _App, workspace_id: str, fmt: str) -> None:
    """Show whether each mapped cmux workspace is still live."""
    action = "cmux status"
    cancel = threading.Event()
    client = make_client_factory(app.settings, cancel)()
    result: StatusResult = _run(
        action,
        fmt,
        workspace_id,
        lambda: mapping_status(LocalMappingStore(app.root), client, workspace_id or None, cancel=cancel),
        cancel,
    )

    def render() -> None:
        if not result.rows:
            click.echo("no cmux mappings")
            return
        current = ""
        for row in result.rows:
            if row.workspace_id != current:
                current = row.workspace_id
                click.echo(f"{current}:")
            state = "live" if row.exists else "missing"
            click.echo(f"  [{row.ordinal}] {row.cmux_workspace_id}  {row.title}  ({state})")

    _succeed(action, fmt, workspace_id, result, render)


# ---------------------------------------------------------------------------
# save / resume / sessions
# ---------------------------------------------------------------------------


def _require_workspace(action: str, fmt: str, workspace_id: str) -> str:
    try:
        return validate_workspace_id(workspace_id)
    except InvalidArgumentError as exc:
        _fail(action, fmt, workspace_id, exc.code, exc.message)


@main.command("save")
@click.option("--workspace", "workspace_id", default="", help="Logical workspace id.")
@click.option("--label", default="", help="Label appended to the session id.")
@click.option("--no-browser-state", is_flag=True, default=False, help="Skip browser state capture.")
@click.option("--lines", type=int, default=None, help="Screen lines to capture per surface.")
@_format_option
@click.pass_obj
def save_cmd(app: _App, workspace_id: str, label: str, no_browser_state: bool, lines: int | None, fmt: str) -> None:
    """Capture the mapped cmux session of a workspace."""
    action = "cmux save"
    workspace_id = _require_workspace(action, fmt, workspace_id)
    cancel = threading.Event()
    engine = SessionCaptureEngine(make_client_factory(app.settings, cancel))
    req = SaveRequest(
        root=app.root,
        workspace_id=workspace_id,
        label=label,
        include_browser_state=not no_browser_state,
        screen_lines=lines if lines is not None else app.settings.screen_lines,
    )
    result: SaveResult = _run(action, fmt, workspace_id, lambda: engine.save(req, cancel=cancel), cancel)

    def render() -> None:
        click.echo("saved cmux session")
        click.echo(f"  session: {result.session_id}")
        click.echo(f"  path: {result.path}")
        click.echo(f"  panes: {result.pane_count}  surfaces: {result.surface_count}")
        for w in result.warnings:
            click.echo(f"warning: [{w.code}] {w.message}", err=True)

    _succeed(action, fmt, workspace_id, result, render)


@main.command("resume")
@click.argument("session_id")
@click.option("--workspace", "workspace_id", default="", help="Logical workspace id.")
@click.option("--strict", is_flag=True, default=False, help="Fail if anything could not be restored.")
@click.option("--skip-browser", is_flag=True, default=False, help="Do not restore browser state.")
@_format_option
@click.pass_obj
def resume_cmd(app: _App, session_id: str, workspace_id: str, strict: bool, skip_browser: bool, fmt: str) -> None:
    """Restore a saved cmux session."""
    action = "cmux resume"
    workspace_id = _require_workspace(action, fmt, workspace_id)
    cancel = threading.Event()
    engine = SessionResumeEngine(make_client_factory(app.settings, cancel))
    req = ResumeRequest(
        root=app.root,
        workspace_id=workspace_id,
        session_id=session_id,
        strict=strict,
        skip_browser=skip_browser,
    )
    try:
        result: ResumeResult = engine.resume(req, cancel=cancel)
    except KeyboardInterrupt:
        cancel.set()
        raise
    except SessionRestorePartialError as exc:
        if fmt != "json":
            _render_resume(exc.result)
        _fail(action, fmt, workspace_id, exc.code, exc.message, exc.result)
    except CmuxError as exc:
        _fail(action, fmt, workspace_id, exc.code, exc.message)

    _succeed(action, fmt, workspace_id, result, lambda: _render_resume(result))


def _render_resume(result: ResumeResult) -> None:
    click.echo("resumed cmux session")
    click.echo(f"  session: {result.session_id}")
    click.echo(f"  focus restored: {'yes' if result.focus_restored else 'no'}")
    click.echo(f"  browser restored: {'yes' if result.browser_restored else 'no'}")
    for w in result.warnings:
        click.echo(f"warning: [{w.code}] {w.message}", err=True)


@main.command("sessions")
@click.option("--workspace", "workspace_id", default="", help="Logical workspace id.")
@_format_option
@click.pass_obj
def sessions_cmd(app: _App, workspace_id: str, fmt: str) -> None:
    """List saved sessions of a workspace, newest first."""
    action = "cmux sessions"
    workspace_id = _require_workspace(action, fmt, workspace_id)
    engine = SessionResumeEngine(make_client_factory(app.settings))
    sessions = _run(action, fmt, workspace_id, lambda: engine.list_sessions(app.root, workspace_id))

    def render() -> None:
        if not sessions:
            click.echo("no saved sessions")
            return
        for s in sessions:
            created = s.created_at.isoformat() if s.created_at else "-"
            label = f"  {s.label}" if s.label else ""
            click.echo(f"{s.session_id}{label}  ({created}, {s.pane_count} panes, {s.surface_count} surfaces)")

    _succeed(action, fmt, workspace_id, sessions, render)


if __name__ == "__main__":
    main()

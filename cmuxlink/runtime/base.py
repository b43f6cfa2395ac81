"""Runtime client interface.

The core never talks to cmux directly; it is handed ``RuntimeClient``
instances by a factory.  Instances are not assumed to be safe for concurrent
use -- concurrent callers obtain one client per thread.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from cmuxlink.models.runtime import Capabilities, Pane, RuntimeWorkspace, Surface


class RuntimeCallError(RuntimeError):
    """A runtime call failed.  The message starts with the failing operation."""


@runtime_checkable
class RuntimeClient(Protocol):
    """Synchronous operations against the cmux runtime.

    Every method may block for an arbitrary time and raises
    ``RuntimeCallError`` on failure.
    """

    def capabilities(self) -> Capabilities: ...

    def create_workspace_with_command(self, command: str) -> str:
        """Create a workspace running ``command``; return its runtime id."""
        ...

    def rename_workspace(self, workspace: str, title: str) -> None: ...

    def select_workspace(self, workspace: str) -> None: ...

    def list_workspaces(self) -> list[RuntimeWorkspace]: ...

    def identify(self, workspace: str, surface: str = "") -> dict[str, Any]: ...

    def list_panes(self, workspace: str) -> list[Pane]: ...

    def list_pane_surfaces(self, workspace: str, pane: str) -> list[Surface]: ...

    def read_screen(self, workspace: str, surface: str, lines: int, scrollback: bool) -> str: ...

    def browser_state_save(self, workspace: str, surface: str, path: str) -> None: ...

    def browser_state_load(self, workspace: str, surface: str, path: str) -> None: ...

    def focus_pane(self, pane: str, workspace: str) -> None: ...


ClientFactory = Callable[[], RuntimeClient]


def is_not_found_error(err: BaseException) -> bool:
    """Classify a failed ``identify`` as "the runtime workspace is gone".

    This is a deliberate substring heuristic over the runtime's message and
    the only place error text is inspected.  Anything else is treated as
    indeterminate (the runtime may simply be unreachable).
    """
    msg = str(err).strip().lower()
    if not msg:
        return False
    return "not found" in msg or "unknown workspace" in msg

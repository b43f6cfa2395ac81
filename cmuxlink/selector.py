"""Interactive selection of switch targets.

The resolver only depends on the ``Selector`` protocol; ``PromptSelector``
is the terminal implementation used by the CLI in human mode.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import click

from cmuxlink.errors import SelectionError
from cmuxlink.models.results import SwitchEntryCandidate, SwitchWorkspaceCandidate


@runtime_checkable
class Selector(Protocol):
    """Pick one candidate.  Raises ``SelectionError`` on abort."""

    def select_workspace(self, candidates: Sequence[SwitchWorkspaceCandidate]) -> str:
        """Return the chosen workspace id."""
        ...

    def select_entry(self, workspace_id: str, candidates: Sequence[SwitchEntryCandidate]) -> str:
        """Return the chosen runtime workspace id."""
        ...


class PromptSelector:
    """Numbered-menu selector on the controlling terminal."""

    def select_workspace(self, candidates: Sequence[SwitchWorkspaceCandidate]) -> str:
        labels = [f"{c.workspace_id} ({c.mapped_count} mapped)" for c in candidates]
        index = _choose("Select workspace", labels)
        return candidates[index].workspace_id

    def select_entry(self, workspace_id: str, candidates: Sequence[SwitchEntryCandidate]) -> str:
        labels = [f"workspace:{c.ordinal}  {c.title}  ({c.cmux_workspace_id})" for c in candidates]
        index = _choose(f"Select cmux workspace for {workspace_id}", labels)
        return candidates[index].cmux_workspace_id


def _choose(prompt: str, labels: list[str]) -> int:
    for i, label in enumerate(labels, start=1):
        click.echo(f"  {i}) {label}", err=True)
    try:
        choice = click.prompt(prompt, type=click.IntRange(1, len(labels)), err=True)
    except click.Abort as exc:
        msg = "selection cancelled"
        raise SelectionError(msg) from exc
    return choice - 1


def prompt_workspace_ids(candidates: Sequence[str], *, multi: bool) -> list[str]:
    """Pick logical workspaces to open.  ``multi`` accepts ``1,3,4``."""
    for i, workspace_id in enumerate(candidates, start=1):
        click.echo(f"  {i}) {workspace_id}", err=True)
    try:
        raw = click.prompt("Select workspaces (comma separated)" if multi else "Select workspace", err=True)
    except click.Abort as exc:
        msg = "selection cancelled"
        raise SelectionError(msg) from exc

    picked: list[str] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit() or not 1 <= int(part) <= len(candidates):
            msg = f"invalid selection: {part}"
            raise SelectionError(msg)
        workspace_id = candidates[int(part) - 1]
        if workspace_id not in picked:
            picked.append(workspace_id)
    if not picked or (not multi and len(picked) != 1):
        msg = "cmux open requires exactly one workspace selected" if not multi else "no workspace selected"
        raise SelectionError(msg)
    return picked

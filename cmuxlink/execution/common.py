"""Small helpers shared by the execution modules: clock and stored paths."""

from __future__ import annotations

import os
import threading
import unicodedata
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from cmuxlink.errors import CancelledError

Clock = Callable[[], datetime]


def utc_now(clock: Clock = datetime.now) -> datetime:
    """Current time in UTC, truncated to whole seconds."""
    now = clock()
    if now.tzinfo is None:
        now = now.astimezone()
    return now.astimezone(UTC).replace(microsecond=0)


def normalize_relative_path(root: str | Path, path: str | Path) -> str:
    """Express ``path`` relative to ``root`` with ``/`` separators.

    Paths outside ``root`` are kept absolute.
    """
    try:
        rel = os.path.relpath(path, root)
    except ValueError:
        return Path(path).as_posix()
    if rel in ("", ".") or rel == ".." or rel.startswith(".." + os.sep):
        return Path(path).as_posix()
    return Path(rel).as_posix()


def resolve_stored_path(root: str | Path, stored: str) -> Path:
    """Inverse of ``normalize_relative_path``."""
    stored = stored.strip()
    if not stored:
        return Path(root)
    path = Path(stored)
    if path.is_absolute():
        return Path(os.path.normpath(path))
    return Path(os.path.normpath(Path(root) / path))


def sanitize_path_component(value: str) -> str:
    """Make a runtime handle safe to use as a file name.

    Letters, digits, ``.``, ``-`` and ``_`` are kept, anything else becomes
    ``_``; leading/trailing punctuation is trimmed.  Never returns "".
    """
    value = value.strip()
    chars = []
    for ch in value:
        if _is_letter_or_digit(ch) or ch in "._-":
            chars.append(ch)
        else:
            chars.append("_")
    out = "".join(chars).strip("._-")
    return out or "unknown"


def slugify_label(label: str) -> str:
    """Lower-case ``label`` and collapse non-alphanumeric runs into ``-``."""
    label = label.strip().lower()
    chars: list[str] = []
    last_dash = False
    for ch in label:
        if _is_letter_or_digit(ch):
            chars.append(ch)
            last_dash = False
        elif not last_dash:
            chars.append("-")
            last_dash = True
    return "".join(chars).strip("-")


def _is_letter_or_digit(ch: str) -> bool:
    return unicodedata.category(ch)[0] in ("L", "N")


def check_cancelled(cancel: threading.Event | None, what: str) -> None:
    """Raise ``CancelledError`` if ``cancel`` has been set."""
    if cancel is not None and cancel.is_set():
        msg = f"{what} cancelled"
        raise CancelledError(msg)

"""Store interfaces for local cmuxlink state.

Both stores hold one small JSON document per root and are loaded and saved
whole.  They assume a single writer: there is no cross-process locking.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from cmuxlink.models.mapping import MappingFile
from cmuxlink.models.session import SessionIndexFile


@runtime_checkable
class MappingStore(Protocol):
    """Persistence for workspace <-> runtime bindings."""

    def load(self) -> MappingFile:
        """Return the stored mapping, or an empty one if nothing was saved yet.

        Raises ``UnsupportedVersionError`` for files of another version.
        """
        ...

    def save(self, mapping: MappingFile) -> None:
        """Replace the stored mapping atomically."""
        ...


@runtime_checkable
class SessionStore(Protocol):
    """Persistence for the per-workspace index of captured sessions."""

    def load(self) -> SessionIndexFile: ...

    def save(self, index: SessionIndexFile) -> None: ...

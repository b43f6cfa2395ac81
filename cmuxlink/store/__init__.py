"""Persistent local state: runtime mappings and the captured-session index."""

from cmuxlink.store.base import MappingStore, SessionStore
from cmuxlink.store.local import LocalMappingStore, LocalSessionStore
from cmuxlink.store.ordinals import allocate_ordinal, format_workspace_title

__all__ = [
    "LocalMappingStore",
    "LocalSessionStore",
    "MappingStore",
    "SessionStore",
    "allocate_ordinal",
    "format_workspace_title",
]

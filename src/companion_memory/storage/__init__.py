"""Storage backends for companion memories."""

from __future__ import annotations

from .interfaces import MemoryStore
from .sqlite_store import SQLiteStore

__all__ = ["MemoryStore", "SQLiteStore"]

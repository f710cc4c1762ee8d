"""
Companion Memory Test Fixtures
Shared fixtures and fakes for the memory subsystem tests.
"""
import os
import random
import tempfile
from datetime import datetime, timezone

import pytest

from companion_memory.storage.sqlite_store import SQLiteStore


class ZeroRandom(random.Random):
    """Random source that always returns 0.0, so every blur branch fires."""

    def random(self) -> float:
        return 0.0


class OneRandom(random.Random):
    """Random source just under 1.0, so no blur branch fires."""

    def random(self) -> float:
        return 0.999999


class FakeEmbedder:
    """Deterministic embedding function backed by a lookup table.

    Unknown texts get ``default``; texts listed in ``failing`` raise.
    """

    def __init__(self, vectors=None, default=None, failing=()):
        self.vectors = dict(vectors or {})
        self.default = default
        self.failing = set(failing)
        self.calls: list[str] = []

    async def __call__(self, text: str):
        self.calls.append(text)
        if text in self.failing:
            raise RuntimeError(f"embedding provider down for {text!r}")
        return self.vectors.get(text, self.default)


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def zero_rng() -> random.Random:
    return ZeroRandom()


@pytest.fixture
async def store():
    """Temporary SQLite store, closed after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = os.path.join(tmpdir, "test.db")
        s = SQLiteStore(db_path=db_path)
        await s.initialize()
        yield s
        await s.close()


@pytest.fixture
def one_rng() -> random.Random:
    return OneRandom()


@pytest.fixture
def make_embedder():
    """Factory for :class:`FakeEmbedder` instances."""
    return FakeEmbedder

"""Storage protocol consumed by the memory components."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..models import (
    Memory,
    MemoryConnection,
    PersonaRelationship,
    SharedMemory,
)


class MemoryStore(Protocol):
    """Persistence operations used by retrieval, aging and sharing."""

    async def insert_memory(self, memory: Memory) -> str:
        ...

    async def get_memory(self, memory_id: str) -> Memory | None:
        ...

    async def list_memories(
        self,
        user_id: str | None = None,
        persona_id: str | None = None,
        include_archived: bool = False,
        archived_only: bool = False,
        limit: int | None = None,
    ) -> list[Memory]:
        ...

    async def delete_memory(self, memory_id: str) -> bool:
        ...

    async def search_similar(
        self,
        user_id: str,
        query_embedding: list[float],
        limit: int | None = None,
        persona_id: str | None = None,
    ) -> list[dict]:
        """Rows with ``memory``, ``similarity`` and ``persona_name`` keys."""
        ...

    async def search_text(
        self,
        query: str,
        user_id: str,
        persona_id: str | None = None,
        include_archived: bool = True,
    ) -> list[Memory]:
        ...

    async def get_memories_for_consolidation(
        self,
        user_id: str,
        persona_id: str | None,
        after_id: str | None,
        limit: int,
    ) -> list[Memory]:
        ...

    async def update_memory_decay(
        self,
        memory_id: str,
        decay_factor: float,
        fuzzy_content: str | None,
        now: datetime,
    ) -> None:
        ...

    async def archive_memory(
        self,
        memory_id: str,
        decay_factor: float,
        fuzzy_content: str | None,
        now: datetime,
    ) -> None:
        ...

    async def record_access(self, memory_id: str, now: datetime) -> bool:
        ...

    async def touch_memory(self, memory_id: str, now: datetime) -> None:
        ...

    async def add_connection(
        self, source_memory_id: str, connection: MemoryConnection
    ) -> None:
        ...

    async def get_persona_name(self, persona_id: str) -> str | None:
        ...

    async def insert_shared_memory(self, shared: SharedMemory) -> str:
        ...

    async def get_shared_memories_for(self, persona_id: str) -> list[SharedMemory]:
        ...

    async def has_shared_with(
        self, original_memory_id: str, persona_id: str
    ) -> bool:
        ...

    async def upsert_relationship(self, relationship: PersonaRelationship) -> None:
        ...

    async def get_relationships(self) -> list[PersonaRelationship]:
        ...

    async def get_consolidation_state(
        self, user_id: str, persona_id: str | None
    ) -> dict | None:
        ...

    async def set_consolidation_state(
        self,
        user_id: str,
        persona_id: str | None,
        last_run_at: datetime | None,
        cursor: str | None,
    ) -> None:
        ...

    async def insert_consolidation_log(self, log: dict) -> None:
        ...

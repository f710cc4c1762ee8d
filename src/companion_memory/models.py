"""Companion memory data models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


def _shared_id() -> str:
    return f"shared_{uuid4().hex}"


class MemoryType(str, Enum):
    PERSONAL = "personal"
    PREFERENCE = "preference"
    EXPERIENCE = "experience"
    RELATIONSHIP = "relationship"
    KNOWLEDGE = "knowledge"
    EMOTIONAL_STATE = "emotional_state"
    SHARED_EXPERIENCE = "shared_experience"


class ConnectionType(str, Enum):
    SIMILAR = "similar"
    RELATED = "related"
    CONTRASTING = "contrasting"
    SEQUENTIAL = "sequential"
    CAUSAL = "causal"


class PermissionLevel(str, Enum):
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


class FuzzinessTier(str, Enum):
    VERBATIM = "verbatim"
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


class InsightType(str, Enum):
    RELATIONSHIP_PATTERN = "relationship_pattern"
    MEMORY_THEME = "memory_theme"
    EMOTIONAL_TREND = "emotional_trend"


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


class MemoryConnection(BaseModel):
    """A directed link from one memory to another."""

    connection_type: ConnectionType
    target_memory_id: str
    strength: float = Field(default=0.5, ge=0.0, le=1.0)
    description: str = ""
    created_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class MemoryContext(BaseModel):
    """Where and with whom a memory was formed."""

    participants: list[str] = Field(default_factory=list)
    user_id: str | None = None
    conversation_id: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    location: str | None = None


class Memory(BaseModel):
    """A persisted memory owned by one persona for one user.

    ``decay_factor`` is the snapshot written by the last consolidation pass;
    the live strength is always recomputed from the timestamps, the access
    count and importance.
    """

    id: str = Field(default_factory=_uuid)
    user_id: str
    persona_id: str
    original_content: str
    fuzzy_content: str | None = None
    embedding: list[float] | None = None
    memory_type: MemoryType = MemoryType.PERSONAL
    tags: list[str] = Field(default_factory=list)
    importance_score: float = Field(default=0.5, ge=0.0, le=1.0)
    decay_factor: float = Field(default=1.0, ge=0.0, le=1.0)
    consolidation_count: int = Field(default=0, ge=0)
    emotional_impact: float = Field(default=0.0, ge=-1.0, le=1.0)
    created_at: datetime = Field(default_factory=_utcnow)
    last_accessed: datetime = Field(default_factory=_utcnow)
    last_updated: datetime = Field(default_factory=_utcnow)
    is_archived: bool = False
    connections: list[MemoryConnection] = Field(default_factory=list)
    access_permissions: dict[str, PermissionLevel] = Field(default_factory=dict)
    shared_with_companions: list[str] = Field(default_factory=list)
    context: MemoryContext = Field(default_factory=MemoryContext)

    @property
    def content(self) -> str:
        """Text as the persona currently remembers it."""
        return self.fuzzy_content or self.original_content


class SharedMemory(BaseModel):
    """A copy of a memory made visible to other personas."""

    id: str = Field(default_factory=_shared_id)
    original_memory_id: str
    original_persona_id: str
    shared_with_companions: list[str] = Field(default_factory=list)
    memory_type: MemoryType
    content: str
    context: MemoryContext = Field(default_factory=MemoryContext)
    importance: float = 0.5
    emotional_impact: float = 0.0
    last_referenced: datetime = Field(default_factory=_utcnow)
    tags: list[str] = Field(default_factory=list)
    connections: list[MemoryConnection] = Field(default_factory=list)
    access_permissions: dict[str, PermissionLevel] = Field(default_factory=dict)

    @classmethod
    def from_memory(cls, memory: Memory) -> "SharedMemory":
        """Project a persona's own memory into the shared-memory shape."""
        return cls(
            id=memory.id,
            original_memory_id=memory.id,
            original_persona_id=memory.persona_id,
            shared_with_companions=list(memory.shared_with_companions),
            memory_type=memory.memory_type,
            content=memory.original_content,
            context=memory.context,
            importance=memory.importance_score,
            emotional_impact=memory.emotional_impact,
            last_referenced=memory.last_accessed,
            tags=list(memory.tags),
            connections=list(memory.connections),
            access_permissions=dict(memory.access_permissions),
        )


# ---------------------------------------------------------------------------
# Persona network
# ---------------------------------------------------------------------------


class PersonaRelationship(BaseModel):
    """Undirected relationship between two personas.

    ``persona_a`` always sorts before ``persona_b``.
    """

    persona_a: str
    persona_b: str
    relationship_strength: float = Field(default=0.0, ge=0.0, le=1.0)
    trust_level: float = Field(default=0.0, ge=0.0, le=1.0)
    shared_memories: int = 0
    connection_count: int = 0
    last_interaction: datetime = Field(default_factory=_utcnow)

    def other(self, persona_id: str) -> str:
        return self.persona_b if persona_id == self.persona_a else self.persona_a


class MemoryCluster(BaseModel):
    """Thematic grouping of memories."""

    id: str = Field(default_factory=_uuid)
    theme: str
    memories: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    significance: float = 0.0


class NetworkInsight(BaseModel):
    """A derived observation about a persona's memory network."""

    insight_type: InsightType
    description: str
    confidence: float
    related_companions: list[str] = Field(default_factory=list)
    related_memories: list[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)


class CompanionNetwork(BaseModel):
    """One persona's view of the network."""

    persona_id: str
    connected_companions: list[PersonaRelationship] = Field(default_factory=list)
    memory_clusters: list[MemoryCluster] = Field(default_factory=list)
    insights: list[NetworkInsight] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------


class ExtractedFact(BaseModel):
    """A candidate fact produced by the extractor."""

    fact: str
    memory_type: MemoryType
    confidence: float = Field(gt=0.0, le=1.0)
    context: str = ""
    category: str | None = None
    topics: list[str] = Field(default_factory=list)


class RetrievalResult(BaseModel):
    """A memory returned by similarity search."""

    id: str
    content: str
    persona_id: str
    persona_name: str
    similarity: float
    last_accessed: datetime
    memory_type: MemoryType
    metadata: dict[str, Any] = Field(default_factory=dict)


class StoreResult(BaseModel):
    """Outcome of persisting a batch of extracted facts."""

    stored_ids: list[str] = Field(default_factory=list)
    skipped: int = 0

    @property
    def stored(self) -> int:
        return len(self.stored_ids)


class ConsolidationResult(BaseModel):
    """Counts from one consolidation pass."""

    user_id: str
    persona_id: str | None = None
    consolidated: int = 0
    archived: int = 0
    deleted: int = 0
    errors: int = 0
    skipped: bool = False  # refused by the interval gate or an active run
    completed: bool = True  # False when bounded by max_memories with work left


class MemoryHealthStats(BaseModel):
    """Aggregate health of a persona's memories."""

    total_memories: int = 0
    active_memories: int = 0
    archived_memories: int = 0
    average_decay: float = 0.0
    oldest_memory: datetime | None = None
    newest_memory: datetime | None = None


# ---------------------------------------------------------------------------
# Mind map export/import
# ---------------------------------------------------------------------------


class MindMapNode(BaseModel):
    """A labeled tree node."""

    id: str
    label: str
    content: str = ""
    children: list["MindMapNode"] = Field(default_factory=list)
    style: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class MindMapData(BaseModel):
    """Exported mind map document."""

    version: str = "1.0"
    title: str
    root: MindMapNode
    settings: dict[str, Any] = Field(
        default_factory=lambda: {"layout": "radial", "theme": "default"}
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class ImportResult(BaseModel):
    """Outcome of a mind-map import."""

    success: bool = True
    imported_nodes: int = 0
    imported_connections: int = 0
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

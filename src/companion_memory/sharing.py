"""Shared memory network between companion personas.

A persona may share one of its own memories with companions it has a
strong and trusted relationship with. Sharing stores a separate
:class:`SharedMemory`; the original memory is never modified.
"""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger

from .config import SharingConfig
from .exceptions import MemoryNotFoundError, NoEligibleRecipientsError, SharingError
from .models import (
    CompanionNetwork,
    ConnectionType,
    MemoryCluster,
    MemoryConnection,
    MemoryContext,
    NetworkInsight,
    PermissionLevel,
    PersonaRelationship,
    SharedMemory,
)
from .network import InteractionEvent, PersonaGraph
from .storage.interfaces import MemoryStore
from .themes import cluster_memories_by_theme, generate_insights

SHARED_TAG = "shared"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SharedMemoryNetwork:
    """Relationship-gated memory sharing, connections and insights."""

    def __init__(
        self,
        store: MemoryStore,
        config: SharingConfig | None = None,
        graph: PersonaGraph | None = None,
    ):
        self._store = store
        self.config = config or SharingConfig()
        self.graph = graph or PersonaGraph()
        self._loaded = False

    async def initialize(self) -> None:
        """Load persisted relationships into the graph."""
        self.graph.load(await self._store.get_relationships())
        self._loaded = True
        logger.debug(f"Persona graph loaded: {len(self.graph)} relationships")

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.initialize()

    async def _persist(self, relationship: PersonaRelationship) -> None:
        await self._store.upsert_relationship(relationship)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    async def set_relationship(
        self,
        persona_a: str,
        persona_b: str,
        strength: float | None = None,
        trust: float | None = None,
    ) -> PersonaRelationship:
        """Record an externally assessed relationship strength and trust."""
        await self._ensure_loaded()
        rel = self.graph.set_relationship(persona_a, persona_b, strength, trust)
        await self._persist(rel)
        logger.info(
            f"Relationship {rel.persona_a}<->{rel.persona_b}: "
            f"strength={rel.relationship_strength}, trust={rel.trust_level}"
        )
        return rel

    async def get_relationship(
        self, persona_a: str, persona_b: str
    ) -> PersonaRelationship | None:
        await self._ensure_loaded()
        return self.graph.get(persona_a, persona_b)

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def share_memory(
        self,
        memory_id: str,
        from_persona: str,
        to_personas: list[str],
        permission: PermissionLevel = PermissionLevel.READ,
        now: datetime | None = None,
    ) -> SharedMemory:
        """Share one of *from_persona*'s memories.

        Raises:
            MemoryNotFoundError: The memory does not exist
            SharingError: Sharing is disabled, or *from_persona* does not own
                the memory
            NoEligibleRecipientsError: No requested recipient meets the
                strength and trust thresholds; nothing is stored
        """
        if not self.config.enabled:
            raise SharingError("Memory sharing is disabled")
        await self._ensure_loaded()
        now = now or _utcnow()

        memory = await self._store.get_memory(memory_id)
        if memory is None:
            raise MemoryNotFoundError(memory_id)
        if memory.persona_id != from_persona:
            raise SharingError(
                f"{from_persona} cannot share memory {memory_id} owned by "
                f"{memory.persona_id}"
            )

        recipients = self.graph.eligible_recipients(
            from_persona,
            to_personas,
            self.config.min_relationship_strength,
            self.config.min_trust_level,
        )
        if not recipients:
            raise NoEligibleRecipientsError(from_persona, to_personas)

        permissions = {from_persona: PermissionLevel.ADMIN}
        permissions.update({p: permission for p in recipients})
        tags = list(memory.tags)
        if SHARED_TAG not in tags:
            tags.append(SHARED_TAG)

        shared = SharedMemory(
            original_memory_id=memory.id,
            original_persona_id=from_persona,
            shared_with_companions=recipients,
            memory_type=memory.memory_type,
            content=memory.original_content,
            context=MemoryContext(
                participants=[from_persona, *recipients],
                user_id=memory.user_id,
                conversation_id=memory.context.conversation_id,
                timestamp=now,
                location=memory.context.location,
            ),
            importance=memory.importance_score,
            emotional_impact=memory.emotional_impact,
            last_referenced=now,
            tags=tags,
            connections=list(memory.connections),
            access_permissions=permissions,
        )
        await self._store.insert_shared_memory(shared)

        for recipient in recipients:
            rel = self.graph.record_event(
                from_persona, recipient, InteractionEvent.SHARE, now
            )
            await self._persist(rel)

        skipped = [p for p in to_personas if p not in recipients]
        if skipped:
            logger.debug(f"Share {shared.id} skipped ineligible recipients: {skipped}")
        logger.info(
            f"Memory {memory.id} shared by {from_persona} with {recipients}"
        )
        return shared

    async def get_accessible_memories(
        self, persona_id: str, user_id: str | None = None
    ) -> list[SharedMemory]:
        """Own memories plus memories shared with *persona_id*.

        Returns:
            Deduplicated by id, most recently referenced first
        """
        own = await self._store.list_memories(user_id=user_id, persona_id=persona_id)
        shared = await self._store.get_shared_memories_for(persona_id)
        if user_id is not None:
            shared = [s for s in shared if s.context.user_id == user_id]

        merged: dict[str, SharedMemory] = {}
        for item in [SharedMemory.from_memory(m) for m in own] + shared:
            merged.setdefault(item.id, item)
        return sorted(merged.values(), key=lambda m: m.last_referenced, reverse=True)

    async def create_memory_connection(
        self,
        from_persona: str,
        memory_a_id: str,
        memory_b_id: str,
        connection_type: ConnectionType,
        description: str = "",
        strength: float = 0.5,
        now: datetime | None = None,
    ) -> MemoryConnection:
        """Link memory A to memory B.

        When the memories belong to different personas the pair's
        relationship records the connection.
        """
        await self._ensure_loaded()
        now = now or _utcnow()

        memory_a = await self._store.get_memory(memory_a_id)
        if memory_a is None:
            raise MemoryNotFoundError(memory_a_id)
        memory_b = await self._store.get_memory(memory_b_id)
        if memory_b is None:
            raise MemoryNotFoundError(memory_b_id)

        connection = MemoryConnection(
            connection_type=connection_type,
            target_memory_id=memory_b.id,
            strength=strength,
            description=description,
            created_by=from_persona,
            created_at=now,
        )
        await self._store.add_connection(memory_a.id, connection)

        if memory_a.persona_id != memory_b.persona_id:
            rel = self.graph.record_event(
                memory_a.persona_id,
                memory_b.persona_id,
                InteractionEvent.CONNECTION,
                now,
            )
            await self._persist(rel)

        logger.debug(
            f"Connected {memory_a.id} -> {memory_b.id} "
            f"({connection_type.value}) by {from_persona}"
        )
        return connection

    async def auto_share_memories(
        self, persona_id: str, now: datetime | None = None
    ) -> list[SharedMemory]:
        """Share important or emotionally charged memories with close companions.

        Recipients that already received a memory are not sent it again.
        Failures are logged and the remaining memories still go out.
        """
        if not self.config.enabled:
            logger.debug(f"Memory sharing disabled, not auto-sharing from {persona_id}")
            return []
        await self._ensure_loaded()
        now = now or _utcnow()

        neighbors = [
            rel.other(persona_id)
            for rel in self.graph.neighbors(persona_id)
            if rel.relationship_strength > self.config.auto_share_min_strength
        ]
        if not neighbors:
            return []

        memories = await self._store.list_memories(persona_id=persona_id)
        important = [
            m
            for m in memories
            if m.importance_score > self.config.auto_share_importance
            or abs(m.emotional_impact) > self.config.auto_share_emotional_impact
        ]

        results: list[SharedMemory] = []
        for memory in important:
            recipients = [
                p
                for p in neighbors
                if not await self._store.has_shared_with(memory.id, p)
            ]
            if not recipients:
                continue
            try:
                results.append(
                    await self.share_memory(memory.id, persona_id, recipients, now=now)
                )
            except SharingError as e:
                logger.warning(f"Auto-share of {memory.id} skipped: {e}")
            except Exception as e:
                logger.error(f"Auto-share of {memory.id} failed: {e}")

        logger.info(f"Auto-shared {len(results)} memories from {persona_id}")
        return results

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    async def get_memory_clusters(self, persona_id: str) -> list[MemoryCluster]:
        memories = await self.get_accessible_memories(persona_id)
        return cluster_memories_by_theme(memories, self.config.cluster_min_significance)

    async def generate_network_insights(
        self, persona_id: str, now: datetime | None = None
    ) -> list[NetworkInsight]:
        await self._ensure_loaded()
        memories = await self.get_accessible_memories(persona_id)
        insights = generate_insights(
            persona_id,
            self.graph.neighbors(persona_id),
            memories,
            self.config,
            now or _utcnow(),
        )
        logger.debug(f"Generated {len(insights)} insights for {persona_id}")
        return insights

    async def get_companion_network(
        self, persona_id: str, now: datetime | None = None
    ) -> CompanionNetwork:
        await self._ensure_loaded()
        memories = await self.get_accessible_memories(persona_id)
        now = now or _utcnow()
        relationships = self.graph.neighbors(persona_id)
        return CompanionNetwork(
            persona_id=persona_id,
            connected_companions=relationships,
            memory_clusters=cluster_memories_by_theme(
                memories, self.config.cluster_min_significance
            ),
            insights=generate_insights(
                persona_id, relationships, memories, self.config, now
            ),
        )

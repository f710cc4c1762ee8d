"""Tests for SharedMemoryNetwork: gated sharing, connections and insights."""

from __future__ import annotations

from datetime import timedelta

import pytest

from companion_memory.config import SharingConfig
from companion_memory.exceptions import (
    MemoryNotFoundError,
    NoEligibleRecipientsError,
    SharingError,
)
from companion_memory.models import (
    ConnectionType,
    InsightType,
    Memory,
    MemoryContext,
    MemoryType,
    PermissionLevel,
)
from companion_memory.sharing import SHARED_TAG, SharedMemoryNetwork


async def _own(store, now, persona_id="A", content="User adopted a puppy", **extra):
    memory = Memory(
        user_id="u1",
        persona_id=persona_id,
        original_content=content,
        memory_type=MemoryType.EXPERIENCE,
        tags=["pets"],
        importance_score=extra.pop("importance", 0.5),
        emotional_impact=extra.pop("impact", 0.0),
        created_at=now,
        last_accessed=now,
        last_updated=now,
        context=MemoryContext(participants=[persona_id], user_id="u1", timestamp=now),
        **extra,
    )
    await store.insert_memory(memory)
    return memory


@pytest.fixture
async def network(store):
    net = SharedMemoryNetwork(store)
    await net.initialize()
    return net


class TestShareMemory:
    @pytest.mark.asyncio
    async def test_share_creates_copy_and_leaves_original(self, store, network, now):
        memory = await _own(store, now)
        await network.set_relationship("A", "B", strength=0.7, trust=0.6)

        shared = await network.share_memory(memory.id, "A", ["B"], now=now)

        assert shared.id.startswith("shared_")
        assert shared.original_memory_id == memory.id
        assert shared.shared_with_companions == ["B"]
        assert shared.access_permissions == {
            "A": PermissionLevel.ADMIN,
            "B": PermissionLevel.READ,
        }
        assert SHARED_TAG in shared.tags
        assert shared.context.participants == ["A", "B"]

        original = await store.get_memory(memory.id)
        assert original.shared_with_companions == []
        assert original.tags == ["pets"]

        accessible = await network.get_accessible_memories("B")
        assert [m.content for m in accessible] == ["User adopted a puppy"]

    @pytest.mark.asyncio
    async def test_share_records_interaction(self, store, network, now):
        memory = await _own(store, now)
        await network.set_relationship("A", "B", strength=0.7, trust=0.6)
        await network.share_memory(memory.id, "A", ["B"], now=now)

        rel = await network.get_relationship("B", "A")
        assert rel.shared_memories == 1
        assert rel.last_interaction == now
        assert rel.relationship_strength == 0.7
        assert rel.trust_level == 0.6

        (persisted,) = await store.get_relationships()
        assert persisted.shared_memories == 1

    @pytest.mark.asyncio
    async def test_weak_relationship_refused(self, store, network, now):
        memory = await _own(store, now)
        await network.set_relationship("A", "B", strength=0.5, trust=0.9)

        with pytest.raises(NoEligibleRecipientsError):
            await network.share_memory(memory.id, "A", ["B"], now=now)

        assert await store.get_shared_memories_for("B") == []
        assert (await network.get_relationship("A", "B")).shared_memories == 0

    @pytest.mark.asyncio
    async def test_low_trust_refused(self, store, network, now):
        memory = await _own(store, now)
        await network.set_relationship("A", "B", strength=0.9, trust=0.4)
        with pytest.raises(SharingError):
            await network.share_memory(memory.id, "A", ["B"], now=now)

    @pytest.mark.asyncio
    async def test_ineligible_recipients_filtered(self, store, network, now):
        memory = await _own(store, now)
        await network.set_relationship("A", "B", strength=0.8, trust=0.8)
        await network.set_relationship("A", "C", strength=0.2, trust=0.2)
        shared = await network.share_memory(memory.id, "A", ["B", "C", "D"], now=now)
        assert shared.shared_with_companions == ["B"]
        assert await network.get_accessible_memories("C") == []

    @pytest.mark.asyncio
    async def test_only_owner_may_share(self, store, network, now):
        memory = await _own(store, now)
        await network.set_relationship("B", "C", strength=0.9, trust=0.9)
        with pytest.raises(SharingError):
            await network.share_memory(memory.id, "B", ["C"], now=now)

    @pytest.mark.asyncio
    async def test_missing_memory(self, network, now):
        with pytest.raises(MemoryNotFoundError):
            await network.share_memory("nope", "A", ["B"], now=now)

    @pytest.mark.asyncio
    async def test_relationships_survive_reload(self, store, network):
        await network.set_relationship("A", "B", strength=0.7, trust=0.6)
        fresh = SharedMemoryNetwork(store)
        rel = await fresh.get_relationship("A", "B")
        assert rel.relationship_strength == 0.7


class TestAccessible:
    @pytest.mark.asyncio
    async def test_own_and_shared_merged_newest_first(self, store, network, now):
        older = await _own(store, now - timedelta(days=1), persona_id="B", content="B's own")
        theirs = await _own(store, now, persona_id="A")
        await network.set_relationship("A", "B", strength=0.7, trust=0.6)
        await network.share_memory(theirs.id, "A", ["B"], now=now)

        accessible = await network.get_accessible_memories("B", user_id="u1")
        assert [m.content for m in accessible] == ["User adopted a puppy", "B's own"]
        assert accessible[1].id == older.id

    @pytest.mark.asyncio
    async def test_user_scope_applies_to_shared(self, store, network, now):
        memory = await _own(store, now)
        await network.set_relationship("A", "B", strength=0.7, trust=0.6)
        await network.share_memory(memory.id, "A", ["B"], now=now)
        assert await network.get_accessible_memories("B", user_id="u2") == []


class TestConnections:
    @pytest.mark.asyncio
    async def test_cross_persona_connection_counted(self, store, network, now):
        a = await _own(store, now, persona_id="A")
        b = await _own(store, now, persona_id="B", content="User walks the puppy")

        connection = await network.create_memory_connection(
            "A", a.id, b.id, ConnectionType.SEQUENTIAL, "then", 0.8, now=now
        )
        assert connection.target_memory_id == b.id

        loaded = await store.get_memory(a.id)
        assert loaded.connections[0].connection_type == ConnectionType.SEQUENTIAL
        rel = await network.get_relationship("A", "B")
        assert rel.connection_count == 1
        assert rel.relationship_strength == 0.0

    @pytest.mark.asyncio
    async def test_same_persona_connection_has_no_relationship(self, store, network, now):
        a = await _own(store, now)
        b = await _own(store, now, content="another")
        await network.create_memory_connection("A", a.id, b.id, ConnectionType.SIMILAR)
        assert len(network.graph) == 0

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, store, network, now):
        a = await _own(store, now)
        with pytest.raises(MemoryNotFoundError):
            await network.create_memory_connection(
                "A", a.id, "missing", ConnectionType.RELATED
            )


class TestAutoShare:
    @pytest.mark.asyncio
    async def test_important_memories_go_to_close_companions(self, store, network, now):
        important = await _own(store, now, importance=0.9)
        charged = await _own(store, now, content="User lost a job", impact=-0.8)
        await _own(store, now, content="User ate lunch", importance=0.3)
        await network.set_relationship("A", "B", strength=0.7, trust=0.6)
        await network.set_relationship("A", "C", strength=0.6, trust=0.9)

        shared = await network.auto_share_memories("A", now=now)

        assert {s.original_memory_id for s in shared} == {important.id, charged.id}
        assert all(s.shared_with_companions == ["B"] for s in shared)

        again = await network.auto_share_memories("A", now=now)
        assert again == []

    @pytest.mark.asyncio
    async def test_ineligible_neighbor_is_skipped_not_raised(self, store, network, now):
        await _own(store, now, importance=0.95)
        await network.set_relationship("A", "B", strength=0.9, trust=0.1)
        assert await network.auto_share_memories("A", now=now) == []

    @pytest.mark.asyncio
    async def test_no_neighbors(self, store, network, now):
        await _own(store, now, importance=0.95)
        assert await network.auto_share_memories("A", now=now) == []


class TestSharingDisabled:
    @pytest.fixture
    async def disabled(self, store):
        net = SharedMemoryNetwork(store, SharingConfig(enabled=False))
        await net.initialize()
        await net.set_relationship("A", "B", strength=0.9, trust=0.9)
        return net

    @pytest.mark.asyncio
    async def test_share_refused(self, store, disabled, now):
        memory = await _own(store, now)
        with pytest.raises(SharingError, match="disabled"):
            await disabled.share_memory(memory.id, "A", ["B"], now=now)
        assert await store.has_shared_with(memory.id, "B") is False

    @pytest.mark.asyncio
    async def test_auto_share_does_nothing(self, store, disabled, now):
        await _own(store, now, importance=0.95)
        assert await disabled.auto_share_memories("A", now=now) == []


class TestNetworkViews:
    @pytest.mark.asyncio
    async def test_companion_network(self, store, network, now):
        for i in range(4):
            await _own(store, now, content=f"We had fun at the park {i}", impact=0.6)
        await network.set_relationship("A", "B", strength=0.9, trust=0.9)

        view = await network.get_companion_network("A", now=now)
        assert view.persona_id == "A"
        assert [r.other("A") for r in view.connected_companions] == ["B"]
        assert [c.theme for c in view.memory_clusters] == ["joy"]
        kinds = [i.insight_type for i in view.insights]
        assert kinds == [
            InsightType.RELATIONSHIP_PATTERN,
            InsightType.MEMORY_THEME,
            InsightType.EMOTIONAL_TREND,
        ]

    @pytest.mark.asyncio
    async def test_clusters(self, store, network, now):
        await _own(store, now, content="study notes")
        clusters = await network.get_memory_clusters("A")
        assert [c.theme for c in clusters] == ["learning"]
        assert clusters[0].significance == 1.0

    @pytest.mark.asyncio
    async def test_insights_without_data(self, network, now):
        assert await network.generate_network_insights("A", now=now) == []

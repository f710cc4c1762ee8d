"""End-to-end tests for the MemoryService facade."""

from __future__ import annotations

import json

import pytest

from companion_memory.config import MemoryConfig
from companion_memory.exceptions import NoEligibleRecipientsError
from companion_memory.memory_service import MemoryService
from companion_memory.models import ConnectionType, Memory, MemoryType

USER_MESSAGE = "My name is Alice and I work as a teacher. I love reading books."
REPLY = "It is lovely to meet you, Alice! Teaching must keep you busy, what books do you enjoy?"


@pytest.fixture
async def service(tmp_path, make_embedder, zero_rng):
    config = MemoryConfig(storage={"sqlite_db_path": str(tmp_path / "svc.db")})
    svc = MemoryService(
        config=config, embed_fn=make_embedder(default=[1.0, 0.0]), rng=zero_rng
    )
    await svc.register_persona("p1", "Aria")
    yield svc
    await svc.close()


class TestConversation:
    @pytest.mark.asyncio
    async def test_turn_is_remembered_and_recalled(self, service):
        result = await service.process_turn(USER_MESSAGE, REPLY, "u1", "p1", "conv-1")
        assert result.stored >= 3

        memories = await service.get_all_memories(user_id="u1", persona_id="p1")
        contents = {m.original_content for m in memories}
        assert {"User's name is Alice", "User works as teacher", "User likes reading books"} <= contents

        lines = await service.get_chat_context("what do I do for a living", "u1", "p1")
        assert lines
        assert all(line.startswith("Relevant memory (Aria): ") for line in lines)

    @pytest.mark.asyncio
    async def test_turn_without_facts(self, service):
        result = await service.process_turn("ok", "sure", "u1", "p1")
        assert result.stored == 0

    @pytest.mark.asyncio
    async def test_disabled_service_stores_nothing(self, tmp_path, make_embedder):
        svc = MemoryService(
            config=MemoryConfig(
                enabled=False, storage={"sqlite_db_path": str(tmp_path / "off.db")}
            ),
            embed_fn=make_embedder(default=[1.0, 0.0]),
        )
        result = await svc.process_turn(USER_MESSAGE, REPLY, "u1", "p1")
        assert result.stored == 0
        await svc.close()

    @pytest.mark.asyncio
    async def test_chat_context_failure_yields_no_lines(self, service, monkeypatch):
        async def broken():
            raise RuntimeError("database is locked")

        monkeypatch.setattr(service, "_ensure_retriever", broken)
        assert await service.get_chat_context("hello", "u1", "p1") == []

    @pytest.mark.asyncio
    async def test_search(self, service):
        await service.process_turn(USER_MESSAGE, REPLY, "u1", "p1")
        results = await service.search_memories("teacher", "u1", limit=2)
        assert len(results) == 2
        assert results[0].persona_name == "Aria"


class TestCrud:
    @pytest.mark.asyncio
    async def test_add_get_delete(self, service):
        memory = Memory(user_id="u1", persona_id="p1", original_content="User has a cat")
        memory_id = await service.add_memory(memory)

        loaded = await service.get_memory(memory_id)
        assert loaded.embedding == [1.0, 0.0]

        assert await service.delete_memory(memory_id) is True
        assert await service.get_memory(memory_id) is None

    @pytest.mark.asyncio
    async def test_delete_all(self, service):
        for text in ("a", "b"):
            await service.add_memory(
                Memory(user_id="u1", persona_id="p1", original_content=text)
            )
        assert await service.delete_all_memories(user_id="u1") == 2
        assert await service.get_all_memories(user_id="u1") == []


class TestAgingAndSharing:
    @pytest.mark.asyncio
    async def test_consolidate_and_stats(self, service):
        await service.process_turn(USER_MESSAGE, REPLY, "u1", "p1")
        result = await service.consolidate("u1", "p1", force=True)
        assert result.skipped is False
        assert result.consolidated >= 3

        stats = await service.get_memory_health_stats("u1", "p1")
        assert stats.active_memories == stats.total_memories
        assert await service.get_archived_memories("u1", "p1") == []

    @pytest.mark.asyncio
    async def test_access_memory(self, service):
        memory_id = await service.add_memory(
            Memory(user_id="u1", persona_id="p1", original_content="User has a cat")
        )
        accessed = await service.access_memory(memory_id)
        assert accessed.consolidation_count == 1

    @pytest.mark.asyncio
    async def test_sharing_flow(self, service):
        memory_id = await service.add_memory(
            Memory(
                user_id="u1",
                persona_id="p1",
                original_content="User got married",
                memory_type=MemoryType.EXPERIENCE,
                importance_score=0.95,
            )
        )
        other_id = await service.add_memory(
            Memory(user_id="u1", persona_id="p2", original_content="User planned a honeymoon")
        )

        with pytest.raises(NoEligibleRecipientsError):
            await service.share_memory(memory_id, "p1", ["p2"])

        await service.set_relationship("p1", "p2", strength=0.8, trust=0.7)
        shared = await service.share_memory(memory_id, "p1", ["p2"])
        assert shared.original_memory_id == memory_id

        accessible = await service.get_accessible_memories("p2")
        assert {m.content for m in accessible} == {
            "User got married",
            "User planned a honeymoon",
        }

        await service.create_memory_connection(
            "p1", memory_id, other_id, ConnectionType.SEQUENTIAL
        )
        network = await service.get_companion_network("p1")
        (rel,) = network.connected_companions
        assert rel.shared_memories == 1
        assert rel.connection_count == 1

        assert await service.auto_share_memories("p1") == []

    @pytest.mark.asyncio
    async def test_export_and_import(self, service):
        await service.process_turn(USER_MESSAGE, REPLY, "u1", "p1")
        payload = await service.export_memory_network("p1")
        assert json.loads(payload)["metadata"]["companion_id"] == "p1"

        result = await service.import_mind_map(payload, "p2", "u1")
        assert result.success is True
        assert result.imported_nodes >= 3
        assert len(await service.get_all_memories(user_id="u1", persona_id="p2")) == (
            result.imported_nodes
        )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_scheduler_runs_between_start_and_close(self, tmp_path, make_embedder):
        svc = MemoryService(
            config=MemoryConfig(storage={"sqlite_db_path": str(tmp_path / "life.db")}),
            embed_fn=make_embedder(default=[1.0, 0.0]),
        )
        await svc.start()
        assert svc._scheduler.running
        await svc.close()
        assert not svc._scheduler.running

    @pytest.mark.asyncio
    async def test_start_without_scheduler(self, tmp_path, make_embedder):
        svc = MemoryService(
            config=MemoryConfig(storage={"sqlite_db_path": str(tmp_path / "ns.db")}),
            embed_fn=make_embedder(default=[1.0, 0.0]),
        )
        await svc.start(run_scheduler=False)
        assert svc._scheduler is None
        await svc.close()

"""Memory Service - facade for the companion memory subsystem.

Consuming applications use :class:`MemoryService` to feed conversation
turns in, pull memory context out for replies, and drive aging and sharing.
Components are created lazily on first use; :meth:`MemoryService.start`
and :meth:`MemoryService.close` bracket the background consolidation job
and the database connection.
"""

from __future__ import annotations

import random
from typing import Protocol

from loguru import logger

from .aging import ConsolidationScheduler, MemoryAgingEngine
from .config import MemoryConfig
from .embedding import EmbedFunction, EmbeddingService
from .export import MemoryNetworkExporter
from .extraction import MemoryExtractor
from .models import (
    CompanionNetwork,
    ConnectionType,
    ConsolidationResult,
    ImportResult,
    Memory,
    MemoryConnection,
    MemoryHealthStats,
    PermissionLevel,
    PersonaRelationship,
    RetrievalResult,
    SharedMemory,
    StoreResult,
)
from .retrieval import MemoryRetriever
from .sharing import SharedMemoryNetwork
from .storage.sqlite_store import SQLiteStore


class MemoryServiceInterface(Protocol):
    """Protocol defining the core MemoryService API."""

    async def process_turn(
        self,
        user_message: str,
        reply: str,
        user_id: str,
        persona_id: str,
        conversation_id: str | None = None,
    ) -> StoreResult:
        """Extract facts from a turn and persist them."""
        ...

    async def get_chat_context(
        self,
        message: str,
        user_id: str,
        persona_id: str,
        include_cross_persona: bool = False,
        limit: int | None = None,
    ) -> list[str]:
        """Memory lines to include in a reply prompt."""
        ...

    async def consolidate(
        self,
        user_id: str,
        persona_id: str | None = None,
        force: bool = False,
        max_memories: int | None = None,
    ) -> ConsolidationResult:
        """Age memories for a scope."""
        ...

    async def share_memory(
        self,
        memory_id: str,
        from_persona: str,
        to_personas: list[str],
        permission: PermissionLevel = PermissionLevel.READ,
    ) -> SharedMemory:
        """Share a memory with related personas."""
        ...


class MemoryService:
    """Main memory service facade.

    Provides:
    - Fact extraction and persistence per conversation turn
    - Similarity retrieval and chat context lines
    - Decay-driven consolidation, with an optional periodic scheduler
    - Relationship-gated sharing between personas
    - Mind-map export and import

    All components are lazily initialized on first use.
    """

    def __init__(
        self,
        config: MemoryConfig | None = None,
        embed_fn: EmbedFunction | None = None,
        store: SQLiteStore | None = None,
        rng: random.Random | None = None,
    ):
        """Initialize memory service.

        Args:
            config: Memory configuration (uses defaults if not provided)
            embed_fn: Async embedding function; defaults to a local
                sentence-transformers model
            store: Pre-built store; its lifecycle is still managed here
            rng: Random source for fuzzy wording
        """
        self.config = config or MemoryConfig()
        self._embed_fn = embed_fn
        self._rng = rng
        self._store: SQLiteStore | None = store
        self._store_initialized: bool = False
        self._extractor: MemoryExtractor | None = None
        self._embedding_service: EmbeddingService | None = None
        self._retriever: MemoryRetriever | None = None
        self._aging: MemoryAgingEngine | None = None
        self._network: SharedMemoryNetwork | None = None
        self._exporter: MemoryNetworkExporter | None = None
        self._scheduler: ConsolidationScheduler | None = None

        logger.debug(f"MemoryService full config: {self.config.model_dump()}")
        logger.info(
            f"MemoryService initialized: enabled={self.config.enabled}, "
            f"sqlite_db_path={self.config.storage.sqlite_db_path!r}"
        )

    # ------------------------------------------------------------------
    # Lazy components
    # ------------------------------------------------------------------

    def _ensure_extractor(self) -> MemoryExtractor:
        if self._extractor is None:
            self._extractor = MemoryExtractor(config=self.config.extraction)
            logger.debug("MemoryExtractor initialized")
        return self._extractor

    def _ensure_embed_fn(self) -> EmbedFunction:
        if self._embed_fn is None:
            self._embedding_service = EmbeddingService(config=self.config.embedding)
            self._embed_fn = self._embedding_service.embed
            logger.debug("EmbeddingService initialized")
        return self._embed_fn

    async def _ensure_store(self) -> SQLiteStore:
        """Lazy initialization of SQLite store."""
        if self._store is None:
            self._store = SQLiteStore(db_path=self.config.storage.sqlite_db_path)
        if not self._store_initialized:
            await self._store.initialize()
            self._store_initialized = True
            logger.debug(
                f"SQLiteStore initialized at {self.config.storage.sqlite_db_path}"
            )
        return self._store

    async def _ensure_aging(self) -> MemoryAgingEngine:
        if self._aging is None:
            store = await self._ensure_store()
            self._aging = MemoryAgingEngine(
                store=store, config=self.config.aging, rng=self._rng
            )
            logger.debug("MemoryAgingEngine initialized")
        return self._aging

    async def _ensure_retriever(self) -> MemoryRetriever:
        if self._retriever is None:
            store = await self._ensure_store()
            self._retriever = MemoryRetriever(
                store=store,
                embed_fn=self._ensure_embed_fn(),
                aging_engine=await self._ensure_aging(),
                config=self.config.retrieval,
                embedding_config=self.config.embedding,
            )
            logger.debug("MemoryRetriever initialized")
        return self._retriever

    async def _ensure_network(self) -> SharedMemoryNetwork:
        if self._network is None:
            store = await self._ensure_store()
            self._network = SharedMemoryNetwork(store=store, config=self.config.sharing)
            await self._network.initialize()
            logger.debug("SharedMemoryNetwork initialized")
        return self._network

    async def _ensure_exporter(self) -> MemoryNetworkExporter:
        if self._exporter is None:
            self._exporter = MemoryNetworkExporter(
                network=await self._ensure_network(),
                store=await self._ensure_store(),
                retriever=await self._ensure_retriever(),
            )
        return self._exporter

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, run_scheduler: bool = True) -> None:
        """Open storage and, if aging is enabled, start periodic consolidation."""
        await self._ensure_store()
        await self._ensure_network()
        if run_scheduler and self.config.aging.enabled:
            if self._scheduler is None:
                self._scheduler = ConsolidationScheduler(await self._ensure_aging())
            self._scheduler.start()

    async def close(self) -> None:
        """Stop the scheduler and close the SQLite connection."""
        if self._scheduler is not None:
            await self._scheduler.stop()
        if self._store and self._store_initialized:
            await self._store.close()
            self._store_initialized = False
            logger.info("MemoryService: SQLiteStore closed")

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def register_persona(self, persona_id: str, name: str) -> None:
        store = await self._ensure_store()
        await store.upsert_persona(persona_id, name)

    async def process_turn(
        self,
        user_message: str,
        reply: str,
        user_id: str,
        persona_id: str,
        conversation_id: str | None = None,
    ) -> StoreResult:
        """Extract facts from one exchange and store them for the persona."""
        if not self.config.enabled:
            return StoreResult()

        facts = self._ensure_extractor().extract_from_exchange(user_message, reply)
        if self._scheduler is not None:
            self._scheduler.register(user_id, persona_id)
        if not facts:
            logger.debug("process_turn: no facts extracted")
            return StoreResult()

        retriever = await self._ensure_retriever()
        return await retriever.store_facts(
            facts, user_id, persona_id, conversation_id=conversation_id
        )

    async def get_chat_context(
        self,
        message: str,
        user_id: str,
        persona_id: str,
        include_cross_persona: bool = False,
        limit: int | None = None,
    ) -> list[str]:
        try:
            retriever = await self._ensure_retriever()
            return await retriever.get_chat_context(
                message,
                user_id,
                persona_id,
                include_cross_persona=include_cross_persona,
                limit=limit,
            )
        except Exception as e:
            logger.warning(f"Memory context retrieval failed: {e}")
            return []

    async def search_memories(
        self,
        query: str,
        user_id: str,
        persona_id: str | None = None,
        limit: int | None = None,
    ) -> list[RetrievalResult]:
        retriever = await self._ensure_retriever()
        results = await retriever.retrieve(query, user_id, persona_id, limit=limit)
        logger.info(f"search_memories: {len(results)} results for '{query[:50]}'")
        return results

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def add_memory(self, memory: Memory) -> str:
        """Store a memory, embedding it first if it has no vector."""
        store = await self._ensure_store()
        if not memory.embedding:
            try:
                embedding = await self._ensure_embed_fn()(memory.original_content)
            except Exception as e:
                logger.warning(f"Failed to embed memory {memory.id}: {e}")
                embedding = None
            if embedding:
                memory = memory.model_copy(update={"embedding": list(embedding)})
        return await store.insert_memory(memory)

    async def get_memory(self, memory_id: str) -> Memory | None:
        store = await self._ensure_store()
        return await store.get_memory(memory_id)

    async def get_all_memories(
        self,
        user_id: str | None = None,
        persona_id: str | None = None,
        include_archived: bool = False,
    ) -> list[Memory]:
        store = await self._ensure_store()
        return await store.list_memories(
            user_id=user_id, persona_id=persona_id, include_archived=include_archived
        )

    async def delete_memory(self, memory_id: str) -> bool:
        store = await self._ensure_store()
        return await store.delete_memory(memory_id)

    async def delete_all_memories(
        self, user_id: str | None = None, persona_id: str | None = None
    ) -> int:
        store = await self._ensure_store()
        return await store.delete_memories(user_id=user_id, persona_id=persona_id)

    # ------------------------------------------------------------------
    # Aging
    # ------------------------------------------------------------------

    async def consolidate(
        self,
        user_id: str,
        persona_id: str | None = None,
        force: bool = False,
        max_memories: int | None = None,
    ) -> ConsolidationResult:
        aging = await self._ensure_aging()
        return await aging.consolidate(
            user_id, persona_id, force=force, max_memories=max_memories
        )

    async def access_memory(self, memory_id: str) -> Memory | None:
        aging = await self._ensure_aging()
        return await aging.access_memory(memory_id)

    async def get_archived_memories(
        self, user_id: str, persona_id: str | None = None
    ) -> list[Memory]:
        aging = await self._ensure_aging()
        return await aging.get_archived_memories(user_id, persona_id)

    async def get_memory_health_stats(
        self, user_id: str, persona_id: str | None = None
    ) -> MemoryHealthStats:
        aging = await self._ensure_aging()
        return await aging.get_memory_health_stats(user_id, persona_id)

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def set_relationship(
        self,
        persona_a: str,
        persona_b: str,
        strength: float | None = None,
        trust: float | None = None,
    ) -> PersonaRelationship:
        network = await self._ensure_network()
        return await network.set_relationship(persona_a, persona_b, strength, trust)

    async def share_memory(
        self,
        memory_id: str,
        from_persona: str,
        to_personas: list[str],
        permission: PermissionLevel = PermissionLevel.READ,
    ) -> SharedMemory:
        network = await self._ensure_network()
        return await network.share_memory(memory_id, from_persona, to_personas, permission)

    async def auto_share_memories(self, persona_id: str) -> list[SharedMemory]:
        network = await self._ensure_network()
        return await network.auto_share_memories(persona_id)

    async def get_accessible_memories(self, persona_id: str) -> list[SharedMemory]:
        network = await self._ensure_network()
        return await network.get_accessible_memories(persona_id)

    async def create_memory_connection(
        self,
        from_persona: str,
        memory_a_id: str,
        memory_b_id: str,
        connection_type: ConnectionType,
        description: str = "",
    ) -> MemoryConnection:
        network = await self._ensure_network()
        return await network.create_memory_connection(
            from_persona, memory_a_id, memory_b_id, connection_type, description
        )

    async def get_companion_network(self, persona_id: str) -> CompanionNetwork:
        network = await self._ensure_network()
        return await network.get_companion_network(persona_id)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    async def export_memory_network(self, persona_id: str, format: str = "json") -> str:
        exporter = await self._ensure_exporter()
        return await exporter.export_memory_network(persona_id, format=format)

    async def import_mind_map(
        self, payload: str, target_persona_id: str, user_id: str
    ) -> ImportResult:
        exporter = await self._ensure_exporter()
        return await exporter.import_mind_map(payload, target_persona_id, user_id)

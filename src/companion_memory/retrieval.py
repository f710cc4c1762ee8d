"""Embedding-backed persistence and similarity retrieval.

Facts are embedded once each and stored as memories; queries are embedded
and matched by cosine similarity within a user's memories. Embedding
failures never propagate: a failed fact is skipped, a failed query returns
no results.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from loguru import logger

from .aging import MemoryAgingEngine
from .config import EmbeddingConfig, RetrievalConfig
from .embedding import EmbedFunction
from .models import (
    ExtractedFact,
    Memory,
    MemoryContext,
    RetrievalResult,
    StoreResult,
)
from .storage.interfaces import MemoryStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryRetriever:
    """Stores facts as embedded memories and answers similarity queries."""

    def __init__(
        self,
        store: MemoryStore,
        embed_fn: EmbedFunction,
        aging_engine: MemoryAgingEngine | None = None,
        config: RetrievalConfig | None = None,
        embedding_config: EmbeddingConfig | None = None,
    ):
        """Initialize retriever.

        Args:
            store: Memory store
            embed_fn: Async ``text -> vector`` function
            aging_engine: Used to drop memories that have decayed below the
                archive threshold; without it only the archived flag filters
            config: Retrieval configuration
            embedding_config: Supplies the concurrent batch size
        """
        self._store = store
        self._embed = embed_fn
        self._aging = aging_engine
        self._config = config or RetrievalConfig()
        self._batch_size = (embedding_config or EmbeddingConfig()).batch_size

    # ------------------------------------------------------------------
    # Storing
    # ------------------------------------------------------------------

    async def store_facts(
        self,
        facts: list[ExtractedFact],
        user_id: str,
        persona_id: str,
        conversation_id: str | None = None,
        now: datetime | None = None,
    ) -> StoreResult:
        """Embed and persist extracted facts.

        Each fact is embedded exactly once. Facts whose embedding fails or
        comes back empty are skipped; the rest are stored regardless.
        """
        result = StoreResult()
        now = now or _utcnow()

        for start in range(0, len(facts), self._batch_size):
            batch = facts[start : start + self._batch_size]
            outcomes = await asyncio.gather(
                *(
                    self._store_one(fact, user_id, persona_id, conversation_id, now)
                    for fact in batch
                ),
                return_exceptions=True,
            )
            for fact, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning(f"Failed to store fact {fact.fact!r}: {outcome}")
                    result.skipped += 1
                elif outcome is None:
                    result.skipped += 1
                else:
                    result.stored_ids.append(outcome)

        if facts:
            logger.info(
                f"Stored {result.stored}/{len(facts)} facts for "
                f"{user_id}/{persona_id} (skipped={result.skipped})"
            )
        return result

    async def _store_one(
        self,
        fact: ExtractedFact,
        user_id: str,
        persona_id: str,
        conversation_id: str | None,
        now: datetime,
    ) -> str | None:
        embedding = await self._embed(fact.fact)
        if not embedding:
            logger.warning(f"No embedding for fact {fact.fact!r}, skipping")
            return None

        tags = list(fact.topics)
        if fact.category and fact.category not in tags:
            tags.append(fact.category)

        memory = Memory(
            user_id=user_id,
            persona_id=persona_id,
            original_content=fact.fact,
            embedding=list(embedding),
            memory_type=fact.memory_type,
            tags=tags,
            importance_score=fact.confidence,
            created_at=now,
            last_accessed=now,
            last_updated=now,
            context=MemoryContext(
                participants=[persona_id],
                user_id=user_id,
                conversation_id=conversation_id,
                timestamp=now,
            ),
        )
        return await self._store.insert_memory(memory)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        query: str,
        user_id: str,
        persona_id: str | None = None,
        limit: int | None = None,
        min_similarity: float | None = None,
        now: datetime | None = None,
    ) -> list[RetrievalResult]:
        """Find memories similar to *query*.

        Args:
            query: Search text
            user_id: User scope
            persona_id: Persona scope; ``None`` searches every persona
            limit: Maximum results (defaults to ``config.default_limit``)
            min_similarity: Optional similarity floor
            now: Evaluation time for decay filtering

        Returns:
            Results ordered by similarity, ties broken by most recent access
        """
        limit = limit or self._config.default_limit
        now = now or _utcnow()

        try:
            query_embedding = await self._embed(query)
        except Exception as e:
            logger.warning(f"Query embedding failed: {e}")
            return []
        if not query_embedding:
            logger.debug("Query produced no embedding, returning no memories")
            return []

        try:
            rows = await self._store.search_similar(
                user_id=user_id,
                query_embedding=list(query_embedding),
                limit=None,
                persona_id=persona_id,
            )
        except Exception as e:
            logger.warning(f"Similarity search failed: {e}")
            return []

        results: list[RetrievalResult] = []
        for row in rows:
            memory: Memory = row["memory"]
            similarity = row["similarity"]
            if min_similarity is not None and similarity < min_similarity:
                continue
            if self._aging is not None and not self._aging.is_retrievable(memory, now):
                continue
            if memory.is_archived:
                continue
            results.append(
                RetrievalResult(
                    id=memory.id,
                    content=memory.original_content,
                    persona_id=memory.persona_id,
                    persona_name=row["persona_name"],
                    similarity=similarity,
                    last_accessed=memory.last_accessed,
                    memory_type=memory.memory_type,
                    metadata={
                        "importance": memory.importance_score,
                        "tags": memory.tags,
                        "fuzzy_content": memory.fuzzy_content,
                    },
                )
            )
            if len(results) >= limit:
                break

        if self._config.touch_on_retrieve:
            for r in results:
                try:
                    await self._store.touch_memory(r.id, now)
                except Exception as e:
                    logger.debug(f"Failed to touch memory {r.id}: {e}")

        logger.debug(
            f"Retrieved {len(results)} memories for {user_id}/{persona_id or '*'}"
        )
        return results

    async def get_chat_context(
        self,
        message: str,
        user_id: str,
        persona_id: str,
        include_cross_persona: bool = False,
        limit: int | None = None,
    ) -> list[str]:
        """Memory lines to inject into a reply prompt.

        The persona's own memories and, optionally, memories across all
        personas are queried separately and merged. Only results above the
        context similarity floor are kept.

        Returns:
            Strings of the form ``"Relevant memory (<name>): <fact>"``
        """
        limit = limit or self._config.default_limit
        floor = self._config.context_similarity_floor

        own = await self.retrieve(message, user_id, persona_id=persona_id, limit=limit)
        merged: dict[str, RetrievalResult] = {r.id: r for r in own}
        if include_cross_persona:
            cross = await self.retrieve(message, user_id, persona_id=None, limit=limit)
            for r in cross:
                merged.setdefault(r.id, r)

        relevant = sorted(
            (r for r in merged.values() if r.similarity > floor),
            key=lambda r: r.similarity,
            reverse=True,
        )[:limit]

        lines = []
        for r in relevant:
            name = f" ({r.persona_name})" if r.persona_name else ""
            lines.append(f"Relevant memory{name}: {r.content}")
        return lines

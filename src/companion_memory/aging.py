"""Memory aging: decay, fuzziness, archiving and deletion.

A consolidation pass walks one (user, persona) scope and routes every
active memory by its current decay factor:

- below ``delete_threshold``: removed
- below ``archive_threshold``: archived with a fuzzy rendering
- otherwise: decay snapshot and fuzzy rendering refreshed

Passes for a scope are spaced at least ``consolidation_interval_hours``
apart and never overlap. A pass bounded by ``max_memories`` leaves a
cursor behind and the next call picks up from it.
"""

from __future__ import annotations

import asyncio
import contextlib
import random
from datetime import datetime, timedelta, timezone

from loguru import logger

from .config import AgingConfig
from .decay import decay_factor, fuzziness_tier
from .fuzziness import Fuzzifier
from .models import ConsolidationResult, FuzzinessTier, Memory, MemoryHealthStats
from .storage.interfaces import MemoryStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryAgingEngine:
    """Applies the decay model to stored memories."""

    def __init__(
        self,
        store: MemoryStore,
        config: AgingConfig | None = None,
        rng: random.Random | None = None,
    ):
        """Initialize aging engine.

        Args:
            store: Memory store
            config: Aging configuration
            rng: Random source for fuzzy wording
        """
        self._store = store
        self.config = config or AgingConfig()
        self._fuzzifier = Fuzzifier(self.config.fuzziness_factor, rng)
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Pure helpers
    # ------------------------------------------------------------------

    def calculate_decay_factor(
        self, memory: Memory, now: datetime | None = None
    ) -> float:
        return decay_factor(
            created_at=memory.created_at,
            now=now or _utcnow(),
            consolidation_count=memory.consolidation_count,
            importance=memory.importance_score,
            config=self.config,
        )

    def apply_fuzziness(self, content: str, decay: float) -> str:
        return self._fuzzifier.apply(content, decay)

    def is_retrievable(self, memory: Memory, now: datetime | None = None) -> bool:
        """Active retrieval excludes archived and archive-eligible memories."""
        if memory.is_archived:
            return False
        return self.calculate_decay_factor(memory, now) >= self.config.archive_threshold

    def create_memory_reference(
        self, memory: Memory, now: datetime | None = None
    ) -> str:
        """Phrase a memory the way a person would recall it."""
        decay = self.calculate_decay_factor(memory, now)
        remembered = memory.fuzzy_content or memory.original_content
        if decay > 0.8:
            return f'"{memory.original_content}"'
        if decay > 0.6:
            return f'I think "{remembered}"'
        if decay > 0.4:
            return f'As I recall, something about "{remembered}"'
        return f"I vaguely remember {remembered}"

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    async def consolidate(
        self,
        user_id: str,
        persona_id: str | None = None,
        now: datetime | None = None,
        force: bool = False,
        max_memories: int | None = None,
    ) -> ConsolidationResult:
        """Run one consolidation pass for a scope.

        Args:
            user_id: User whose memories are aged
            persona_id: Persona scope; ``None`` covers every persona
            now: Evaluation time (defaults to the current time)
            force: Ignore the minimum interval since the last pass
            max_memories: Stop after this many memories, keeping a cursor

        Returns:
            Counts for the pass. ``skipped`` is set when the interval gate
            or an in-flight pass for the same user refused the call. Passes
            for one user never overlap, whatever their persona scope.
        """
        now = now or _utcnow()
        result = ConsolidationResult(user_id=user_id, persona_id=persona_id)

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        if lock.locked():
            logger.debug(
                f"Consolidation already running for user {user_id}, skipping "
                f"{user_id}/{persona_id}"
            )
            result.skipped = True
            return result

        async with lock:
            state = await self._store.get_consolidation_state(user_id, persona_id)
            cursor = state["cursor"] if state else None
            last_run = state["last_run_at"] if state else None

            interval = timedelta(hours=self.config.consolidation_interval_hours)
            if (
                not force
                and cursor is None
                and last_run is not None
                and now - last_run < interval
            ):
                logger.debug(
                    f"Consolidation for {user_id}/{persona_id} ran at "
                    f"{last_run.isoformat()}, next allowed after {interval}"
                )
                result.skipped = True
                return result

            processed = 0
            completed = False
            while True:
                page_size = self.config.batch_size
                if max_memories is not None:
                    page_size = min(page_size, max_memories - processed)
                    if page_size <= 0:
                        break

                page = await self._store.get_memories_for_consolidation(
                    user_id, persona_id, cursor, page_size
                )
                for memory in page:
                    cursor = memory.id
                    try:
                        await self._route(memory, now, result)
                    except Exception as e:
                        result.errors += 1
                        logger.error(
                            f"Consolidation failed for memory {memory.id}: {e}"
                        )

                processed += len(page)
                if len(page) < page_size:
                    completed = True
                    break

            result.completed = completed
            if completed:
                await self._store.set_consolidation_state(user_id, persona_id, now, None)
            else:
                await self._store.set_consolidation_state(
                    user_id, persona_id, last_run, cursor
                )

            await self._store.insert_consolidation_log(
                {
                    "user_id": user_id,
                    "persona_id": persona_id,
                    "run_at": now,
                    "consolidated": result.consolidated,
                    "archived": result.archived,
                    "deleted": result.deleted,
                    "errors": result.errors,
                    "completed": completed,
                }
            )

        logger.info(
            f"Consolidation {user_id}/{persona_id}: "
            f"consolidated={result.consolidated}, archived={result.archived}, "
            f"deleted={result.deleted}, errors={result.errors}, "
            f"completed={result.completed}"
        )
        return result

    async def _route(
        self, memory: Memory, now: datetime, result: ConsolidationResult
    ) -> None:
        decay = self.calculate_decay_factor(memory, now)

        if decay < self.config.delete_threshold:
            await self._store.delete_memory(memory.id)
            result.deleted += 1
            return

        fuzzy = None
        if fuzziness_tier(decay) is not FuzzinessTier.VERBATIM:
            fuzzy = self.apply_fuzziness(memory.original_content, decay)

        if decay < self.config.archive_threshold:
            await self._store.archive_memory(memory.id, decay, fuzzy, now)
            result.archived += 1
        else:
            await self._store.update_memory_decay(memory.id, decay, fuzzy, now)
            result.consolidated += 1

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def access_memory(
        self, memory_id: str, now: datetime | None = None
    ) -> Memory | None:
        """Strengthen a memory through explicit access.

        Increments ``consolidation_count`` and refreshes ``last_accessed``
        in one store update. Archived memories stay archived.

        Returns:
            The updated memory with its live decay factor, or None if missing
        """
        now = now or _utcnow()
        memory = await self._record_access(memory_id, now)
        if memory is None:
            return None
        return memory.model_copy(
            update={"decay_factor": self.calculate_decay_factor(memory, now)}
        )

    async def _record_access(self, memory_id: str, now: datetime) -> Memory | None:
        if not await self._store.record_access(memory_id, now):
            return None
        return await self._store.get_memory(memory_id)

    async def get_decayed_memory_for_response(
        self, memory_id: str, now: datetime | None = None
    ) -> str | None:
        """Access a memory and return the text a reply should quote.

        The fuzzy snapshot from the last consolidation pass is reused only
        while the live decay is still in the same tier.
        """
        now = now or _utcnow()
        memory = await self._record_access(memory_id, now)
        if memory is None:
            return None
        decay = self.calculate_decay_factor(memory, now)
        if decay >= 0.7:
            return memory.original_content
        snapshot_tier = fuzziness_tier(memory.decay_factor)
        if memory.fuzzy_content and snapshot_tier is fuzziness_tier(decay):
            return memory.fuzzy_content
        return self.apply_fuzziness(memory.original_content, decay)

    async def get_archived_memories(
        self,
        user_id: str,
        persona_id: str | None = None,
        limit: int | None = None,
    ) -> list[Memory]:
        return await self._store.list_memories(
            user_id=user_id,
            persona_id=persona_id,
            archived_only=True,
            limit=limit,
        )

    async def get_memory_suggestions(
        self,
        query: str,
        user_id: str,
        persona_id: str | None = None,
        limit: int = 5,
        now: datetime | None = None,
    ) -> list[Memory]:
        """Text-matched active memories ranked by decay times importance."""
        now = now or _utcnow()
        candidates = await self._store.search_text(
            query, user_id, persona_id, include_archived=False
        )
        scored = [
            memory.model_copy(
                update={"decay_factor": self.calculate_decay_factor(memory, now)}
            )
            for memory in candidates
        ]
        scored.sort(key=lambda m: m.decay_factor * m.importance_score, reverse=True)
        return scored[:limit]

    async def get_memory_health_stats(
        self,
        user_id: str,
        persona_id: str | None = None,
        now: datetime | None = None,
    ) -> MemoryHealthStats:
        now = now or _utcnow()
        memories = await self._store.list_memories(
            user_id=user_id, persona_id=persona_id, include_archived=True
        )
        if not memories:
            return MemoryHealthStats(average_decay=1.0)

        active = [m for m in memories if not m.is_archived]
        decays = [self.calculate_decay_factor(m, now) for m in active]
        created = [m.created_at for m in memories]
        return MemoryHealthStats(
            total_memories=len(memories),
            active_memories=len(active),
            archived_memories=len(memories) - len(active),
            average_decay=sum(decays) / len(decays) if decays else 1.0,
            oldest_memory=min(created),
            newest_memory=max(created),
        )


class ConsolidationScheduler:
    """Periodically consolidates registered scopes.

    Call :meth:`start` to begin and :meth:`stop` to cancel the loop.
    """

    def __init__(
        self,
        engine: MemoryAgingEngine,
        interval_seconds: float | None = None,
    ):
        self._engine = engine
        self._interval = (
            interval_seconds
            if interval_seconds is not None
            else engine.config.consolidation_interval_hours * 3600
        )
        self._scopes: set[tuple[str, str | None]] = set()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def register(self, user_id: str, persona_id: str | None = None) -> None:
        self._scopes.add((user_id, persona_id))

    def unregister(self, user_id: str, persona_id: str | None = None) -> None:
        self._scopes.discard((user_id, persona_id))

    async def run_once(self) -> list[ConsolidationResult]:
        """Consolidate every registered scope once."""
        results = []
        for user_id, persona_id in sorted(self._scopes, key=lambda s: (s[0], s[1] or "")):
            try:
                results.append(await self._engine.consolidate(user_id, persona_id))
            except Exception as e:
                logger.error(f"Scheduled consolidation failed for {user_id}/{persona_id}: {e}")
        return results

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Consolidation scheduler started (interval: {self._interval}s)")

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            logger.info("Consolidation scheduler stopped")
        self._task = None

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval)

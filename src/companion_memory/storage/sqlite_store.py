"""SQLite storage backend for companion memories.

Persists memories, memory connections, shared memories, persona
relationships and consolidation bookkeeping using aiosqlite. Each update
to a memory is a single SQL statement so a concurrent reader never
observes a half-applied change.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

import aiosqlite
import numpy as np
from loguru import logger

from ..embedding import EmbeddingService
from ..exceptions import StorageError
from ..models import (
    Memory,
    MemoryConnection,
    MemoryContext,
    PersonaRelationship,
    SharedMemory,
)

_MEMORY_COLUMNS = """
    memory_id, user_id, persona_id, original_content, fuzzy_content,
    embedding, memory_type, tags, importance_score, decay_factor,
    consolidation_count, emotional_impact, created_at, last_accessed,
    last_updated, is_archived, access_permissions, shared_with, context
"""

# SQLite's default bound-parameter limit is 999 on older builds.
_IN_CHUNK = 500

_ALL_PERSONAS = "*"


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class SQLiteStore:
    """SQLite storage backend.

    Uses WAL mode for concurrent reads. Call :meth:`initialize` before use
    and :meth:`close` when done.
    """

    def __init__(self, db_path: str = "./memory/companion_memory.db"):
        """Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file, or ``":memory:"``
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        logger.info(f"SQLiteStore initialized with db_path: {db_path}")

    async def initialize(self) -> None:
        """Open the connection and create tables and indexes if missing."""
        if self.db_path != ":memory:":
            db_dir = Path(self.db_path).parent
            db_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured database directory exists: {db_dir}")

        try:
            self._db = await aiosqlite.connect(self.db_path)
        except aiosqlite.Error as e:
            raise StorageError(f"Cannot open database: {e}", path=self.db_path) from e
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._create_tables()
        await self._create_indexes()

        await self._db.commit()
        logger.info("SQLite database initialized successfully")

    def _require_db(self) -> aiosqlite.Connection:
        if not self._db:
            raise StorageError(
                "Database not initialized. Call initialize() first.", path=self.db_path
            )
        return self._db

    async def _create_tables(self) -> None:
        """Create all memory tables."""

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS personas (
                persona_id TEXT PRIMARY KEY,
                name TEXT NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS memories (
                memory_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                persona_id TEXT NOT NULL,
                original_content TEXT NOT NULL,
                fuzzy_content TEXT,
                embedding BLOB,
                memory_type TEXT NOT NULL,
                tags TEXT,
                importance_score REAL DEFAULT 0.5,
                decay_factor REAL DEFAULT 1.0,
                consolidation_count INTEGER DEFAULT 0,
                emotional_impact REAL DEFAULT 0.0,
                created_at TEXT NOT NULL,
                last_accessed TEXT NOT NULL,
                last_updated TEXT NOT NULL,
                is_archived INTEGER DEFAULT 0,
                access_permissions TEXT,
                shared_with TEXT,
                context TEXT
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS memory_connections (
                connection_id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_memory_id TEXT NOT NULL,
                target_memory_id TEXT NOT NULL,
                connection_type TEXT NOT NULL,
                strength REAL DEFAULT 0.5,
                description TEXT,
                created_by TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (source_memory_id) REFERENCES memories(memory_id)
                    ON DELETE CASCADE
            )
        """)

        # Shared copies outlive the original memory.
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS shared_memories (
                shared_id TEXT PRIMARY KEY,
                original_memory_id TEXT NOT NULL,
                original_persona_id TEXT NOT NULL,
                memory_type TEXT NOT NULL,
                content TEXT NOT NULL,
                context TEXT,
                importance REAL DEFAULT 0.5,
                emotional_impact REAL DEFAULT 0.0,
                last_referenced TEXT NOT NULL,
                tags TEXT,
                connections TEXT,
                access_permissions TEXT
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS shared_memory_recipients (
                shared_id TEXT NOT NULL,
                persona_id TEXT NOT NULL,
                PRIMARY KEY (shared_id, persona_id),
                FOREIGN KEY (shared_id) REFERENCES shared_memories(shared_id)
                    ON DELETE CASCADE
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS persona_relationships (
                persona_a TEXT NOT NULL,
                persona_b TEXT NOT NULL,
                relationship_strength REAL DEFAULT 0.0,
                trust_level REAL DEFAULT 0.0,
                shared_memories INTEGER DEFAULT 0,
                connection_count INTEGER DEFAULT 0,
                last_interaction TEXT NOT NULL,
                PRIMARY KEY (persona_a, persona_b)
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS consolidation_state (
                user_id TEXT NOT NULL,
                persona_scope TEXT NOT NULL,
                last_run_at TEXT,
                cursor TEXT,
                PRIMARY KEY (user_id, persona_scope)
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS consolidation_log (
                log_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                persona_scope TEXT NOT NULL,
                run_at TEXT NOT NULL,
                consolidated INTEGER DEFAULT 0,
                archived INTEGER DEFAULT 0,
                deleted INTEGER DEFAULT 0,
                errors INTEGER DEFAULT 0,
                completed INTEGER DEFAULT 1
            )
        """)

        logger.debug("All tables created successfully")

    async def _create_indexes(self) -> None:
        """Create indexes for common lookups."""

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_memory_owner
            ON memories(user_id, persona_id)
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_memory_archived
            ON memories(is_archived)
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_connection_source
            ON memory_connections(source_memory_id)
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_shared_original
            ON shared_memories(original_memory_id)
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_recipient_persona
            ON shared_memory_recipients(persona_id)
        """)

        logger.debug("All indexes created successfully")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("SQLite database connection closed")

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_memory(
        row: aiosqlite.Row, connections: list[MemoryConnection] | None = None
    ) -> Memory:
        blob = row["embedding"]
        return Memory(
            id=row["memory_id"],
            user_id=row["user_id"],
            persona_id=row["persona_id"],
            original_content=row["original_content"],
            fuzzy_content=row["fuzzy_content"],
            embedding=EmbeddingService.deserialize_embedding(blob) if blob else None,
            memory_type=row["memory_type"],
            tags=json.loads(row["tags"] or "[]"),
            importance_score=row["importance_score"],
            decay_factor=row["decay_factor"],
            consolidation_count=row["consolidation_count"],
            emotional_impact=row["emotional_impact"],
            created_at=_parse_ts(row["created_at"]),
            last_accessed=_parse_ts(row["last_accessed"]),
            last_updated=_parse_ts(row["last_updated"]),
            is_archived=bool(row["is_archived"]),
            connections=connections or [],
            access_permissions=json.loads(row["access_permissions"] or "{}"),
            shared_with_companions=json.loads(row["shared_with"] or "[]"),
            context=MemoryContext.model_validate_json(row["context"])
            if row["context"]
            else MemoryContext(),
        )

    async def _load_connections(
        self, memory_ids: list[str]
    ) -> dict[str, list[MemoryConnection]]:
        result: dict[str, list[MemoryConnection]] = {}
        for chunk in _chunks(memory_ids, _IN_CHUNK):
            placeholders = ", ".join("?" for _ in chunk)
            async with self._db.execute(
                f"""
                SELECT source_memory_id, target_memory_id, connection_type,
                       strength, description, created_by, created_at
                FROM memory_connections
                WHERE source_memory_id IN ({placeholders})
                ORDER BY connection_id
                """,
                chunk,
            ) as cursor:
                for row in await cursor.fetchall():
                    result.setdefault(row["source_memory_id"], []).append(
                        MemoryConnection(
                            connection_type=row["connection_type"],
                            target_memory_id=row["target_memory_id"],
                            strength=row["strength"],
                            description=row["description"] or "",
                            created_by=row["created_by"],
                            created_at=_parse_ts(row["created_at"]),
                        )
                    )
        return result

    async def _rows_to_memories(self, rows: list[aiosqlite.Row]) -> list[Memory]:
        if not rows:
            return []
        connections = await self._load_connections([r["memory_id"] for r in rows])
        return [
            self._row_to_memory(row, connections.get(row["memory_id"]))
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Personas
    # ------------------------------------------------------------------

    async def upsert_persona(self, persona_id: str, name: str) -> None:
        """Register or rename a persona."""
        db = self._require_db()
        await db.execute(
            """
            INSERT INTO personas (persona_id, name) VALUES (?, ?)
            ON CONFLICT(persona_id) DO UPDATE SET name = excluded.name
            """,
            (persona_id, name),
        )
        await db.commit()

    async def get_persona_name(self, persona_id: str) -> str | None:
        db = self._require_db()
        async with db.execute(
            "SELECT name FROM personas WHERE persona_id = ?", (persona_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return row["name"] if row else None

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    async def insert_memory(self, memory: Memory) -> str:
        """Insert a memory together with its connections.

        Returns:
            Memory ID
        """
        db = self._require_db()

        embedding = (
            EmbeddingService.serialize_embedding(memory.embedding)
            if memory.embedding
            else None
        )
        await db.execute(
            f"""
            INSERT INTO memories ({_MEMORY_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                memory.id,
                memory.user_id,
                memory.persona_id,
                memory.original_content,
                memory.fuzzy_content,
                embedding,
                memory.memory_type.value,
                json.dumps(memory.tags),
                memory.importance_score,
                memory.decay_factor,
                memory.consolidation_count,
                memory.emotional_impact,
                _ts(memory.created_at),
                _ts(memory.last_accessed),
                _ts(memory.last_updated),
                int(memory.is_archived),
                json.dumps({k: v.value for k, v in memory.access_permissions.items()}),
                json.dumps(memory.shared_with_companions),
                memory.context.model_dump_json(),
            ),
        )
        for connection in memory.connections:
            await self._insert_connection(memory.id, connection)

        await db.commit()
        logger.debug(f"Memory inserted: {memory.id}")
        return memory.id

    async def get_memory(self, memory_id: str) -> Memory | None:
        db = self._require_db()
        async with db.execute(
            f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE memory_id = ?",
            (memory_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        memories = await self._rows_to_memories([row])
        return memories[0]

    async def list_memories(
        self,
        user_id: str | None = None,
        persona_id: str | None = None,
        include_archived: bool = False,
        archived_only: bool = False,
        limit: int | None = None,
    ) -> list[Memory]:
        """List memories, newest first.

        Args:
            user_id: Optional user filter
            persona_id: Optional persona filter
            include_archived: Include archived memories
            archived_only: Only archived memories (overrides include_archived)
            limit: Maximum results
        """
        db = self._require_db()

        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if persona_id is not None:
            clauses.append("persona_id = ?")
            params.append(persona_id)
        if archived_only:
            clauses.append("is_archived = 1")
        elif not include_archived:
            clauses.append("is_archived = 0")

        query = f"SELECT {_MEMORY_COLUMNS} FROM memories"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return await self._rows_to_memories(list(rows))

    async def delete_memory(self, memory_id: str) -> bool:
        """Delete a memory and its outgoing connections.

        Returns:
            True if the memory was deleted, False if not found
        """
        db = self._require_db()
        cursor = await db.execute(
            "DELETE FROM memories WHERE memory_id = ?", (memory_id,)
        )
        await db.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.debug(f"Memory deleted: {memory_id}")
        return deleted

    async def delete_memories(
        self, user_id: str | None = None, persona_id: str | None = None
    ) -> int:
        """Bulk delete, optionally scoped to a user and persona."""
        db = self._require_db()
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if persona_id is not None:
            clauses.append("persona_id = ?")
            params.append(persona_id)
        query = "DELETE FROM memories"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        cursor = await db.execute(query, params)
        await db.commit()
        logger.info(f"Deleted {cursor.rowcount} memories")
        return cursor.rowcount

    async def search_similar(
        self,
        user_id: str,
        query_embedding: list[float],
        limit: int | None = None,
        persona_id: str | None = None,
    ) -> list[dict]:
        """Nearest-neighbour search over non-archived memories.

        Similarity is ``1 - cosine distance``. Results are ordered by
        similarity, then by most recent access.

        Args:
            user_id: User scope
            query_embedding: Query vector
            limit: Maximum results (``None`` for all)
            persona_id: Persona scope; ``None`` searches every persona

        Returns:
            Dicts with ``memory``, ``similarity`` and ``persona_name``
        """
        db = self._require_db()

        query = f"""
            SELECT {", ".join("m." + c.strip() for c in _MEMORY_COLUMNS.split(","))},
                   p.name AS persona_name
            FROM memories m
            LEFT JOIN personas p ON p.persona_id = m.persona_id
            WHERE m.user_id = ? AND m.is_archived = 0 AND m.embedding IS NOT NULL
        """
        params: list[Any] = [user_id]
        if persona_id is not None:
            query += " AND m.persona_id = ?"
            params.append(persona_id)

        async with db.execute(query, params) as cursor:
            rows = list(await cursor.fetchall())

        if not rows or not query_embedding:
            return []

        q = np.asarray(query_embedding, dtype=np.float32)
        q_norm = float(np.linalg.norm(q))
        if q_norm == 0.0:
            return []

        candidates = []
        for row in rows:
            vec = np.frombuffer(row["embedding"], dtype="<f4")
            if vec.shape[0] != q.shape[0]:
                continue
            v_norm = float(np.linalg.norm(vec))
            if v_norm == 0.0:
                continue
            similarity = float(np.dot(q, vec) / (q_norm * v_norm))
            candidates.append((row, similarity))

        memories = await self._rows_to_memories([row for row, _ in candidates])
        results = [
            {
                "memory": memory,
                "similarity": similarity,
                "persona_name": row["persona_name"] or memory.persona_id,
            }
            for memory, (row, similarity) in zip(memories, candidates)
        ]
        results.sort(
            key=lambda r: (r["similarity"], r["memory"].last_accessed),
            reverse=True,
        )
        if limit is not None:
            results = results[:limit]
        return results

    async def search_text(
        self,
        query: str,
        user_id: str,
        persona_id: str | None = None,
        include_archived: bool = True,
    ) -> list[Memory]:
        """Case-insensitive substring search over original and fuzzy content."""
        db = self._require_db()

        escaped = (
            query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        )
        pattern = f"%{escaped}%"
        sql = f"""
            SELECT {_MEMORY_COLUMNS} FROM memories
            WHERE user_id = ?
              AND (original_content LIKE ? ESCAPE '\\'
                   OR fuzzy_content LIKE ? ESCAPE '\\')
        """
        params: list[Any] = [user_id, pattern, pattern]
        if persona_id is not None:
            sql += " AND persona_id = ?"
            params.append(persona_id)
        if not include_archived:
            sql += " AND is_archived = 0"

        async with db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return await self._rows_to_memories(list(rows))

    async def get_memories_for_consolidation(
        self,
        user_id: str,
        persona_id: str | None,
        after_id: str | None,
        limit: int,
    ) -> list[Memory]:
        """Page through non-archived memories ordered by id.

        Args:
            user_id: User scope
            persona_id: Persona scope; ``None`` for every persona
            after_id: Return ids strictly greater than this (keyset cursor)
            limit: Page size
        """
        db = self._require_db()

        sql = f"""
            SELECT {_MEMORY_COLUMNS} FROM memories
            WHERE user_id = ? AND is_archived = 0
        """
        params: list[Any] = [user_id]
        if persona_id is not None:
            sql += " AND persona_id = ?"
            params.append(persona_id)
        if after_id is not None:
            sql += " AND memory_id > ?"
            params.append(after_id)
        sql += " ORDER BY memory_id LIMIT ?"
        params.append(limit)

        async with db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return await self._rows_to_memories(list(rows))

    async def update_memory_decay(
        self,
        memory_id: str,
        decay_factor: float,
        fuzzy_content: str | None,
        now: datetime,
    ) -> None:
        """Write a consolidation result for one memory."""
        db = self._require_db()
        await db.execute(
            """
            UPDATE memories
            SET decay_factor = ?, fuzzy_content = ?, last_updated = ?
            WHERE memory_id = ?
            """,
            (decay_factor, fuzzy_content, _ts(now), memory_id),
        )
        await db.commit()

    async def archive_memory(
        self,
        memory_id: str,
        decay_factor: float,
        fuzzy_content: str | None,
        now: datetime,
    ) -> None:
        """Mark a memory archived along with its final decay snapshot."""
        db = self._require_db()
        await db.execute(
            """
            UPDATE memories
            SET is_archived = 1, decay_factor = ?, fuzzy_content = ?,
                last_updated = ?
            WHERE memory_id = ?
            """,
            (decay_factor, fuzzy_content, _ts(now), memory_id),
        )
        await db.commit()
        logger.debug(f"Memory archived: {memory_id}")

    async def record_access(self, memory_id: str, now: datetime) -> bool:
        """Count an explicit access: ``consolidation_count + 1``.

        Returns:
            True if the memory exists
        """
        db = self._require_db()
        cursor = await db.execute(
            """
            UPDATE memories
            SET consolidation_count = consolidation_count + 1,
                last_accessed = ?
            WHERE memory_id = ?
            """,
            (_ts(now), memory_id),
        )
        await db.commit()
        return cursor.rowcount > 0

    async def touch_memory(self, memory_id: str, now: datetime) -> None:
        """Refresh ``last_accessed`` without counting an access."""
        db = self._require_db()
        await db.execute(
            "UPDATE memories SET last_accessed = ? WHERE memory_id = ?",
            (_ts(now), memory_id),
        )
        await db.commit()

    async def _insert_connection(
        self, source_memory_id: str, connection: MemoryConnection
    ) -> None:
        await self._db.execute(
            """
            INSERT INTO memory_connections (
                source_memory_id, target_memory_id, connection_type,
                strength, description, created_by, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source_memory_id,
                connection.target_memory_id,
                connection.connection_type.value,
                connection.strength,
                connection.description,
                connection.created_by,
                _ts(connection.created_at),
            ),
        )

    async def add_connection(
        self, source_memory_id: str, connection: MemoryConnection
    ) -> None:
        """Append a connection to a memory."""
        db = self._require_db()
        await self._insert_connection(source_memory_id, connection)
        await db.execute(
            "UPDATE memories SET last_updated = ? WHERE memory_id = ?",
            (_ts(connection.created_at), source_memory_id),
        )
        await db.commit()
        logger.debug(
            f"Connection added: {source_memory_id} -> "
            f"{connection.target_memory_id} ({connection.connection_type.value})"
        )

    # ------------------------------------------------------------------
    # Shared memories
    # ------------------------------------------------------------------

    async def insert_shared_memory(self, shared: SharedMemory) -> str:
        db = self._require_db()
        await db.execute(
            """
            INSERT INTO shared_memories (
                shared_id, original_memory_id, original_persona_id,
                memory_type, content, context, importance, emotional_impact,
                last_referenced, tags, connections, access_permissions
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                shared.id,
                shared.original_memory_id,
                shared.original_persona_id,
                shared.memory_type.value,
                shared.content,
                shared.context.model_dump_json(),
                shared.importance,
                shared.emotional_impact,
                _ts(shared.last_referenced),
                json.dumps(shared.tags),
                json.dumps([c.model_dump(mode="json") for c in shared.connections]),
                json.dumps({k: v.value for k, v in shared.access_permissions.items()}),
            ),
        )
        await db.executemany(
            """
            INSERT OR IGNORE INTO shared_memory_recipients (shared_id, persona_id)
            VALUES (?, ?)
            """,
            [(shared.id, persona_id) for persona_id in shared.shared_with_companions],
        )
        await db.commit()
        logger.debug(f"Shared memory inserted: {shared.id}")
        return shared.id

    async def get_shared_memories_for(self, persona_id: str) -> list[SharedMemory]:
        """Shared memories that name *persona_id* as a recipient."""
        db = self._require_db()
        async with db.execute(
            """
            SELECT s.* FROM shared_memories s
            JOIN shared_memory_recipients r ON r.shared_id = s.shared_id
            WHERE r.persona_id = ?
            ORDER BY s.last_referenced DESC
            """,
            (persona_id,),
        ) as cursor:
            rows = list(await cursor.fetchall())

        recipients: dict[str, list[str]] = {}
        ids = [row["shared_id"] for row in rows]
        for chunk in _chunks(ids, _IN_CHUNK):
            placeholders = ", ".join("?" for _ in chunk)
            async with db.execute(
                f"""
                SELECT shared_id, persona_id FROM shared_memory_recipients
                WHERE shared_id IN ({placeholders})
                """,
                chunk,
            ) as cursor:
                for r in await cursor.fetchall():
                    recipients.setdefault(r["shared_id"], []).append(r["persona_id"])

        return [
            SharedMemory(
                id=row["shared_id"],
                original_memory_id=row["original_memory_id"],
                original_persona_id=row["original_persona_id"],
                shared_with_companions=sorted(recipients.get(row["shared_id"], [])),
                memory_type=row["memory_type"],
                content=row["content"],
                context=MemoryContext.model_validate_json(row["context"])
                if row["context"]
                else MemoryContext(),
                importance=row["importance"],
                emotional_impact=row["emotional_impact"],
                last_referenced=_parse_ts(row["last_referenced"]),
                tags=json.loads(row["tags"] or "[]"),
                connections=[
                    MemoryConnection.model_validate(c)
                    for c in json.loads(row["connections"] or "[]")
                ],
                access_permissions=json.loads(row["access_permissions"] or "{}"),
            )
            for row in rows
        ]

    async def has_shared_with(
        self, original_memory_id: str, persona_id: str
    ) -> bool:
        db = self._require_db()
        async with db.execute(
            """
            SELECT 1 FROM shared_memories s
            JOIN shared_memory_recipients r ON r.shared_id = s.shared_id
            WHERE s.original_memory_id = ? AND r.persona_id = ?
            LIMIT 1
            """,
            (original_memory_id, persona_id),
        ) as cursor:
            return await cursor.fetchone() is not None

    # ------------------------------------------------------------------
    # Persona relationships
    # ------------------------------------------------------------------

    async def upsert_relationship(self, relationship: PersonaRelationship) -> None:
        db = self._require_db()
        await db.execute(
            """
            INSERT INTO persona_relationships (
                persona_a, persona_b, relationship_strength, trust_level,
                shared_memories, connection_count, last_interaction
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(persona_a, persona_b) DO UPDATE SET
                relationship_strength = excluded.relationship_strength,
                trust_level = excluded.trust_level,
                shared_memories = excluded.shared_memories,
                connection_count = excluded.connection_count,
                last_interaction = excluded.last_interaction
            """,
            (
                relationship.persona_a,
                relationship.persona_b,
                relationship.relationship_strength,
                relationship.trust_level,
                relationship.shared_memories,
                relationship.connection_count,
                _ts(relationship.last_interaction),
            ),
        )
        await db.commit()

    async def get_relationships(self) -> list[PersonaRelationship]:
        db = self._require_db()
        async with db.execute(
            """
            SELECT persona_a, persona_b, relationship_strength, trust_level,
                   shared_memories, connection_count, last_interaction
            FROM persona_relationships
            """
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            PersonaRelationship(
                persona_a=row["persona_a"],
                persona_b=row["persona_b"],
                relationship_strength=row["relationship_strength"],
                trust_level=row["trust_level"],
                shared_memories=row["shared_memories"],
                connection_count=row["connection_count"],
                last_interaction=_parse_ts(row["last_interaction"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Consolidation bookkeeping
    # ------------------------------------------------------------------

    async def get_consolidation_state(
        self, user_id: str, persona_id: str | None
    ) -> dict | None:
        db = self._require_db()
        async with db.execute(
            """
            SELECT last_run_at, cursor FROM consolidation_state
            WHERE user_id = ? AND persona_scope = ?
            """,
            (user_id, persona_id or _ALL_PERSONAS),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "last_run_at": _parse_ts(row["last_run_at"]),
            "cursor": row["cursor"],
        }

    async def set_consolidation_state(
        self,
        user_id: str,
        persona_id: str | None,
        last_run_at: datetime | None,
        cursor: str | None,
    ) -> None:
        db = self._require_db()
        await db.execute(
            """
            INSERT INTO consolidation_state (user_id, persona_scope, last_run_at, cursor)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, persona_scope) DO UPDATE SET
                last_run_at = excluded.last_run_at,
                cursor = excluded.cursor
            """,
            (user_id, persona_id or _ALL_PERSONAS, _ts(last_run_at), cursor),
        )
        await db.commit()

    async def insert_consolidation_log(self, log: dict) -> None:
        """Record the counts of one consolidation pass."""
        db = self._require_db()
        await db.execute(
            """
            INSERT INTO consolidation_log (
                user_id, persona_scope, run_at, consolidated, archived,
                deleted, errors, completed
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                log["user_id"],
                log.get("persona_id") or _ALL_PERSONAS,
                _ts(log["run_at"]),
                log.get("consolidated", 0),
                log.get("archived", 0),
                log.get("deleted", 0),
                log.get("errors", 0),
                int(log.get("completed", True)),
            ),
        )
        await db.commit()
        logger.debug(f"Consolidation log recorded for {log['user_id']}")

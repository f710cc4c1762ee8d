"""Mind-map export and import of persona memory networks.

Exports are labeled trees serialized as JSON, either in the native layout
(``root`` / ``label``) or an XMind-style layout (``rootTopic`` / ``title``).
Memory nodes carry enough metadata to be re-imported into another persona.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from pydantic import ValidationError

from .exceptions import ImportFormatError
from .models import (
    ConnectionType,
    ExtractedFact,
    ImportResult,
    MemoryConnection,
    MemoryType,
    MindMapData,
    MindMapNode,
    SharedMemory,
)
from .retrieval import MemoryRetriever
from .sharing import SharedMemoryNetwork
from .storage.interfaces import MemoryStore

EXPORT_VERSION = "1.0"

EXPORT_MEMORY_NETWORK = "memory_network"
EXPORT_COMPANION_ECOSYSTEM = "companion_ecosystem"
EXPORT_EVOLUTION_HISTORY = "evolution_history"

_MEMORY_TYPE_COLORS: dict[MemoryType, str] = {
    MemoryType.PERSONAL: "#3B82F6",
    MemoryType.EXPERIENCE: "#10B981",
    MemoryType.RELATIONSHIP: "#F59E0B",
    MemoryType.KNOWLEDGE: "#8B5CF6",
    MemoryType.SHARED_EXPERIENCE: "#EC4899",
}
_DEFAULT_COLOR = "#6B7280"


def memory_type_color(memory_type: MemoryType | None) -> str:
    return _MEMORY_TYPE_COLORS.get(memory_type, _DEFAULT_COLOR)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _snippet(text: str, length: int) -> str:
    return text if len(text) <= length else text[:length] + "..."


# ---------------------------------------------------------------------------
# Format conversion
# ---------------------------------------------------------------------------


def _node_to_xmind(node: MindMapNode) -> dict[str, Any]:
    return {
        "id": node.id,
        "title": node.label,
        "content": node.content,
        "style": node.style,
        "children": [
            {"type": "attached", **_node_to_xmind(child)} for child in node.children
        ],
        "metadata": node.metadata,
    }


def _xmind_to_node(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": data.get("id", ""),
        "label": data.get("title", ""),
        "content": data.get("content") or "",
        "style": data.get("style") or {},
        "children": [_xmind_to_node(child) for child in data.get("children") or []],
        "metadata": data.get("metadata") or {},
    }


def to_xmind(mind_map: MindMapData) -> dict[str, Any]:
    return {
        "version": mind_map.version,
        "title": mind_map.title,
        "rootTopic": _node_to_xmind(mind_map.root),
        "settings": mind_map.settings,
        "metadata": mind_map.metadata,
    }


def parse_mind_map(payload: str | dict[str, Any]) -> MindMapData:
    """Parse either layout into :class:`MindMapData`.

    Raises:
        ImportFormatError: The payload is not a mind map
    """
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ImportFormatError("payload", f"invalid JSON: {e}") from e
    else:
        data = payload

    if not isinstance(data, dict):
        raise ImportFormatError("payload", "expected a JSON object")
    if "rootTopic" in data and "root" not in data:
        data = {**data, "root": _xmind_to_node(data["rootTopic"])}
    if not isinstance(data.get("metadata"), dict):
        raise ImportFormatError("metadata", "missing or not an object")

    try:
        return MindMapData.model_validate(data)
    except ValidationError as e:
        raise ImportFormatError("root", str(e)) from e


def _serialize(mind_map: MindMapData, fmt: str) -> str:
    if fmt == "xmind":
        return json.dumps(to_xmind(mind_map), indent=2, default=str)
    if fmt == "json":
        return mind_map.model_dump_json(indent=2)
    raise ValueError(f"Unsupported export format: {fmt!r}")


def _walk(node: MindMapNode):
    yield node
    for child in node.children:
        yield from _walk(child)


def _memory_node_fact(
    node: MindMapNode, warnings: list[str]
) -> tuple[ExtractedFact, list[dict[str, Any]]]:
    """Turn an exported memory node into a fact plus its raw connections.

    Raises:
        ImportFormatError: If the node's metadata is malformed
    """
    metadata = node.metadata
    try:
        memory_type = MemoryType(metadata.get("memory_type", "personal"))
    except (TypeError, ValueError):
        warnings.append(f"Unknown memory type on {node.id}; imported as personal")
        memory_type = MemoryType.PERSONAL

    raw_importance = metadata.get("importance", 0.5)
    invalid = ImportFormatError(f"{node.id}.importance", f"invalid value {raw_importance!r}")
    if isinstance(raw_importance, bool):
        raise invalid
    try:
        importance = float(raw_importance) or 0.5
    except (TypeError, ValueError):
        raise invalid from None
    if not 0.0 <= importance <= 1.0:
        raise invalid

    tags = metadata.get("tags", [])
    if not isinstance(tags, list):
        raise ImportFormatError(f"{node.id}.tags", "expected a list")

    connections = metadata.get("connections", [])
    if not isinstance(connections, list) or not all(
        isinstance(raw, dict) for raw in connections
    ):
        raise ImportFormatError(f"{node.id}.connections", "expected a list of objects")

    try:
        fact = ExtractedFact(
            fact=node.content or node.label,
            memory_type=memory_type,
            confidence=max(importance, 0.01),
            category="imported",
            topics=[t for t in tags if isinstance(t, str)],
        )
    except ValidationError as e:
        raise ImportFormatError(node.id, str(e)) from e
    return fact, connections


class MemoryNetworkExporter:
    """Exports persona memory networks and imports them back."""

    def __init__(
        self,
        network: SharedMemoryNetwork,
        store: MemoryStore,
        retriever: MemoryRetriever | None = None,
    ):
        """Initialize exporter.

        Args:
            network: Source of memories, clusters and insights
            store: Used for persona names and re-creating connections
            retriever: Required to import memory networks
        """
        self._network = network
        self._store = store
        self._retriever = retriever

    async def _persona_label(self, persona_id: str) -> str:
        return await self._store.get_persona_name(persona_id) or f"Companion {persona_id}"

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def _memory_node(self, memory: SharedMemory, snippet_length: int = 50) -> MindMapNode:
        return MindMapNode(
            id=f"memory_{memory.id}",
            label=_snippet(memory.content, snippet_length),
            content=memory.content,
            style={"backgroundColor": memory_type_color(memory.memory_type)},
            metadata={
                "kind": "memory",
                "memory_id": memory.id,
                "memory_type": memory.memory_type.value,
                "importance": memory.importance,
                "emotional_impact": memory.emotional_impact,
                "tags": memory.tags,
                "connections": [
                    {
                        "target_memory_id": c.target_memory_id,
                        "connection_type": c.connection_type.value,
                        "strength": c.strength,
                        "description": c.description,
                    }
                    for c in memory.connections
                ],
            },
        )

    async def build_memory_network(
        self,
        persona_id: str,
        include_insights: bool = True,
        max_memories_per_cluster: int = 10,
        theme: str | None = None,
        now: datetime | None = None,
    ) -> MindMapData:
        now = now or _utcnow()
        label = await self._persona_label(persona_id)
        memories = await self._network.get_accessible_memories(persona_id)
        by_id = {m.id: m for m in memories}
        network = await self._network.get_companion_network(persona_id, now=now)

        root = MindMapNode(
            id="memory_root",
            label="Memory Network",
            content=f"{label}'s interconnected memories and relationships",
            style={"backgroundColor": "#3B82F6", "fontSize": 16, "fontWeight": "bold"},
        )

        if network.memory_clusters:
            root.children.append(
                MindMapNode(
                    id="clusters",
                    label="Memory Clusters",
                    style={"backgroundColor": "#8B5CF6"},
                    children=[
                        MindMapNode(
                            id=f"cluster_{cluster.id}",
                            label=cluster.theme,
                            content=(
                                f"{len(cluster.memories)} memories, "
                                f"{len(cluster.participants)} participants"
                            ),
                            style={"backgroundColor": "#8B5CF6"},
                            children=[
                                self._memory_node(by_id[mid])
                                for mid in cluster.memories[:max_memories_per_cluster]
                                if mid in by_id
                            ],
                        )
                        for cluster in network.memory_clusters
                    ],
                )
            )

        if network.connected_companions:
            root.children.append(
                MindMapNode(
                    id="relationships",
                    label="Companion Relationships",
                    style={"backgroundColor": "#F59E0B"},
                    children=[
                        MindMapNode(
                            id=f"companion_{rel.other(persona_id)}",
                            label=await self._persona_label(rel.other(persona_id)),
                            content=(
                                f"Strength {round(rel.relationship_strength * 100)}%, "
                                f"trust {round(rel.trust_level * 100)}%, "
                                f"{rel.shared_memories} shared memories"
                            ),
                            style={"backgroundColor": "#F59E0B"},
                        )
                        for rel in network.connected_companions
                    ],
                )
            )

        if include_insights and network.insights:
            root.children.append(
                MindMapNode(
                    id="insights",
                    label="Network Insights",
                    style={"backgroundColor": "#06B6D4"},
                    children=[
                        MindMapNode(
                            id=f"insight_{insight.insight_type.value}",
                            label=insight.insight_type.value.replace("_", " "),
                            content=insight.description,
                            style={"backgroundColor": "#06B6D4"},
                            children=[
                                MindMapNode(
                                    id=f"confidence_{insight.insight_type.value}",
                                    label=f"Confidence: {round(insight.confidence * 100)}%",
                                    style={"backgroundColor": "#10B981"},
                                )
                            ],
                        )
                        for insight in network.insights
                    ],
                )
            )

        return MindMapData(
            version=EXPORT_VERSION,
            title=f"{label} Memory Network",
            root=root,
            settings={"layout": "radial", "theme": theme or "network"},
            metadata={
                "exported_at": now.isoformat(),
                "companion_id": persona_id,
                "export_type": EXPORT_MEMORY_NETWORK,
                "version": EXPORT_VERSION,
            },
        )

    async def export_memory_network(
        self,
        persona_id: str,
        format: str = "json",
        include_insights: bool = True,
        max_memories_per_cluster: int = 10,
        theme: str | None = None,
        now: datetime | None = None,
    ) -> str:
        """Serialize a persona's memory network as a mind map."""
        mind_map = await self.build_memory_network(
            persona_id,
            include_insights=include_insights,
            max_memories_per_cluster=max_memories_per_cluster,
            theme=theme,
            now=now,
        )
        logger.info(f"Exported memory network for {persona_id} ({format})")
        return _serialize(mind_map, format)

    async def export_companion_ecosystem(
        self,
        persona_ids: list[str],
        format: str = "json",
        theme: str | None = None,
        now: datetime | None = None,
    ) -> str:
        """Serialize several personas and the relationships between them."""
        now = now or _utcnow()
        root = MindMapNode(
            id="ecosystem_root",
            label="AI Companion Ecosystem",
            content=f"Complete ecosystem with {len(persona_ids)} companions",
            style={"backgroundColor": "#4F46E5", "fontSize": 18, "fontWeight": "bold"},
        )

        for persona_id in persona_ids:
            memories = await self._network.get_accessible_memories(persona_id)
            root.children.append(
                MindMapNode(
                    id=f"companion_{persona_id}",
                    label=await self._persona_label(persona_id),
                    content=f"{len(memories)} memories",
                    children=[
                        MindMapNode(
                            id=f"key_memories_{persona_id}",
                            label="Key Memories",
                            children=[
                                self._memory_node(m, snippet_length=30)
                                for m in memories[:5]
                            ],
                        )
                    ],
                )
            )

        connections = MindMapNode(
            id="ecosystem_connections",
            label="Cross-Companion Connections",
            content="Shared memories and relationships between companions",
            style={"backgroundColor": "#7C3AED"},
        )
        for i, first in enumerate(persona_ids):
            for second in persona_ids[i + 1 :]:
                rel = await self._network.get_relationship(first, second)
                if rel is None or (rel.shared_memories == 0 and rel.connection_count == 0):
                    continue
                connections.children.append(
                    MindMapNode(
                        id=f"connection_{rel.persona_a}_{rel.persona_b}",
                        label=f"{rel.persona_a} <-> {rel.persona_b}",
                        content=(
                            f"{rel.shared_memories} shared memories, "
                            f"{rel.connection_count} connections"
                        ),
                        style={"backgroundColor": "#8B5CF6"},
                    )
                )
        root.children.append(connections)

        mind_map = MindMapData(
            version=EXPORT_VERSION,
            title="AI Companion Ecosystem",
            root=root,
            settings={"layout": "radial", "theme": theme or "dark"},
            metadata={
                "exported_at": now.isoformat(),
                "export_type": EXPORT_COMPANION_ECOSYSTEM,
                "version": EXPORT_VERSION,
            },
        )
        logger.info(f"Exported ecosystem of {len(persona_ids)} companions ({format})")
        return _serialize(mind_map, format)

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    async def import_mind_map(
        self,
        payload: str | dict[str, Any],
        target_persona_id: str | None = None,
        user_id: str | None = None,
    ) -> ImportResult:
        """Import a previously exported mind map.

        Malformed payloads and unknown export types are reported through
        ``errors`` with ``success=False``; nothing is raised.
        """
        try:
            mind_map = parse_mind_map(payload)
        except ImportFormatError as e:
            return ImportResult(
                success=False, errors=[f"Failed to parse mind map: {e}"]
            )

        result = ImportResult()
        export_type = mind_map.metadata.get("export_type")
        if export_type == EXPORT_MEMORY_NETWORK:
            await self._import_memory_network(mind_map, target_persona_id, user_id, result)
        elif export_type == EXPORT_COMPANION_ECOSYSTEM:
            result.warnings.append(
                "Companion ecosystem import is not supported; nothing imported"
            )
        elif export_type == EXPORT_EVOLUTION_HISTORY:
            result.warnings.append(
                "Evolution history import is not supported; nothing imported"
            )
        else:
            result.errors.append(f"Unknown export type: {export_type!r}")
            result.success = False

        logger.info(
            f"Mind map import ({export_type}): nodes={result.imported_nodes}, "
            f"connections={result.imported_connections}, "
            f"warnings={len(result.warnings)}, errors={len(result.errors)}"
        )
        return result

    async def _import_memory_network(
        self,
        mind_map: MindMapData,
        target_persona_id: str | None,
        user_id: str | None,
        result: ImportResult,
    ) -> None:
        target = target_persona_id or mind_map.metadata.get("companion_id")
        if not target or not user_id:
            result.errors.append("Memory network import needs a target persona and user")
            result.success = False
            return
        if self._retriever is None:
            result.errors.append("No retriever configured for memory import")
            result.success = False
            return

        memory_nodes: dict[str, MindMapNode] = {}
        for node in _walk(mind_map.root):
            if node.metadata.get("kind") != "memory":
                continue
            old_id = node.metadata.get("memory_id") or node.id
            memory_nodes.setdefault(old_id, node)

        # Validate every node before storing anything so a bad node never
        # leaves a partial import behind.
        planned: dict[str, tuple[ExtractedFact, list[dict[str, Any]]]] = {}
        for old_id, node in memory_nodes.items():
            if not (node.content or node.label).strip():
                result.warnings.append(f"Skipped empty memory node {node.id}")
                continue
            try:
                planned[old_id] = _memory_node_fact(node, result.warnings)
            except ImportFormatError as e:
                result.errors.append(str(e))
        if result.errors:
            result.success = False
            return

        id_map: dict[str, str] = {}
        for old_id, (fact, _) in planned.items():
            stored = await self._retriever.store_facts([fact], user_id, target)
            if stored.stored_ids:
                id_map[old_id] = stored.stored_ids[0]
                result.imported_nodes += 1
            else:
                result.warnings.append(
                    f"Could not embed memory node {memory_nodes[old_id].id}"
                )

        for old_id, new_id in id_map.items():
            for raw in planned[old_id][1]:
                target_id = id_map.get(raw.get("target_memory_id"))
                if target_id is None:
                    continue
                try:
                    connection = MemoryConnection(
                        connection_type=ConnectionType(raw.get("connection_type", "related")),
                        target_memory_id=target_id,
                        strength=raw.get("strength", 0.5),
                        description=raw.get("description", ""),
                        created_by=target,
                    )
                except (ValueError, ValidationError) as e:
                    result.warnings.append(f"Skipped connection from {old_id}: {e}")
                    continue
                await self._store.add_connection(new_id, connection)
                result.imported_connections += 1

"""Thematic clustering and insight generation over shared memories."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .config import SharingConfig
from .models import (
    InsightType,
    MemoryCluster,
    NetworkInsight,
    PersonaRelationship,
    SharedMemory,
)

# Checked in order; the first theme with a matching keyword wins.
THEME_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("joy", ("happy", "joy", "fun")),
    ("difficulty", ("sad", "difficult", "challenge")),
    ("learning", ("learn", "study", "knowledge")),
    ("relationships", ("relationship", "friend", "family")),
)
DEFAULT_THEME = "general"


@dataclass
class ThemeGroup:
    theme: str
    memories: list[str] = field(default_factory=list)
    participants: list[str] = field(default_factory=list)


def classify_theme(content: str) -> str:
    lowered = content.lower()
    for theme, keywords in THEME_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return theme
    return DEFAULT_THEME


def extract_memory_themes(memories: list[SharedMemory]) -> list[ThemeGroup]:
    """Group memories by theme, largest group first.

    Ties keep the order in which the themes were first seen.
    """
    groups: dict[str, ThemeGroup] = {}
    for memory in memories:
        theme = classify_theme(memory.content)
        group = groups.setdefault(theme, ThemeGroup(theme=theme))
        group.memories.append(memory.id)
        for participant in memory.context.participants:
            if participant not in group.participants:
                group.participants.append(participant)
    return sorted(groups.values(), key=lambda g: len(g.memories), reverse=True)


def cluster_memories_by_theme(
    memories: list[SharedMemory], min_significance: float = 0.1
) -> list[MemoryCluster]:
    """Theme clusters whose share of *memories* exceeds *min_significance*."""
    if not memories:
        return []
    total = len(memories)
    clusters = [
        MemoryCluster(
            id=f"cluster_{i}",
            theme=group.theme,
            memories=group.memories,
            participants=group.participants,
            significance=len(group.memories) / total,
        )
        for i, group in enumerate(extract_memory_themes(memories))
    ]
    return [c for c in clusters if c.significance > min_significance]


def generate_insights(
    persona_id: str,
    relationships: list[PersonaRelationship],
    memories: list[SharedMemory],
    config: SharingConfig,
    now: datetime,
) -> list[NetworkInsight]:
    """Derive relationship, theme and emotional-trend insights.

    Args:
        persona_id: Persona the insights are about
        relationships: That persona's relationships
        memories: Memories accessible to the persona
        config: Sharing thresholds
        now: Reference time for the emotional window
    """
    insights: list[NetworkInsight] = []

    strong = [
        rel.other(persona_id)
        for rel in relationships
        if rel.relationship_strength > config.strong_connection_threshold
    ]
    if strong:
        insights.append(
            NetworkInsight(
                insight_type=InsightType.RELATIONSHIP_PATTERN,
                description=f"Strong connections with {len(strong)} companion(s)",
                confidence=0.9,
                related_companions=strong,
                generated_at=now,
            )
        )

    themes = extract_memory_themes(memories)
    if themes and len(themes[0].memories) > config.dominant_theme_min_memories:
        dominant = themes[0]
        insights.append(
            NetworkInsight(
                insight_type=InsightType.MEMORY_THEME,
                description=(
                    f"Dominant memory theme: {dominant.theme} "
                    f"({len(dominant.memories)} memories)"
                ),
                confidence=0.8,
                related_companions=dominant.participants,
                related_memories=dominant.memories,
                generated_at=now,
            )
        )

    window = timedelta(days=config.emotional_window_days)
    recent = [m for m in memories if now - m.context.timestamp < window]
    if recent:
        average = sum(m.emotional_impact for m in recent) / len(recent)
        threshold = config.emotional_trend_threshold
        if average > threshold:
            description, confidence = (
                "Generally positive emotional experiences recently",
                0.8,
            )
        elif average < -threshold:
            description, confidence = (
                "Some challenging emotional experiences recently",
                0.8,
            )
        else:
            description, confidence = "Balanced emotional experiences", 0.6

        companions: list[str] = []
        for memory in recent:
            for participant in memory.context.participants:
                if participant not in companions:
                    companions.append(participant)

        insights.append(
            NetworkInsight(
                insight_type=InsightType.EMOTIONAL_TREND,
                description=description,
                confidence=confidence,
                related_companions=companions,
                related_memories=[m.id for m in recent],
                generated_at=now,
            )
        )

    return insights

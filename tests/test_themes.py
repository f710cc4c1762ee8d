"""Tests for theme clustering and network insights."""

from __future__ import annotations

from datetime import timedelta

import pytest

from companion_memory.config import SharingConfig
from companion_memory.models import (
    InsightType,
    MemoryContext,
    MemoryType,
    PersonaRelationship,
    SharedMemory,
)
from companion_memory.themes import (
    classify_theme,
    cluster_memories_by_theme,
    extract_memory_themes,
    generate_insights,
)


def _shared(content, now, idx, impact=0.0, participants=("p1",), age_days=0):
    return SharedMemory(
        id=f"m{idx}",
        original_memory_id=f"m{idx}",
        original_persona_id="p1",
        memory_type=MemoryType.EXPERIENCE,
        content=content,
        emotional_impact=impact,
        context=MemoryContext(
            participants=list(participants),
            timestamp=now - timedelta(days=age_days),
        ),
    )


class TestClassify:
    @pytest.mark.parametrize(
        "content,theme",
        [
            ("We had so much fun", "joy"),
            ("A difficult week", "difficulty"),
            ("Started to study Rust", "learning"),
            ("Dinner with a friend", "relationships"),
            ("Bought groceries", "general"),
            ("Happy but difficult", "joy"),
        ],
    )
    def test_first_matching_theme_wins(self, content, theme):
        assert classify_theme(content) == theme


class TestClusters:
    def test_groups_sorted_by_size(self, now):
        memories = [
            _shared("fun day", now, 1),
            _shared("study session", now, 2),
            _shared("more study", now, 3, participants=("p2",)),
        ]
        groups = extract_memory_themes(memories)
        assert [g.theme for g in groups] == ["learning", "joy"]
        assert groups[0].participants == ["p1", "p2"]

    def test_small_clusters_dropped(self, now):
        memories = [_shared("study", now, i) for i in range(10)]
        memories.append(_shared("fun", now, 99))
        clusters = cluster_memories_by_theme(memories, 0.1)
        assert [c.theme for c in clusters] == ["learning"]
        assert clusters[0].significance == pytest.approx(10 / 11)

    def test_empty(self):
        assert cluster_memories_by_theme([]) == []


class TestInsights:
    def test_strong_connections(self, now):
        rels = [
            PersonaRelationship(persona_a="p1", persona_b="p2", relationship_strength=0.9),
            PersonaRelationship(persona_a="p0", persona_b="p1", relationship_strength=0.8),
        ]
        (insight,) = generate_insights("p1", rels, [], SharingConfig(), now)
        assert insight.insight_type == InsightType.RELATIONSHIP_PATTERN
        assert insight.related_companions == ["p2"]
        assert insight.confidence == 0.9

    def test_dominant_theme_needs_more_than_three(self, now):
        cfg = SharingConfig()
        three = [_shared("study", now, i, age_days=60) for i in range(3)]
        assert generate_insights("p1", [], three, cfg, now) == []

        four = three + [_shared("learn more", now, 9, age_days=60)]
        (insight,) = generate_insights("p1", [], four, cfg, now)
        assert insight.insight_type == InsightType.MEMORY_THEME
        assert insight.description == "Dominant memory theme: learning (4 memories)"
        assert insight.confidence == 0.8

    @pytest.mark.parametrize(
        "impacts,description,confidence",
        [
            ([0.9, 0.5], "Generally positive emotional experiences recently", 0.8),
            ([-0.9, -0.5], "Some challenging emotional experiences recently", 0.8),
            ([0.9, -0.9], "Balanced emotional experiences", 0.6),
        ],
    )
    def test_emotional_trend(self, now, impacts, description, confidence):
        memories = [_shared("x", now, i, impact=v) for i, v in enumerate(impacts)]
        memories.append(_shared("old", now, 50, impact=-1.0, age_days=45))
        (insight,) = generate_insights("p1", [], memories, SharingConfig(), now)
        assert insight.insight_type == InsightType.EMOTIONAL_TREND
        assert insight.description == description
        assert insight.confidence == confidence
        assert "m50" not in insight.related_memories

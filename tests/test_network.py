"""Tests for the persona relationship graph."""

from __future__ import annotations

import pytest

from companion_memory.models import PersonaRelationship
from companion_memory.network import InteractionEvent, PersonaGraph, pair_key


class TestPairKey:
    def test_unordered(self):
        assert pair_key("b", "a") == pair_key("a", "b") == ("a", "b")

    def test_self_pair_rejected(self):
        with pytest.raises(ValueError):
            pair_key("a", "a")


class TestGraph:
    def test_get_or_create_starts_at_zero(self):
        graph = PersonaGraph()
        rel = graph.get_or_create("zed", "amy")
        assert (rel.persona_a, rel.persona_b) == ("amy", "zed")
        assert rel.relationship_strength == 0.0
        assert rel.trust_level == 0.0
        assert graph.get("amy", "zed") is rel
        assert len(graph) == 1

    def test_set_relationship_range_checked(self):
        graph = PersonaGraph()
        with pytest.raises(ValueError):
            graph.set_relationship("a", "b", strength=1.2)
        assert graph.get("a", "b") is None

    def test_events_do_not_change_strength_or_trust(self, now):
        graph = PersonaGraph()
        graph.set_relationship("a", "b", strength=0.7, trust=0.6)
        rel = graph.record_event("b", "a", InteractionEvent.SHARE, now)
        graph.record_event("a", "b", InteractionEvent.CONNECTION, now)
        assert rel.shared_memories == 1
        assert rel.connection_count == 1
        assert rel.relationship_strength == 0.7
        assert rel.trust_level == 0.6
        assert rel.last_interaction == now

    def test_neighbors_and_other(self):
        graph = PersonaGraph()
        graph.set_relationship("a", "b", strength=0.5)
        graph.set_relationship("c", "a", strength=0.9)
        graph.set_relationship("b", "c", strength=0.1)
        others = sorted(rel.other("a") for rel in graph.neighbors("a"))
        assert others == ["b", "c"]
        assert graph.neighbors("nobody") == []

    def test_load_normalises_pair_order(self):
        graph = PersonaGraph()
        graph.load([PersonaRelationship(persona_a="z", persona_b="m")])
        rel = graph.get("m", "z")
        assert (rel.persona_a, rel.persona_b) == ("m", "z")

    def test_eligible_recipients_require_both_thresholds(self):
        graph = PersonaGraph()
        graph.set_relationship("a", "ok", strength=0.6, trust=0.5)
        graph.set_relationship("a", "weak", strength=0.5, trust=0.9)
        graph.set_relationship("a", "wary", strength=0.9, trust=0.4)
        eligible = graph.eligible_recipients(
            "a", ["weak", "ok", "wary", "stranger", "a", "ok"], 0.6, 0.5
        )
        assert eligible == ["ok"]

"""In-memory graph of persona relationships.

Relationships live in a flat list; a pair index and per-persona adjacency
sets hold positions into that list. Pairs are unordered and stored with the
lexicographically smaller persona id first.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from .models import PersonaRelationship


class InteractionEvent(str, Enum):
    SHARE = "share"
    CONNECTION = "connection"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def pair_key(persona_a: str, persona_b: str) -> tuple[str, str]:
    if persona_a == persona_b:
        raise ValueError(f"A persona cannot relate to itself: {persona_a!r}")
    return (persona_a, persona_b) if persona_a < persona_b else (persona_b, persona_a)


class PersonaGraph:
    """Relationship arena with pair and adjacency indexes."""

    def __init__(self) -> None:
        self._relationships: list[PersonaRelationship] = []
        self._pairs: dict[tuple[str, str], int] = {}
        self._adjacency: dict[str, set[int]] = {}

    def __len__(self) -> int:
        return len(self._relationships)

    def load(self, relationships: list[PersonaRelationship]) -> None:
        """Replace the graph contents."""
        self._relationships = []
        self._pairs = {}
        self._adjacency = {}
        for rel in relationships:
            self._add(rel)

    def _add(self, rel: PersonaRelationship) -> PersonaRelationship:
        key = pair_key(rel.persona_a, rel.persona_b)
        if (rel.persona_a, rel.persona_b) != key:
            rel = rel.model_copy(update={"persona_a": key[0], "persona_b": key[1]})
        idx = len(self._relationships)
        self._relationships.append(rel)
        self._pairs[key] = idx
        for persona in key:
            self._adjacency.setdefault(persona, set()).add(idx)
        return rel

    def get(self, persona_a: str, persona_b: str) -> PersonaRelationship | None:
        idx = self._pairs.get(pair_key(persona_a, persona_b))
        return self._relationships[idx] if idx is not None else None

    def get_or_create(
        self, persona_a: str, persona_b: str, now: datetime | None = None
    ) -> PersonaRelationship:
        """Existing relationship, or a new one with zero strength and trust."""
        rel = self.get(persona_a, persona_b)
        if rel is None:
            key = pair_key(persona_a, persona_b)
            rel = self._add(
                PersonaRelationship(
                    persona_a=key[0],
                    persona_b=key[1],
                    last_interaction=now or _utcnow(),
                )
            )
        return rel

    def set_relationship(
        self,
        persona_a: str,
        persona_b: str,
        strength: float | None = None,
        trust: float | None = None,
        now: datetime | None = None,
    ) -> PersonaRelationship:
        """Apply externally assessed strength and trust."""
        for name, value in (("strength", strength), ("trust", trust)):
            if value is not None and not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        rel = self.get_or_create(persona_a, persona_b, now)
        if strength is not None:
            rel.relationship_strength = strength
        if trust is not None:
            rel.trust_level = trust
        return rel

    def record_event(
        self,
        persona_a: str,
        persona_b: str,
        event: InteractionEvent,
        now: datetime | None = None,
    ) -> PersonaRelationship:
        """Count a share or connection between two personas.

        Strength and trust are left untouched.
        """
        rel = self.get_or_create(persona_a, persona_b, now)
        if event is InteractionEvent.SHARE:
            rel.shared_memories += 1
        else:
            rel.connection_count += 1
        rel.last_interaction = now or _utcnow()
        return rel

    def neighbors(self, persona_id: str) -> list[PersonaRelationship]:
        return [
            self._relationships[idx]
            for idx in sorted(self._adjacency.get(persona_id, ()))
        ]

    def eligible_recipients(
        self,
        origin: str,
        candidates: list[str],
        min_strength: float,
        min_trust: float,
    ) -> list[str]:
        """Candidates whose relationship with *origin* meets both thresholds."""
        eligible: list[str] = []
        for candidate in candidates:
            if candidate == origin or candidate in eligible:
                continue
            rel = self.get(origin, candidate)
            if rel is None:
                continue
            if (
                rel.relationship_strength >= min_strength
                and rel.trust_level >= min_trust
            ):
                eligible.append(candidate)
        return eligible

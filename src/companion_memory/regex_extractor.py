"""Regex-based fact extraction.

Runs synchronously with no model dependency. Each rule matches an English
cue phrase ("my name is", "I live in", "I love", ...) and captures the rest
of the clause. Rules are evaluated in a fixed order and every match is
returned in that order, so one sentence can yield several facts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

from .models import MemoryType


@dataclass(frozen=True, slots=True)
class _PatternEntry:
    """A single compiled extraction pattern with metadata."""

    pattern: re.Pattern[str]
    memory_type: MemoryType
    confidence: float
    category: str
    template: str


# A clause runs until sentence punctuation, a comma, a coordinating
# conjunction, or the end of the text.
_CLAUSE = r"(.+?)(?=\s+(?:and|but|or)\s|[.!?;,]|$)"

_RELATIVES = (
    "brother|sister|mother|father|mom|mum|dad|parents?|son|daughter|"
    "wife|husband|partner|grandmother|grandfather|grandma|grandpa|"
    "cousin|aunt|uncle|children|kids?"
)


def _build_patterns() -> tuple[_PatternEntry, ...]:
    """Build and compile all extraction patterns.

    Templates receive the capture groups positionally and the speaker
    label as ``subject``.
    """
    raw: list[dict] = []

    # ===================================================================
    # Name
    # ===================================================================
    # Name words only, so "Alice and I ..." stops at "and".
    raw.append(
        {
            "pattern": (
                r"\b(?:my name is|call me)\s+"
                r"([a-z][\w'-]*(?:\s+(?!(?:and|but|or)\b)[a-z][\w'-]*)*)"
            ),
            "memory_type": MemoryType.PERSONAL,
            "confidence": 0.95,
            "category": "name",
            "template": "{subject}'s name is {0}",
        }
    )

    # ===================================================================
    # Residence
    # ===================================================================
    raw.append(
        {
            "pattern": rf"\bI live in\s+{_CLAUSE}",
            "memory_type": MemoryType.PERSONAL,
            "confidence": 0.9,
            "category": "location",
            "template": "{subject} lives in {0}",
        }
    )
    raw.append(
        {
            "pattern": rf"\bI(?:'m| am) from\s+{_CLAUSE}",
            "memory_type": MemoryType.PERSONAL,
            "confidence": 0.9,
            "category": "location",
            "template": "{subject} is from {0}",
        }
    )

    # ===================================================================
    # Likes / dislikes
    # ===================================================================
    raw.append(
        {
            "pattern": rf"\bI (?:really )?(?:like|love|enjoy|adore)\s+{_CLAUSE}",
            "memory_type": MemoryType.PREFERENCE,
            "confidence": 0.85,
            "category": "likes",
            "template": "{subject} likes {0}",
        }
    )
    raw.append(
        {
            "pattern": (
                rf"\bI (?:don't|do not|really don't) like\s+{_CLAUSE}"
            ),
            "memory_type": MemoryType.PREFERENCE,
            "confidence": 0.85,
            "category": "dislikes",
            "template": "{subject} dislikes {0}",
        }
    )
    raw.append(
        {
            "pattern": rf"\bI (?:dislike|hate|can't stand|cannot stand)\s+{_CLAUSE}",
            "memory_type": MemoryType.PREFERENCE,
            "confidence": 0.85,
            "category": "dislikes",
            "template": "{subject} dislikes {0}",
        }
    )

    # ===================================================================
    # Experiences
    # ===================================================================
    raw.append(
        {
            "pattern": rf"\bI (went|visited|did|saw|tried)\s+{_CLAUSE}",
            "memory_type": MemoryType.EXPERIENCE,
            "confidence": 0.8,
            "category": "experience",
            "template": "{subject} {0} {1}",
        }
    )

    # ===================================================================
    # Occupation
    # ===================================================================
    raw.append(
        {
            "pattern": rf"\bI work as\s+(?:an?\s+|the\s+)?{_CLAUSE}",
            "memory_type": MemoryType.PERSONAL,
            "confidence": 0.9,
            "category": "occupation",
            "template": "{subject} works as {0}",
        }
    )
    raw.append(
        {
            "pattern": rf"\bmy job is\s+(?:an?\s+|the\s+)?{_CLAUSE}",
            "memory_type": MemoryType.PERSONAL,
            "confidence": 0.9,
            "category": "occupation",
            "template": "{subject} works as {0}",
        }
    )
    raw.append(
        {
            "pattern": rf"\bI(?:'m| am)\s+(?=an?\s){_CLAUSE}",
            "memory_type": MemoryType.PERSONAL,
            "confidence": 0.9,
            "category": "occupation",
            "template": "{subject} is {0}",
        }
    )

    # ===================================================================
    # Family
    # ===================================================================
    raw.append(
        {
            "pattern": rf"\bmy ({_RELATIVES})\b(?:'s)?\s+{_CLAUSE}",
            "memory_type": MemoryType.RELATIONSHIP,
            "confidence": 0.8,
            "category": "family",
            "template": "{subject}'s {0} {1}",
        }
    )

    # ===================================================================
    # Goals
    # ===================================================================
    raw.append(
        {
            "pattern": rf"\bI (want|hope|plan)\s+{_CLAUSE}",
            "memory_type": MemoryType.PERSONAL,
            "confidence": 0.75,
            "category": "goal",
            "template": "{subject} {0}s {1}",
        }
    )
    raw.append(
        {
            "pattern": rf"\bmy (?:goal|dream) is\s+{_CLAUSE}",
            "memory_type": MemoryType.PERSONAL,
            "confidence": 0.75,
            "category": "goal",
            "template": "{subject}'s goal is {0}",
        }
    )

    compiled: list[_PatternEntry] = []
    for entry in raw:
        compiled.append(
            _PatternEntry(
                pattern=re.compile(entry["pattern"], re.IGNORECASE),
                memory_type=entry["memory_type"],
                confidence=entry["confidence"],
                category=entry["category"],
                template=entry["template"],
            )
        )
    return tuple(compiled)


_PATTERNS: tuple[_PatternEntry, ...] = _build_patterns()


@dataclass
class RegexExtractor:
    """Synchronous rule-based fact extractor.

    Runs all compiled patterns against input text and returns deduplicated
    results in rule order.
    """

    _patterns: Sequence[_PatternEntry] = field(
        default_factory=lambda: _PATTERNS,
        repr=False,
    )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(self, text: str, subject: str = "User") -> list[dict]:
        """Extract facts from *text*.

        Args:
            text: Raw chat message to scan.
            subject: Label for the speaker used in fact statements.

        Returns:
            List of dicts with ``content``, ``memory_type``, ``confidence``
            and ``category``, ordered by rule then position.
        """
        if not text or not text.strip():
            return []

        results: list[dict] = []
        seen_contents: set[str] = set()

        for entry in self._patterns:
            for match in entry.pattern.finditer(text):
                content = self._extract_content(match, entry, subject)
                if not content:
                    continue

                content_key = " ".join(content.split()).lower()
                if content_key in seen_contents:
                    continue
                seen_contents.add(content_key)

                results.append(
                    {
                        "content": content,
                        "memory_type": entry.memory_type,
                        "confidence": entry.confidence,
                        "category": entry.category,
                    }
                )

        return results

    @property
    def pattern_count(self) -> int:
        """Return the total number of loaded patterns."""
        return len(self._patterns)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_content(
        match: re.Match, entry: _PatternEntry, subject: str
    ) -> str:
        groups = [(g or "").strip() for g in match.groups()]
        if not groups or not groups[-1]:
            return ""
        return entry.template.format(*groups, subject=subject).strip()

"""Tests for MemoryExtractor: facts, topics and exchange summaries."""

from __future__ import annotations

import pytest

from companion_memory.config import ExtractionConfig
from companion_memory.extraction import MemoryExtractor, extract_topics
from companion_memory.models import MemoryType


@pytest.fixture
def extractor() -> MemoryExtractor:
    return MemoryExtractor()


class TestTopics:
    def test_multiple_topics_in_taxonomy_order(self):
        assert extract_topics("My doctor says my job is too stressful") == [
            "work",
            "health",
        ]

    def test_no_topics(self):
        assert extract_topics("hello there") == []

    def test_case_insensitive(self):
        assert extract_topics("TRAVEL plans") == ["travel"]


class TestExtractFromMessage:
    def test_user_facts_are_attributed_to_user(self, extractor):
        facts = extractor.extract_from_message("I love hiking", role="user")
        assert [f.fact for f in facts] == ["User likes hiking"]
        assert facts[0].memory_type == MemoryType.PREFERENCE
        assert facts[0].confidence == 0.85
        assert facts[0].context == "I love hiking"

    def test_assistant_facts_are_attributed_to_companion(self, extractor):
        facts = extractor.extract_from_message("I love poetry", role="assistant")
        assert facts[0].fact == "Companion likes poetry"

    def test_unknown_role_rejected(self, extractor):
        with pytest.raises(ValueError):
            extractor.extract_from_message("I love tea", role="system")

    def test_no_match_returns_empty(self, extractor):
        assert extractor.extract_from_message("hmm") == []

    def test_topics_attached(self, extractor):
        facts = extractor.extract_from_message("I love my family")
        assert facts[0].topics == ["family"]


class TestExtractFromExchange:
    def test_long_exchange_with_topics_adds_summary(self, extractor):
        user = "I went on a trip with my family and we played a board game every night."
        reply = "That sounds wonderful, tell me more about it!" * 2
        facts = extractor.extract_from_exchange(user, reply)
        summary = facts[-1]
        assert summary.fact == "Conversation about: family, hobbies, travel"
        assert summary.memory_type == MemoryType.EXPERIENCE
        assert summary.confidence == 0.8
        assert summary.category == "summary"

    def test_short_exchange_has_no_summary(self, extractor):
        facts = extractor.extract_from_exchange("I love my job", "Nice!")
        assert all(f.category != "summary" for f in facts)
        assert len(facts) == 1

    def test_long_exchange_without_topics_has_no_summary(self, extractor):
        user = "x" * 60
        reply = "y" * 60
        assert extractor.extract_from_exchange(user, reply) == []

    def test_summary_threshold_is_inclusive(self):
        extractor = MemoryExtractor(ExtractionConfig(summary_min_length=20))
        user = "my work"  # 7 chars
        reply = "a" * 13
        facts = extractor.extract_from_exchange(user, reply)
        assert [f.fact for f in facts] == ["Conversation about: work"]

    def test_disabled_extraction(self):
        extractor = MemoryExtractor(ExtractionConfig(enabled=False))
        assert extractor.extract_from_exchange("I love tea", "ok") == []

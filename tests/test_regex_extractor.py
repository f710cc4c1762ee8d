"""Tests for RegexExtractor: cue-phrase fact extraction."""

from __future__ import annotations

import pytest

from companion_memory.models import MemoryType
from companion_memory.regex_extractor import RegexExtractor


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ext() -> RegexExtractor:
    return RegexExtractor()


def _by_category(results: list[dict], category: str) -> list[dict]:
    return [r for r in results if r["category"] == category]


# ---------------------------------------------------------------------------
# Combined sentence
# ---------------------------------------------------------------------------


def test_name_occupation_and_preference_in_one_message(ext: RegexExtractor) -> None:
    results = ext.extract(
        "My name is Alice and I work as a teacher. I love reading books."
    )
    contents = [r["content"] for r in results]
    assert len(results) >= 3
    assert "User's name is Alice" in contents
    assert "User works as teacher" in contents
    assert "User likes reading books" in contents


def test_results_follow_rule_order(ext: RegexExtractor) -> None:
    results = ext.extract("I love tea. My name is Bob.")
    assert [r["category"] for r in results] == ["name", "likes"]


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------


def test_name_confidence(ext: RegexExtractor) -> None:
    (name,) = _by_category(ext.extract("Call me Ishmael."), "name")
    assert name["memory_type"] == MemoryType.PERSONAL
    assert name["confidence"] == 0.95


def test_name_in_lowercase_chat(ext: RegexExtractor) -> None:
    (name,) = _by_category(ext.extract("my name is alice"), "name")
    assert name["content"] == "User's name is alice"


def test_name_stops_at_clause_boundary(ext: RegexExtractor) -> None:
    (name,) = _by_category(ext.extract("my name is john doe but friends use jd"), "name")
    assert name["content"] == "User's name is john doe"


def test_residence(ext: RegexExtractor) -> None:
    results = ext.extract("I live in Seattle, near the water")
    (loc,) = _by_category(results, "location")
    assert loc["content"] == "User lives in Seattle"
    assert loc["confidence"] == 0.9


def test_origin(ext: RegexExtractor) -> None:
    (loc,) = _by_category(ext.extract("I'm from Lisbon."), "location")
    assert loc["content"] == "User is from Lisbon"


def test_dislike(ext: RegexExtractor) -> None:
    results = ext.extract("I don't like spiders")
    assert _by_category(results, "likes") == []
    (dislike,) = _by_category(results, "dislikes")
    assert dislike["content"] == "User dislikes spiders"
    assert dislike["memory_type"] == MemoryType.PREFERENCE


def test_hate_is_dislike(ext: RegexExtractor) -> None:
    (dislike,) = _by_category(ext.extract("I hate waking up early"), "dislikes")
    assert dislike["content"] == "User dislikes waking up early"


def test_experience(ext: RegexExtractor) -> None:
    (exp,) = _by_category(ext.extract("Last year I visited Kyoto!"), "experience")
    assert exp["content"] == "User visited Kyoto"
    assert exp["memory_type"] == MemoryType.EXPERIENCE
    assert exp["confidence"] == 0.8


def test_family(ext: RegexExtractor) -> None:
    (fam,) = _by_category(ext.extract("My sister is a nurse."), "family")
    assert fam["content"] == "User's sister is a nurse"
    assert fam["memory_type"] == MemoryType.RELATIONSHIP


def test_goal(ext: RegexExtractor) -> None:
    (goal,) = _by_category(ext.extract("I want to learn the piano"), "goal")
    assert goal["content"] == "User wants to learn the piano"
    assert goal["confidence"] == 0.75


def test_subject_label(ext: RegexExtractor) -> None:
    (like,) = _by_category(ext.extract("I love jazz", subject="Companion"), "likes")
    assert like["content"] == "Companion likes jazz"


# ---------------------------------------------------------------------------
# Edge cases
# ---------------------------------------------------------------------------


def test_empty_input(ext: RegexExtractor) -> None:
    assert ext.extract("") == []
    assert ext.extract("   ") == []


def test_no_cue_phrases(ext: RegexExtractor) -> None:
    assert ext.extract("ok cool") == []


def test_duplicates_collapsed(ext: RegexExtractor) -> None:
    results = ext.extract("I love tea. I love tea!")
    assert len(_by_category(results, "likes")) == 1


def test_pattern_count(ext: RegexExtractor) -> None:
    assert ext.pattern_count >= 10

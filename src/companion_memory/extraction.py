"""Memory extraction from conversation turns.

Wraps :class:`RegexExtractor` with topic tagging and an optional summary
fact for longer exchanges. Extraction is pure and synchronous; an utterance
with no cue phrases simply yields no facts.
"""

from __future__ import annotations

from loguru import logger

from .config import ExtractionConfig
from .models import ExtractedFact, MemoryType
from .regex_extractor import RegexExtractor

# Topic taxonomy: first-seen order of the keys is the order topics are
# reported in.
TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "work": ("work", "job", "career", "office", "business"),
    "family": ("family", "parent", "child", "brother", "sister", "mother", "father"),
    "hobbies": ("hobby", "sport", "music", "book", "movie", "game", "art"),
    "health": ("health", "doctor", "medicine", "exercise", "diet"),
    "travel": ("travel", "trip", "vacation", "visit", "place"),
    "technology": ("computer", "phone", "internet", "software", "app"),
    "emotions": ("happy", "sad", "angry", "excited", "worried", "stressed"),
}

_SUBJECTS = {"user": "User", "assistant": "Companion"}

_SUMMARY_CONFIDENCE = 0.8


def extract_topics(text: str) -> list[str]:
    """Return taxonomy topics whose keywords appear in *text*."""
    lowered = text.lower()
    return [
        topic
        for topic, keywords in TOPIC_KEYWORDS.items()
        if any(keyword in lowered for keyword in keywords)
    ]


class MemoryExtractor:
    """Turns conversation text into candidate facts."""

    def __init__(
        self,
        config: ExtractionConfig | None = None,
        regex_extractor: RegexExtractor | None = None,
    ):
        self.config = config or ExtractionConfig()
        self._regex = regex_extractor or RegexExtractor()

    def extract_from_message(
        self, text: str, role: str = "user"
    ) -> list[ExtractedFact]:
        """Extract facts from a single utterance.

        Args:
            text: Utterance text
            role: ``"user"`` or ``"assistant"``

        Returns:
            Facts in rule order; empty when nothing matched.
        """
        if role not in _SUBJECTS:
            raise ValueError(f"Unknown speaker role: {role!r}")

        topics = extract_topics(text)
        facts = [
            ExtractedFact(
                fact=item["content"],
                memory_type=item["memory_type"],
                confidence=item["confidence"],
                context=text,
                category=item["category"],
                topics=topics,
            )
            for item in self._regex.extract(text, subject=_SUBJECTS[role])
        ]
        logger.debug(f"Extracted {len(facts)} facts from {role} message")
        return facts

    def extract_from_exchange(
        self, user_message: str, reply: str
    ) -> list[ExtractedFact]:
        """Extract facts from a user message and the companion's reply.

        Facts come from the user message. A summary fact naming up to
        ``max_summary_topics`` topics is appended when the exchange is long
        enough and the user message touched at least one topic.
        """
        if not self.config.enabled:
            return []

        facts = self.extract_from_message(user_message, role="user")

        topics = extract_topics(user_message)
        exchange_length = len(user_message) + len(reply)
        if topics and exchange_length >= self.config.summary_min_length:
            summary_topics = topics[: self.config.max_summary_topics]
            facts.append(
                ExtractedFact(
                    fact=f"Conversation about: {', '.join(summary_topics)}",
                    memory_type=MemoryType.EXPERIENCE,
                    confidence=_SUMMARY_CONFIDENCE,
                    context=user_message,
                    category="summary",
                    topics=topics,
                )
            )

        if facts:
            logger.info(
                f"Extracted {len(facts)} facts from exchange "
                f"(topics={topics})"
            )
        return facts

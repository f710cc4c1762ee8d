"""Fuzzy rendering of decayed memories.

The tier is chosen deterministically from the decay factor; only the
choice of which words get blurred, and which filler phrase is used, draws
from the random source.
"""

from __future__ import annotations

import random

from .decay import fuzziness_tier
from .models import FuzzinessTier

UNCERTAINTY_PHRASES: tuple[str, ...] = (
    "I think ",
    "As I recall, ",
    "If memory serves, ",
    "I believe ",
)

GENERIC_WORDS: tuple[str, ...] = (
    "something",
    "someone",
    "somewhere",
    "sometime",
    "somehow",
)


class Fuzzifier:
    """Renders memory text with fidelity matching its decay.

    Args:
        fuzziness_factor: Scales how many words are blurred in the light
            and medium tiers
        rng: Random source; pass a seeded ``random.Random`` for
            reproducible output
    """

    def __init__(
        self,
        fuzziness_factor: float = 0.1,
        rng: random.Random | None = None,
    ):
        self.fuzziness_factor = fuzziness_factor
        self._rng = rng or random.Random()

    def apply(self, text: str, decay: float) -> str:
        tier = fuzziness_tier(decay)
        if tier is FuzzinessTier.VERBATIM:
            return text

        fuzziness = (1.0 - decay) * self.fuzziness_factor
        words = text.split(" ")

        if tier is FuzzinessTier.LIGHT:
            return self._light(words, fuzziness)
        if tier is FuzzinessTier.MEDIUM:
            return self._medium(words, fuzziness)
        return self._heavy(words, decay)

    def _light(self, words: list[str], fuzziness: float) -> str:
        out = []
        for word in words:
            if self._rng.random() < fuzziness * 0.3 and self._rng.random() < 0.5:
                out.append(f"something like {word}")
            else:
                out.append(word)
        return " ".join(out)

    def _medium(self, words: list[str], fuzziness: float) -> str:
        blurred = " ".join(
            f"...{word}..." if self._rng.random() < fuzziness * 0.5 else word
            for word in words
        )
        phrase = UNCERTAINTY_PHRASES[
            int(self._rng.random() * len(UNCERTAINTY_PHRASES))
        ]
        return phrase + blurred.lower()

    def _heavy(self, words: list[str], decay: float) -> str:
        content = [w for w in words if len(w) > 3]
        # A strict minority of content words survives; the rest become generics.
        max_kept = (len(content) - 1) // 2
        keep = [i for i in range(len(content)) if self._rng.random() < decay]
        keep = set(keep[:max_kept])
        out = [
            word
            if i in keep
            else GENERIC_WORDS[int(self._rng.random() * len(GENERIC_WORDS))]
            for i, word in enumerate(content)
        ] or [GENERIC_WORDS[0]]
        return f"I vaguely remember {' '.join(out)}... it's all quite fuzzy now."

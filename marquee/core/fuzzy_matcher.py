"""Title comparison helpers used by confidence scoring."""

from __future__ import annotations

import re

from rapidfuzz import fuzz

from marquee.utils.constants import (
    SIMILARITY_JACCARD,
    SIMILARITY_STRATEGIES,
    SIMILARITY_TOKEN_SORT,
)
from marquee.utils.logger import get_logger

logger = get_logger("core.fuzzy_matcher")

_WHITESPACE = re.compile(r"\s+")


class FuzzyMatcher:
    """Compares a parsed title against a catalog title.

    Two similarity strategies are available:

    - ``"jaccard"`` (default): size of the intersection over the size of the
      union of the two titles' character sets.  Order-blind and crude, but
      it is the metric existing scores were computed with.
    - ``"token_sort"``: rapidfuzz ``token_sort_ratio`` scaled to 0-1, which
      tolerates word reordering and small misspellings.

    Both are deterministic and bounded to [0, 1].
    """

    def __init__(self, strategy: str = SIMILARITY_JACCARD) -> None:
        """Initialize the matcher.

        Args:
            strategy: One of ``SIMILARITY_STRATEGIES``.

        Raises:
            ValueError: If the strategy is unknown.
        """
        if strategy not in SIMILARITY_STRATEGIES:
            raise ValueError(
                f"Unknown title similarity strategy {strategy!r}; "
                f"expected one of {sorted(SIMILARITY_STRATEGIES)}"
            )
        self._strategy = strategy

    @property
    def strategy(self) -> str:
        return self._strategy

    @staticmethod
    def normalize(text: str | None) -> str:
        """Lowercase, turn dots/underscores into spaces, collapse whitespace."""
        if not text:
            return ""
        cleaned = text.lower().replace(".", " ").replace("_", " ")
        return _WHITESPACE.sub(" ", cleaned).strip()

    def is_exact(self, str_a: str | None, str_b: str | None) -> bool:
        a = self.normalize(str_a)
        return bool(a) and a == self.normalize(str_b)

    def is_substring(self, str_a: str | None, str_b: str | None) -> bool:
        """True if either normalized title contains the other."""
        a = self.normalize(str_a)
        b = self.normalize(str_b)
        if not a or not b:
            return False
        return a in b or b in a

    def similarity(self, str_a: str | None, str_b: str | None) -> float:
        """Calculate the similarity between two titles (0.0 - 1.0).

        Args:
            str_a: First title.
            str_b: Second title.

        Returns:
            Similarity from 0.0 (nothing shared) to 1.0 (identical).
        """
        a = self.normalize(str_a)
        b = self.normalize(str_b)
        if not a or not b:
            return 0.0
        if a == b:
            return 1.0

        if self._strategy == SIMILARITY_TOKEN_SORT:
            return fuzz.token_sort_ratio(a, b) / 100.0
        return self.jaccard(a, b)

    @staticmethod
    def jaccard(str_a: str, str_b: str) -> float:
        """Jaccard index of the character sets of two strings."""
        set_a = set(str_a)
        set_b = set(str_b)
        union = set_a | set_b
        if not union:
            return 0.0
        return len(set_a & set_b) / len(union)

"""Confidence scoring algorithm for catalog match quality assessment."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from marquee.core.fuzzy_matcher import FuzzyMatcher
from marquee.utils.constants import (
    DEFAULT_MATCH_THRESHOLD,
    DEFAULT_REVIEW_THRESHOLD,
    MAX_CONFIDENCE,
    POPULARITY_POINTS,
    POPULARITY_THRESHOLD,
    SIMILARITY_JACCARD,
    TITLE_EXACT_POINTS,
    TITLE_SIMILARITY_MAX_POINTS,
    TITLE_SUBSTRING_POINTS,
    VOTE_COUNT_POINTS,
    VOTE_COUNT_THRESHOLD,
    YEAR_EXACT_POINTS,
    YEAR_NEAR_POINTS,
    YEAR_NEAR_TOLERANCE,
)
from marquee.utils.logger import get_logger

if TYPE_CHECKING:
    from marquee.models.catalog_match import CatalogMatch
    from marquee.models.parsed_candidate import ParsedCandidate

logger = get_logger("core.confidence_scorer")


class ConfidenceScorer:
    """Calculates an integer confidence score for a catalog match.

    The score is the sum of independently capped contributions:
    - Year agreement (40): exact year 40, off by one 20
    - Title agreement (30): exact 30, substring 20, else up to 25 by similarity
    - Popularity (20): 10 for popularity, 10 for vote count

    Thresholds:
    - score >= match_threshold: commit automatically (MATCHED)
    - score >= review_threshold: show the guess for review
    - below: treat as unmatched
    """

    def __init__(
        self,
        match_threshold: int = DEFAULT_MATCH_THRESHOLD,
        review_threshold: int = DEFAULT_REVIEW_THRESHOLD,
        similarity: str = SIMILARITY_JACCARD,
    ) -> None:
        """Initialize the confidence scorer.

        Args:
            match_threshold: Score at or above which a match is committed.
            review_threshold: Score at or above which a guess is worth showing.
            similarity: Title similarity strategy passed to ``FuzzyMatcher``.
        """
        self._match_threshold = match_threshold
        self._review_threshold = review_threshold
        self._fuzzy = FuzzyMatcher(similarity)

    @property
    def match_threshold(self) -> int:
        return self._match_threshold

    def score(self, candidate: ParsedCandidate, match: CatalogMatch | None) -> int:
        """Calculate the confidence score for a (candidate, match) pair.

        Pure and deterministic: the same inputs always give the same score.

        Args:
            candidate: Attributes parsed from the filename.
            match: Catalog entry, or None when the lookup found nothing.

        Returns:
            Confidence score from 0 to 100 (0 when there is no match).
        """
        if match is None:
            return 0

        year_points = self.year_points(candidate.year, match.release_year)
        title_points = self.title_points(candidate.title, match.title)
        popularity_points = self.popularity_points(match.popularity, match.vote_count)

        overall = year_points + title_points + popularity_points

        # Clamp to 0-100
        overall = max(0, min(MAX_CONFIDENCE, overall))

        logger.debug(
            "Score for '%s' -> '%s' (%s): year=%d, title=%d, popularity=%d => %d",
            candidate.title,
            match.title,
            match.external_id,
            year_points,
            title_points,
            popularity_points,
            overall,
        )
        return overall

    def is_auto_match(self, match: CatalogMatch | None, score: int) -> bool:
        """Check whether a match may be committed without a human."""
        return match is not None and score >= self._match_threshold

    def classify(self, score: int) -> str:
        """Classify a confidence score into an action category.

        Args:
            score: Score from 0-100.

        Returns:
            One of: 'auto_match', 'review', 'unmatched'.
        """
        if score >= self._match_threshold:
            return "auto_match"
        elif score >= self._review_threshold:
            return "review"
        else:
            return "unmatched"

    # --- Components ---

    @staticmethod
    def year_points(parsed_year: int | None, release_year: int | None) -> int:
        if parsed_year is None or release_year is None:
            return 0
        diff = abs(parsed_year - release_year)
        if diff == 0:
            return YEAR_EXACT_POINTS
        if diff <= YEAR_NEAR_TOLERANCE:
            return YEAR_NEAR_POINTS
        return 0

    def title_points(self, parsed_title: str | None, match_title: str | None) -> int:
        if self._fuzzy.is_exact(parsed_title, match_title):
            return TITLE_EXACT_POINTS
        if self._fuzzy.is_substring(parsed_title, match_title):
            return TITLE_SUBSTRING_POINTS
        similarity = self._fuzzy.similarity(parsed_title, match_title)
        return min(TITLE_SIMILARITY_MAX_POINTS, math.floor(similarity * TITLE_SIMILARITY_MAX_POINTS))

    @staticmethod
    def popularity_points(popularity: float, vote_count: int) -> int:
        points = 0
        if popularity > POPULARITY_THRESHOLD:
            points += POPULARITY_POINTS
        if vote_count > VOTE_COUNT_THRESHOLD:
            points += VOTE_COUNT_POINTS
        return points

"""Metadata matcher -- finds the catalog entry for a parsed filename and scores it."""

from __future__ import annotations

from marquee.core.catalog_client import CatalogClient, CatalogUnavailableError
from marquee.core.confidence_scorer import ConfidenceScorer
from marquee.models.catalog_match import CatalogMatch
from marquee.models.config import AppConfig
from marquee.models.parsed_candidate import ParsedCandidate
from marquee.utils.constants import CATALOG_SEARCH_LIMIT, UNKNOWN_TITLE
from marquee.utils.logger import get_logger

logger = get_logger("core.metadata_matcher")


class MetadataMatcher:
    """Resolves ParsedCandidates against the catalog.

    ``resolve`` makes one search (narrowed by year when the filename had
    one) and takes the catalog's top-ranked result.  Scoring is delegated to
    ``ConfidenceScorer`` so the arithmetic lives in one place.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        scorer: ConfidenceScorer | None = None,
        fetch_details: bool = False,
    ) -> None:
        """Initialize the matcher.

        Args:
            catalog: Catalog client (or any object with ``search`` and
                ``get_details``).
            scorer: Confidence scorer; a default one is built if omitted.
            fetch_details: Replace the top search result with its full
                details record (genres, runtime, credits) after resolving.
        """
        self._catalog = catalog
        self._scorer = scorer or ConfidenceScorer()
        self._fetch_details = fetch_details

    @classmethod
    def from_config(cls, config: AppConfig, catalog: CatalogClient) -> MetadataMatcher:
        scorer = ConfidenceScorer(
            match_threshold=config.match_threshold,
            review_threshold=config.review_threshold,
            similarity=config.title_similarity,
        )
        return cls(catalog, scorer, fetch_details=config.catalog_fetch_details)

    @property
    def scorer(self) -> ConfidenceScorer:
        return self._scorer

    def resolve(self, candidate: ParsedCandidate) -> CatalogMatch | None:
        """Look up the best catalog entry for a parsed filename.

        Args:
            candidate: Parsed filename attributes.

        Returns:
            The highest-ranked match, or None when the catalog has nothing.

        Raises:
            CatalogUnavailableError: If the catalog could not be queried.
        """
        if not candidate.title or candidate.title == UNKNOWN_TITLE:
            logger.info("No usable title parsed, skipping catalog search")
            return None

        results = self._catalog.search(candidate.title, candidate.year)
        if not results:
            logger.info("No catalog results for %s", candidate.display_label)
            return None

        best = results[0]
        logger.debug(
            "Catalog top result for %s: %s [%s]",
            candidate.display_label, best.display_label, best.external_id,
        )
        if self._fetch_details:
            best = self._enrich(best)
        return best

    def fetch(self, external_id: int | str) -> CatalogMatch | None:
        """Fetch a specific catalog entry by id (None if it does not exist)."""
        return self._catalog.get_details(external_id)

    def score(self, candidate: ParsedCandidate, match: CatalogMatch | None) -> int:
        return self._scorer.score(candidate, match)

    def is_auto_match(self, match: CatalogMatch | None, score: int) -> bool:
        return self._scorer.is_auto_match(match, score)

    def classify(self, score: int) -> str:
        return self._scorer.classify(score)

    def search_candidates(
        self,
        query: str,
        year: int | None = None,
        limit: int = CATALOG_SEARCH_LIMIT,
    ) -> list[tuple[CatalogMatch, int]]:
        """Search the catalog and score every result against the query.

        Used by the manual review surface to show ranked alternatives.

        Args:
            query: Free-text title.
            year: Optional year, used both to narrow the search and to score.
            limit: Maximum number of results.

        Returns:
            ``(match, score)`` pairs, best score first; ties keep catalog order.

        Raises:
            CatalogUnavailableError: If the catalog could not be queried.
        """
        candidate = ParsedCandidate(title=query.strip() or UNKNOWN_TITLE, year=year)
        results = self._catalog.search(query, year, limit=limit)
        scored = [(match, self._scorer.score(candidate, match)) for match in results]
        # sorted() is stable, so equal scores keep the catalog's ranking
        return sorted(scored, key=lambda pair: pair[1], reverse=True)

    def _enrich(self, match: CatalogMatch) -> CatalogMatch:
        try:
            details = self._catalog.get_details(match.external_id)
        except CatalogUnavailableError as e:
            logger.warning(
                "Could not fetch details for %s, keeping search result: %s",
                match.external_id, e,
            )
            return match
        return details or match

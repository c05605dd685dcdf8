"""Catalog client -- movie search and details lookups against TMDB."""

from __future__ import annotations

import hashlib
import time
from typing import Any, Callable, TypeVar

import requests

from marquee.models.catalog_match import CatalogMatch
from marquee.utils.constants import (
    APP_NAME,
    APP_VERSION,
    CATALOG_BASE_URL,
    CATALOG_DETAILS_APPEND,
    CATALOG_LANGUAGE,
    CATALOG_MAX_RETRIES,
    CATALOG_RATE_LIMIT,
    CATALOG_RETRY_BACKOFF_SECONDS,
    CATALOG_SEARCH_LIMIT,
    CATALOG_TIMEOUT_SECONDS,
)
from marquee.utils.logger import get_logger
from marquee.utils.rate_limiter import RateLimiter, rate_limiter

logger = get_logger("core.catalog_client")

T = TypeVar("T")

_SERVICE_NAME = "catalog"


class CatalogError(Exception):
    """Base class for catalog lookup failures."""


class CatalogUnavailableError(CatalogError):
    """The catalog could not answer (network, outage, auth, rate limit).

    Distinct from "no results": callers should keep the record retryable.
    """


class _TransientCatalogError(CatalogError):
    """A failure worth retrying locally (timeout, 5xx, 429)."""


class CatalogClient:
    """Looks up movies in the TMDB v3 API.

    Every request is rate limited, carries a timeout and is retried a bounded
    number of times on transient failures.  Successful responses can be
    cached in an ``ApiCacheRepository`` so re-running a resolution gives the
    same answer without another network call.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = CATALOG_BASE_URL,
        language: str = CATALOG_LANGUAGE,
        timeout: float = CATALOG_TIMEOUT_SECONDS,
        max_retries: int = CATALOG_MAX_RETRIES,
        retry_backoff: float = CATALOG_RETRY_BACKOFF_SECONDS,
        rate_limit: float = CATALOG_RATE_LIMIT,
        api_cache: object | None = None,
        session: requests.Session | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize the catalog client.

        Args:
            api_key: TMDB API key.
            base_url: API root, without trailing slash.
            language: Language for titles and overviews.
            timeout: Per-request timeout in seconds.
            max_retries: Maximum attempts per request.
            retry_backoff: Base wait between attempts (multiplied by attempt).
            rate_limit: Minimum seconds between requests.
            api_cache: Optional ``ApiCacheRepository``.
            session: Optional pre-built HTTP session (tests inject fakes).
            limiter: Rate limiter; defaults to the process-wide one.
        """
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._language = language
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._retry_backoff = retry_backoff
        self._rate_limit = rate_limit
        self._api_cache = api_cache
        self._limiter = limiter or rate_limiter

        # Persistent HTTP session -- reuses TCP/TLS connections across requests
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": f"{APP_NAME}/{APP_VERSION}",
            "Accept": "application/json",
        })

    # --- Public API ---

    def search(
        self,
        query: str,
        year: int | None = None,
        limit: int = CATALOG_SEARCH_LIMIT,
    ) -> list[CatalogMatch]:
        """Search the catalog for movies matching a free-text title.

        Args:
            query: Title to search for.
            year: Optional release year to narrow the search.
            limit: Maximum number of results to return.

        Returns:
            Matches in the order the catalog ranked them (possibly empty).

        Raises:
            CatalogUnavailableError: If the catalog could not be queried.
        """
        query = " ".join((query or "").split())
        if not query:
            return []

        cache_key = self._cache_key("search", query.lower(), year or "", self._language)
        data = self._cache_get(cache_key)
        if data is None:
            params: dict[str, Any] = {"query": query, "include_adult": "false"}
            if year:
                params["year"] = year
            data = self._get_json("search/movie", params, f"search '{query}'")
            if data is None:
                # 404 on a search endpoint means a misconfigured base URL
                raise CatalogUnavailableError(f"Catalog search endpoint not found for '{query}'")
            matches = self._parse_search_results(data)
            self._cache_put(cache_key, data)
        else:
            matches = self._parse_search_results(data)
        logger.debug(
            "Catalog search '%s' (year=%s) returned %d results", query, year, len(matches),
        )
        return matches[:limit]

    def get_details(self, external_id: int | str) -> CatalogMatch | None:
        """Fetch the full catalog record for an id.

        Args:
            external_id: Catalog movie id.

        Returns:
            The match, or None if the catalog has no such id.

        Raises:
            CatalogUnavailableError: If the catalog could not be queried.
        """
        try:
            movie_id = int(external_id)
        except (TypeError, ValueError):
            logger.warning("Invalid catalog id: %r", external_id)
            return None

        cache_key = self._cache_key("details", movie_id, self._language)
        data = self._cache_get(cache_key)
        cached = data is not None
        if not cached:
            data = self._get_json(
                f"movie/{movie_id}",
                {"append_to_response": CATALOG_DETAILS_APPEND},
                f"details {movie_id}",
            )
            if data is None:
                logger.info("Catalog has no movie with id %s", movie_id)
                return None

        try:
            match = CatalogMatch.from_api(data)
        except ValueError as e:
            raise CatalogUnavailableError(f"Malformed details payload for {movie_id}: {e}") from e
        # Only well-formed payloads are cached
        if not cached:
            self._cache_put(cache_key, data)
        return match

    def close(self) -> None:
        self._session.close()

    # --- HTTP ---

    def _get_json(self, path: str, params: dict[str, Any], what: str) -> dict | None:
        """GET a catalog endpoint with retry; None on 404."""
        if not self._api_key:
            raise CatalogUnavailableError(
                "Catalog API key not configured. Set catalog_api_key in "
                "config/config.yaml or the TMDB_API_KEY environment variable."
            )

        url = f"{self._base_url}/{path}"
        full_params = {"api_key": self._api_key, "language": self._language, **params}

        def _do_get() -> dict | None:
            self._limiter.wait(_SERVICE_NAME, self._rate_limit)
            try:
                response = self._session.get(url, params=full_params, timeout=self._timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                raise _TransientCatalogError(str(e)) from e
            except requests.RequestException as e:
                raise CatalogUnavailableError(f"Catalog {what} failed: {e}") from e

            status = response.status_code
            if status == 404:
                return None
            if status == 429 or status >= 500:
                raise _TransientCatalogError(f"HTTP {status}")
            if status >= 400:
                raise CatalogUnavailableError(f"Catalog rejected {what}: HTTP {status}")
            try:
                data = response.json()
            except ValueError as e:
                raise _TransientCatalogError(f"invalid JSON: {e}") from e
            if not isinstance(data, dict):
                raise CatalogUnavailableError(
                    f"Catalog {what} returned {type(data).__name__}, expected an object"
                )
            return data

        return self._retry(_do_get, what)

    def _retry(self, func: Callable[[], T], what: str) -> T:
        """Retry a catalog call with linear backoff on transient failure.

        Args:
            func: Callable to execute.
            what: Description of the request (for logging).

        Returns:
            The function's return value.

        Raises:
            CatalogUnavailableError: When attempts are exhausted or the
                failure is not transient.
        """
        for attempt in range(1, self._max_retries + 1):
            try:
                return func()
            except _TransientCatalogError as e:
                wait_time = self._retry_backoff * attempt
                if attempt < self._max_retries:
                    logger.warning(
                        "Catalog %s failed (attempt %d/%d): %s -- retrying in %.1fs",
                        what, attempt, self._max_retries, e, wait_time,
                    )
                    time.sleep(wait_time)
                else:
                    logger.error(
                        "Catalog %s failed after %d attempts: %s",
                        what, self._max_retries, e,
                    )
                    raise CatalogUnavailableError(
                        f"Catalog {what} failed after {self._max_retries} attempts: {e}"
                    ) from e
        raise AssertionError("unreachable")

    # --- Parsing ---

    @staticmethod
    def _parse_search_results(data: dict) -> list[CatalogMatch]:
        results = data.get("results") or []
        if not isinstance(results, list):
            raise CatalogUnavailableError(
                f"Malformed search payload: results is {type(results).__name__}"
            )
        matches = []
        for item in results:
            if not isinstance(item, dict):
                logger.debug("Skipping non-object search result: %r", item)
                continue
            try:
                matches.append(CatalogMatch.from_api(item))
            except ValueError as e:
                logger.debug("Skipping malformed search result: %s", e)
        return matches

    # --- Cache ---

    @staticmethod
    def _cache_key(prefix: str, *parts: object) -> str:
        """Build a deterministic cache key for a request."""
        raw = "|".join(str(p) for p in parts)
        h = hashlib.sha256(raw.encode()).hexdigest()[:16]
        return f"catalog_{prefix}:{h}"

    def _cache_get(self, cache_key: str) -> dict | None:
        if self._api_cache is None:
            return None
        cached = self._api_cache.get(cache_key)
        if cached is not None:
            logger.debug("API cache hit: %s", cache_key)
        return cached

    def _cache_put(self, cache_key: str, data: dict) -> None:
        if self._api_cache is None:
            return
        try:
            self._api_cache.put(cache_key, data)
        except Exception as e:
            # A cache write failure must not turn a good answer into an error
            logger.warning("API cache write failed for %s: %s", cache_key, e)

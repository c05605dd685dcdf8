"""Tests for CatalogClient -- HTTP handling, retries and response caching.

The requests session and the rate limiter are mocked; no network is used.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from marquee.core.catalog_client import CatalogClient, CatalogUnavailableError
from marquee.db.repositories import ApiCacheRepository


def _response(status: int = 200, payload: object = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    return response


MATRIX = {
    "id": 603,
    "title": "The Matrix",
    "release_date": "1999-03-30",
    "popularity": 85.2,
    "vote_count": 24000,
}


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def limiter() -> MagicMock:
    return MagicMock()


def _client(session, limiter, **kwargs) -> CatalogClient:
    kwargs.setdefault("retry_backoff", 0)
    return CatalogClient("test-key", session=session, limiter=limiter, **kwargs)


class TestSearch:
    def test_parses_results_in_order(self, session, limiter):
        session.get.return_value = _response(200, {"results": [MATRIX, {**MATRIX, "id": 604}]})
        matches = _client(session, limiter).search("The Matrix", 1999)
        assert [m.external_id for m in matches] == [603, 604]
        assert matches[0].release_year == 1999

    def test_sends_query_and_year(self, session, limiter):
        session.get.return_value = _response(200, {"results": []})
        _client(session, limiter).search("  The   Matrix ", 1999)
        _, kwargs = session.get.call_args
        assert kwargs["params"]["query"] == "The Matrix"
        assert kwargs["params"]["year"] == 1999
        assert kwargs["params"]["api_key"] == "test-key"
        assert kwargs["timeout"] == 10

    def test_year_omitted_when_unknown(self, session, limiter):
        session.get.return_value = _response(200, {"results": []})
        _client(session, limiter).search("Heat")
        _, kwargs = session.get.call_args
        assert "year" not in kwargs["params"]

    def test_empty_query_makes_no_request(self, session, limiter):
        assert _client(session, limiter).search("   ") == []
        session.get.assert_not_called()

    def test_malformed_results_skipped(self, session, limiter):
        session.get.return_value = _response(200, {"results": [{"title": "no id"}, MATRIX]})
        matches = _client(session, limiter).search("The Matrix")
        assert [m.external_id for m in matches] == [603]

    def test_limit(self, session, limiter):
        results = [{**MATRIX, "id": i} for i in range(1, 8)]
        session.get.return_value = _response(200, {"results": results})
        assert len(_client(session, limiter).search("The Matrix", limit=3)) == 3

    def test_rate_limited(self, session, limiter):
        session.get.return_value = _response(200, {"results": []})
        _client(session, limiter, rate_limit=0.5).search("Heat")
        limiter.wait.assert_called_once_with("catalog", 0.5)


class TestFailures:
    def test_missing_api_key(self, session, limiter):
        client = CatalogClient("", session=session, limiter=limiter)
        with pytest.raises(CatalogUnavailableError, match="API key"):
            client.search("The Matrix")
        session.get.assert_not_called()

    def test_retries_transient_then_succeeds(self, session, limiter):
        session.get.side_effect = [
            _response(503),
            requests.ConnectionError("reset"),
            _response(200, {"results": [MATRIX]}),
        ]
        matches = _client(session, limiter, max_retries=3).search("The Matrix")
        assert len(matches) == 1
        assert session.get.call_count == 3

    def test_exhausted_retries_raise_unavailable(self, session, limiter):
        session.get.return_value = _response(500)
        with pytest.raises(CatalogUnavailableError, match="after 3 attempts"):
            _client(session, limiter, max_retries=3).search("The Matrix")
        assert session.get.call_count == 3

    def test_rate_limit_response_is_retried(self, session, limiter):
        session.get.side_effect = [_response(429), _response(200, {"results": []})]
        assert _client(session, limiter).search("Heat") == []
        assert session.get.call_count == 2

    def test_auth_failure_not_retried(self, session, limiter):
        session.get.return_value = _response(401)
        with pytest.raises(CatalogUnavailableError, match="HTTP 401"):
            _client(session, limiter).search("The Matrix")
        assert session.get.call_count == 1

    def test_backoff_is_linear(self, session, limiter):
        session.get.return_value = _response(502)
        client = _client(session, limiter, max_retries=3, retry_backoff=1.5)
        with patch("marquee.core.catalog_client.time.sleep") as sleep:
            with pytest.raises(CatalogUnavailableError):
                client.search("The Matrix")
        assert [c.args[0] for c in sleep.call_args_list] == [1.5, 3.0]

    def test_search_404_is_unavailable(self, session, limiter):
        session.get.return_value = _response(404)
        with pytest.raises(CatalogUnavailableError):
            _client(session, limiter).search("The Matrix")

    @pytest.mark.parametrize("payload", [[], "oops", 42])
    def test_non_object_body_is_unavailable(self, session, limiter, payload):
        session.get.return_value = _response(200, payload)
        with pytest.raises(CatalogUnavailableError):
            _client(session, limiter).search("The Matrix")
        assert session.get.call_count == 1

    def test_results_not_a_list_is_unavailable(self, session, limiter):
        session.get.return_value = _response(200, {"results": {"id": 603}})
        with pytest.raises(CatalogUnavailableError):
            _client(session, limiter).search("The Matrix")

    def test_non_object_details_is_unavailable(self, session, limiter):
        session.get.return_value = _response(200, [MATRIX])
        with pytest.raises(CatalogUnavailableError):
            _client(session, limiter).get_details(603)


class TestDetails:
    def test_details(self, session, limiter):
        payload = {**MATRIX, "genres": [{"id": 28, "name": "Action"}], "runtime": 136}
        session.get.return_value = _response(200, payload)
        match = _client(session, limiter).get_details(603)
        assert match.genres == ["Action"]
        assert match.runtime == 136
        args, kwargs = session.get.call_args
        assert args[0].endswith("/movie/603")
        assert kwargs["params"]["append_to_response"] == "credits,videos"

    def test_unknown_id_is_none(self, session, limiter):
        session.get.return_value = _response(404)
        assert _client(session, limiter).get_details(999999) is None

    def test_invalid_id_is_none(self, session, limiter):
        assert _client(session, limiter).get_details("abc") is None
        session.get.assert_not_called()


class TestCache:
    def test_second_search_served_from_cache(self, session, limiter, db):
        cache = ApiCacheRepository(db.connection, db.lock)
        session.get.return_value = _response(200, {"results": [MATRIX]})
        client = _client(session, limiter, api_cache=cache)

        first = client.search("The Matrix", 1999)
        second = client.search("the matrix", 1999)

        assert session.get.call_count == 1
        assert [m.external_id for m in first] == [m.external_id for m in second]

    def test_failures_are_not_cached(self, session, limiter, db):
        cache = ApiCacheRepository(db.connection, db.lock)
        session.get.side_effect = [_response(401), _response(200, {"results": [MATRIX]})]
        client = _client(session, limiter, api_cache=cache)

        with pytest.raises(CatalogUnavailableError):
            client.search("The Matrix")
        assert len(client.search("The Matrix")) == 1

    def test_malformed_details_not_cached(self, session, limiter, db):
        cache = ApiCacheRepository(db.connection, db.lock)
        session.get.side_effect = [_response(200, {"title": "no id"}), _response(200, MATRIX)]
        client = _client(session, limiter, api_cache=cache)

        with pytest.raises(CatalogUnavailableError):
            client.get_details(603)
        match = client.get_details(603)

        assert match.external_id == 603
        assert session.get.call_count == 2

    def test_malformed_search_not_cached(self, session, limiter, db):
        cache = ApiCacheRepository(db.connection, db.lock)
        session.get.side_effect = [
            _response(200, {"results": "bad"}),
            _response(200, {"results": [MATRIX]}),
        ]
        client = _client(session, limiter, api_cache=cache)

        with pytest.raises(CatalogUnavailableError):
            client.search("The Matrix")
        assert len(client.search("The Matrix")) == 1
        assert session.get.call_count == 2

    def test_cache_write_failure_is_ignored(self, session, limiter):
        cache = MagicMock()
        cache.get.return_value = None
        cache.put.side_effect = RuntimeError("disk full")
        session.get.return_value = _response(200, {"results": [MATRIX]})
        assert len(_client(session, limiter, api_cache=cache).search("The Matrix")) == 1

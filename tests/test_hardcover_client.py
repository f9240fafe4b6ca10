"""Tests for the Hardcover GraphQL client"""

from unittest.mock import MagicMock

import pytest
import requests

from shelfbridge.hardcover_client import HardcoverAPIError, HardcoverClient


def response(payload) -> MagicMock:
    mock = MagicMock()
    mock.json.return_value = payload
    mock.raise_for_status.return_value = None
    return mock


@pytest.fixture
def client() -> HardcoverClient:
    client = HardcoverClient("token", max_retries=3, retry_delay=0, rate_limit_per_minute=6000)
    client.session = MagicMock()
    return client


class TestHardcoverClient:
    def test_auth_header(self) -> None:
        client = HardcoverClient("secret", rate_limit_per_minute=6000)

        assert client.session.headers["Authorization"] == "Bearer secret"

    def test_search_by_title_author(self, client: HardcoverClient) -> None:
        client.session.post.return_value = response({
            "data": {
                "books": [
                    {
                        "id": 50,
                        "title": "Project Hail Mary",
                        "users_count": 5000,
                        "contributions": [{"author": {"name": "Andy Weir"}}],
                        "editions": [{"id": 502, "reading_format_id": 2, "audio_seconds": 58000}],
                    }
                ]
            }
        })

        candidates = client.search_by_title_author("Project Hail Mary", "Andy Weir", "Ray Porter", 5)

        assert len(candidates) == 1
        assert candidates[0].id == 50
        assert candidates[0].author_names == ["Andy Weir"]
        assert candidates[0].editions[0].format == "audiobook"

        variables = client.session.post.call_args.kwargs["json"]["variables"]
        assert variables == {"title": "%Project Hail Mary%", "limit": 5, "author": "%Andy Weir%"}

    def test_search_without_author(self, client: HardcoverClient) -> None:
        client.session.post.return_value = response({"data": {"books": []}})

        assert client.search_by_title_author("Dune", "") == []
        payload = client.session.post.call_args.kwargs["json"]
        assert "author" not in payload["variables"]
        assert "$author" not in payload["query"]

    @pytest.mark.parametrize("requested,sent", [(50, 20), (0, 1), (-3, 1), (7, 7)])
    def test_search_limit_capped(self, client: HardcoverClient, requested, sent) -> None:
        client.session.post.return_value = response({"data": {"books": []}})

        client.search_by_title_author("Dune", "Frank Herbert", limit=requested)

        assert client.session.post.call_args.kwargs["json"]["variables"]["limit"] == sent

    def test_search_by_asin_groups_editions(self, client: HardcoverClient) -> None:
        book = {"id": 50, "title": "Project Hail Mary"}
        client.session.post.return_value = response({
            "data": {"editions": [{"id": 500, "asin": "B08FHBV4ZX", "book": book}]}
        })

        candidates = client.search_by_asin("B08FHBV4ZX")

        assert [c.id for c in candidates] == [50]
        assert candidates[0].editions[0].asin == "B08FHBV4ZX"

    def test_search_by_isbn_empty(self, client: HardcoverClient) -> None:
        client.session.post.return_value = response({"data": {"editions": []}})

        assert client.search_by_isbn("9780593135204") == []

    def test_graphql_errors_raise(self, client: HardcoverClient) -> None:
        client.session.post.return_value = response({"errors": [{"message": "bad query"}]})

        with pytest.raises(HardcoverAPIError):
            client.search_by_asin("B08FHBV4ZX")

    def test_invalid_json_raises(self, client: HardcoverClient) -> None:
        bad = MagicMock()
        bad.json.side_effect = ValueError("no json")
        client.session.post.return_value = bad

        with pytest.raises(HardcoverAPIError):
            client.search_by_asin("B08FHBV4ZX")

    def test_http_error_raises(self, client: HardcoverClient) -> None:
        failed = MagicMock()
        failed.raise_for_status.side_effect = requests.exceptions.HTTPError("500")
        client.session.post.return_value = failed

        with pytest.raises(HardcoverAPIError):
            client.get_current_user()
        assert client.session.post.call_count == 1

    def test_connection_errors_retried(self, client: HardcoverClient) -> None:
        client.session.post.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            response({"data": {"me": [{"id": 1, "username": "alice"}]}}),
        ]

        assert client.get_current_user() == {"id": 1, "username": "alice"}
        assert client.session.post.call_count == 2

    def test_retries_exhausted(self, client: HardcoverClient) -> None:
        client.session.post.side_effect = requests.exceptions.Timeout("slow")

        with pytest.raises(HardcoverAPIError):
            client.get_current_user()
        assert client.session.post.call_count == 3

    def test_connection_check(self, client: HardcoverClient) -> None:
        client.session.post.return_value = response({"data": {"me": {"id": 1}}})
        assert client.test_connection() is True

        client.session.post.side_effect = requests.exceptions.Timeout("slow")
        assert client.test_connection() is False

    def test_user_books_paginated(self, client: HardcoverClient) -> None:
        first_page = [{"id": i, "book": {"id": i}} for i in range(100)]
        second_page = [{"id": 100 + i, "book": {"id": 100 + i}} for i in range(3)]
        client.session.post.side_effect = [
            response({"data": {"me": [{"user_books": first_page}]}}),
            response({"data": {"me": [{"user_books": second_page}]}}),
        ]

        books = client.get_user_books()

        assert len(books) == 103
        offsets = [c.kwargs["json"]["variables"]["offset"] for c in client.session.post.call_args_list]
        assert offsets == [0, 100]

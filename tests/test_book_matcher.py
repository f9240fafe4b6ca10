"""Tests for the tiered book matcher and its strategies"""

import sqlite3
from unittest.mock import MagicMock

import pytest

from shelfbridge.book_cache import BookCache
from shelfbridge.book_matcher import BookMatcher
from shelfbridge.hardcover_client import HardcoverClient
from shelfbridge.identifiers import build_lookup
from shelfbridge.library import UserLibrary
from shelfbridge.models import Candidate, Edition, MatchKind, SourceBook, Tier

USER_BOOK = {
    "id": 100,
    "edition_id": 500,
    "status_id": 2,
    "book": {
        "id": 50,
        "title": "Project Hail Mary",
        "contributions": [{"author": {"name": "Andy Weir"}}],
        "editions": [
            {"id": 500, "asin": "B08FHBV4ZX", "isbn_13": "9780593135204", "reading_format_id": 2},
            {"id": 501, "reading_format_id": 4},
            {"id": 502, "reading_format_id": 2, "audio_seconds": 58000},
        ],
    },
}

SEARCH_RESULT = {
    "id": 50,
    "title": "Project Hail Mary",
    "users_count": 5000,
    "contributions": [{"author": {"name": "Andy Weir"}}],
    "editions": [
        {"id": 501, "reading_format_id": 4, "users_count": 40},
        {"id": 502, "reading_format_id": 2, "audio_seconds": 58000, "users_count": 300},
    ],
}

PHM = SourceBook(title="Project Hail Mary", author="Andy Weir", narrator="Ray Porter", duration_seconds=58000)


def make_client(title_results=None, asin_results=None) -> MagicMock:
    client = MagicMock()
    client.search_by_title_author.return_value = title_results or []
    client.search_by_asin.return_value = asin_results or []
    return client


def make_matcher(client, user_books=(USER_BOOK,), cache=None, **config) -> BookMatcher:
    library = UserLibrary(user_books)
    return BookMatcher(
        build_lookup(library.entries()),
        library,
        client,
        cache=cache,
        user_id="alice",
        title_author_config=config or None,
    )


class TestIdentifierTiers:
    def test_asin_hit_skips_remote_calls(self) -> None:
        client = make_client()
        outcome = make_matcher(client).find_match(SourceBook(title="PHM", asin="B08FHBV4ZX"))

        assert outcome.matched
        assert outcome.match.kind == MatchKind.EXACT
        assert outcome.match.tier == Tier.ASIN
        assert outcome.match.edition.id == 500
        assert outcome.match.library_entry.id == 100
        client.search_by_asin.assert_not_called()
        client.search_by_title_author.assert_not_called()

    def test_isbn_hit(self) -> None:
        client = make_client()
        outcome = make_matcher(client).find_match(SourceBook(title="PHM", isbn="978-0-593-13520-4"))

        assert outcome.match.tier == Tier.ISBN
        assert outcome.match.identifier_type == "isbn"
        client.search_by_asin.assert_not_called()
        client.search_by_title_author.assert_not_called()

    def test_asin_other_edition_of_library_book(self) -> None:
        remote = Candidate(id=50, title="Project Hail Mary", editions=(Edition(id=777, asin="B000000099"),))
        client = make_client(asin_results=[remote])
        outcome = make_matcher(client).find_match(SourceBook(title="PHM", asin="B000000099"))

        assert outcome.match.kind == MatchKind.CROSS_EDITION
        assert outcome.match.library_entry.id == 100
        assert outcome.match.edition.id == 777
        assert outcome.match.is_exact

    def test_asin_for_book_not_in_library(self) -> None:
        remote = {"id": 900, "asin": "B000000099", "book": {"id": 99, "title": "Artemis"}}
        client = make_client(asin_results=[remote])
        outcome = make_matcher(client).find_match(SourceBook(title="Artemis", asin="B000000099"))

        assert outcome.match.kind == MatchKind.NEEDS_CREATE
        assert outcome.match.needs_create
        assert outcome.match.candidate.id == 99
        assert outcome.match.edition.id == 900
        assert outcome.match.library_entry is None

    def test_failing_tier_falls_through(self) -> None:
        client = make_client(title_results=[SEARCH_RESULT])
        client.search_by_asin.side_effect = RuntimeError("API down")
        outcome = make_matcher(client).find_match(
            SourceBook(title="Project Hail Mary", author="Andy Weir", asin="B000000099")
        )

        assert outcome.match.tier == Tier.TITLE_AUTHOR
        assert outcome.match.kind == MatchKind.SCORED

    def test_raw_item_accepted(self) -> None:
        item = {"media": {"metadata": {"title": "Project Hail Mary", "asin": "B08FHBV4ZX"}}}
        outcome = make_matcher(make_client()).find_match(item)

        assert outcome.match.kind == MatchKind.EXACT
        assert outcome.metadata.identifiers.asin == "B08FHBV4ZX"
        assert outcome.metadata.author == "Unknown Author"


class TestTitleAuthorTier:
    def test_scored_match_in_library(self) -> None:
        client = make_client(title_results=[SEARCH_RESULT])
        outcome = make_matcher(client).find_match(PHM)

        match = outcome.match
        assert match.kind == MatchKind.SCORED
        assert match.identity_score.total_score == pytest.approx(92.0, abs=0.1)
        assert match.identity_score.confidence == "high"
        assert match.edition.id == 502
        assert match.edition_selection.detected_format == "audiobook"
        assert match.library_entry.id == 100
        client.search_by_title_author.assert_called_once_with("Project Hail Mary", "Andy Weir", "Ray Porter", 5)

    def test_scored_match_not_in_library(self) -> None:
        outcome = make_matcher(make_client(title_results=[SEARCH_RESULT]), user_books=()).find_match(PHM)

        assert outcome.match.kind == MatchKind.NEEDS_CREATE
        assert outcome.match.candidate.id == 50

    def test_below_threshold(self) -> None:
        other = dict(SEARCH_RESULT, id=60, title="The Martian", users_count=0, editions=[])
        outcome = make_matcher(make_client(title_results=[other])).find_match(PHM)

        assert outcome.match is None

    def test_strict_threshold_rejects(self) -> None:
        client = make_client(title_results=[SEARCH_RESULT])
        outcome = make_matcher(client, confidence_threshold=0.95).find_match(PHM)

        assert outcome.match is None

    def test_bad_candidate_is_isolated(self) -> None:
        client = make_client(title_results=[object(), SEARCH_RESULT])
        outcome = make_matcher(client).find_match(PHM)

        assert outcome.match.candidate.id == 50

    def test_disabled(self) -> None:
        client = make_client(title_results=[SEARCH_RESULT])
        matcher = make_matcher(client, enabled=False)
        outcome = matcher.find_match(PHM)

        assert outcome.match is None
        assert [int(strategy.tier) for strategy in matcher.strategies] == [1, 2]
        client.search_by_title_author.assert_not_called()

    def test_missing_author_searches_by_title_only(self) -> None:
        client = make_client()
        outcome = make_matcher(client).find_match(SourceBook(title="Project Hail Mary", author=""))

        assert outcome.match is None
        assert outcome.metadata.author == "Unknown Author"
        client.search_by_title_author.assert_called_once_with("Project Hail Mary", None, None, 5)

    def test_missing_author_sends_no_author_filter(self) -> None:
        client = HardcoverClient("token", retry_delay=0, rate_limit_per_minute=6000)
        client.session = MagicMock()
        client.session.post.return_value.json.return_value = {"data": {"books": []}}

        make_matcher(client).find_match(SourceBook(title="Project Hail Mary"))

        payload = client.session.post.call_args.kwargs["json"]
        assert payload["variables"] == {"title": "%Project Hail Mary%", "limit": 5}
        assert "$author" not in payload["query"]

    def test_missing_title_skips_search(self) -> None:
        cache = MagicMock()
        client = make_client(title_results=[SEARCH_RESULT])
        outcome = make_matcher(client, cache=cache).find_match(SourceBook(title="", author="Andy Weir"))

        assert outcome.match is None
        assert outcome.metadata.title == "Unknown Title"
        client.search_by_title_author.assert_not_called()
        cache.generate_title_author_identifier.assert_not_called()
        cache.store_edition_mapping.assert_not_called()

    def test_unknown_metadata_reported(self) -> None:
        outcome = make_matcher(make_client()).find_match({})

        assert outcome.match is None
        assert outcome.metadata.title == "Unknown Title"
        assert outcome.metadata.author == "Unknown Author"


class TestTitleAuthorCache:
    def test_cache_hit_skips_search(self) -> None:
        cache = MagicMock()
        cache.generate_title_author_identifier.return_value = "project hail mary_andy weir"
        cache.get_cached_book_info.return_value = {"exists": True, "edition_id": 500}
        client = make_client(title_results=[SEARCH_RESULT])

        outcome = make_matcher(client, cache=cache).find_match(PHM)

        assert outcome.match.kind == MatchKind.CACHED
        assert outcome.match.edition.id == 500
        assert outcome.match.identity_score.total_score == 85.0
        client.search_by_title_author.assert_not_called()
        cache.get_cached_book_info.assert_called_once_with(
            "alice", "project hail mary_andy weir", "Project Hail Mary", "title_author"
        )

    def test_cached_edition_not_in_library(self) -> None:
        cache = MagicMock()
        cache.generate_title_author_identifier.return_value = "key"
        cache.get_cached_book_info.return_value = {"exists": True, "edition_id": 999}

        outcome = make_matcher(make_client(), cache=cache).find_match(PHM)

        assert outcome.match.kind == MatchKind.NEEDS_CREATE
        assert outcome.match.edition.id == 999
        assert outcome.match.candidate is None

    def test_cache_read_failure_falls_back_to_search(self) -> None:
        cache = MagicMock()
        cache.generate_title_author_identifier.return_value = "key"
        cache.get_cached_book_info.side_effect = sqlite3.OperationalError("locked")
        client = make_client(title_results=[SEARCH_RESULT])

        outcome = make_matcher(client, cache=cache).find_match(PHM)

        assert outcome.match.kind == MatchKind.SCORED
        client.search_by_title_author.assert_called_once()

    def test_cache_write_failure_keeps_match(self) -> None:
        cache = MagicMock()
        cache.generate_title_author_identifier.return_value = "key"
        cache.get_cached_book_info.return_value = {"exists": False}
        cache.store_edition_mapping.side_effect = sqlite3.OperationalError("disk full")

        outcome = make_matcher(make_client(title_results=[SEARCH_RESULT]), cache=cache).find_match(PHM)

        assert outcome.match.kind == MatchKind.SCORED
        cache.store_edition_mapping.assert_called_once()

    def test_scored_match_is_cached_and_replayed(self, tmp_path) -> None:
        cache = BookCache(str(tmp_path / "cache.db"))
        client = make_client(title_results=[SEARCH_RESULT])
        matcher = make_matcher(client, cache=cache)

        first = matcher.find_match(PHM)
        key = cache.generate_title_author_identifier("Project Hail Mary", "Andy Weir")
        assert first.match.kind == MatchKind.SCORED
        assert cache.get_edition_for_book("alice", key, "Project Hail Mary", "title_author") == 502
        assert cache.get_cached_book_info("alice", key, "Project Hail Mary", "title_author")["author"] == "Andy Weir"

        second = matcher.find_match(PHM)
        assert second.match.kind == MatchKind.CACHED
        assert second.match.edition.id == 502
        assert client.search_by_title_author.call_count == 1

    def test_cache_stores_hardcover_author(self) -> None:
        cache = MagicMock()
        cache.generate_title_author_identifier.return_value = "key"
        cache.get_cached_book_info.return_value = {"exists": False}
        source = SourceBook(title="Project Hail Mary", author="andy weir", narrator="Ray Porter")

        make_matcher(make_client(title_results=[SEARCH_RESULT]), cache=cache).find_match(source)

        cache.store_edition_mapping.assert_called_once_with(
            "alice", "key", "Project Hail Mary", 502, "title_author", "Andy Weir"
        )

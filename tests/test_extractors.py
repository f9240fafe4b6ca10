"""Tests for metadata extraction from Audiobookshelf and Hardcover payloads"""

import pytest

from shelfbridge.extractors import (
    candidate_from_hardcover,
    candidates_from_hardcover,
    detect_source_format,
    extract_author,
    extract_contributors,
    extract_edition_format,
    extract_publication_year,
    extract_series,
    library_entry_from_hardcover,
    parse_duration,
    source_book_from_abs,
)
from shelfbridge.models import SourceBook


class TestAudiobookshelfExtraction:
    def test_source_book_from_item(self) -> None:
        item = {
            "id": "li_1",
            "mediaType": "book",
            "libraryType": "book",
            "progress_percentage": 42.5,
            "media": {
                "duration": 57600.5,
                "audioFiles": [{"ino": "1"}],
                "metadata": {
                    "title": "Project Hail Mary",
                    "authors": [{"name": "Andy Weir"}],
                    "narrators": ["Ray Porter"],
                    "series": [{"name": "Standalone", "sequence": "1"}],
                    "publishedYear": "2021",
                    "asin": "B08FHBV4ZX",
                },
            },
        }
        source = source_book_from_abs(item)

        assert source.title == "Project Hail Mary"
        assert source.author == "Andy Weir"
        assert source.narrator == "Ray Porter"
        assert source.series.name == "Standalone"
        assert source.series.sequence == 1.0
        assert source.year == 2021
        assert source.duration_seconds == 57600.5
        assert source.has_audio_files
        assert source.asin == "B08FHBV4ZX"
        assert source.progress_percentage == 42.5
        assert source.item_id == "li_1"

    def test_author_list_joined(self) -> None:
        assert extract_author({"metadata": {"authors": ["Terry Pratchett", "Neil Gaiman"]}}) == (
            "Terry Pratchett, Neil Gaiman"
        )

    def test_author_name_string(self) -> None:
        assert extract_author({"media": {"metadata": {"authorName": "Andy Weir"}}}) == "Andy Weir"

    def test_series_with_number_suffix(self) -> None:
        series = extract_series({"media": {"metadata": {"seriesName": "Discworld #2"}}})

        assert series.name == "Discworld"
        assert series.sequence == 2.0

    def test_series_sequence_from_separate_field(self) -> None:
        series = extract_series({"metadata": {"series": "Mistborn", "sequence": "3"}})

        assert series.sequence == 3.0

    @pytest.mark.parametrize(
        "value,expected",
        [("2021-05-04", 2021), (1965, 1965), ("year", None), (12, None), (float("nan"), None), (5000, None)],
    )
    def test_publication_year(self, value, expected) -> None:
        assert extract_publication_year({"publishedYear": value}) == expected

    def test_missing_fields(self) -> None:
        source = source_book_from_abs({})

        assert source.title == ""
        assert source.author == ""
        assert source.narrator is None
        assert source.series.name is None


class TestDetectSourceFormat:
    @pytest.mark.parametrize(
        "source,expected",
        [
            (SourceBook(media_type="audiobook"), "audiobook"),
            (SourceBook(media_type="ebook", duration_seconds=100), "ebook"),
            (SourceBook(library_type="audiobooks"), "audiobook"),
            (SourceBook(library_type="ebook"), "ebook"),
            (SourceBook(media_type="book", duration_seconds=3600), "audiobook"),
            (SourceBook(narrator="Ray Porter"), "audiobook"),
            (SourceBook(has_audio_files=True), "audiobook"),
            (SourceBook(media_type="book", has_ebook_file=True), "ebook"),
            (SourceBook(ebook_format="EPUB"), "ebook"),
            (SourceBook(media_type="book"), "audiobook"),
            (SourceBook(), "ebook"),
        ],
    )
    def test_detection(self, source, expected) -> None:
        assert detect_source_format(source) == expected


class TestHardcoverExtraction:
    def test_contributor_roles(self) -> None:
        record = {
            "contributions": [
                {"author": {"name": "Andy Weir"}},
                {"author": {"name": "Ray Porter"}, "contribution": "Narrator"},
            ]
        }
        contributors = extract_contributors(record)

        assert [c.name for c in contributors] == ["Andy Weir", "Ray Porter"]
        assert contributors[1].is_narrator()
        assert not contributors[1].is_author()

    def test_cached_contributors_fallback(self) -> None:
        record = {"cached_contributors": [{"author": {"name": "Andy Weir"}}], "author_names": ["Other"]}

        assert [c.name for c in extract_contributors(record)] == ["Andy Weir"]

    def test_author_names_fallback(self) -> None:
        record = {"contributions": [], "author_names": ["Andy Weir", ""]}

        assert [c.name for c in extract_contributors(record)] == ["Andy Weir"]

    def test_narrator_only_step_is_skipped(self) -> None:
        record = {
            "contributions": [{"author": {"name": "Ray Porter"}, "contribution": "Narrator"}],
            "author_names": ["Andy Weir"],
        }

        assert [c.name for c in extract_contributors(record)] == ["Andy Weir"]

    @pytest.mark.parametrize(
        "record,expected",
        [
            ({"reading_format": {"format": "Listened"}}, "audiobook"),
            ({"reading_format": {"format": "Ebook"}}, "ebook"),
            ({"reading_format": {"format": "Read"}}, "physical"),
            ({"reading_format_id": 2}, "audiobook"),
            ({"reading_format_id": 4}, "ebook"),
            ({"physical_format": "Audio CD"}, "audiobook"),
            ({"edition_format": "Kindle Edition"}, "ebook"),
            ({"physical_format": "Paperback"}, "physical"),
            ({"audio_seconds": 3600}, "audiobook"),
            ({}, None),
        ],
    )
    def test_edition_format(self, record, expected) -> None:
        assert extract_edition_format(record) == expected

    def test_parse_duration(self) -> None:
        assert parse_duration("10h 30m") == 37800.0
        assert parse_duration("90") == 90.0
        assert parse_duration(0) is None
        assert parse_duration("soon") is None

    def test_book_record(self) -> None:
        record = {
            "id": 50,
            "title": "Project Hail Mary",
            "release_year": 2021,
            "users_count": 1200,
            "contributions": [{"author": {"name": "Andy Weir"}}],
            "book_series": [{"position": 1, "series": {"name": "Standalone"}}],
            "editions": [{"id": 500, "asin": "B08FHBV4ZX", "reading_format_id": 2, "audio_seconds": 58000}],
        }
        candidate = candidate_from_hardcover(record)

        assert candidate.id == 50
        assert candidate.author_names == ["Andy Weir"]
        assert candidate.activity == 1200
        assert candidate.year == 2021
        assert candidate.series.name == "Standalone"
        assert candidate.editions[0].format == "audiobook"
        assert candidate.editions[0].audio_seconds == 58000

    def test_edition_hit_becomes_candidate(self) -> None:
        hit = {
            "id": 500,
            "asin": "B08FHBV4ZX",
            "book": {"id": 50, "title": "Project Hail Mary", "contributions": [{"author": {"name": "Andy Weir"}}]},
        }
        candidate = candidate_from_hardcover(hit)

        assert candidate.id == 50
        assert candidate.title == "Project Hail Mary"
        assert candidate.author_names == ["Andy Weir"]
        assert [edition.id for edition in candidate.editions] == [500]

    def test_edition_hits_grouped_by_book(self) -> None:
        book = {"id": 50, "title": "Project Hail Mary"}
        hits = [
            {"id": 500, "asin": "B08FHBV4ZX", "book": book},
            {"id": 600, "isbn_13": "9780593135204", "book": {"id": 60, "title": "Other"}},
            {"id": 501, "isbn_10": "0593135202", "book": book},
            "garbage",
        ]
        candidates = candidates_from_hardcover(hits)

        assert [c.id for c in candidates] == [50, 60]
        assert [e.id for e in candidates[0].editions] == [500, 501]

    def test_library_entry_edition_from_nested_edition(self) -> None:
        row = {"id": 100, "status_id": 2, "edition": {"id": 500}, "book": {"id": 50, "title": "Project Hail Mary"}}
        entry = library_entry_from_hardcover(row)

        assert entry.id == 100
        assert entry.edition_id == 500
        assert entry.book_id == 50
        assert entry.status_id == 2

    def test_library_entry_without_book(self) -> None:
        assert library_entry_from_hardcover({"id": 100}) is None

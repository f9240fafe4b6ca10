"""Tests for identifier extraction and the lookup table"""

from shelfbridge.identifiers import build_lookup, extract_identifiers
from shelfbridge.models import Candidate, Edition, LibraryEntry, SourceBook


def make_entry(entry_id, book_id, *editions) -> LibraryEntry:
    return LibraryEntry(id=entry_id, book=Candidate(id=book_id, title=f"Book {book_id}", editions=editions))


class TestExtractIdentifiers:
    def test_nested_media_metadata(self) -> None:
        item = {"media": {"metadata": {"isbn": "978-0-593-13520-4", "asin": "b08fhbv4zx"}}}
        identifiers = extract_identifiers(item)

        assert identifiers.isbn == "9780593135204"
        assert identifiers.asin == "B08FHBV4ZX"

    def test_top_level_wins_over_nested(self) -> None:
        item = {
            "asin": "B000000001",
            "media": {"metadata": {"asin": "B000000002"}},
        }
        assert extract_identifiers(item).asin == "B000000001"

    def test_invalid_values_are_skipped(self) -> None:
        item = {
            "isbn": "not-an-isbn",
            "metadata": {"isbn_13": "9780593135204"},
            "asin": "short",
            "media": {"metadata": {"asin": "B08FHBV4ZX"}},
        }
        identifiers = extract_identifiers(item)

        assert identifiers.isbn == "9780593135204"
        assert identifiers.asin == "B08FHBV4ZX"

    def test_isbn10_is_not_an_asin(self) -> None:
        assert extract_identifiers({"asin": "0747532699"}).asin is None

    def test_nothing_found(self) -> None:
        identifiers = extract_identifiers({"media": {"metadata": {"title": "Dune"}}})

        assert identifiers.isbn is None
        assert identifiers.asin is None
        assert not identifiers.any()

    def test_non_dict_input(self) -> None:
        assert not extract_identifiers(None).any()
        assert not extract_identifiers(["asin"]).any()

    def test_source_book_fallback(self) -> None:
        source = SourceBook(title="Project Hail Mary", isbn="9780593135204", asin="B08FHBV4ZX")
        identifiers = extract_identifiers(source)

        assert identifiers.isbn == "9780593135204"
        assert identifiers.asin == "B08FHBV4ZX"

    def test_source_book_raw_preferred(self) -> None:
        source = SourceBook(asin="B000000002", raw={"media": {"metadata": {"asin": "B000000001"}}})

        assert extract_identifiers(source).asin == "B000000001"


class TestLookupTable:
    def test_every_identifier_indexed(self) -> None:
        edition = Edition(id=500, asin="B08FHBV4ZX", isbn_10="0593135202", isbn_13="978-0-593-13520-4")
        table = build_lookup([make_entry(100, 50, edition)])

        assert table.find_by_asin("B08FHBV4ZX").entry.id == 100
        assert table.find_by_isbn("9780593135204").edition.id == 500
        assert table.find_by_isbn("0593135202").identifier_type == "isbn"
        assert table.find_by_asin("B08FHBV4ZX").identifier_type == "asin"
        assert len(table) == 3

    def test_missing_and_empty_keys(self) -> None:
        table = build_lookup([make_entry(100, 50, Edition(id=500, asin="B08FHBV4ZX"))])

        assert table.find_by_asin("B000000000") is None
        assert table.find_by_asin(None) is None
        assert table.find_by_isbn("") is None

    def test_malformed_identifiers_not_indexed(self) -> None:
        table = build_lookup([make_entry(100, 50, Edition(id=500, asin="nope", isbn_13="123"))])

        assert len(table) == 0

    def test_last_write_wins(self) -> None:
        first = make_entry(1, 10, Edition(id=11, asin="B08FHBV4ZX"))
        second = make_entry(2, 20, Edition(id=21, asin="B08FHBV4ZX"))
        table = build_lookup([first, second])

        assert table.find_by_asin("B08FHBV4ZX").entry.id == 2

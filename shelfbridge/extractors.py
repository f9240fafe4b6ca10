"""
Extraction of book metadata from raw Audiobookshelf and Hardcover payloads

Neither API returns a single stable shape: the same concept can live at the
top level, under ``metadata`` or under ``media.metadata`` (Audiobookshelf),
or under several alternative keys (Hardcover). Each field is therefore read
through an explicit, ordered fallback chain and the first non-empty value
wins.
"""

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import (
    AUDIOBOOK,
    EBOOK,
    PHYSICAL,
    Candidate,
    Contributor,
    Edition,
    LibraryEntry,
    SeriesInfo,
    SourceBook,
)
from .utils import to_finite_number

logger = logging.getLogger(__name__)

MIN_YEAR = 1000
MAX_YEAR = 3000

TITLE_FIELDS = ("title", "name")
AUTHOR_FIELDS = ("author", "authorName", "authors")
NARRATOR_FIELDS = ("narrator", "narratorName", "narrators", "voice", "voiceActor")
SERIES_FIELDS = ("series", "seriesName")
SEQUENCE_FIELDS = ("sequence", "seriesSequence", "bookNumber", "volume")
YEAR_FIELDS = ("publishedYear", "year", "publicationYear", "releaseDate")
DURATION_FIELDS = ("duration", "length", "totalLength")
PAGE_FIELDS = ("pages", "numPages", "pageCount")
ASIN_FIELDS = ("asin", "amazonASIN", "amazon_asin", "ASIN")
ISBN_FIELDS = ("isbn", "isbn_13", "isbn_10", "isbn13", "isbn10", "ISBN")

ACTIVITY_FIELDS = ("activity", "popularity", "rating_count", "ratings_count", "users_count")
RELEASE_YEAR_FIELDS = ("release_year", "year", "release_date", "publication_year")
EDITION_DURATION_FIELDS = ("audio_seconds", "duration", "length", "runtime", "duration_seconds")
EDITION_HINT_FIELDS = ("asin", "isbn_10", "isbn_13", "audio_seconds", "reading_format", "reading_format_id", "edition_format")

# Hardcover reading_format ids
READING_FORMAT_IDS = {1: PHYSICAL, 2: AUDIOBOOK, 4: EBOOK}

AUDIO_KEYWORDS = ("audio", "listen", "mp3", "aac", "m4b", " cd")
EBOOK_KEYWORDS = ("ebook", "e-book", "digital", "kindle", "epub", "pdf", "mobi")
PHYSICAL_KEYWORDS = ("physical", "paperback", "hardcover", "hardback", "mass market", "read")

_SERIES_SEQUENCE_RE = re.compile(r"^(?P<name>.*?)\s*#\s*(?P<sequence>\d+(?:\.\d+)?)\s*$")
_YEAR_RE = re.compile(r"^\s*(\d{4})")
_DURATION_PART_RE = {
    3600: re.compile(r"(\d+)\s*h"),
    60: re.compile(r"(\d+)\s*m"),
    1: re.compile(r"(\d+)\s*s"),
}


# ============================================================================
# Generic helpers
# ============================================================================


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _clean_string(value: Any) -> Optional[str]:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def source_locations(record: Any) -> List[Dict[str, Any]]:
    """Places an Audiobookshelf record keeps metadata, in priority order"""
    record = _as_dict(record)
    media = _as_dict(record.get("media"))
    return [record, _as_dict(record.get("metadata")), _as_dict(media.get("metadata"))]


def probe(record: Any, fields: Sequence[str], parse: Callable[[Any], Any] = _clean_string) -> Any:
    """
    Return the first parseable value of ``fields`` across the record's locations

    Locations are tried in order (top level, ``metadata``, ``media.metadata``)
    and within a location the fields are tried in order. ``parse`` turns a raw
    value into the wanted type or None when it is unusable.
    """
    for location in source_locations(record):
        for field_name in fields:
            value = location.get(field_name)
            if value is None or value == "" or value == []:
                continue
            parsed = parse(value)
            if parsed is not None:
                return parsed
    return None


def parse_year(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = to_finite_number(value)
        year = int(number) if number is not None else None
    elif isinstance(value, str):
        match = _YEAR_RE.match(value)
        year = int(match.group(1)) if match else None
    else:
        year = None
    if year is None or not MIN_YEAR < year < MAX_YEAR:
        return None
    return year


def parse_positive_number(value: Any) -> Optional[float]:
    number = to_finite_number(value)
    if number is None or number <= 0:
        return None
    return number


def parse_duration(value: Any) -> Optional[float]:
    """Seconds from a number or a string such as "10h 30m" """
    if isinstance(value, str):
        number = to_finite_number(value)
        if number is not None:
            return number if number > 0 else None
        total = 0
        for multiplier, pattern in _DURATION_PART_RE.items():
            match = pattern.search(value)
            if match:
                total += int(match.group(1)) * multiplier
        return float(total) if total > 0 else None
    return parse_positive_number(value)


def _parse_pages(value: Any) -> Optional[int]:
    number = parse_positive_number(value)
    return int(number) if number is not None else None


def _parse_sequence(value: Any) -> Optional[float]:
    if isinstance(value, str):
        match = re.search(r"\d+(?:\.\d+)?", value)
        value = match.group(0) if match else None
    return to_finite_number(value)


# ============================================================================
# Audiobookshelf (source) extraction
# ============================================================================


def _parse_people(value: Any) -> Optional[str]:
    """A name, a list of names, or objects carrying ``name``/``displayName``"""
    if isinstance(value, list):
        names = []
        for person in value:
            if isinstance(person, dict):
                name = _clean_string(person.get("name") or person.get("displayName"))
            else:
                name = _clean_string(person)
            if name:
                names.append(name)
        return ", ".join(names) or None
    if isinstance(value, dict):
        return _clean_string(value.get("name") or value.get("displayName"))
    return _clean_string(value)


def _parse_series(value: Any) -> Optional[SeriesInfo]:
    if isinstance(value, list):
        for entry in value:
            series = _parse_series(entry)
            if series:
                return series
        return None
    if isinstance(value, dict):
        name = _clean_string(value.get("name"))
        if not name:
            return None
        return SeriesInfo(name=name, sequence=_parse_sequence(value.get("sequence")))
    name = _clean_string(value)
    if not name:
        return None
    match = _SERIES_SEQUENCE_RE.match(name)
    if match and match.group("name"):
        return SeriesInfo(name=match.group("name"), sequence=float(match.group("sequence")))
    return SeriesInfo(name=name)


def extract_title(record: Any) -> Optional[str]:
    return probe(record, TITLE_FIELDS)


def extract_author(record: Any) -> Optional[str]:
    return probe(record, AUTHOR_FIELDS, _parse_people)


def extract_narrator(record: Any) -> Optional[str]:
    return probe(record, NARRATOR_FIELDS, _parse_people)


def extract_series(record: Any) -> SeriesInfo:
    series = probe(record, SERIES_FIELDS, _parse_series) or SeriesInfo()
    if series.sequence is None:
        sequence = probe(record, SEQUENCE_FIELDS, _parse_sequence)
        if sequence is not None and series.name:
            series = SeriesInfo(name=series.name, sequence=sequence)
    return series


def extract_publication_year(record: Any) -> Optional[int]:
    return probe(record, YEAR_FIELDS, parse_year)


def extract_duration(record: Any) -> Optional[float]:
    record = _as_dict(record)
    for location in (record, _as_dict(record.get("media")), _as_dict(record.get("metadata"))):
        for field_name in DURATION_FIELDS:
            duration = parse_positive_number(location.get(field_name))
            if duration is not None:
                return duration
    return None


def source_book_from_abs(item: Any) -> SourceBook:
    """Build a SourceBook from an Audiobookshelf library item"""
    item = _as_dict(item)
    media = _as_dict(item.get("media"))
    ebook_file = _as_dict(media.get("ebookFile"))
    ebook_format = _clean_string(ebook_file.get("ebookFormat")) or _clean_string(media.get("ebookFormat"))

    return SourceBook(
        title=extract_title(item) or "",
        author=extract_author(item) or "",
        narrator=extract_narrator(item),
        series=extract_series(item),
        year=extract_publication_year(item),
        duration_seconds=extract_duration(item),
        pages=probe(item, PAGE_FIELDS, _parse_pages),
        media_type=_clean_string(item.get("mediaType")),
        library_type=_clean_string(item.get("libraryType")),
        has_audio_files=bool(media.get("audioFiles") or media.get("tracks") or media.get("numAudioFiles")),
        has_ebook_file=bool(ebook_file or media.get("ebookFiles")),
        ebook_format=ebook_format,
        isbn=probe(item, ISBN_FIELDS),
        asin=probe(item, ASIN_FIELDS),
        progress_percentage=to_finite_number(item.get("progress_percentage")),
        item_id=_clean_string(item.get("id")),
        raw=item,
    )


def detect_source_format(source: SourceBook) -> str:
    """
    Decide whether the user holds an audiobook or an ebook

    Audiobookshelf never tracks physical books, so the answer is one of the
    two. An explicit media or library type wins, then audio indicators, then
    ebook indicators. ``mediaType: book`` is used by both kinds of item and
    only tips the default towards audiobook.
    """
    media_type = (source.media_type or "").lower()
    if "audio" in media_type:
        return AUDIOBOOK
    if "ebook" in media_type:
        return EBOOK

    library_type = (source.library_type or "").lower()
    if "audio" in library_type:
        return AUDIOBOOK
    if "ebook" in library_type:
        return EBOOK

    if source.duration_seconds or source.narrator or source.has_audio_files:
        return AUDIOBOOK

    ebook_format = (source.ebook_format or "").lower()
    if source.has_ebook_file or any(kind in ebook_format for kind in ("epub", "pdf", "mobi", "azw")):
        return EBOOK

    if media_type == "book":
        return AUDIOBOOK
    return EBOOK


# ============================================================================
# Hardcover (destination) extraction
# ============================================================================


def _contributors(contributions: Any, person_key: str) -> List[Contributor]:
    result = []
    if not isinstance(contributions, list):
        return result
    for contribution in contributions:
        contribution = _as_dict(contribution)
        name = _clean_string(_as_dict(contribution.get(person_key)).get("name"))
        if not name:
            continue
        role = _clean_string(contribution.get("role")) or _clean_string(contribution.get("contribution"))
        result.append(Contributor(name=name, role=role))
    return result


def _from_person(record: Dict[str, Any]) -> List[Contributor]:
    return _contributors(record.get("contributions"), "person")


def _from_author(record: Dict[str, Any]) -> List[Contributor]:
    return _contributors(record.get("contributions"), "author")


def _from_book_person(record: Dict[str, Any]) -> List[Contributor]:
    return _contributors(_as_dict(record.get("book")).get("contributions"), "person")


def _from_book_author(record: Dict[str, Any]) -> List[Contributor]:
    return _contributors(_as_dict(record.get("book")).get("contributions"), "author")


def _from_cached_contributors(record: Dict[str, Any]) -> List[Contributor]:
    cached = record.get("cached_contributors")
    if not isinstance(cached, list):
        return []
    names = _contributors(cached, "author")
    if names:
        return names
    return [Contributor(name=name) for name in (_clean_string(_as_dict(c).get("name")) for c in cached) if name]


def _from_author_names(record: Dict[str, Any]) -> List[Contributor]:
    names = record.get("author_names")
    if not isinstance(names, list):
        return []
    return [Contributor(name=name) for name in (_clean_string(n) for n in names) if name]


def _from_bare_author(record: Dict[str, Any]) -> List[Contributor]:
    name = _clean_string(record.get("author"))
    return [Contributor(name=name)] if name else []


CONTRIBUTOR_CHAIN: Tuple[Callable[[Dict[str, Any]], List[Contributor]], ...] = (
    _from_person,
    _from_author,
    _from_book_person,
    _from_book_author,
    _from_cached_contributors,
    _from_author_names,
    _from_bare_author,
)


def extract_contributors(record: Any) -> Tuple[Contributor, ...]:
    """Contributors of the first chain step that yields at least one author"""
    record = _as_dict(record)
    for step in CONTRIBUTOR_CHAIN:
        contributors = step(record)
        if any(contributor.is_author() for contributor in contributors):
            return tuple(contributors)
    return ()


def extract_activity(record: Any) -> Optional[float]:
    record = _as_dict(record)
    for location in (record, _as_dict(record.get("book"))):
        for field_name in ACTIVITY_FIELDS:
            if location.get(field_name) is not None:
                return to_finite_number(location.get(field_name))
    return None


def extract_release_year(record: Any) -> Optional[int]:
    record = _as_dict(record)
    for location in (record, _as_dict(record.get("book"))):
        for field_name in RELEASE_YEAR_FIELDS:
            year = parse_year(location.get(field_name))
            if year is not None:
                return year
    return None


def extract_candidate_series(record: Any) -> SeriesInfo:
    record = _as_dict(record)
    for location in (record, _as_dict(record.get("book"))):
        book_series = location.get("book_series")
        if isinstance(book_series, list) and book_series:
            entry = _as_dict(book_series[0])
            name = _clean_string(_as_dict(entry.get("series")).get("name"))
            if name:
                return SeriesInfo(name=name, sequence=_parse_sequence(entry.get("position")))
        featured = _as_dict(location.get("featured_series"))
        name = _clean_string(_as_dict(featured.get("series")).get("name"))
        if name:
            return SeriesInfo(name=name, sequence=_parse_sequence(featured.get("position")))
        series = location.get("series")
        if isinstance(series, dict):
            name = _clean_string(series.get("name"))
            if name:
                position = series.get("sequence", series.get("position"))
                return SeriesInfo(name=name, sequence=_parse_sequence(position))
        elif _clean_string(series):
            return _parse_series(series) or SeriesInfo()
    return SeriesInfo()


def _format_from_text(text: Any) -> Optional[str]:
    text = _clean_string(text)
    if not text:
        return None
    lowered = f" {text.lower()}"
    if any(keyword in lowered for keyword in AUDIO_KEYWORDS):
        return AUDIOBOOK
    if any(keyword in lowered for keyword in EBOOK_KEYWORDS):
        return EBOOK
    if any(keyword in lowered for keyword in PHYSICAL_KEYWORDS):
        return PHYSICAL
    return lowered.strip()


def extract_edition_format(record: Any) -> Optional[str]:
    """
    Canonical format of a Hardcover edition

    Returns "audiobook", "ebook", "physical", another lowercased format label
    that could not be classified, or None when the edition carries no format
    data at all.
    """
    record = _as_dict(record)

    reading_format = record.get("reading_format")
    if isinstance(reading_format, dict):
        reading_format = reading_format.get("format")
    detected = _format_from_text(reading_format)
    if detected:
        return detected

    format_id = to_finite_number(record.get("reading_format_id"))
    if format_id is not None and int(format_id) in READING_FORMAT_IDS:
        return READING_FORMAT_IDS[int(format_id)]

    for field_name in ("physical_format", "edition_format", "format"):
        detected = _format_from_text(record.get(field_name))
        if detected:
            return detected

    if parse_positive_number(record.get("audio_seconds")):
        return AUDIOBOOK
    return None


def extract_edition_duration(record: Any) -> Optional[float]:
    record = _as_dict(record)
    for field_name in EDITION_DURATION_FIELDS:
        duration = parse_duration(record.get(field_name))
        if duration is not None:
            return duration
    return None


def edition_from_hardcover(record: Any) -> Edition:
    record = _as_dict(record)
    return Edition(
        id=record.get("id"),
        format=extract_edition_format(record),
        pages=_parse_pages(record.get("pages")),
        audio_seconds=extract_edition_duration(record),
        isbn_10=_clean_string(record.get("isbn_10")),
        isbn_13=_clean_string(record.get("isbn_13")),
        asin=_clean_string(record.get("asin")),
        users_count=to_finite_number(record.get("users_count")),
        title=_clean_string(record.get("title")),
        raw=record,
    )


def _editions(records: Any) -> Tuple[Edition, ...]:
    if not isinstance(records, list):
        return ()
    return tuple(edition_from_hardcover(record) for record in records if isinstance(record, dict))


def is_edition_record(record: Any) -> bool:
    """True for an edition search hit (an edition with its book nested inside)"""
    record = _as_dict(record)
    if not isinstance(record.get("book"), dict) or "editions" in record:
        return False
    return any(field_name in record for field_name in EDITION_HINT_FIELDS)


def candidate_from_hardcover(record: Any) -> Candidate:
    """
    Build a Candidate from a Hardcover book record or an edition search hit

    An edition hit becomes a candidate for its nested book that carries just
    that edition, so an edition always belongs to exactly one candidate.
    """
    record = _as_dict(record)

    if is_edition_record(record):
        book = _as_dict(record.get("book"))
        return Candidate(
            id=book.get("id", record.get("book_id")),
            title=_clean_string(book.get("title")) or _clean_string(record.get("title")) or "",
            contributors=extract_contributors(record),
            series=extract_candidate_series(book),
            activity=extract_activity(book) if extract_activity(book) is not None else extract_activity(record),
            year=extract_release_year(book) or extract_release_year(record),
            editions=(edition_from_hardcover(record),),
            raw=record,
        )

    return Candidate(
        id=record.get("id"),
        title=_clean_string(record.get("title")) or "",
        contributors=extract_contributors(record),
        series=extract_candidate_series(record),
        activity=extract_activity(record),
        year=extract_release_year(record),
        editions=_editions(record.get("editions")),
        raw=record,
    )


def candidates_from_hardcover(records: Iterable[Any]) -> List[Candidate]:
    """Convert search hits, grouping edition hits that share a book"""
    candidates: List[Candidate] = []
    positions: Dict[Any, int] = {}

    for record in records or []:
        if not isinstance(record, dict):
            continue
        candidate = candidate_from_hardcover(record)
        if candidate.id is not None and candidate.id in positions and is_edition_record(record):
            index = positions[candidate.id]
            existing = candidates[index]
            candidates[index] = Candidate(
                id=existing.id,
                title=existing.title,
                contributors=existing.contributors,
                series=existing.series,
                activity=existing.activity,
                year=existing.year,
                editions=existing.editions + candidate.editions,
                raw=existing.raw,
            )
            continue
        if candidate.id is not None:
            positions[candidate.id] = len(candidates)
        candidates.append(candidate)

    return candidates


def library_entry_from_hardcover(user_book: Any) -> Optional[LibraryEntry]:
    """Build a LibraryEntry from a Hardcover ``user_books`` row"""
    user_book = _as_dict(user_book)
    book = user_book.get("book")
    if not isinstance(book, dict):
        logger.debug(f"Skipping user book {user_book.get('id')} without book data")
        return None

    edition_id = user_book.get("edition_id")
    if edition_id is None:
        edition_id = _as_dict(user_book.get("edition")).get("id")

    status_id = to_finite_number(user_book.get("status_id"))
    return LibraryEntry(
        id=user_book.get("id"),
        book=candidate_from_hardcover(book),
        edition_id=edition_id,
        status_id=int(status_id) if status_id is not None else None,
        raw=user_book,
    )


def candidate_from_mapping(value: Any) -> Optional[Candidate]:
    """Accept either a ready Candidate or a raw Hardcover mapping"""
    if isinstance(value, Candidate):
        return value
    if isinstance(value, Mapping):
        return candidate_from_hardcover(dict(value))
    return None

"""
ISBN/ASIN extraction from source records and the identifier lookup table
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from .extractors import ASIN_FIELDS, ISBN_FIELDS, probe
from .models import Edition, Identifiers, LibraryEntry, SourceBook
from .utils import normalize_asin, normalize_isbn

logger = logging.getLogger(__name__)

ISBN = "isbn"
ASIN = "asin"


def extract_identifiers(source: Any) -> Identifiers:
    """
    Extract normalized ISBN and ASIN from a source book

    Accepts a SourceBook or a raw Audiobookshelf item. Field locations are
    probed in priority order (top level, ``metadata``, ``media.metadata``) and
    the first value of each kind that normalizes cleanly is kept; malformed
    values are skipped rather than propagated.
    """
    if isinstance(source, SourceBook):
        record = source.raw or {}
        fallback_isbn, fallback_asin = source.isbn, source.asin
    else:
        record = source if isinstance(source, dict) else {}
        fallback_isbn = fallback_asin = None

    isbn = probe(record, ISBN_FIELDS, normalize_isbn) or normalize_isbn(fallback_isbn)
    asin = probe(record, ASIN_FIELDS, normalize_asin) or normalize_asin(fallback_asin)

    return Identifiers(isbn=isbn, asin=asin)


@dataclass(frozen=True)
class LookupHit:
    """A library entry and the edition an identifier pointed at"""

    entry: LibraryEntry
    edition: Edition
    identifier_type: str


class IdentifierLookupTable:
    """
    Read-only map from normalized ISBN/ASIN to the library entry holding it

    Built once per matching pass and shared between worker threads; nothing
    mutates it after ``build_lookup`` returns.
    """

    def __init__(self, by_isbn: Dict[str, LookupHit], by_asin: Dict[str, LookupHit]) -> None:
        self._by_isbn = dict(by_isbn)
        self._by_asin = dict(by_asin)

    def find_by_isbn(self, isbn: Optional[str]) -> Optional[LookupHit]:
        if not isbn:
            return None
        return self._by_isbn.get(isbn)

    def find_by_asin(self, asin: Optional[str]) -> Optional[LookupHit]:
        if not asin:
            return None
        return self._by_asin.get(asin)

    def __len__(self) -> int:
        return len(self._by_isbn) + len(self._by_asin)

    def __repr__(self) -> str:
        return f"IdentifierLookupTable(isbns={len(self._by_isbn)}, asins={len(self._by_asin)})"


def build_lookup(entries: Iterable[LibraryEntry]) -> IdentifierLookupTable:
    """
    Index every edition of every library entry under each identifier it carries

    When two editions share an identifier the one seen last wins; a
    well-formed library never has that collision.
    """
    by_isbn: Dict[str, LookupHit] = {}
    by_asin: Dict[str, LookupHit] = {}

    for entry in entries:
        for edition in entry.book.editions:
            for raw_isbn in (edition.isbn_10, edition.isbn_13):
                isbn = normalize_isbn(raw_isbn)
                if isbn:
                    by_isbn[isbn] = LookupHit(entry=entry, edition=edition, identifier_type=ISBN)
            asin = normalize_asin(edition.asin)
            if asin:
                by_asin[asin] = LookupHit(entry=entry, edition=edition, identifier_type=ASIN)

    logger.debug(f"Built identifier lookup with {len(by_isbn)} ISBNs and {len(by_asin)} ASINs")
    return IdentifierLookupTable(by_isbn, by_asin)

"""
The user's existing Hardcover library, as seen by the matching strategies
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .extractors import library_entry_from_hardcover
from .models import LibraryEntry


class LibraryRepository:
    """Lookup capability the matching strategies receive at construction"""

    def find_by_edition_id(self, edition_id: Any) -> Optional[LibraryEntry]:
        raise NotImplementedError

    def find_by_work_id(self, work_id: Any) -> Optional[LibraryEntry]:
        raise NotImplementedError

    def entries(self) -> List[LibraryEntry]:
        raise NotImplementedError


class UserLibrary(LibraryRepository):
    """
    In-memory repository built from Hardcover ``user_books`` rows

    An entry is reachable through its linked edition and through every
    edition Hardcover returned for its book, as well as through the book id.
    """

    def __init__(self, user_books: Iterable[Any] = ()) -> None:
        self.logger = logging.getLogger(__name__)
        self._entries: List[LibraryEntry] = []
        self._by_edition: Dict[Any, LibraryEntry] = {}
        self._by_work: Dict[Any, LibraryEntry] = {}

        skipped = 0
        for user_book in user_books:
            entry = user_book if isinstance(user_book, LibraryEntry) else library_entry_from_hardcover(user_book)
            if entry is None:
                skipped += 1
                continue
            self.add(entry)

        if skipped:
            self.logger.warning(f"Skipped {skipped} library rows without book data")
        self.logger.debug(f"Loaded {len(self._entries)} library entries")

    def add(self, entry: LibraryEntry) -> None:
        self._entries.append(entry)
        for edition in entry.book.editions:
            if edition.id is not None:
                self._by_edition.setdefault(edition.id, entry)
        if entry.edition_id is not None:
            self._by_edition[entry.edition_id] = entry
        if entry.book_id is not None:
            self._by_work.setdefault(entry.book_id, entry)

    def find_by_edition_id(self, edition_id: Any) -> Optional[LibraryEntry]:
        if edition_id is None:
            return None
        return self._by_edition.get(edition_id)

    def find_by_work_id(self, work_id: Any) -> Optional[LibraryEntry]:
        if work_id is None:
            return None
        return self._by_work.get(work_id)

    def entries(self) -> List[LibraryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

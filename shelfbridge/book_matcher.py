"""
Tiered book matching: ASIN, then ISBN, then title/author
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from .edition_selector import DEFAULT_EDITION, EditionConstants
from .extractors import source_book_from_abs
from .identifiers import IdentifierLookupTable, extract_identifiers
from .library import LibraryRepository
from .models import ExtractedMetadata, MatchResult, SourceBook
from .scoring import DEFAULT_SCORING, ScoringConstants
from .strategies import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_MAX_SEARCH_RESULTS,
    AsinMatcher,
    IsbnMatcher,
    MatchStrategy,
    TitleAuthorMatcher,
)

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_AUTHOR = "Unknown Author"


@dataclass(frozen=True)
class MatchOutcome:
    """A match (or None) together with what was searched for"""

    match: Optional[MatchResult]
    metadata: ExtractedMetadata

    @property
    def matched(self) -> bool:
        return self.match is not None


class BookMatcher:
    """
    Runs the matching tiers in order and stops at the first hit

    The lookup table and library are built once per pass and only read here,
    so one BookMatcher can serve several worker threads at once.
    """

    def __init__(
        self,
        lookup: IdentifierLookupTable,
        library: LibraryRepository,
        client: Any,
        cache: Any = None,
        user_id: str = "",
        title_author_config: Optional[dict] = None,
        scoring: ScoringConstants = DEFAULT_SCORING,
        edition_constants: EditionConstants = DEFAULT_EDITION,
    ) -> None:
        self.logger = logging.getLogger(__name__)

        title_author_config = title_author_config or {}
        self.title_author_enabled = title_author_config.get("enabled", True)

        self.strategies: List[MatchStrategy] = [
            AsinMatcher(lookup, library, client),
            IsbnMatcher(lookup),
        ]
        if self.title_author_enabled:
            self.strategies.append(
                TitleAuthorMatcher(
                    client,
                    library,
                    cache=cache,
                    user_id=user_id,
                    confidence_threshold=title_author_config.get(
                        "confidence_threshold", DEFAULT_CONFIDENCE_THRESHOLD
                    ),
                    max_search_results=title_author_config.get("max_search_results", DEFAULT_MAX_SEARCH_RESULTS),
                    scoring=scoring,
                    edition_constants=edition_constants,
                )
            )
        self.strategies.sort(key=lambda strategy: strategy.tier)

    def find_match(self, book: Any) -> MatchOutcome:
        """
        Match one source book

        Args:
            book: SourceBook or raw Audiobookshelf item

        Returns:
            MatchOutcome; ``match`` is None when no tier matched. An exception
            in one tier is logged and treated as a miss for that tier only.
        """
        source = book if isinstance(book, SourceBook) else source_book_from_abs(book)
        title = source.title or ""
        author = source.author or ""
        identifiers = extract_identifiers(source)
        # placeholders are for reporting only; the tiers see the real values
        metadata = ExtractedMetadata(
            title=title or UNKNOWN_TITLE, author=author or UNKNOWN_AUTHOR, identifiers=identifiers
        )

        for strategy in self.strategies:
            try:
                result = strategy.find_match(source, title, author, identifiers)
            except Exception as e:
                self.logger.warning(f"{strategy.name} matching failed for '{metadata.title}': {str(e)}")
                continue
            if result is not None:
                self.logger.debug(f"'{metadata.title}' matched by tier {int(strategy.tier)} ({result.kind.value})")
                return MatchOutcome(match=result, metadata=metadata)

        self.logger.debug(
            f"No match for '{metadata.title}' by {metadata.author} (identifiers: {identifiers.to_dict()})"
        )
        return MatchOutcome(match=None, metadata=metadata)

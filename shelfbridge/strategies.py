"""
The three matching tiers: ASIN, ISBN and title/author

Each matcher exposes ``tier`` and ``find_match``. ``find_match`` returns a
MatchResult or None for a miss. Remote failures propagate to the caller;
BookMatcher turns them into a miss for that tier.
"""

import logging
from typing import Any, List, Optional, Tuple

from .edition_selector import DEFAULT_EDITION, EditionConstants, select_edition
from .extractors import candidate_from_mapping, detect_source_format
from .identifiers import ASIN, ISBN, IdentifierLookupTable
from .library import LibraryRepository
from .models import Candidate, Edition, IdentityScore, Identifiers, MatchKind, MatchResult, SourceBook, Tier
from .scoring import DEFAULT_SCORING, HIGH, ScoringConstants, score_identity
from .utils import normalize_asin

TITLE_AUTHOR = "title_author"

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_MAX_SEARCH_RESULTS = 5

# Cached matches were scored when first stored; report them uniformly
CACHED_IDENTITY_SCORE = IdentityScore(total_score=85.0, confidence=HIGH, is_match=True)


class MatchStrategy:
    """Base for the matchers; the set of tiers is fixed"""

    tier: Tier
    name: str = ""

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

    def find_match(self, source: SourceBook, title: str, author: str,
                   identifiers: Identifiers) -> Optional[MatchResult]:
        raise NotImplementedError


class AsinMatcher(MatchStrategy):
    """
    Tier 1: exact ASIN lookup, broadened to a remote ASIN search on a miss

    A remote hit whose work is already in the library is a cross-edition
    match; a hit for a work the user does not own yet needs creating.
    """

    tier = Tier.ASIN
    name = "asin"

    def __init__(self, lookup: IdentifierLookupTable, library: LibraryRepository, client: Any = None) -> None:
        super().__init__()
        self.lookup = lookup
        self.library = library
        self.client = client

    def find_match(self, source: SourceBook, title: str, author: str,
                   identifiers: Identifiers) -> Optional[MatchResult]:
        asin = identifiers.asin
        if not asin:
            return None

        hit = self.lookup.find_by_asin(asin)
        if hit:
            self.logger.debug(f"ASIN {asin} found in library: {hit.entry.title}")
            return MatchResult(
                kind=MatchKind.EXACT,
                tier=self.tier,
                strategy=self.name,
                candidate=hit.entry.book,
                edition=hit.edition,
                library_entry=hit.entry,
                identifier_type=ASIN,
            )

        if self.client is None:
            return None

        candidates = [c for c in (candidate_from_mapping(r) for r in self.client.search_by_asin(asin)) if c]
        if not candidates:
            self.logger.debug(f"ASIN {asin} not found in Hardcover")
            return None

        for candidate in candidates:
            entry = self.library.find_by_work_id(candidate.id)
            if entry:
                self.logger.info(f"ASIN {asin} is another edition of library book '{entry.title}'")
                return MatchResult(
                    kind=MatchKind.CROSS_EDITION,
                    tier=self.tier,
                    strategy=self.name,
                    candidate=entry.book,
                    edition=self._edition_for(candidate, asin),
                    library_entry=entry,
                    identifier_type=ASIN,
                )

        candidate = candidates[0]
        self.logger.info(f"ASIN {asin} resolves to '{candidate.title}', not yet in library")
        return MatchResult(
            kind=MatchKind.NEEDS_CREATE,
            tier=self.tier,
            strategy=self.name,
            candidate=candidate,
            edition=self._edition_for(candidate, asin),
            identifier_type=ASIN,
        )

    @staticmethod
    def _edition_for(candidate: Candidate, asin: str) -> Optional[Edition]:
        for edition in candidate.editions:
            if normalize_asin(edition.asin) == asin:
                return edition
        return candidate.editions[0] if candidate.editions else None


class IsbnMatcher(MatchStrategy):
    """Tier 2: exact ISBN lookup only"""

    tier = Tier.ISBN
    name = "isbn"

    def __init__(self, lookup: IdentifierLookupTable) -> None:
        super().__init__()
        self.lookup = lookup

    def find_match(self, source: SourceBook, title: str, author: str,
                   identifiers: Identifiers) -> Optional[MatchResult]:
        hit = self.lookup.find_by_isbn(identifiers.isbn)
        if not hit:
            return None

        self.logger.debug(f"ISBN {identifiers.isbn} found in library: {hit.entry.title}")
        return MatchResult(
            kind=MatchKind.EXACT,
            tier=self.tier,
            strategy=self.name,
            candidate=hit.entry.book,
            edition=hit.edition,
            library_entry=hit.entry,
            identifier_type=ISBN,
        )


class TitleAuthorMatcher(MatchStrategy):
    """
    Tier 3: cached or scored title/author match

    A cached edition id skips the remote search entirely. Otherwise the
    Hardcover search results are scored and the best one is accepted when it
    reaches ``confidence_threshold`` (0-1). Accepted matches are written back
    to the cache; a failed write is logged and the match is still returned.
    """

    tier = Tier.TITLE_AUTHOR
    name = "title_author"

    def __init__(
        self,
        client: Any,
        library: LibraryRepository,
        cache: Any = None,
        user_id: str = "",
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        max_search_results: int = DEFAULT_MAX_SEARCH_RESULTS,
        scoring: ScoringConstants = DEFAULT_SCORING,
        edition_constants: EditionConstants = DEFAULT_EDITION,
    ) -> None:
        super().__init__()
        self.client = client
        self.library = library
        self.cache = cache
        self.user_id = user_id
        self.confidence_threshold = confidence_threshold
        self.max_search_results = max_search_results
        self.scoring = scoring
        self.edition_constants = edition_constants

    def find_match(self, source: SourceBook, title: str, author: str,
                   identifiers: Identifiers) -> Optional[MatchResult]:
        if not title:
            self.logger.debug("Skipping title/author matching: no title")
            return None

        cache_key = None
        if self.cache is not None:
            cache_key = self.cache.generate_title_author_identifier(title, author)
            cached = self._from_cache(cache_key, title)
            if cached:
                return cached

        results = self.client.search_by_title_author(
            title, author or None, source.narrator, self.max_search_results
        )
        if not results:
            self.logger.debug(f"No title/author results for '{title}' by {author}")
            return None

        ranked = self._score_candidates(results, source, title, author)
        if not ranked:
            return None

        candidate, identity = ranked[0]
        threshold = self.confidence_threshold * 100
        if identity.total_score < threshold:
            self.logger.info(
                f"Best title/author candidate '{candidate.title}' scored {identity.total_score:.1f}, "
                f"below threshold {threshold:.0f}"
            )
            return None

        selection = select_edition(candidate, source, detect_source_format(source), self.edition_constants)
        edition = selection.edition if selection else None

        entry = self.library.find_by_work_id(candidate.id)
        if entry is None and edition is not None:
            entry = self.library.find_by_edition_id(edition.id)

        self.logger.info(
            f"Title/author match for '{title}': '{candidate.title}' "
            f"({identity.total_score:.1f}, {identity.confidence})"
        )

        if cache_key and edition is not None:
            self._store(cache_key, title, edition.id, identity.matched_author or author or None)

        return MatchResult(
            kind=MatchKind.SCORED if entry else MatchKind.NEEDS_CREATE,
            tier=self.tier,
            strategy=self.name,
            candidate=candidate,
            edition=edition,
            library_entry=entry,
            identity_score=identity,
            edition_selection=selection,
            identifier_type=TITLE_AUTHOR,
        )

    def _from_cache(self, cache_key: str, title: str) -> Optional[MatchResult]:
        try:
            cached = self.cache.get_cached_book_info(self.user_id, cache_key, title, TITLE_AUTHOR)
        except Exception as e:
            self.logger.warning(f"Cache lookup failed for '{title}': {str(e)}")
            return None

        edition_id = cached.get("edition_id") if cached and cached.get("exists") else None
        if edition_id is None:
            return None

        entry = self.library.find_by_edition_id(edition_id)
        if entry:
            self.logger.debug(f"Cached title/author match for '{title}' -> edition {edition_id}")
            return MatchResult(
                kind=MatchKind.CACHED,
                tier=self.tier,
                strategy=self.name,
                candidate=entry.book,
                edition=entry.book.edition_by_id(edition_id) or Edition(id=edition_id),
                library_entry=entry,
                identity_score=CACHED_IDENTITY_SCORE,
                identifier_type=TITLE_AUTHOR,
            )

        self.logger.debug(f"Cached edition {edition_id} for '{title}' is not in the library")
        return MatchResult(
            kind=MatchKind.NEEDS_CREATE,
            tier=self.tier,
            strategy=self.name,
            edition=Edition(id=edition_id),
            identity_score=CACHED_IDENTITY_SCORE,
            identifier_type=TITLE_AUTHOR,
        )

    def _score_candidates(self, results: List[Any], source: SourceBook, title: str,
                          author: str) -> List[Tuple[Candidate, IdentityScore]]:
        scored = []
        errors = 0
        first_error = None

        for result in results:
            try:
                candidate = candidate_from_mapping(result)
                if candidate is None:
                    raise ValueError(f"unusable search result of type {type(result).__name__}")
                scored.append((candidate, score_identity(candidate, title, author, source, self.scoring)))
            except Exception as e:
                errors += 1
                first_error = first_error or e

        if errors:
            self.logger.warning(
                f"Failed to score {errors} of {len(results)} candidates for '{title}': {str(first_error)}"
            )

        # stable: equal scores keep search order
        scored.sort(key=lambda pair: pair[1].total_score, reverse=True)
        return scored

    def _store(self, cache_key: str, title: str, edition_id: Any, author: Optional[str]) -> None:
        try:
            self.cache.store_edition_mapping(self.user_id, cache_key, title, edition_id, TITLE_AUTHOR, author)
        except Exception as e:
            self.logger.warning(f"Could not cache title/author match for '{title}': {str(e)}")

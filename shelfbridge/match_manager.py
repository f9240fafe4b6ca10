"""
Match Manager - runs one matching pass for one user
"""

import concurrent.futures
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from .audiobookshelf_client import AudiobookshelfClient
from .book_cache import BookCache
from .book_matcher import BookMatcher, MatchOutcome
from .edition_selector import EditionConstants
from .extractors import source_book_from_abs
from .hardcover_client import HardcoverClient
from .identifiers import build_lookup
from .library import UserLibrary
from .models import MatchKind, SourceBook
from .scoring import ScoringConstants
from .strategies import TITLE_AUTHOR

MATCHED = "matched"
NEEDS_CREATE = "needs_create"
UNMATCHED = "unmatched"
FAILED = "failed"

STATUS_LABELS = {
    MATCHED: "✓ Matched",
    NEEDS_CREATE: "+ Needs create",
    UNMATCHED: "- No match",
    FAILED: "✗ Failed",
}


class MatchManager:
    """Matches a user's Audiobookshelf books against their Hardcover library"""

    def __init__(
        self,
        user: dict,
        global_config: dict,
        title_author_config: Optional[dict] = None,
        scoring_overrides: Optional[dict] = None,
        dry_run: bool = False,
        audiobookshelf: Optional[AudiobookshelfClient] = None,
        hardcover: Optional[HardcoverClient] = None,
        cache: Optional[BookCache] = None,
    ) -> None:
        self.user = user
        self.user_id = user["id"]
        self.global_config = global_config
        self.title_author_config = title_author_config or {}
        self.dry_run = dry_run
        self.logger = logging.getLogger(f"MatchManager.{self.user_id}")

        self.max_workers = global_config.get("workers", 3)
        self.enable_parallel = global_config.get("parallel", True)
        self.timing_data: Dict[str, float] = {}
        self._timing_lock = threading.Lock()

        self.scoring = ScoringConstants.from_overrides(scoring_overrides)
        self.edition_constants = EditionConstants.from_overrides(scoring_overrides)

        self.audiobookshelf = audiobookshelf or AudiobookshelfClient(user["abs_url"], user["abs_token"])
        self.hardcover = hardcover or HardcoverClient(
            user["hardcover_token"],
            max_retries=global_config.get("max_retries", 3),
            retry_delay=global_config.get("retry_delay", 5),
        )
        self.book_cache = cache or BookCache(global_config.get("cache_file", "data/.book_cache.db"))

        self.matcher: Optional[BookMatcher] = None

        self.logger.info(
            f"MatchManager initialized for user {self.user_id} "
            f"(dry_run: {dry_run}, parallel: {self.enable_parallel}, workers: {self.max_workers})"
        )

    def _record_time(self, key: str, duration: float) -> None:
        with self._timing_lock:
            self.timing_data[key] = duration

    def prepare(self) -> BookMatcher:
        """Load the Hardcover library and build the matcher for this pass"""
        start = time.time()
        user_books = self.hardcover.get_user_books()
        self._record_time("fetch_hardcover_library", time.time() - start)

        library = UserLibrary(user_books)
        lookup = build_lookup(library.entries())
        self.logger.info(f"Library has {len(library)} books, {len(lookup)} identifiers indexed")

        # Dry runs read the cache but never write to it
        self.matcher = BookMatcher(
            lookup,
            library,
            self.hardcover,
            cache=self.book_cache if not self.dry_run else _ReadOnlyCache(self.book_cache),
            user_id=self.user_id,
            title_author_config=self.title_author_config,
            scoring=self.scoring,
            edition_constants=self.edition_constants,
        )
        return self.matcher

    def match_book(self, book: Any) -> MatchOutcome:
        """Match a single SourceBook or raw Audiobookshelf item"""
        if self.matcher is None:
            self.prepare()
        return self.matcher.find_match(book)

    def match_library(self) -> Dict[str, Any]:
        """
        Match every book in the user's Audiobookshelf library

        Returns:
            Summary dict with counters, per-tier counts, one detail row per
            book and the total duration
        """
        self.logger.info("Starting matching pass...")
        pass_start = time.time()

        result: Dict[str, Any] = {
            "user_id": self.user_id,
            "books_processed": 0,
            "matched": 0,
            "needs_create": 0,
            "unmatched": 0,
            "errors": [],
            "by_tier": {},
            "details": [],
            "duration": 0.0,
        }

        try:
            start = time.time()
            abs_books = self.audiobookshelf.get_books()
            self._record_time("fetch_audiobookshelf", time.time() - start)

            if not abs_books:
                self.logger.warning("No books found in Audiobookshelf")
                return result

            self.prepare()

            loop_start = time.time()
            if self.enable_parallel and self.max_workers > 1:
                rows = self._match_parallel(abs_books)
            else:
                rows = self._match_sequential(abs_books)
            self._record_time("match_loop", time.time() - loop_start)

            for row in rows:
                result["books_processed"] += 1
                status = row["status"]
                if status == FAILED:
                    result["errors"].append(row["reason"])
                else:
                    result[status] += 1
                if row.get("tier"):
                    tier_key = str(row["tier"])
                    result["by_tier"][tier_key] = result["by_tier"].get(tier_key, 0) + 1
                result["details"].append(row)

            self.print_timing_summary()
            self.logger.info(
                f"Matching completed: {result['matched']} matched, {result['needs_create']} need creating, "
                f"{result['unmatched']} unmatched, {len(result['errors'])} errors"
            )

        except Exception as e:
            error_msg = f"Matching pass failed: {str(e)}"
            self.logger.error(error_msg)
            result["errors"].append(error_msg)

        result["duration"] = time.time() - pass_start
        return result

    def _match_single_book(self, abs_book: Dict[str, Any]) -> Dict[str, Any]:
        """Match one item; never raises"""
        book_start = time.time()
        source: Optional[SourceBook] = None
        try:
            source = source_book_from_abs(abs_book)
            outcome = self.matcher.find_match(source)
            row = self._detail_row(source, outcome)
            row["progress_changed"] = self._record_progress(source, outcome)
        except Exception as e:
            title = source.title if source else str(abs_book.get("id", "Unknown"))
            error_msg = f"Error matching {title}: {str(e)}"
            self.logger.error(error_msg)
            row = {"title": title, "status": FAILED, "reason": error_msg}

        row["duration"] = time.time() - book_start
        self._record_time(f"book_{row['title'][:20]}", row["duration"])
        return row

    def _progress_key(self, source: SourceBook, outcome: MatchOutcome) -> Optional[str]:
        identifier_type = outcome.match.identifier_type
        if identifier_type == TITLE_AUTHOR:
            return self.book_cache.generate_title_author_identifier(source.title, source.author)
        return getattr(outcome.metadata.identifiers, identifier_type or "", None)

    def _record_progress(self, source: SourceBook, outcome: MatchOutcome) -> bool:
        """
        Cache the listening progress of a matched book

        Returns True when the progress differs from the cached value (or none
        was cached). Dry runs compare but never write; a failed write is
        logged and the match is kept.
        """
        if outcome.match is None or source.progress_percentage is None:
            return False

        identifier = self._progress_key(source, outcome)
        if not identifier:
            return False

        identifier_type = outcome.match.identifier_type
        progress = source.progress_percentage
        if not self.book_cache.has_progress_changed(self.user_id, identifier, source.title, progress,
                                                    identifier_type):
            return False

        if self.dry_run:
            self.logger.info(f"[DRY RUN] Would cache progress {progress:.1f}% for '{source.title}'")
            return True

        try:
            self.book_cache.store_progress(self.user_id, identifier, source.title, progress, identifier_type)
        except Exception as e:
            self.logger.warning(f"Could not cache progress for '{source.title}': {str(e)}")
        return True

    @staticmethod
    def _detail_row(source: SourceBook, outcome: MatchOutcome) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "title": outcome.metadata.title,
            "author": outcome.metadata.author,
            "identifiers": outcome.metadata.identifiers.to_dict(),
            "progress_percentage": source.progress_percentage,
        }
        match = outcome.match
        if match is None:
            row["status"] = UNMATCHED
            row["reason"] = "No tier produced a match"
            return row

        row["status"] = NEEDS_CREATE if match.kind == MatchKind.NEEDS_CREATE else MATCHED
        row.update(match.to_dict())
        return row

    def _match_sequential(self, abs_books: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        rows = []
        with tqdm(total=len(abs_books), desc="Matching books", unit="book") as pbar:
            for abs_book in abs_books:
                row = self._match_single_book(abs_book)
                rows.append(row)
                pbar.set_postfix({"status": STATUS_LABELS[row["status"]], "time": f"{row['duration']:.2f}s"})
                pbar.update(1)
        return rows

    def _match_parallel(self, abs_books: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        with tqdm(total=len(abs_books), desc="Matching books (parallel)", unit="book") as pbar:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [executor.submit(self._match_single_book, book) for book in abs_books]
                for future in concurrent.futures.as_completed(futures):
                    row = future.result()
                    pbar.set_postfix({"status": STATUS_LABELS[row["status"]], "time": f"{row['duration']:.2f}s"})
                    pbar.update(1)
        # report in library order, not completion order
        return [future.result() for future in futures]

    def test_connections(self) -> Dict[str, bool]:
        return {
            "audiobookshelf": self.audiobookshelf.test_connection(),
            "hardcover": self.hardcover.test_connection(),
        }

    def get_timing_data(self) -> Dict[str, float]:
        """Get timing data for performance analysis"""
        with self._timing_lock:
            return self.timing_data.copy()

    def print_timing_summary(self) -> None:
        """Log the slowest operations of the pass"""
        timing = self.get_timing_data()
        if not timing:
            self.logger.info("No timing data available")
            return

        self.logger.info("=" * 50)
        self.logger.info("📊 TIMING SUMMARY")
        self.logger.info("=" * 50)

        sorted_timing = sorted(timing.items(), key=lambda x: x[1], reverse=True)
        total_time = sum(timing.values())

        for operation, duration in sorted_timing[:15]:
            percentage = (duration / total_time) * 100 if total_time > 0 else 0
            self.logger.info(f"{operation:30} {duration:8.3f}s ({percentage:5.1f}%)")

        self.logger.info(f"{'TOTAL':30} {total_time:8.3f}s")
        self.logger.info("=" * 50)


class _ReadOnlyCache:
    """Cache view for dry runs: reads pass through, writes are dropped"""

    def __init__(self, cache: BookCache) -> None:
        self._cache = cache
        self.logger = logging.getLogger(__name__)

    def generate_title_author_identifier(self, title: str, author: str) -> str:
        return self._cache.generate_title_author_identifier(title, author)

    def get_cached_book_info(self, *args: Any, **kwargs: Any) -> Dict[str, Any]:
        return self._cache.get_cached_book_info(*args, **kwargs)

    def store_edition_mapping(self, user_id: str, identifier: str, title: str, edition_id: Any,
                              identifier_type: str = "isbn", author: Optional[str] = None) -> None:
        self.logger.info(f"[DRY RUN] Would cache edition {edition_id} for '{title}'")

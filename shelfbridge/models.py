"""
Data model for book identity resolution

Everything here is an immutable snapshot: records are built once from raw
API payloads (see extractors.py) and results are built once by the scorers
and strategies, then handed to the caller without further mutation.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

AUDIOBOOK = "audiobook"
EBOOK = "ebook"
PHYSICAL = "physical"

AUTHOR_ROLE_MARKER = "author"
NARRATOR_ROLE_MARKERS = ("narrator", "voice")


class Tier(IntEnum):
    """Fixed priority of the matching strategies (lower runs first)"""

    ASIN = 1
    ISBN = 2
    TITLE_AUTHOR = 3


class MatchKind(str, Enum):
    EXACT = "exact"  # identifier found in the user's library
    CROSS_EDITION = "cross_edition"  # work in library under another edition
    SCORED = "scored"  # heuristic title/author match
    CACHED = "cached"  # title/author match replayed from the cache
    NEEDS_CREATE = "needs_create"  # correct work, absent from the user's library


@dataclass(frozen=True)
class Identifiers:
    isbn: Optional[str] = None
    asin: Optional[str] = None

    def any(self) -> bool:
        return bool(self.isbn or self.asin)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"isbn": self.isbn, "asin": self.asin}


@dataclass(frozen=True)
class SeriesInfo:
    name: Optional[str] = None
    sequence: Optional[float] = None


@dataclass(frozen=True)
class SourceBook:
    """A book as the source service (Audiobookshelf) describes it"""

    title: str = ""
    author: str = ""
    narrator: Optional[str] = None
    series: SeriesInfo = field(default_factory=SeriesInfo)
    year: Optional[int] = None
    duration_seconds: Optional[float] = None
    pages: Optional[int] = None
    media_type: Optional[str] = None
    library_type: Optional[str] = None
    has_audio_files: bool = False
    has_ebook_file: bool = False
    ebook_format: Optional[str] = None
    isbn: Optional[str] = None
    asin: Optional[str] = None
    progress_percentage: Optional[float] = None
    item_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class Contributor:
    name: str
    role: Optional[str] = None

    def is_author(self) -> bool:
        return not self.role or AUTHOR_ROLE_MARKER in self.role.lower()

    def is_narrator(self) -> bool:
        if not self.role:
            return False
        role = self.role.lower()
        return any(marker in role for marker in NARRATOR_ROLE_MARKERS)


@dataclass(frozen=True)
class Edition:
    """One published form of a work in the destination catalog (Hardcover)"""

    id: Any
    format: Optional[str] = None
    pages: Optional[int] = None
    audio_seconds: Optional[float] = None
    isbn_10: Optional[str] = None
    isbn_13: Optional[str] = None
    asin: Optional[str] = None
    users_count: Optional[float] = None
    title: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @property
    def is_audiobook(self) -> bool:
        return self.format == AUDIOBOOK


@dataclass(frozen=True)
class Candidate:
    """A destination work (book) together with its editions"""

    id: Any
    title: str = ""
    contributors: Tuple[Contributor, ...] = ()
    series: SeriesInfo = field(default_factory=SeriesInfo)
    activity: Optional[float] = None
    year: Optional[int] = None
    editions: Tuple[Edition, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @property
    def author_names(self) -> List[str]:
        return [contributor.name for contributor in self.contributors if contributor.is_author()]

    @property
    def narrator_names(self) -> List[str]:
        return [contributor.name for contributor in self.contributors if contributor.is_narrator()]

    def edition_by_id(self, edition_id: Any) -> Optional[Edition]:
        for edition in self.editions:
            if edition.id == edition_id:
                return edition
        return None


@dataclass(frozen=True)
class LibraryEntry:
    """A work already present in the user's destination library"""

    id: Any
    book: Candidate
    edition_id: Any = None
    status_id: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @property
    def book_id(self) -> Any:
        return self.book.id

    @property
    def title(self) -> str:
        return self.book.title

    def current_edition(self) -> Optional[Edition]:
        """The edition linked to this entry, else the first known edition"""
        if self.edition_id is not None:
            edition = self.book.edition_by_id(self.edition_id)
            if edition:
                return edition
        return self.book.editions[0] if self.book.editions else None


@dataclass(frozen=True)
class FactorScore:
    name: str
    score: float
    weight: float
    detail: str = ""

    @property
    def weighted(self) -> float:
        return self.score * self.weight


@dataclass(frozen=True)
class Adjustment:
    """A bonus (positive points) or penalty (negative points)"""

    name: str
    points: float
    reason: str = ""


@dataclass(frozen=True)
class IdentityScore:
    total_score: float
    confidence: str
    is_match: bool
    factors: Tuple[FactorScore, ...] = ()
    adjustments: Tuple[Adjustment, ...] = ()
    matched_author: Optional[str] = None

    def factor(self, name: str) -> Optional[FactorScore]:
        for factor in self.factors:
            if factor.name == name:
                return factor
        return None

    @property
    def breakdown(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            factor.name: {"score": factor.score, "weight": factor.weight, "detail": factor.detail}
            for factor in self.factors
        }
        for adjustment in self.adjustments:
            result[adjustment.name] = {"score": adjustment.points, "reason": adjustment.reason}
        return result


@dataclass(frozen=True)
class EditionScore:
    edition: Edition
    total_score: float
    factors: Tuple[FactorScore, ...] = ()
    adjustments: Tuple[Adjustment, ...] = ()

    def factor(self, name: str) -> Optional[FactorScore]:
        for factor in self.factors:
            if factor.name == name:
                return factor
        return None


@dataclass(frozen=True)
class EditionSelection:
    edition: Edition
    score: EditionScore
    alternatives: Tuple[EditionScore, ...] = ()
    detected_format: str = EBOOK

    @property
    def breakdown(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            factor.name: {"score": factor.score, "weight": factor.weight, "detail": factor.detail}
            for factor in self.score.factors
        }
        for adjustment in self.score.adjustments:
            result[adjustment.name] = {"score": adjustment.points, "reason": adjustment.reason}
        return result


@dataclass(frozen=True)
class MatchResult:
    """Which destination work/edition a source book resolved to, and how"""

    kind: MatchKind
    tier: Tier
    strategy: str
    candidate: Optional[Candidate] = None
    edition: Optional[Edition] = None
    library_entry: Optional[LibraryEntry] = None
    identity_score: Optional[IdentityScore] = None
    edition_selection: Optional[EditionSelection] = None
    identifier_type: Optional[str] = None

    @property
    def needs_create(self) -> bool:
        return self.kind == MatchKind.NEEDS_CREATE

    @property
    def is_exact(self) -> bool:
        return self.kind in (MatchKind.EXACT, MatchKind.CROSS_EDITION)

    @property
    def edition_score(self) -> Optional[float]:
        if self.edition_selection is None:
            return None
        return self.edition_selection.score.total_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "tier": int(self.tier),
            "strategy": self.strategy,
            "book_id": self.candidate.id if self.candidate else None,
            "book_title": self.candidate.title if self.candidate else None,
            "edition_id": self.edition.id if self.edition else None,
            "edition_format": self.edition.format if self.edition else None,
            "user_book_id": self.library_entry.id if self.library_entry else None,
            "identity_score": self.identity_score.total_score if self.identity_score else None,
            "confidence": self.identity_score.confidence if self.identity_score else None,
            "edition_score": self.edition_score,
            "identifier_type": self.identifier_type,
        }


@dataclass(frozen=True)
class ExtractedMetadata:
    """What the orchestrator searched with, reported even when nothing matched"""

    title: str
    author: str
    identifiers: Identifiers

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "author": self.author, "identifiers": self.identifiers.to_dict()}

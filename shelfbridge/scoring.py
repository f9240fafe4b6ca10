"""
Book identity scoring

Answers one question: are a source book and a Hardcover search result the
same work? Edition details (format, narrator, duration) are deliberately
ignored here; edition_selector.py handles those once the work is known.
"""

import logging
import math
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Tuple

from .models import Adjustment, Candidate, FactorScore, IdentityScore, SeriesInfo, SourceBook
from .normalization import AUTHOR, SERIES, TITLE, normalize_author, normalize_series, normalize_title
from .similarity import similarity
from .utils import to_finite_number

logger = logging.getLogger(__name__)

HIGH = "high"
MEDIUM = "medium"
LOW = "low"
NONE = "none"


@dataclass(frozen=True)
class ScoringConstants:
    """Weights, bands and empirically tuned bonus/penalty values"""

    title_weight: float = 0.35
    author_weight: float = 0.25
    series_weight: float = 0.15
    activity_weight: float = 0.10
    year_weight: float = 0.05

    # Series
    series_both_missing_score: float = 60.0
    series_one_missing_score: float = 45.0
    series_name_threshold: float = 70.0
    series_mismatch_floor: float = 20.0
    series_mismatch_rate: float = 0.5
    exact_sequence_bonus: float = 20.0
    different_sequence_bonus: float = 5.0

    # Activity
    activity_floor: float = 30.0
    activity_log_scale: float = 20.0

    # Year
    year_both_missing_score: float = 60.0
    year_one_missing_score: float = 45.0

    # Bonuses and penalties
    perfect_match_threshold: float = 90.0
    perfect_match_bonus_rate: float = 0.10
    high_confidence_threshold: float = 80.0
    high_confidence_bonus_rate: float = 0.05
    short_title_length: int = 10
    short_title_penalty_per_char: float = 2.0
    author_mismatch_author_below: float = 30.0
    author_mismatch_title_above: float = 80.0
    author_mismatch_reference: float = 80.0
    author_mismatch_penalty_rate: float = 0.15

    # Confidence bands
    high_confidence_score: float = 75.0
    medium_confidence_score: float = 60.0
    low_confidence_score: float = 45.0

    @classmethod
    def from_overrides(cls, overrides: Optional[Dict[str, Any]] = None) -> "ScoringConstants":
        """Defaults with any matching keys from ``overrides`` applied"""
        if not overrides:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in overrides.items() if key in known}
        return cls(**values)


DEFAULT_SCORING = ScoringConstants()

# Year difference -> score, first matching bucket wins
YEAR_STEPS = ((0, 100.0), (1, 85.0), (3, 70.0), (5, 50.0))
YEAR_FLOOR_SCORE = 20.0


def _zero_score() -> IdentityScore:
    return IdentityScore(total_score=0.0, confidence=NONE, is_match=False)


def pick_destination_author(source_author: str, names: List[str]) -> Tuple[Optional[str], float]:
    """
    Choose the contributor name closest to the source author

    Returns:
        Tuple of (raw name, similarity 0-1); (None, 0.0) when there are no names
    """
    normalized_source = normalize_author(source_author)
    best_name = None
    best_similarity = -1.0

    for name in names:
        normalized_name = normalize_author(name)
        if not normalized_source or not normalized_name:
            score = 0.0
        else:
            score = similarity(normalized_source, normalized_name, AUTHOR)
        if score > best_similarity:
            best_name, best_similarity = name, score

    if best_name is None:
        return None, 0.0
    return best_name, best_similarity


def score_series(source: SeriesInfo, destination: SeriesInfo, constants: ScoringConstants = DEFAULT_SCORING) -> FactorScore:
    weight = constants.series_weight
    if not source.name and not destination.name:
        return FactorScore("series", constants.series_both_missing_score, weight, "No series data for comparison")
    if not source.name or not destination.name:
        return FactorScore("series", constants.series_one_missing_score, weight, "Series data missing on one side")

    name_similarity = similarity(normalize_series(source.name), normalize_series(destination.name), SERIES) * 100

    if name_similarity < constants.series_name_threshold:
        score = max(constants.series_mismatch_floor, name_similarity * constants.series_mismatch_rate)
        return FactorScore("series", score, weight, f"Series names differ ({name_similarity:.1f}%)")

    bonus = 0.0
    if source.sequence is not None and destination.sequence is not None:
        if source.sequence == destination.sequence:
            bonus = constants.exact_sequence_bonus
        else:
            bonus = constants.different_sequence_bonus

    score = min(100.0, name_similarity + bonus)
    return FactorScore("series", score, weight, f"Series match: {name_similarity:.1f}% + sequence bonus: {bonus:g}")


def score_activity(activity: Any, constants: ScoringConstants = DEFAULT_SCORING) -> FactorScore:
    value = to_finite_number(activity)
    if value is None or value <= 0:
        return FactorScore("activity", constants.activity_floor, constants.activity_weight, "No activity data")
    score = min(100.0, constants.activity_floor + math.log10(value + 1) * constants.activity_log_scale)
    return FactorScore("activity", score, constants.activity_weight, f"{value:g} readers")


def score_year(source_year: Any, destination_year: Any,
               constants: ScoringConstants = DEFAULT_SCORING) -> FactorScore:
    weight = constants.year_weight
    source_year = to_finite_number(source_year)
    destination_year = to_finite_number(destination_year)
    if not source_year and not destination_year:
        return FactorScore("year", constants.year_both_missing_score, weight, "No year data for comparison")
    if not source_year or not destination_year:
        return FactorScore("year", constants.year_one_missing_score, weight, "Year missing on one side")

    difference = abs(source_year - destination_year)
    for max_difference, score in YEAR_STEPS:
        if difference <= max_difference:
            return FactorScore("year", score, weight, f"{source_year:g} vs {destination_year:g}")
    return FactorScore("year", YEAR_FLOOR_SCORE, weight, f"{source_year:g} vs {destination_year:g}")


def confidence_band(total_score: float, constants: ScoringConstants = DEFAULT_SCORING) -> str:
    if total_score >= constants.high_confidence_score:
        return HIGH
    if total_score >= constants.medium_confidence_score:
        return MEDIUM
    if total_score >= constants.low_confidence_score:
        return LOW
    return NONE


def score_adjustments(source_title: str, title_score: float, author_score: float,
                      constants: ScoringConstants) -> List[Adjustment]:
    adjustments = []

    lowest = min(title_score, author_score)
    if title_score >= constants.perfect_match_threshold and author_score >= constants.perfect_match_threshold:
        adjustments.append(Adjustment(
            "perfect_match_bonus",
            lowest * constants.perfect_match_bonus_rate,
            f"Excellent title+author match (title: {title_score:.1f}%, author: {author_score:.1f}%)",
        ))
    elif title_score >= constants.high_confidence_threshold and author_score >= constants.high_confidence_threshold:
        adjustments.append(Adjustment(
            "high_confidence_bonus",
            lowest * constants.high_confidence_bonus_rate,
            f"Strong title+author match (title: {title_score:.1f}%, author: {author_score:.1f}%)",
        ))

    title_length = len(normalize_title(source_title))
    if title_length <= constants.short_title_length:
        penalty = (constants.short_title_length - title_length) * constants.short_title_penalty_per_char
        adjustments.append(Adjustment(
            "short_title_penalty", -penalty, f"Short title ({title_length} chars) is easy to confuse"
        ))

    if author_score < constants.author_mismatch_author_below and title_score > constants.author_mismatch_title_above:
        penalty = (constants.author_mismatch_reference - author_score) * constants.author_mismatch_penalty_rate
        adjustments.append(Adjustment(
            "author_mismatch_penalty", -penalty, "Similar title but very different author, likely another work"
        ))

    return adjustments


def score_identity(
    candidate: Any,
    source_title: Any,
    source_author: Any,
    source_meta: Optional[SourceBook] = None,
    constants: ScoringConstants = DEFAULT_SCORING,
) -> IdentityScore:
    """
    Score how likely a candidate is the same work as the source book

    Args:
        candidate: Hardcover Candidate; anything else scores zero
        source_title: Title from the source service
        source_author: Author from the source service
        source_meta: Source record for the series and year factors
        constants: Tunable weights and adjustments

    Returns:
        IdentityScore with total in [0, 100], confidence band, match flag and
        the per-factor breakdown including every bonus and penalty applied
    """
    if not isinstance(candidate, Candidate):
        return _zero_score()

    source_title = source_title if isinstance(source_title, str) else ""
    source_author = source_author if isinstance(source_author, str) else ""
    source_meta = source_meta if isinstance(source_meta, SourceBook) else SourceBook()

    title_score = similarity(normalize_title(source_title), normalize_title(candidate.title), TITLE) * 100
    if not normalize_title(source_title) and not normalize_title(candidate.title):
        title_score = 0.0

    matched_author, author_similarity = pick_destination_author(source_author, candidate.author_names)
    author_score = author_similarity * 100

    factors = (
        FactorScore("title", title_score, constants.title_weight, f'"{source_title}" vs "{candidate.title}"'),
        FactorScore("author", author_score, constants.author_weight,
                    f'"{source_author or "N/A"}" vs "{matched_author or "N/A"}"'),
        score_series(source_meta.series, candidate.series, constants),
        score_activity(candidate.activity, constants),
        score_year(source_meta.year, candidate.year, constants),
    )
    adjustments = tuple(score_adjustments(source_title, title_score, author_score, constants))

    raw_total = sum(factor.weighted for factor in factors) + sum(adjustment.points for adjustment in adjustments)
    total_score = min(100.0, max(0.0, raw_total)) if math.isfinite(raw_total) else 0.0
    confidence = confidence_band(total_score, constants)

    return IdentityScore(
        total_score=total_score,
        confidence=confidence,
        is_match=confidence != NONE,
        factors=factors,
        adjustments=adjustments,
        matched_author=matched_author,
    )

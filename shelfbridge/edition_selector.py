"""
Edition selection for a work that has already been identified

Once the identity scorer has settled on a Hardcover book, this picks the
edition a user's progress should land on: the right format first, then the
edition most people use, then the closest audio duration.
"""

import logging
import math
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional

from .extractors import detect_source_format
from .models import AUDIOBOOK, EBOOK, PHYSICAL, Adjustment, Candidate, Edition, EditionScore, EditionSelection, FactorScore, SourceBook
from .similarity import duration_similarity
from .utils import to_finite_number

logger = logging.getLogger(__name__)

DIGITAL_FORMATS = (AUDIOBOOK, EBOOK)
MAX_ALTERNATIVES = 2
COMPLETENESS_FIELDS = 6


@dataclass(frozen=True)
class EditionConstants:
    format_weight: float = 0.40
    popularity_weight: float = 0.25
    duration_weight: float = 0.20
    completeness_weight: float = 0.15

    exact_format_score: float = 100.0
    cross_format_score: float = 62.5
    physical_format_score: float = 37.5
    other_format_score: float = 12.5
    missing_format_score: float = 20.0

    popularity_floor: float = 20.0
    popularity_log_scale: float = 25.0

    missing_edition_duration_score: float = 30.0
    non_audio_duration_score: float = 60.0

    completeness_floor: float = 40.0

    perfect_format_threshold: float = 95.0
    perfect_format_bonus: float = 3.0
    popularity_bonus_threshold: float = 1000.0
    max_popularity_bonus: float = 2.0

    @classmethod
    def from_overrides(cls, overrides: Optional[Dict[str, Any]] = None) -> "EditionConstants":
        if not overrides:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in overrides.items() if key in known})


DEFAULT_EDITION = EditionConstants()


def score_format(edition_format: Optional[str], detected_format: str,
                 constants: EditionConstants = DEFAULT_EDITION) -> FactorScore:
    weight = constants.format_weight
    if not edition_format:
        return FactorScore("format", constants.missing_format_score, weight, "No format data")
    if edition_format == detected_format:
        return FactorScore("format", constants.exact_format_score, weight, f"Exact {edition_format} match")
    if edition_format in DIGITAL_FORMATS and detected_format in DIGITAL_FORMATS:
        return FactorScore("format", constants.cross_format_score, weight,
                           f"{edition_format} edition for {detected_format} reader")
    if edition_format == PHYSICAL:
        return FactorScore("format", constants.physical_format_score, weight, "Physical edition fallback")
    return FactorScore("format", constants.other_format_score, weight, f"Unrecognised format {edition_format!r}")


def score_popularity(users_count: Any, constants: EditionConstants = DEFAULT_EDITION) -> FactorScore:
    users = to_finite_number(users_count)
    if users is None or users <= 0:
        return FactorScore("popularity", constants.popularity_floor, constants.popularity_weight, "No readers")
    score = min(100.0, constants.popularity_floor + math.log10(users + 1) * constants.popularity_log_scale)
    return FactorScore("popularity", score, constants.popularity_weight, f"{users:g} readers")


def score_duration(edition: Edition, target_seconds: Optional[float], detected_format: str,
                   constants: EditionConstants = DEFAULT_EDITION) -> FactorScore:
    weight = constants.duration_weight
    if detected_format != AUDIOBOOK:
        return FactorScore("duration", constants.non_audio_duration_score, weight, "Duration not relevant")

    edition_seconds = to_finite_number(edition.audio_seconds)
    target = to_finite_number(target_seconds)
    if edition_seconds is None or edition_seconds <= 0:
        return FactorScore("duration", constants.missing_edition_duration_score, weight, "Edition has no duration")
    if target is None or target <= 0:
        return FactorScore("duration", duration_similarity(None, edition_seconds), weight, "Source has no duration")

    return FactorScore("duration", duration_similarity(target, edition_seconds), weight,
                       f"{target:.0f}s vs {edition_seconds:.0f}s")


def score_completeness(edition: Edition, constants: EditionConstants = DEFAULT_EDITION) -> FactorScore:
    populated = [
        bool(edition.asin),
        bool(edition.isbn_10 or edition.isbn_13),
        bool(edition.pages and edition.pages > 0),
        bool((to_finite_number(edition.audio_seconds) or 0) > 0),
        bool(edition.format),
        bool((to_finite_number(edition.users_count) or 0) > 0),
    ]
    count = sum(populated)
    score = max(constants.completeness_floor, count / COMPLETENESS_FIELDS * 100)
    return FactorScore("completeness", score, constants.completeness_weight, f"{count}/{COMPLETENESS_FIELDS} fields")


def score_edition(edition: Edition, target_seconds: Optional[float], detected_format: str,
                  constants: EditionConstants = DEFAULT_EDITION) -> EditionScore:
    """Score one edition's suitability as the sync target, 0-100"""
    format_factor = score_format(edition.format, detected_format, constants)
    factors = (
        format_factor,
        score_popularity(edition.users_count, constants),
        score_duration(edition, target_seconds, detected_format, constants),
        score_completeness(edition, constants),
    )

    adjustments = []
    if format_factor.score >= constants.perfect_format_threshold:
        adjustments.append(Adjustment("perfect_format_bonus", constants.perfect_format_bonus, "Exact format match"))

    users = to_finite_number(edition.users_count)
    if users is not None and users >= constants.popularity_bonus_threshold:
        bonus = min(constants.max_popularity_bonus, math.log10(users / constants.popularity_bonus_threshold))
        adjustments.append(Adjustment("popularity_bonus", bonus, f"{users:g} readers"))

    raw_total = sum(factor.weighted for factor in factors) + sum(adjustment.points for adjustment in adjustments)
    total_score = min(100.0, max(0.0, raw_total))

    return EditionScore(edition=edition, total_score=total_score, factors=factors, adjustments=tuple(adjustments))


def select_edition(
    candidate: Any,
    source_meta: Optional[SourceBook] = None,
    detected_format: Optional[str] = None,
    constants: EditionConstants = DEFAULT_EDITION,
) -> Optional[EditionSelection]:
    """
    Pick the best edition of a candidate for the user's format

    Args:
        candidate: Candidate whose editions are ranked
        source_meta: Source record, used for the target duration
        detected_format: "audiobook" or "ebook"; detected from source_meta when omitted
        constants: Tunable weights and fallbacks

    Returns:
        EditionSelection with the winner and up to two runners-up, or None when
        the candidate has no editions. Equal scores keep their input order.
    """
    if not isinstance(candidate, Candidate) or not candidate.editions:
        return None

    source_meta = source_meta if isinstance(source_meta, SourceBook) else SourceBook()
    if detected_format is None:
        detected_format = detect_source_format(source_meta)

    scores: List[EditionScore] = [
        score_edition(edition, source_meta.duration_seconds, detected_format, constants)
        for edition in candidate.editions
    ]
    ranked = sorted(scores, key=lambda scored: scored.total_score, reverse=True)
    best = ranked[0]

    logger.debug(
        f"Selected edition {best.edition.id} ({best.edition.format or 'unknown format'}) "
        f"for '{candidate.title}' with score {best.total_score:.1f}"
    )

    return EditionSelection(
        edition=best.edition,
        score=best,
        alternatives=tuple(ranked[1:1 + MAX_ALTERNATIVES]),
        detected_format=detected_format,
    )

"""
String and numeric similarity functions used by every scorer

All functions are symmetric and total: they never raise and never return
NaN or infinity, whatever they are given.
"""

from typing import Any, Optional

from rapidfuzz.distance import JaroWinkler, Levenshtein

from .normalization import AUTHOR, GENERIC, TITLE
from .utils import to_finite_number

EDIT_DISTANCE_WEIGHT = 0.4
PREFIX_ALIGNMENT_WEIGHT = 0.6
TOKEN_SET_WEIGHT = 0.6

JARO_WINKLER_PREFIX_WEIGHT = 0.1
MIN_TOKEN_LENGTH = 3

NEUTRAL_DURATION_SCORE = 50.0

# (max percentage difference, score)
DURATION_STEPS = (
    (3.0, 100.0),
    (5.0, 95.0),
    (10.0, 85.0),
    (20.0, 70.0),
    (30.0, 50.0),
)
DURATION_FLOOR_SCORE = 20.0


def _prepare(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def edit_similarity(a: str, b: str) -> float:
    """1 - levenshtein(a, b) / max(len(a), len(b))"""
    return Levenshtein.normalized_similarity(a, b)


def prefix_alignment(a: str, b: str) -> float:
    """Jaro-Winkler similarity; a shared opening (up to 4 chars) earns a boost"""
    return JaroWinkler.similarity(a, b, prefix_weight=JARO_WINKLER_PREFIX_WEIGHT)


def token_set_similarity(a: str, b: str) -> float:
    """Jaccard index over whitespace tokens longer than two characters"""
    tokens_a = {token for token in a.split() if len(token) >= MIN_TOKEN_LENGTH}
    tokens_b = {token for token in b.split() if len(token) >= MIN_TOKEN_LENGTH}
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def _blend(a: str, b: str) -> float:
    return (
        edit_similarity(a, b) * EDIT_DISTANCE_WEIGHT
        + prefix_alignment(a, b) * PREFIX_ALIGNMENT_WEIGHT
    )


def _reversed_words(text: str) -> Optional[str]:
    words = text.split()
    if len(words) < 2:
        return None
    return " ".join(reversed(words))


def _author_similarity(a: str, b: str) -> float:
    best = _blend(a, b)

    reversed_a = _reversed_words(a)
    reversed_b = _reversed_words(b)
    if reversed_a and reversed_b:
        best = max(best, _blend(reversed_a, b), _blend(a, reversed_b))

    return best


def _lenient_similarity(a: str, b: str) -> float:
    return (
        edit_similarity(a, b) * EDIT_DISTANCE_WEIGHT
        + token_set_similarity(a, b) * TOKEN_SET_WEIGHT
    )


def similarity(a: Any, b: Any, kind: str = GENERIC) -> float:
    """
    Similarity of two strings in [0, 1]

    Args:
        a: First string (usually already normalized)
        b: Second string (usually already normalized)
        kind: title, author, series or generic

    Returns:
        1.0 for identical strings (including two empty ones), 0.0 when exactly
        one side is empty, otherwise a kind-specific blend:

        - title: 40% edit distance + 60% prefix alignment
        - author: the title blend, also tried with either name's word order
          reversed ("Smith John" vs "John Smith"); the best score wins
        - series and generic: 40% edit distance + 60% token-set overlap
    """
    a = _prepare(a)
    b = _prepare(b)

    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    if kind == TITLE:
        score = _blend(a, b)
    elif kind == AUTHOR:
        score = _author_similarity(a, b)
    else:
        score = _lenient_similarity(a, b)

    return min(1.0, max(0.0, score))


def duration_similarity(seconds_a: Any, seconds_b: Any) -> float:
    """
    Closeness of two durations on a 0-100 step scale

    A missing, zero, negative or non-finite duration on either side gives the
    neutral score of 50. Otherwise the difference relative to the longer
    duration is bucketed: <=3% -> 100, <=5% -> 95, <=10% -> 85, <=20% -> 70,
    <=30% -> 50, anything more -> 20.
    """
    first = to_finite_number(seconds_a)
    second = to_finite_number(seconds_b)
    if not first or not second or first <= 0 or second <= 0:
        return NEUTRAL_DURATION_SCORE

    longer = max(first, second)
    percentage_diff = abs(first - second) / longer * 100

    for max_diff, score in DURATION_STEPS:
        if percentage_diff <= max_diff:
            return score
    return DURATION_FLOOR_SCORE

"""
Text normalization for book titles, author/narrator names and series names

Two records describing the same book rarely agree on surface details:
articles, edition notes, roman numerals, accents and punctuation all vary
between services. Everything here maps those variants onto one canonical
lowercase form so the similarity functions compare content, not formatting.
"""

import re
import unicodedata
from typing import Any, Callable, Dict

TITLE = "title"
AUTHOR = "author"
NARRATOR = "narrator"
SERIES = "series"
GENERIC = "generic"

KINDS = (TITLE, AUTHOR, NARRATOR, SERIES, GENERIC)

ROMAN_NUMERALS = {
    "i": "1",
    "ii": "2",
    "iii": "3",
    "iv": "4",
    "v": "5",
    "vi": "6",
    "vii": "7",
    "viii": "8",
    "ix": "9",
    "x": "10",
    "xi": "11",
    "xii": "12",
    "xiii": "13",
    "xiv": "14",
    "xv": "15",
    "xvi": "16",
    "xvii": "17",
    "xviii": "18",
    "xix": "19",
    "xx": "20",
}

NUMBER_WORDS = {
    "one": "1",
    "two": "2",
    "three": "3",
    "four": "4",
    "five": "5",
    "six": "6",
    "seven": "7",
    "eight": "8",
    "nine": "9",
    "ten": "10",
    "eleven": "11",
    "twelve": "12",
    "thirteen": "13",
    "fourteen": "14",
    "fifteen": "15",
    "sixteen": "16",
    "seventeen": "17",
    "eighteen": "18",
    "nineteen": "19",
    "twenty": "20",
}

_ARTICLE_RE = re.compile(
    r"^(a|an|the|la|le|les|el|los|las|der|die|das|de|het|il|lo|gli)\s+"
)

_EDITION_RE = re.compile(
    r"\s*\(?\b(first|second|third|fourth|fifth|sixth|seventh|eighth|ninth|tenth|\d+(?:st|nd|rd|th))"
    r"\s*(edition|ed\b\.?|revised|rev\b\.?|updated|unabridged|abridged|complete|expanded).*$"
)

_PARENTHETICAL_RE = re.compile(r"\s*\([^)]*\)")

_VOLUME_RE = re.compile(
    r"\s*\(?\b(volume|vol\b\.?|part|pt\b\.?|book|bk\b\.?)"
    r"(\s*\d+|\s+(?:[ivx]+|one|two|three|four|five|six|seven|eight|nine|ten))\b.*$"
)

_SERIES_WORD_RE = re.compile(
    r"\s*\b(series|saga|cycle|trilogy|quartet|chronicles|collection|anthology)\s*$"
)

_ROLE_SUFFIX_RE = re.compile(
    r"\s*[-‐-―]\s*(translator|editor|narrator|contributor|adapted by|foreword by|"
    r"introduction by|translated by|afterword by|preface by|illustrator|co-author|with|and|"
    r"et al|illustrated by|compiled by|selected by|retold by)\b.*$"
)

_HONORIFIC_RE = re.compile(
    r",?\s+(jr\.?|sr\.?|ii|iii|iv|ph\.?\s?d\.?|m\.?d\.?|esq\.?|prof\.?|dr\.?)\s*$"
)

_BY_PREFIX_RE = re.compile(r"^(written by|authored by|by|from the|from)\s+")

_LIFESPAN_RE = re.compile(r"\s*\(\s*\d{4}\s*[-‐-―]?\s*\d{0,4}\s*\)")

_NUMBER_TOKEN_RE = re.compile(
    r"\b(" + "|".join(sorted(list(ROMAN_NUMERALS) + list(NUMBER_WORDS), key=len, reverse=True)) + r")\b"
)

_DASH_RE = re.compile(r"[-‐-―−]")
_QUOTE_RE = re.compile(r"[\"'`´‘’‚‛“”„‟′″]")
_PUNCTUATION_RE = re.compile(r"[^\w\s]|_")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_accents(text: str) -> str:
    """Drop combining marks after canonical decomposition (é -> e)"""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def _unify_numbers(text: str) -> str:
    def replace(match: "re.Match[str]") -> str:
        token = match.group(1)
        return ROMAN_NUMERALS.get(token) or NUMBER_WORDS.get(token) or token

    return _NUMBER_TOKEN_RE.sub(replace, text)


def _clean_title(text: str) -> str:
    text = _ARTICLE_RE.sub("", text, count=1)
    text = _EDITION_RE.sub("", text)
    text = _PARENTHETICAL_RE.sub("", text)
    text = _VOLUME_RE.sub("", text)
    return _unify_numbers(text)


def _clean_series(text: str) -> str:
    text = _ARTICLE_RE.sub("", text, count=1)
    text = _SERIES_WORD_RE.sub("", text)
    text = _VOLUME_RE.sub("", text)
    return _unify_numbers(text)


def _clean_person(text: str) -> str:
    text = _ROLE_SUFFIX_RE.sub("", text)
    text = _HONORIFIC_RE.sub("", text)
    text = _BY_PREFIX_RE.sub("", text)
    return _LIFESPAN_RE.sub("", text)


_KIND_CLEANERS: Dict[str, Callable[[str], str]] = {
    TITLE: _clean_title,
    SERIES: _clean_series,
    AUTHOR: _clean_person,
    NARRATOR: _clean_person,
}


def _final_pass(text: str) -> str:
    text = _DASH_RE.sub(" ", text)
    text = _QUOTE_RE.sub("", text)
    text = _PUNCTUATION_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def _normalize_once(text: str, kind: str) -> str:
    text = strip_accents(text.lower()).strip()
    cleaner = _KIND_CLEANERS.get(kind)
    if cleaner:
        text = cleaner(text)
    return _final_pass(text)


def normalize(text: Any, kind: str = GENERIC) -> str:
    """
    Canonicalize text for comparison

    Args:
        text: Raw text; anything that is not a string normalizes to ""
        kind: One of title, author, narrator, series or generic

    Returns:
        Lowercase, accent-free, punctuation-free text with single spaces

    The pipeline is re-applied until its output stops changing, so
    ``normalize(normalize(x, k), k) == normalize(x, k)`` always holds.
    Every pass either converts a number token to digits or shortens the
    text, so the loop terminates.
    """
    if not isinstance(text, str) or not text:
        return ""

    current = _normalize_once(text, kind)
    while True:
        following = _normalize_once(current, kind)
        if following == current:
            return current
        current = following


def normalize_title(title: Any) -> str:
    return normalize(title, TITLE)


def normalize_author(author: Any) -> str:
    return normalize(author, AUTHOR)


def normalize_narrator(narrator: Any) -> str:
    return normalize(narrator, NARRATOR)


def normalize_series(series: Any) -> str:
    return normalize(series, SERIES)

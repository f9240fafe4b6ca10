"""
Utility functions shared by the matching engine and the API clients
"""

import functools
import logging
import math
import re
import time
from typing import Any, Optional


def normalize_isbn(isbn: Any) -> Optional[str]:
    """
    Normalize ISBN by removing hyphens, spaces, and other non-digit characters
    Returns clean ISBN or None if invalid
    """
    if not isbn or not isinstance(isbn, (str, int)):
        return None

    # Remove all non-digit and non-X characters (X can be in ISBN-10)
    clean_isbn = re.sub(r"[^0-9X]", "", str(isbn).upper())

    if len(clean_isbn) == 13 and clean_isbn.isdigit():
        return clean_isbn

    # X is only legal as the ISBN-10 check digit
    if len(clean_isbn) == 10 and clean_isbn[:9].isdigit():
        return clean_isbn

    return None


def normalize_asin(asin: Any) -> Optional[str]:
    """
    Normalize an Amazon ASIN

    ASINs are 10 alphanumeric characters, start with a letter and are never
    purely numeric (a 10 digit value is an ISBN-10, not an ASIN).

    Returns:
        Uppercased ASIN or None if the value does not look like one
    """
    if not asin or not isinstance(asin, str):
        return None

    clean_asin = re.sub(r"\s", "", asin).upper()

    if len(clean_asin) != 10 or not clean_asin.isalnum():
        return None
    if not clean_asin[0].isalpha():
        return None
    if clean_asin.isdigit():
        return None

    return clean_asin


def validate_isbn(isbn: str) -> bool:
    """
    Validate ISBN using checksum calculation
    Supports both ISBN-10 and ISBN-13
    """
    clean_isbn = normalize_isbn(isbn)
    if not clean_isbn:
        return False

    if len(clean_isbn) == 10:
        return _validate_isbn10(clean_isbn)
    return _validate_isbn13(clean_isbn)


def _validate_isbn10(isbn: str) -> bool:
    total = sum(int(isbn[i]) * (10 - i) for i in range(9))
    total += 10 if isbn[9] == "X" else int(isbn[9])
    return total % 11 == 0


def _validate_isbn13(isbn: str) -> bool:
    total = sum(int(digit) * (1 if i % 2 == 0 else 3) for i, digit in enumerate(isbn[:12]))
    return int(isbn[12]) == (10 - (total % 10)) % 10


def to_finite_number(value: Any) -> Optional[float]:
    """Coerce value to a finite float, or None for anything else"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def format_duration(seconds: Optional[float]) -> str:
    """Format duration in seconds to human-readable string"""
    seconds = to_finite_number(seconds)
    if seconds is None or seconds <= 0:
        return "N/A"
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{seconds / 60:.1f}m"
    else:
        return f"{seconds / 3600:.1f}h"


def retry_on_failure(max_retries: int = 3, delay: float = 5, exceptions: tuple = (Exception,)):  # type: ignore
    """
    Decorator for retrying function calls on failure

    Only exceptions listed in ``exceptions`` are retried; anything else is
    raised immediately. The last failure is always re-raised.
    """

    def decorator(func):  # type: ignore
        @functools.wraps(func)
        def wrapper(*args, **kwargs):  # type: ignore
            logger = logging.getLogger(func.__module__)

            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries - 1:
                        raise

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries} failed for {func.__name__}: {str(e)}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)

        return wrapper

    return decorator

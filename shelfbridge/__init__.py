"""
shelfbridge

Resolves books from an Audiobookshelf library to Hardcover books and
editions using ASIN, ISBN and scored title/author matching.
"""

__version__ = "1.0.0"

from .audiobookshelf_client import AudiobookshelfClient
from .book_cache import BookCache
from .book_matcher import BookMatcher, MatchOutcome
from .config import Config
from .hardcover_client import HardcoverAPIError, HardcoverClient
from .match_manager import MatchManager

__all__ = [
    "AudiobookshelfClient",
    "BookCache",
    "BookMatcher",
    "Config",
    "HardcoverAPIError",
    "HardcoverClient",
    "MatchManager",
    "MatchOutcome",
]

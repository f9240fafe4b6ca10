"""
Hardcover API Client - catalog searches and library reads over GraphQL
"""

import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from .extractors import candidates_from_hardcover
from .models import Candidate
from .utils import retry_on_failure

API_URL = "https://api.hardcover.app/v1/graphql"
RATE_LIMIT_PER_MINUTE = 50
REQUEST_TIMEOUT = 30
USER_BOOKS_PAGE_SIZE = 100
MAX_SEARCH_LIMIT = 20

RETRYABLE_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)

EDITION_FIELDS = """
    id
    title
    isbn_10
    isbn_13
    asin
    pages
    audio_seconds
    physical_format
    edition_format
    reading_format_id
    reading_format { format }
    users_count
    release_date
"""

BOOK_FIELDS = """
    id
    title
    release_year
    users_count
    rating
    cached_contributors
    contributions(where: {contributable_type: {_eq: "Book"}}) {
        contribution
        author { id name }
    }
    book_series(limit: 1) {
        position
        series { name }
    }
"""


class HardcoverAPIError(Exception):
    """Transport, HTTP, decoding or GraphQL error talking to Hardcover"""


class RateLimiter:
    """Simple thread-safe rate limiter for API calls"""

    def __init__(self, max_requests_per_minute: int = RATE_LIMIT_PER_MINUTE):
        self.max_requests = max_requests_per_minute
        self.delay = 60.0 / max_requests_per_minute
        self.last_request_time = 0.0
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def wait_if_needed(self) -> None:
        """Wait if needed to respect rate limit"""
        with self._lock:
            time_since_last = time.time() - self.last_request_time
            if time_since_last < self.delay:
                sleep_time = self.delay - time_since_last
                self.logger.debug(f"Rate limiting: sleeping for {sleep_time:.3f}s")
                time.sleep(sleep_time)
            self.last_request_time = time.time()


class HardcoverClient:
    """Client for the Hardcover GraphQL API"""

    def __init__(self, token: str, max_retries: int = 3, retry_delay: float = 5,
                 rate_limit_per_minute: int = RATE_LIMIT_PER_MINUTE):
        self.token = token
        self.api_url = API_URL
        self.logger = logging.getLogger(__name__)
        self.rate_limiter = RateLimiter(rate_limit_per_minute)

        self.session = requests.Session()
        self.session.headers.update(
            {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        )

        self._post = retry_on_failure(max_retries, retry_delay, RETRYABLE_ERRORS)(self._post_once)

        self.logger.debug("HardcoverClient initialized")

    def test_connection(self) -> bool:
        """Test connection to Hardcover API"""
        try:
            return self.get_current_user() is not None
        except HardcoverAPIError as e:
            self.logger.error(f"Connection test failed: {str(e)}")
            return False

    def get_current_user(self) -> Optional[Dict]:
        """Get current user information"""
        query = """
        query {
            me {
                id
                username
            }
        }
        """
        result = self._execute_query(query)
        me = result.get("me") if result else None
        if isinstance(me, list):
            me = me[0] if me else None
        return me

    def get_user_books(self) -> List[Dict]:
        """All ``user_books`` rows of the authenticated user, with book and editions"""
        self.logger.info("Fetching user's book library from Hardcover...")

        query = f"""
        query getUserBooks($offset: Int = 0, $limit: Int = {USER_BOOKS_PAGE_SIZE}) {{
            me {{
                user_books(offset: $offset, limit: $limit, order_by: {{id: asc}}) {{
                    id
                    status_id
                    edition_id
                    book {{
                        {BOOK_FIELDS}
                        editions {{
                            {EDITION_FIELDS}
                        }}
                    }}
                }}
            }}
        }}
        """

        all_books: List[Dict] = []
        offset = 0

        while True:
            result = self._execute_query(query, {"offset": offset, "limit": USER_BOOKS_PAGE_SIZE})
            me_data = (result or {}).get("me")

            # Hasura returns `me` as a list for some roles
            if isinstance(me_data, list):
                me_data = me_data[0] if me_data else {}
            books = (me_data or {}).get("user_books") or []
            if not books:
                break

            all_books.extend(books)
            if len(books) < USER_BOOKS_PAGE_SIZE:
                break
            offset += USER_BOOKS_PAGE_SIZE
            self.logger.debug(f"Fetched {len(all_books)} books so far...")

        self.logger.info(f"Retrieved {len(all_books)} books from Hardcover library")
        return all_books

    def search_by_asin(self, asin: str) -> List[Candidate]:
        """Works having an edition with this ASIN; [] when there is none"""
        query = f"""
        query searchByASIN($asin: String!) {{
            editions(where: {{asin: {{_eq: $asin}}}}, limit: 10) {{
                {EDITION_FIELDS}
                book {{
                    {BOOK_FIELDS}
                }}
            }}
        }}
        """
        result = self._execute_query(query, {"asin": asin})
        candidates = candidates_from_hardcover((result or {}).get("editions") or [])
        self.logger.debug(f"Found {len(candidates)} books for ASIN {asin}")
        return candidates

    def search_by_isbn(self, isbn: str) -> List[Candidate]:
        """Works having an edition with this ISBN-10 or ISBN-13; [] when there is none"""
        query = f"""
        query searchByISBN($isbn: String!) {{
            editions(where: {{_or: [{{isbn_10: {{_eq: $isbn}}}}, {{isbn_13: {{_eq: $isbn}}}}]}}, limit: 10) {{
                {EDITION_FIELDS}
                book {{
                    {BOOK_FIELDS}
                }}
            }}
        }}
        """
        result = self._execute_query(query, {"isbn": isbn})
        candidates = candidates_from_hardcover((result or {}).get("editions") or [])
        self.logger.debug(f"Found {len(candidates)} books for ISBN {isbn}")
        return candidates

    def search_by_title_author(self, title: str, author: Optional[str], narrator: Optional[str] = None,
                               limit: int = 5) -> List[Candidate]:
        """
        Books whose title contains ``title``, most read first

        Args:
            title: Title text, matched case-insensitively as a substring
            author: Author text; restricts results to books with a matching
                author contribution when given
            narrator: Accepted for interface parity; Hardcover has no narrator filter
            limit: Maximum results, capped at 20

        Returns:
            Candidates with their editions; [] when nothing matches
        """
        limit = max(1, min(int(limit or 1), MAX_SEARCH_LIMIT))

        conditions = ["{title: {_ilike: $title}}"]
        variables: Dict[str, Any] = {"title": f"%{title}%", "limit": limit}
        author_variable = ""
        if author:
            conditions.append('{contributions: {author: {name: {_ilike: $author}}}}')
            variables["author"] = f"%{author}%"
            author_variable = ", $author: String!"

        query = f"""
        query searchByTitleAuthor($title: String!, $limit: Int!{author_variable}) {{
            books(where: {{_and: [{", ".join(conditions)}]}}, order_by: {{users_count: desc}}, limit: $limit) {{
                {BOOK_FIELDS}
                editions(order_by: {{users_count: desc}}, limit: 20) {{
                    {EDITION_FIELDS}
                }}
            }}
        }}
        """

        if narrator:
            self.logger.debug(f"Narrator '{narrator}' is only used for scoring, not for the search")

        result = self._execute_query(query, variables)
        candidates = candidates_from_hardcover((result or {}).get("books") or [])
        self.logger.debug(f"Found {len(candidates)} books for '{title}' by {author}")
        return candidates

    def _post_once(self, payload: Dict[str, Any]) -> requests.Response:
        self.rate_limiter.wait_if_needed()
        return self.session.post(self.api_url, json=payload, timeout=REQUEST_TIMEOUT)

    def _execute_query(self, query: str, variables: Optional[Dict] = None) -> Optional[Dict]:
        """
        Execute GraphQL query with rate limiting and retries

        Raises:
            HardcoverAPIError: on transport failure, HTTP error status,
                undecodable JSON or a GraphQL ``errors`` payload
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = self._post(payload)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Request failed: {str(e)}")
            raise HardcoverAPIError(f"Request failed: {str(e)}") from e
        except (json.JSONDecodeError, ValueError) as e:
            self.logger.error(f"Invalid JSON response: {str(e)}")
            raise HardcoverAPIError(f"Invalid JSON response: {str(e)}") from e

        if not isinstance(data, dict):
            raise HardcoverAPIError(f"Unexpected response type: {type(data).__name__}")

        if data.get("errors"):
            self.logger.error(f"GraphQL errors: {data['errors']}")
            raise HardcoverAPIError(f"GraphQL errors: {data['errors']}")

        return data.get("data")

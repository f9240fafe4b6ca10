"""
Audiobookshelf API Client - reads the source library and listening progress
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests

PAGE_SIZE = 100
REQUEST_TIMEOUT = 30


class AudiobookshelfClient:
    """Client for the Audiobookshelf REST API"""

    def __init__(self, base_url: str, token: str):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.logger = logging.getLogger(__name__)

        self.session = requests.Session()
        self.session.headers.update(
            {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        )

        self.logger.debug(f"AudiobookshelfClient initialized for {self.base_url}")

    def test_connection(self) -> bool:
        """Test connection to Audiobookshelf server"""
        response = self._make_request("GET", "/ping")
        return response is not None

    def get_books(self) -> List[Dict[str, Any]]:
        """
        Every book item across the user's book libraries

        Podcast libraries are skipped. Each item gets ``libraryType`` from its
        library and ``progress_percentage`` from the user's media progress
        (0.0 when the user never opened it).

        Raises:
            RuntimeError: when the current user cannot be read
        """
        self.logger.info("Fetching library items from Audiobookshelf...")

        user_data = self._get_json("/api/me")
        if not isinstance(user_data, dict):
            raise RuntimeError("Could not get current Audiobookshelf user")
        progress_by_item = self._progress_by_item(user_data)

        books: List[Dict[str, Any]] = []
        for library in self.get_libraries():
            library_type = library.get("mediaType")
            if library_type == "podcast":
                self.logger.debug(f"Skipping podcast library {library.get('name')}")
                continue

            for item in self.get_library_items(library["id"]):
                item.setdefault("libraryType", library_type)
                progress = progress_by_item.get(item.get("id"))
                item["progress_percentage"] = (progress or {}).get("progress", 0) * 100
                item["is_finished"] = bool((progress or {}).get("isFinished", False))
                books.append(item)

        self.logger.info(f"Found {len(books)} books in Audiobookshelf")
        return books

    def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        """Detailed information for a single library item"""
        item = self._get_json(f"/api/items/{item_id}", params={"expanded": 1})
        return item if isinstance(item, dict) else None

    def get_libraries(self) -> List[Dict[str, Any]]:
        data = self._get_json("/api/libraries")
        libraries = data.get("libraries", []) if isinstance(data, dict) else []
        return libraries if isinstance(libraries, list) else []

    def get_library_items(self, library_id: str, page_size: int = PAGE_SIZE) -> List[Dict[str, Any]]:
        """All items of a library, following pagination"""
        items: List[Dict[str, Any]] = []
        page = 0

        while True:
            data = self._get_json(
                f"/api/libraries/{library_id}/items",
                params={"limit": page_size, "page": page, "minified": 0},
            )
            results = data.get("results", []) if isinstance(data, dict) else []
            if not isinstance(results, list) or not results:
                break

            items.extend(results)
            total = data.get("total", 0)
            if len(results) < page_size or (total and len(items) >= total):
                break
            page += 1

        self.logger.debug(f"Library {library_id}: {len(items)} items")
        return items

    @staticmethod
    def _progress_by_item(user_data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        progress_by_item = {}
        for progress in user_data.get("mediaProgress") or []:
            # Episode progress belongs to podcasts
            if isinstance(progress, dict) and not progress.get("episodeId"):
                progress_by_item[progress.get("libraryItemId")] = progress
        return progress_by_item

    def _get_json(self, endpoint: str, **kwargs: Any) -> Optional[Any]:
        response = self._make_request("GET", endpoint, **kwargs)
        if response is None:
            return None
        try:
            return response.json()
        except ValueError as e:
            self.logger.error(f"Invalid JSON from {endpoint}: {str(e)}")
            return None

    def _make_request(self, method: str, endpoint: str, **kwargs: Any) -> Optional[requests.Response]:
        """Make HTTP request to Audiobookshelf API; failures are logged and give None"""
        url = urljoin(self.base_url + "/", endpoint.lstrip("/"))

        try:
            response = self.session.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
            self.logger.debug(f"{method} {url} -> {response.status_code}")
            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Request failed: {method} {url} - {str(e)}")
            return None

"""
SQLite cache of resolved editions and last synced progress, per user
"""

import json
import logging
import os
import re
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, Optional


class BookCache:
    """SQLite-based cache for book edition mappings and progress tracking"""

    def __init__(self, cache_file: str = "data/.book_cache.db"):
        self.cache_file = cache_file
        self.logger = logging.getLogger(__name__)
        self._write_lock = threading.Lock()
        try:
            self._init_database()
            self.logger.debug(f"SQLite cache initialized: {os.path.abspath(self.cache_file)}")
        except Exception as e:
            self.logger.error(f"Failed to initialize database at {self.cache_file}: {str(e)}")
            raise

    def _init_database(self) -> None:
        cache_dir = os.path.dirname(self.cache_file)
        if cache_dir and not os.path.exists(cache_dir):
            os.makedirs(cache_dir, exist_ok=True)
            self.logger.info(f"Created cache directory: {cache_dir}")

        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS books (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    identifier TEXT NOT NULL,
                    identifier_type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    edition_id INTEGER,
                    author TEXT,
                    progress_percent REAL,
                    last_sync TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(user_id, identifier, identifier_type, title)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_user_id ON books(user_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_identifier ON books(identifier)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_edition_id ON books(edition_id)")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Connection with dict-like rows; commits on success and always closes"""
        conn = sqlite3.connect(self.cache_file)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @staticmethod
    def _normalize_title(title: str) -> str:
        return (title or "").lower().strip()

    @staticmethod
    def generate_title_author_identifier(title: str, author: str) -> str:
        """
        Cache key for a title/author match

        Lowercased with punctuation removed, e.g.
        ("The Hobbit", "J.R.R. Tolkien") -> "the hobbit_jrr tolkien"
        """
        def clean(value: Any) -> str:
            return re.sub(r"[^\w\s]", "", str(value or "").lower()).strip()

        return f"{clean(title)}_{clean(author)}"

    def get_cached_book_info(self, user_id: str, identifier: str, title: str,
                             identifier_type: str = "isbn") -> Dict[str, Any]:
        """
        Everything cached for a book

        Returns:
            Dict with ``exists`` True plus the stored fields, or
            ``{"exists": False}`` (with ``error`` when the read failed)
        """
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT edition_id, author, progress_percent, last_sync, updated_at
                    FROM books WHERE user_id = ? AND identifier = ? AND identifier_type = ? AND title = ?
                    """,
                    (user_id, identifier, identifier_type, self._normalize_title(title)),
                ).fetchone()
        except Exception as e:
            self.logger.error(f"Error reading cache for {title}: {str(e)}")
            return {"exists": False, "error": str(e)}

        if row is None:
            return {"exists": False}

        return {
            "exists": True,
            "edition_id": row["edition_id"],
            "author": row["author"],
            "progress_percent": row["progress_percent"],
            "last_sync": row["last_sync"],
            "updated_at": row["updated_at"],
        }

    def get_edition_for_book(self, user_id: str, identifier: str, title: str,
                             identifier_type: str = "isbn") -> Optional[int]:
        """Cached edition ID for a book, or None"""
        info = self.get_cached_book_info(user_id, identifier, title, identifier_type)
        if info.get("exists") and info.get("edition_id"):
            self.logger.debug(f"Cache hit for {title}: edition {info['edition_id']} ({identifier_type.upper()})")
            return int(info["edition_id"])
        return None

    def store_edition_mapping(
        self,
        user_id: str,
        identifier: str,
        title: str,
        edition_id: Any,
        identifier_type: str = "isbn",
        author: Optional[str] = None,
    ) -> None:
        """
        Store edition mapping in cache

        An existing row keeps its progress; only edition, author and
        updated_at change. Failures are logged and re-raised.
        """
        current_time = datetime.now().isoformat()
        try:
            with self._write_lock, self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO books (user_id, identifier, identifier_type, title, author, edition_id, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, identifier, identifier_type, title)
                    DO UPDATE SET edition_id = excluded.edition_id, author = excluded.author,
                                  updated_at = excluded.updated_at
                    """,
                    (user_id, identifier, identifier_type, self._normalize_title(title), author, edition_id,
                     current_time),
                )
        except Exception as e:
            self.logger.error(f"Error storing edition mapping for {title}: {str(e)}")
            raise

        self.logger.debug(f"Cached edition mapping for {title}: {identifier} ({identifier_type}) -> {edition_id}")

    def get_last_progress(self, user_id: str, identifier: str, title: str,
                          identifier_type: str = "isbn") -> Optional[float]:
        info = self.get_cached_book_info(user_id, identifier, title, identifier_type)
        if info.get("exists") and info.get("progress_percent") is not None:
            return float(info["progress_percent"])
        return None

    def store_progress(self, user_id: str, identifier: str, title: str, progress_percent: float,
                       identifier_type: str = "isbn") -> None:
        """Store progress for a book, keeping any cached edition mapping"""
        current_time = datetime.now().isoformat()
        try:
            with self._write_lock, self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO books (user_id, identifier, identifier_type, title, progress_percent,
                                       last_sync, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, identifier, identifier_type, title)
                    DO UPDATE SET progress_percent = excluded.progress_percent,
                                  last_sync = excluded.last_sync, updated_at = excluded.updated_at
                    """,
                    (user_id, identifier, identifier_type, self._normalize_title(title), progress_percent,
                     current_time, current_time),
                )
        except Exception as e:
            self.logger.error(f"Error storing progress for {title}: {str(e)}")
            raise

        self.logger.debug(f"Cached progress for {title}: {progress_percent:.1f}% ({identifier_type}: {identifier})")

    def has_progress_changed(self, user_id: str, identifier: str, title: str, current_progress: float,
                             identifier_type: str = "isbn") -> bool:
        """True when there is no cached progress or it differs by more than 0.1 points"""
        last_progress = self.get_last_progress(user_id, identifier, title, identifier_type)
        if last_progress is None:
            return True

        progress_diff = abs(current_progress - last_progress)
        if progress_diff > 0.1:
            self.logger.debug(f"Progress changed for {title}: {last_progress:.3f}% -> {current_progress:.3f}%")
            return True
        return False

    def clear_cache(self) -> None:
        """Clear all cached data"""
        with self._write_lock, self._get_connection() as conn:
            conn.execute("DELETE FROM books")
        self.logger.info("Book cache cleared")

    def clear_edition_mappings(self) -> int:
        """Forget resolved editions but keep progress; returns rows touched"""
        with self._write_lock, self._get_connection() as conn:
            cursor = conn.execute("UPDATE books SET edition_id = NULL WHERE edition_id IS NOT NULL")
            cleared = cursor.rowcount
        self.logger.info(f"Cleared {cleared} edition mappings")
        return cleared

    def get_cache_stats(self) -> Dict[str, int]:
        """Get cache statistics"""
        try:
            with self._get_connection() as conn:
                total_books = conn.execute("SELECT COUNT(*) AS total FROM books").fetchone()["total"]
                books_with_editions = conn.execute(
                    "SELECT COUNT(*) AS count FROM books WHERE edition_id IS NOT NULL"
                ).fetchone()["count"]
                books_with_progress = conn.execute(
                    "SELECT COUNT(*) AS count FROM books WHERE progress_percent IS NOT NULL"
                ).fetchone()["count"]
                title_author_matches = conn.execute(
                    "SELECT COUNT(*) AS count FROM books WHERE identifier_type = 'title_author'"
                ).fetchone()["count"]
        except Exception as e:
            self.logger.error(f"Error getting cache stats: {str(e)}")
            total_books = books_with_editions = books_with_progress = title_author_matches = 0

        return {
            "total_books": total_books,
            "books_with_editions": books_with_editions,
            "books_with_progress": books_with_progress,
            "title_author_matches": title_author_matches,
            "cache_file_size": os.path.getsize(self.cache_file) if os.path.exists(self.cache_file) else 0,
        }

    def export_to_json(self, filename: str = "book_cache_export.json") -> int:
        """Export cache data to JSON for backup/debugging; returns rows exported"""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM books ORDER BY user_id, identifier, title").fetchall()

        export_data = {}
        for row in rows:
            key = f"{row['user_id']}_{row['identifier_type']}_{row['identifier']}_{row['title']}"
            export_data[key] = {
                "user_id": row["user_id"],
                "identifier": row["identifier"],
                "identifier_type": row["identifier_type"],
                "title": row["title"],
                "author": row["author"],
                "edition_id": row["edition_id"],
                "progress_percent": row["progress_percent"],
                "last_sync": row["last_sync"],
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
            }

        with open(filename, "w") as f:
            json.dump(export_data, f, indent=2)

        self.logger.info(f"Cache exported to {filename}")
        return len(export_data)

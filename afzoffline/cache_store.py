"""SQLite-backed named cache stores for response snapshots.

Each store maps a request key (method + URL, GET only) to a response
snapshot. Stores are grouped by name in one database file so a whole
generation can be listed and dropped at once.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import urldefrag

from .models import Request, Response

logger = logging.getLogger(__name__)

Fetch = Callable[[Request], Response]


class CacheStorageError(Exception):
    """Raised when a cache store operation fails."""

    pass


def init_cache_db(db_path: str) -> sqlite3.Connection:
    """Initialize the cache database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file, or ":memory:".

    Returns:
        Database connection with WAL mode enabled.

    Raises:
        CacheStorageError: If database initialization fails.
    """
    try:
        if db_path != ":memory:":
            parent_dir = Path(db_path).parent
            if not parent_dir.exists():
                parent_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS stores (
                name TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                store TEXT NOT NULL,
                method TEXT NOT NULL,
                url TEXT NOT NULL,
                status INTEGER NOT NULL,
                status_text TEXT NOT NULL,
                headers TEXT NOT NULL,
                body BLOB NOT NULL,
                stored_at TEXT NOT NULL,
                PRIMARY KEY (store, method, url)
            )
        """)

        conn.commit()
        return conn

    except sqlite3.Error as e:
        raise CacheStorageError(f"Failed to initialize cache database: {e}")
    except OSError as e:
        raise CacheStorageError(f"Failed to create cache database directory: {e}")


def _request_key(request: Request | str) -> tuple[str, str]:
    """Return the (method, url) key for a request or bare URL."""
    if isinstance(request, str):
        return "GET", urldefrag(request)[0]
    return request.method.upper(), urldefrag(request.url)[0]


def _row_to_response(row: sqlite3.Row) -> Response:
    return Response(
        status=row["status"],
        body=bytes(row["body"]),
        headers=json.loads(row["headers"]),
        status_text=row["status_text"],
        url=row["url"],
        from_cache=True,
    )


class Cache:
    """One named store. Obtain instances through CacheStorage.open()."""

    def __init__(self, storage: "CacheStorage", name: str) -> None:
        self._storage = storage
        self.name = name

    def __repr__(self) -> str:
        return f"Cache({self.name!r})"

    def match(self, request: Request | str) -> Response | None:
        """Return the stored snapshot for a request, or None on a miss."""
        method, url = _request_key(request)
        if method != "GET":
            return None

        conn = self._storage.conn
        try:
            with self._storage.lock:
                row = conn.execute(
                    "SELECT * FROM entries WHERE store = ? AND method = ? AND url = ?",
                    (self.name, method, url),
                ).fetchone()
        except sqlite3.Error as e:
            raise CacheStorageError(f"Failed to read {url} from {self.name}: {e}")

        return _row_to_response(row) if row is not None else None

    def put(self, request: Request | str, response: Response) -> None:
        """Store a response snapshot for a request, replacing any previous one.

        Raises:
            CacheStorageError: For non-GET requests, failed responses, or a
                database error.
        """
        method, url = _request_key(request)
        if method != "GET":
            raise CacheStorageError(f"Only GET requests can be cached, got {method} {url}")
        if not response.ok:
            raise CacheStorageError(f"Refusing to cache failed response ({response.status}) for {url}")

        self._write([(url, response)])

    def add(self, request: Request | str, fetch: Fetch) -> Response:
        """Fetch a request and store the result.

        Raises:
            CacheStorageError: If the response status is not 200.
            NetworkError: If the fetch itself fails.
        """
        if isinstance(request, str):
            request = Request(url=request)
        response = fetch(request)
        if response.status != 200:
            raise CacheStorageError(f"Request for {request.url} returned status {response.status}")
        self.put(request, response)
        return response

    def add_all(self, requests: Iterable[Request | str], fetch: Fetch) -> None:
        """Fetch every request and store all of them, or none.

        The store is written in a single transaction only after every fetch
        returned 200.
        """
        fetched: list[tuple[str, Response]] = []
        for request in requests:
            if isinstance(request, str):
                request = Request(url=request)
            response = fetch(request)
            if response.status != 200:
                raise CacheStorageError(f"Request for {request.url} returned status {response.status}")
            fetched.append((_request_key(request)[1], response))

        self._write(fetched)

    def delete(self, request: Request | str) -> bool:
        """Remove a stored entry. Returns True if something was deleted."""
        method, url = _request_key(request)
        conn = self._storage.conn
        try:
            with self._storage.lock:
                cursor = conn.execute(
                    "DELETE FROM entries WHERE store = ? AND method = ? AND url = ?",
                    (self.name, method, url),
                )
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise CacheStorageError(f"Failed to delete {url} from {self.name}: {e}")

    def keys(self) -> list[str]:
        """Return the URLs stored in this cache, oldest first."""
        conn = self._storage.conn
        try:
            with self._storage.lock:
                rows = conn.execute(
                    "SELECT url FROM entries WHERE store = ? ORDER BY stored_at, rowid",
                    (self.name,),
                ).fetchall()
        except sqlite3.Error as e:
            raise CacheStorageError(f"Failed to list entries of {self.name}: {e}")
        return [row["url"] for row in rows]

    def _write(self, items: list[tuple[str, Response]]) -> None:
        now = datetime.now(UTC).isoformat()
        conn = self._storage.conn
        with self._storage.lock:
            try:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO entries
                    (store, method, url, status, status_text, headers, body, stored_at)
                    VALUES (?, 'GET', ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            self.name,
                            url,
                            response.status,
                            response.status_text,
                            json.dumps(response.headers),
                            response.body,
                            now,
                        )
                        for url, response in items
                    ],
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise CacheStorageError(f"Failed to write to {self.name}: {e}")


class CacheStorage:
    """Registry of named stores sharing one database connection.

    Thread-safe: every statement runs under the instance lock, which gives
    atomic single-key put/get/delete across concurrent request handlers.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.lock = threading.Lock()

    def open(self, name: str) -> Cache:
        """Open a named store, creating it if absent."""
        try:
            with self.lock:
                self.conn.execute(
                    "INSERT OR IGNORE INTO stores (name, created_at) VALUES (?, ?)",
                    (name, datetime.now(UTC).isoformat()),
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise CacheStorageError(f"Failed to open cache {name}: {e}")
        return Cache(self, name)

    def keys(self) -> list[str]:
        """Return all store names in creation order."""
        try:
            with self.lock:
                rows = self.conn.execute("SELECT name FROM stores ORDER BY created_at, rowid").fetchall()
        except sqlite3.Error as e:
            raise CacheStorageError(f"Failed to list caches: {e}")
        return [row["name"] for row in rows]

    def delete(self, name: str) -> bool:
        """Drop a store and all of its entries. Returns False if it did not exist."""
        with self.lock:
            try:
                self.conn.execute("DELETE FROM entries WHERE store = ?", (name,))
                cursor = self.conn.execute("DELETE FROM stores WHERE name = ?", (name,))
                self.conn.commit()
                deleted = cursor.rowcount > 0
            except sqlite3.Error as e:
                self.conn.rollback()
                raise CacheStorageError(f"Failed to delete cache {name}: {e}")

        if deleted:
            logger.debug("Deleted cache %s", name)
        return deleted

    def match(self, request: Request | str) -> Response | None:
        """Search every store, oldest first, and return the first hit."""
        for name in self.keys():
            response = Cache(self, name).match(request)
            if response is not None:
                return response
        return None

    def close(self) -> None:
        self.conn.close()

"""Shared fixtures for the test suite."""

import sqlite3
import threading
from collections.abc import Callable

import pytest

from afzoffline.cache_store import CacheStorage, init_cache_db
from afzoffline.models import Request, Response
from afzoffline.network import NetworkError

ORIGIN = "http://localhost:8002"


class FakeNetwork:
    """Scripted stand-in for the network.

    Each URL maps to a Response, an exception to raise, or a callable
    producing either. Unknown URLs raise NetworkError, like being offline.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Response | Exception | Callable[[Request], Response]] = {}
        self.calls: list[Request] = []
        self._lock = threading.Lock()

    def serve(self, url: str, body: bytes = b"ok", status: int = 200, **headers: str) -> None:
        self.routes[url] = Response(status=status, body=body, headers=dict(headers), url=url)

    def fail(self, url: str) -> None:
        self.routes[url] = NetworkError(f"Fetch failed for {url}")

    def called_urls(self) -> list[str]:
        with self._lock:
            return [r.url for r in self.calls]

    def __call__(self, request: Request) -> Response:
        with self._lock:
            self.calls.append(request)
        route = self.routes.get(request.url)
        if route is None:
            raise NetworkError(f"Fetch failed for {request.url}: offline")
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        return route


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def cache_conn() -> sqlite3.Connection:
    """In-memory cache database with initialized tables."""
    conn = init_cache_db(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def storage(cache_conn: sqlite3.Connection) -> CacheStorage:
    return CacheStorage(cache_conn)

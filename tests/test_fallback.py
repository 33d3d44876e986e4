"""Tests for the offline fallback resolver."""

from unittest.mock import MagicMock

import pytest

from afzoffline.cache_store import Cache, CacheStorage, CacheStorageError
from afzoffline.fallback import OFFLINE_BODY, OfflineFallbackResolver, offline_response
from afzoffline.models import DESTINATION_IMAGE, MODE_NAVIGATE, Request, Response

OFFLINE_PAGE = "http://localhost:8002/pages/offline.html"
PLACEHOLDER = "http://localhost:8002/images/placeholder.svg"


@pytest.fixture
def static_cache(storage: CacheStorage) -> Cache:
    return storage.open("afz-cache-v1")


@pytest.fixture
def resolver(static_cache: Cache) -> OfflineFallbackResolver:
    return OfflineFallbackResolver(static_cache, OFFLINE_PAGE, PLACEHOLDER)


def test_offline_response() -> None:
    """The generic fallback is a plain-text 503."""
    response = offline_response()
    assert response.status == 503
    assert response.body == OFFLINE_BODY == b"Offline - Content not available"
    assert response.content_type == "text/plain"


class TestResolve:
    """Tests for OfflineFallbackResolver.resolve."""

    def test_navigation_gets_offline_page(self, static_cache: Cache, resolver: OfflineFallbackResolver) -> None:
        """Navigations resolve to the cached offline page."""
        static_cache.put(OFFLINE_PAGE, Response(status=200, body=b"<h1>Offline</h1>"))

        response = resolver.resolve(Request(url="http://localhost:8002/news", mode=MODE_NAVIGATE))

        assert response.status == 200
        assert response.body == b"<h1>Offline</h1>"

    def test_image_gets_placeholder(self, static_cache: Cache, resolver: OfflineFallbackResolver) -> None:
        """Images resolve to the cached placeholder."""
        static_cache.put(PLACEHOLDER, Response(status=200, body=b"<svg/>"))

        response = resolver.resolve(
            Request(url="http://localhost:8002/images/team.jpg", destination=DESTINATION_IMAGE)
        )

        assert response.body == b"<svg/>"

    def test_other_requests_get_503(self, static_cache: Cache, resolver: OfflineFallbackResolver) -> None:
        """Other requests get the 503 even when fallbacks are cached."""
        static_cache.put(OFFLINE_PAGE, Response(status=200, body=b"offline"))
        static_cache.put(PLACEHOLDER, Response(status=200, body=b"<svg/>"))

        response = resolver.resolve(Request(url="http://localhost:8002/api/stats", mode="cors"))

        assert response.status == 503
        assert response.body == OFFLINE_BODY

    def test_navigation_without_offline_page_gets_503(self, resolver: OfflineFallbackResolver) -> None:
        """A missing offline page degrades to the 503."""
        response = resolver.resolve(Request(url="http://localhost:8002/news", mode=MODE_NAVIGATE))
        assert response.status == 503

    def test_image_without_placeholder_gets_503(self, resolver: OfflineFallbackResolver) -> None:
        """A missing placeholder degrades to the 503."""
        response = resolver.resolve(Request(url="http://localhost:8002/a.png", destination=DESTINATION_IMAGE))
        assert response.status == 503

    def test_store_error_gets_503(self) -> None:
        """A store error degrades to the 503 instead of raising."""
        cache = MagicMock(spec=Cache)
        cache.match.side_effect = CacheStorageError("database is locked")
        resolver = OfflineFallbackResolver(cache, OFFLINE_PAGE, PLACEHOLDER)

        response = resolver.resolve(Request(url="http://localhost:8002/news", mode=MODE_NAVIGATE))

        assert response.status == 503

"""Tests for cache generation management."""

from unittest.mock import patch

import pytest

from afzoffline.cache_store import CacheStorage, CacheStorageError
from afzoffline.models import Response
from afzoffline.versioning import CacheVersionManager

from conftest import FakeNetwork

MANIFEST = [
    "http://localhost:8002/",
    "http://localhost:8002/index.html",
    "http://localhost:8002/css/site.css",
]


@pytest.fixture
def manager(storage: CacheStorage) -> CacheVersionManager:
    return CacheVersionManager(storage, "v2", prefix="afz-")


class TestStoreNames:
    """Tests for generation naming."""

    def test_names(self, manager: CacheVersionManager) -> None:
        """Store names combine prefix, kind and version."""
        assert manager.static_cache_name == "afz-cache-v2"
        assert manager.runtime_cache_name == "afz-runtime-v2"

    @pytest.mark.parametrize(
        "name, stale",
        [
            ("afz-cache-v1", True),
            ("afz-runtime-v1", True),
            ("afz-cache-v2", False),
            ("afz-runtime-v2", False),
            ("unrelated-store", False),
        ],
    )
    def test_is_stale(self, manager: CacheVersionManager, name: str, stale: bool) -> None:
        """Only our prefix with another version counts as stale."""
        assert manager.is_stale(name) is stale


class TestInstall:
    """Tests for install-time population of the static store."""

    def test_batch_success(self, manager: CacheVersionManager, network: FakeNetwork) -> None:
        """A healthy manifest is cached in one batch."""
        for url in MANIFEST:
            network.serve(url)

        report = manager.install(MANIFEST, network)

        assert report.batch_succeeded is True
        assert report.cache_name == "afz-cache-v2"
        assert report.cached_count == len(MANIFEST)
        assert report.failed == []
        assert sorted(manager.static_cache().keys()) == sorted(MANIFEST)

    def test_single_failure_falls_back_to_per_asset(self, manager: CacheVersionManager, network: FakeNetwork) -> None:
        """A failed asset is reported while the others are cached."""
        network.serve(MANIFEST[0])
        network.fail(MANIFEST[1])
        network.serve(MANIFEST[2])

        report = manager.install(MANIFEST, network)

        assert report.batch_succeeded is False
        assert [r.url for r in report.failed] == [MANIFEST[1]]
        assert report.failed[0].error
        assert report.cached_count == 2
        cache = manager.static_cache()
        assert cache.match(MANIFEST[0]) is not None
        assert cache.match(MANIFEST[1]) is None
        assert cache.match(MANIFEST[2]) is not None

    def test_non_200_asset_is_reported(self, manager: CacheVersionManager, network: FakeNetwork) -> None:
        """A 404 asset is reported with its status."""
        network.serve(MANIFEST[0])
        network.serve(MANIFEST[1], status=404)
        network.serve(MANIFEST[2])

        report = manager.install(MANIFEST, network)

        assert [r.url for r in report.failed] == [MANIFEST[1]]
        assert "404" in report.failed[0].error

    def test_results_follow_manifest_order(self, manager: CacheVersionManager, network: FakeNetwork) -> None:
        """Per-asset results keep manifest order."""
        network.serve(MANIFEST[2])

        report = manager.install(MANIFEST, network)

        assert [r.url for r in report.results] == MANIFEST
        assert [r.cached for r in report.results] == [False, False, True]


class TestEvictStale:
    """Tests for activation-time eviction."""

    def test_deletes_only_older_generations(self, storage: CacheStorage, manager: CacheVersionManager) -> None:
        """Eviction removes stale generations only."""
        for name in ("afz-cache-v1", "afz-runtime-v1", "afz-cache-v2", "afz-runtime-v2", "unrelated-store"):
            storage.open(name).put("http://x/a.js", Response(status=200))

        deleted, failed = manager.evict_stale()

        assert sorted(deleted) == ["afz-cache-v1", "afz-runtime-v1"]
        assert failed == []
        assert storage.keys() == ["afz-cache-v2", "afz-runtime-v2", "unrelated-store"]

    def test_nothing_to_delete(self, storage: CacheStorage, manager: CacheVersionManager) -> None:
        """With only the current generation, nothing is evicted."""
        manager.static_cache()
        assert manager.evict_stale() == ([], [])

    def test_delete_failure_is_reported(self, storage: CacheStorage, manager: CacheVersionManager) -> None:
        """A store that cannot be deleted is reported and the rest go on."""
        storage.open("afz-cache-v1")
        storage.open("afz-runtime-v1")

        real_delete = storage.delete

        def flaky_delete(name: str) -> bool:
            if name == "afz-cache-v1":
                raise CacheStorageError("disk I/O error")
            return real_delete(name)

        with patch.object(storage, "delete", side_effect=flaky_delete):
            deleted, failed = manager.evict_stale()

        assert deleted == ["afz-runtime-v1"]
        assert failed == ["afz-cache-v1"]
        assert "afz-cache-v1" in storage.keys()

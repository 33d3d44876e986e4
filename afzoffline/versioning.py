"""Cache generations: install-time population and stale generation eviction."""

import logging
from collections.abc import Sequence

from .cache_store import Cache, CacheStorage, CacheStorageError, Fetch
from .models import AssetResult, InstallReport
from .network import NetworkError

logger = logging.getLogger(__name__)


class CacheVersionManager:
    """Owns the store names of the current generation.

    Args:
        storage: Registry holding every named store.
        version: Version tag of the current generation.
        prefix: Naming prefix shared by all generations of this site. Stores
            without it belong to someone else and are never evicted.
    """

    def __init__(self, storage: CacheStorage, version: str, prefix: str = "afz-") -> None:
        self.storage = storage
        self.version = version
        self.prefix = prefix

    @property
    def static_cache_name(self) -> str:
        return f"{self.prefix}cache-{self.version}"

    @property
    def runtime_cache_name(self) -> str:
        return f"{self.prefix}runtime-{self.version}"

    def static_cache(self) -> Cache:
        return self.storage.open(self.static_cache_name)

    def runtime_cache(self) -> Cache:
        return self.storage.open(self.runtime_cache_name)

    def is_stale(self, name: str) -> bool:
        """Whether a store belongs to an older generation of this site."""
        return name.startswith(self.prefix) and name not in (self.static_cache_name, self.runtime_cache_name)

    def install(self, manifest: Sequence[str], fetch: Fetch) -> InstallReport:
        """Populate the static store with the asset manifest.

        The whole manifest is tried as one batch first. If the batch fails,
        every asset is retried on its own and failures are collected in the
        report; install never aborts because of a single asset.
        """
        cache = self.static_cache()

        try:
            cache.add_all(manifest, fetch)
        except (CacheStorageError, NetworkError) as e:
            logger.warning("Failed to cache some static resources: %s", e)
        else:
            logger.info("Static resources cached successfully (%d assets)", len(manifest))
            return InstallReport(
                cache_name=cache.name,
                batch_succeeded=True,
                results=[AssetResult(url=url, cached=True) for url in manifest],
            )

        results = [self._cache_asset(cache, url, fetch) for url in manifest]
        report = InstallReport(cache_name=cache.name, batch_succeeded=False, results=results)
        logger.info(
            "Cached %d/%d static resources individually",
            report.cached_count,
            len(results),
        )
        return report

    def _cache_asset(self, cache: Cache, url: str, fetch: Fetch) -> AssetResult:
        try:
            cache.add(url, fetch)
        except (CacheStorageError, NetworkError) as e:
            logger.warning("Failed to cache %s: %s", url, e)
            return AssetResult(url=url, cached=False, error=str(e))
        return AssetResult(url=url, cached=True)

    def evict_stale(self) -> tuple[list[str], list[str]]:
        """Delete every stale generation's stores.

        Returns:
            Tuple of (deleted store names, store names that failed to delete).
        """
        try:
            names = self.storage.keys()
        except CacheStorageError as e:
            logger.error("Could not list caches, skipping cleanup: %s", e)
            return [], []

        deleted: list[str] = []
        failed: list[str] = []
        for name in names:
            if not self.is_stale(name):
                continue
            logger.info("Deleting old cache: %s", name)
            try:
                self.storage.delete(name)
                deleted.append(name)
            except CacheStorageError as e:
                logger.error("Failed to delete old cache %s: %s", name, e)
                failed.append(name)

        return deleted, failed

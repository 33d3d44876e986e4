"""Caching strategies executed for a routed request.

Handles caching strategy:
- Cache-first: serve from the store, fetch and store only on a miss
- Network-first: fetch, write through on success, fall back to the store
- Network-first with offline page: as network-first, then the offline page
  for navigations
- Stale-while-revalidate: serve the store at once, refresh it in background

Only a 200 response is ever written to a store. Other statuses are still
returned to the caller as-is.
"""

import logging
from concurrent.futures import Executor, Future

from .cache_store import Cache, CacheStorageError, Fetch
from .models import Request, Response
from .network import NetworkError

logger = logging.getLogger(__name__)

CACHEABLE_STATUS = 200


def _store(cache: Cache, request: Request, response: Response) -> None:
    """Write a clone of a successful response to the store."""
    if response.status != CACHEABLE_STATUS:
        return
    try:
        cache.put(request, response.clone())
    except CacheStorageError as e:
        logger.warning("Failed to cache %s in %s: %s", request.url, cache.name, e)


def cache_first(request: Request, cache: Cache, fetch: Fetch) -> Response:
    """Return the stored match if any, otherwise fetch and store.

    Raises:
        NetworkError: On a cache miss when the network fails.
    """
    cached = cache.match(request)
    if cached is not None:
        return cached

    response = fetch(request)
    _store(cache, request, response)
    return response


def network_first(request: Request, cache: Cache, fetch: Fetch) -> Response:
    """Fetch first; on network failure return the stored match if any.

    Raises:
        NetworkError: When the network fails and nothing is stored.
    """
    try:
        response = fetch(request)
    except NetworkError:
        cached = cache.match(request)
        if cached is not None:
            logger.debug("Network failed, serving %s from %s", request.url, cache.name)
            return cached
        raise

    _store(cache, request, response)
    return response


def network_first_with_offline(request: Request, cache: Cache, fetch: Fetch, offline_page_url: str) -> Response:
    """Network-first, then the cached offline page for page navigations.

    Raises:
        NetworkError: When nothing could be served.
    """
    try:
        return network_first(request, cache, fetch)
    except NetworkError:
        if request.is_navigation:
            offline_page = cache.match(offline_page_url)
            if offline_page is not None:
                return offline_page
        raise


def _revalidate(request: Request, cache: Cache, fetch: Fetch) -> Response:
    response = fetch(request)
    _store(cache, request, response)
    return response


def _log_refresh_failure(url: str, future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.debug("Background refresh failed for %s: %s", url, error)


def stale_while_revalidate(request: Request, cache: Cache, fetch: Fetch, executor: Executor) -> Response:
    """Return the stored match immediately and refresh it in the background.

    The background fetch runs on ``executor`` and its result is never
    returned to a caller that already got a stored match. Without a stored
    match the caller waits for the fetch.

    Raises:
        NetworkError: When nothing is stored and the network fails.
    """
    cached = cache.match(request)

    refresh = executor.submit(_revalidate, request, cache, fetch)
    refresh.add_done_callback(lambda f: _log_refresh_failure(request.url, f))

    if cached is not None:
        return cached

    return refresh.result()

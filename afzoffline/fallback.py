"""Substitute responses for requests that neither network nor cache could serve."""

import logging

from .cache_store import Cache, CacheStorageError
from .models import DESTINATION_IMAGE, Request, Response

logger = logging.getLogger(__name__)

OFFLINE_STATUS = 503
OFFLINE_STATUS_TEXT = "Service Unavailable"
OFFLINE_BODY = b"Offline - Content not available"


def offline_response() -> Response:
    """The generic 503 returned when nothing better is cached."""
    return Response(
        status=OFFLINE_STATUS,
        body=OFFLINE_BODY,
        headers={"Content-Type": "text/plain"},
        status_text=OFFLINE_STATUS_TEXT,
    )


class OfflineFallbackResolver:
    """Picks a degraded response for a failed request.

    Reads only from the static store; never touches the network.
    """

    def __init__(self, static_cache: Cache, offline_page_url: str, placeholder_image_url: str) -> None:
        self._cache = static_cache
        self.offline_page_url = offline_page_url
        self.placeholder_image_url = placeholder_image_url

    def resolve(self, request: Request) -> Response:
        if request.is_navigation:
            page = self._lookup(self.offline_page_url)
            if page is not None:
                return page

        if request.destination == DESTINATION_IMAGE:
            placeholder = self._lookup(self.placeholder_image_url)
            if placeholder is not None:
                return placeholder

        return offline_response()

    def _lookup(self, url: str) -> Response | None:
        try:
            return self._cache.match(url)
        except CacheStorageError as e:
            logger.warning("Offline fallback lookup failed for %s: %s", url, e)
            return None

"""Request classification: picks the caching strategy for each request."""

import re
from dataclasses import dataclass
from enum import Enum

from .models import Request


class Strategy(str, Enum):
    """Caching strategies a request can be routed to."""

    CACHE_FIRST = "cache-first"
    NETWORK_FIRST = "network-first"
    NETWORK_FIRST_OFFLINE = "network-first-offline"
    STALE_WHILE_REVALIDATE = "stale-while-revalidate"


API_PATTERN = re.compile(r"/api/")
PAGE_PATTERN = re.compile(r"\.html$")
STATIC_PATTERN = re.compile(r"\.(css|js|woff2?|png|jpg|jpeg|svg|ico)$")


@dataclass(frozen=True)
class Route:
    """Result of classifying one request."""

    strategy: Strategy
    rule: str


def classify(request: Request, origin: str) -> Route:
    """Classify a request by URL into exactly one strategy.

    Rules, first match wins:
    - API paths: network-first (fresh data preferred, cache as fallback)
    - HTML pages: network-first with the offline page as last resort
    - Static assets: cache-first
    - Other origins: stale-while-revalidate
    - Anything else: network-first

    Pure function of the request URL and the worker origin.
    """
    path = request.path

    if API_PATTERN.search(path):
        return Route(Strategy.NETWORK_FIRST, "api")

    if PAGE_PATTERN.search(path):
        return Route(Strategy.NETWORK_FIRST_OFFLINE, "pages")

    if STATIC_PATTERN.search(path):
        return Route(Strategy.CACHE_FIRST, "static")

    if request.origin != origin.rstrip("/").lower():
        return Route(Strategy.STALE_WHILE_REVALIDATE, "external")

    return Route(Strategy.NETWORK_FIRST, "default")


def should_handle(request: Request) -> bool:
    """Whether the worker intercepts this request at all.

    Non-GET requests and non-http(s) schemes pass through untouched.
    """
    return request.method.upper() == "GET" and request.is_http

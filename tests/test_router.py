"""Tests for request classification."""

import pytest

from afzoffline.models import Request
from afzoffline.router import Strategy, classify, should_handle

ORIGIN = "http://localhost:8002"


class TestClassify:
    """Tests for classify function."""

    @pytest.mark.parametrize(
        "url, strategy, rule",
        [
            (f"{ORIGIN}/api/contact", Strategy.NETWORK_FIRST, "api"),
            (f"{ORIGIN}/index.html", Strategy.NETWORK_FIRST_OFFLINE, "pages"),
            (f"{ORIGIN}/pages/about.html", Strategy.NETWORK_FIRST_OFFLINE, "pages"),
            (f"{ORIGIN}/css/afz-unified-design.css", Strategy.CACHE_FIRST, "static"),
            (f"{ORIGIN}/js/main.js", Strategy.CACHE_FIRST, "static"),
            (f"{ORIGIN}/fonts/inter.woff2", Strategy.CACHE_FIRST, "static"),
            (f"{ORIGIN}/images/placeholder.svg", Strategy.CACHE_FIRST, "static"),
            ("https://fonts.googleapis.com/css2?family=Inter", Strategy.STALE_WHILE_REVALIDATE, "external"),
            (f"{ORIGIN}/", Strategy.NETWORK_FIRST, "default"),
            (f"{ORIGIN}/manifest.json", Strategy.NETWORK_FIRST, "default"),
        ],
    )
    def test_rules(self, url: str, strategy: Strategy, rule: str) -> None:
        """Each URL is routed to the strategy of its first matching rule."""
        route = classify(Request(url=url), ORIGIN)
        assert route.strategy is strategy
        assert route.rule == rule

    def test_api_wins_over_static_extension(self) -> None:
        """The first matching rule decides, even when later rules also match."""
        route = classify(Request(url=f"{ORIGIN}/api/report.js"), ORIGIN)
        assert route.strategy is Strategy.NETWORK_FIRST
        assert route.rule == "api"

    def test_external_static_asset_is_cache_first(self) -> None:
        """Static extensions on another origin stay cache-first."""
        route = classify(Request(url="https://cdn.example.com/lib.js"), ORIGIN)
        assert route.strategy is Strategy.CACHE_FIRST

    def test_query_string_does_not_hide_extension(self) -> None:
        """The extension is read from the path, not the query string."""
        route = classify(Request(url=f"{ORIGIN}/css/site.css?v=3"), ORIGIN)
        assert route.strategy is Strategy.CACHE_FIRST

    def test_origin_comparison_ignores_trailing_slash_and_case(self) -> None:
        """Host case and a trailing slash on the origin do not matter."""
        route = classify(Request(url="http://LOCALHOST:8002/about"), ORIGIN + "/")
        assert route.rule == "default"

    def test_classification_is_deterministic(self) -> None:
        """The same request always classifies the same way."""
        request = Request(url="https://cdn.example.com/data", mode="cors")
        assert classify(request, ORIGIN) == classify(request, ORIGIN)

    def test_mode_and_method_do_not_change_the_rule(self) -> None:
        """Request mode plays no part in picking the rule."""
        url = f"{ORIGIN}/pages/contact.html"
        navigate = classify(Request(url=url, mode="navigate"), ORIGIN)
        no_cors = classify(Request(url=url, mode="no-cors"), ORIGIN)
        assert navigate == no_cors


class TestShouldHandle:
    """Tests for should_handle function."""

    def test_get_http_is_handled(self) -> None:
        """GET over http is intercepted."""
        assert should_handle(Request(url=f"{ORIGIN}/index.html")) is True

    def test_post_is_not_handled(self) -> None:
        """Non-GET requests pass through untouched."""
        assert should_handle(Request(url=f"{ORIGIN}/api/contact", method="POST")) is False

    def test_non_http_scheme_is_not_handled(self) -> None:
        """Extension and other non-http schemes pass through."""
        assert should_handle(Request(url="chrome-extension://abc/script.js")) is False

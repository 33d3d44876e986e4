"""Tests for the network layer."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from afzoffline.models import Request
from afzoffline.network import Fetcher, NetworkError, resolve_url, strip_hop_by_hop


def fake_response(status: int = 200, body: bytes = b"ok", headers: dict | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.content = body
    resp.headers = headers or {}
    resp.reason = "OK" if status == 200 else "Error"
    return resp


class TestHelpers:
    """Tests for URL and header helpers."""

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("./pages/offline.html", "http://localhost:8002/pages/offline.html"),
            ("./", "http://localhost:8002/"),
            ("/api/contact", "http://localhost:8002/api/contact"),
            ("https://cdn.example.com/a.js", "https://cdn.example.com/a.js"),
        ],
    )
    def test_resolve_url(self, url: str, expected: str) -> None:
        """Relative manifest entries resolve against the origin."""
        assert resolve_url("http://localhost:8002", url) == expected
        assert resolve_url("http://localhost:8002/", url) == expected

    def test_strip_hop_by_hop(self) -> None:
        """Hop-by-hop and encoding headers are dropped."""
        headers = {"Connection": "keep-alive", "Content-Encoding": "gzip", "Content-Type": "text/css"}
        assert strip_hop_by_hop(headers) == {"Content-Type": "text/css"}


class TestFetcher:
    """Tests for Fetcher with requests mocked."""

    @patch.object(requests.Session, "request")
    def test_success(self, mock_request: MagicMock) -> None:
        """A 200 response is returned with body, headers and URL."""
        mock_request.return_value = fake_response(
            200, b"body{}", {"Content-Type": "text/css", "Content-Length": "6", "Transfer-Encoding": "chunked"}
        )

        response = Fetcher(timeout=3).fetch(Request(url="http://localhost:8002/a.css", headers={"Accept": "*/*"}))

        assert response.status == 200
        assert response.body == b"body{}"
        assert response.headers == {"Content-Type": "text/css"}
        assert response.url == "http://localhost:8002/a.css"
        args, kwargs = mock_request.call_args
        assert args == ("GET", "http://localhost:8002/a.css")
        assert kwargs["timeout"] == 3
        assert kwargs["headers"]["Accept"] == "*/*"
        assert kwargs["headers"]["User-Agent"].startswith("AFZOffline/")

    @patch.object(requests.Session, "request")
    def test_error_status_is_a_response(self, mock_request: MagicMock) -> None:
        """HTTP error statuses come back as responses, not exceptions."""
        mock_request.return_value = fake_response(500, b"oops")

        response = Fetcher().fetch(Request(url="http://localhost:8002/api/stats"))

        assert response.status == 500
        assert response.ok is False

    @pytest.mark.parametrize(
        "error",
        [requests.ConnectionError("refused"), requests.Timeout("slow"), requests.TooManyRedirects("loop")],
    )
    def test_transport_failure_raises(self, error: Exception) -> None:
        """Transport failures raise NetworkError."""
        with patch.object(requests.Session, "request", side_effect=error):
            with pytest.raises(NetworkError, match="Fetch failed"):
                Fetcher().fetch(Request(url="http://localhost:8002/"))

    def test_callable(self) -> None:
        """A Fetcher can be called like a fetch function."""
        with patch.object(requests.Session, "request", return_value=fake_response()):
            assert Fetcher()(Request(url="http://localhost:8002/")).status == 200

    @patch.object(requests.Session, "post")
    def test_post_json(self, mock_post: MagicMock) -> None:
        """post_json sends the payload as JSON."""
        mock_post.return_value = fake_response(201, b'{"success": true}')

        response = Fetcher().post_json("http://localhost:8002/api/contact", {"name": "Chanda"})

        assert response.status == 201
        assert mock_post.call_args.kwargs["json"] == {"name": "Chanda"}

    @patch.object(requests.Session, "post", side_effect=requests.ConnectionError("offline"))
    def test_post_json_failure(self, mock_post: MagicMock) -> None:
        """A failed POST raises NetworkError."""
        with pytest.raises(NetworkError, match="POST failed"):
            Fetcher().post_json("http://localhost:8002/api/contact", {})

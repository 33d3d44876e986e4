"""Network layer: performs real HTTP fetches for the worker."""

import logging
from urllib.parse import urljoin

import requests

from . import __version__
from .models import Request, Response

logger = logging.getLogger(__name__)

# Headers that describe a single connection or the wire encoding. requests
# already decodes the body, so these must not travel with a stored snapshot.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-encoding",
        "content-length",
    }
)

DEFAULT_USER_AGENT = f"AFZOffline/{__version__}"


class NetworkError(Exception):
    """Raised when a fetch fails before any HTTP response is received."""

    pass


def resolve_url(origin: str, url: str) -> str:
    """Resolve a possibly relative URL (e.g. "./pages/offline.html") against an origin."""
    return urljoin(origin.rstrip("/") + "/", url)


def strip_hop_by_hop(headers: dict[str, str]) -> dict[str, str]:
    return {name: value for name, value in headers.items() if name.lower() not in HOP_BY_HOP_HEADERS}


class Fetcher:
    """Fetches requests over HTTP using a shared requests.Session.

    Any HTTP status, including 4xx and 5xx, is a completed fetch and is
    returned as a Response. Only transport failures raise NetworkError.
    """

    def __init__(
        self,
        timeout: int = 10,
        session: requests.Session | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()
        self._user_agent = user_agent

    def fetch(self, request: Request) -> Response:
        """Perform the request.

        Raises:
            NetworkError: If the connection fails or times out.
        """
        headers = strip_hop_by_hop(request.headers)
        headers.setdefault("User-Agent", self._user_agent)

        try:
            resp = self._session.request(
                request.method,
                request.url,
                headers=headers,
                data=request.body,
                timeout=self._timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.debug("Fetch failed for %s: %s", request.url, e)
            raise NetworkError(f"Fetch failed for {request.url}: {e}") from e

        return Response(
            status=resp.status_code,
            body=resp.content,
            headers=strip_hop_by_hop(dict(resp.headers)),
            status_text=resp.reason or "",
            url=request.url,
        )

    __call__ = fetch

    def post_json(self, url: str, payload: object) -> Response:
        """POST a JSON payload and return the response.

        Raises:
            NetworkError: If the connection fails or times out.
        """
        try:
            resp = self._session.post(
                url,
                json=payload,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(f"POST failed for {url}: {e}") from e

        return Response(
            status=resp.status_code,
            body=resp.content,
            headers=strip_hop_by_hop(dict(resp.headers)),
            status_text=resp.reason or "",
            url=url,
        )

    def close(self) -> None:
        self._session.close()

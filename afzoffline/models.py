"""Data models for intercepted requests, cached responses and queued forms."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

# Request modes as reported by browsers in the Sec-Fetch-Mode header.
MODE_NAVIGATE = "navigate"
MODE_NO_CORS = "no-cors"

# Destination of image sub-resources (Sec-Fetch-Dest header).
DESTINATION_IMAGE = "image"


@dataclass(frozen=True)
class Request:
    """An outbound request intercepted from a controlled page.

    Attributes:
        url: Absolute URL of the requested resource.
        method: HTTP method, upper case.
        mode: Fetch mode ("navigate" for full page loads).
        destination: What the response is used for ("document", "image", "script", ...).
        headers: Request headers to forward to the network.
        body: Request payload, or None for bodiless requests.
    """

    url: str
    method: str = "GET"
    mode: str = MODE_NO_CORS
    destination: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme.lower()

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def origin(self) -> str:
        """Scheme, host and port of the request URL."""
        parts = urlsplit(self.url)
        return f"{parts.scheme.lower()}://{parts.netloc.lower()}"

    @property
    def is_navigation(self) -> bool:
        return self.mode == MODE_NAVIGATE

    @property
    def is_http(self) -> bool:
        return self.scheme in ("http", "https")


@dataclass(frozen=True)
class Response:
    """A response snapshot, either fresh from the network or read from a store.

    Attributes:
        status: HTTP status code.
        body: Response payload bytes.
        headers: Response headers.
        status_text: HTTP reason phrase.
        url: URL the response was produced for, empty for synthetic responses.
        from_cache: True when the snapshot was read from a cache store.
    """

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    status_text: str = ""
    url: str = ""
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        """Whether the status is in the 2xx range."""
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str | None:
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                return value
        return None

    def clone(self, **changes: Any) -> "Response":
        """Return an independent copy, optionally with some fields replaced."""
        changes.setdefault("headers", dict(self.headers))
        return replace(self, **changes)


@dataclass(frozen=True)
class PendingSubmission:
    """A contact-form payload that could not reach the network.

    Attributes:
        id: Auto-incrementing queue identifier.
        data: The JSON payload captured from the form.
        created_at: When the submission was queued.
    """

    id: int
    data: Any
    created_at: datetime | None = None


@dataclass(frozen=True)
class AssetResult:
    """Outcome of caching one install-time asset."""

    url: str
    cached: bool
    error: str | None = None


@dataclass(frozen=True)
class InstallReport:
    """Per-asset outcome of populating the static store on install.

    Attributes:
        cache_name: Name of the static store that was populated.
        batch_succeeded: True if the whole manifest was cached in one batch.
        results: One entry per manifest URL, in manifest order.
    """

    cache_name: str
    batch_succeeded: bool
    results: list[AssetResult] = field(default_factory=list)

    @property
    def failed(self) -> list[AssetResult]:
        return [r for r in self.results if not r.cached]

    @property
    def cached_count(self) -> int:
        return sum(1 for r in self.results if r.cached)


@dataclass(frozen=True)
class ActivationReport:
    """Stores removed (or not) while activating a generation."""

    version: str
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    notified_clients: int = 0


@dataclass(frozen=True)
class SyncReport:
    """Outcome of one background sync pass over the pending queue."""

    delivered: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)

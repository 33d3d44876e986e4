"""Caching proxy: the host runtime that feeds page requests to the worker.

Pages send their requests here instead of to the site origin. GET requests
become fetch events; the worker's response is written back with an
``X-From-Cache`` header when it came from a store. Requests the worker does
not intercept go to the network unmodified.

Control endpoints (JSON):
- GET /__sw/version: active version tag and worker state
- POST /__sw/message: post a message (SKIP_WAITING, GET_VERSION) to the worker
- POST /__sw/sync: fire a sync event, body {"tag": "..."}
- POST /__sw/queue: queue a form payload for background sync
- POST /__sw/clients: register a window client, body {"url": "..."}
- GET /__sw/clients/<id>/messages: drain messages posted to a client
- DELETE /__sw/clients/<id>: unregister a client
"""

import json
import logging
from typing import Any, Optional
from urllib.parse import urldefrag, urlsplit

from ._http import BackgroundServer, JsonHandler, RequestBodyError
from .cache_store import Fetch
from .clients import Client
from .config import ProxyConfig
from .models import MODE_NO_CORS, Request, Response
from .network import NetworkError, resolve_url, strip_hop_by_hop
from .sync_queue import SyncQueueError
from .worker import FetchEvent, MessageEvent, ServiceWorker, SyncEvent

logger = logging.getLogger(__name__)

CONTROL_PREFIX = "/__sw/"

# Request headers that only concern the hop between page and proxy.
_PROXY_ONLY_HEADERS = frozenset({"host", "proxy-connection"})


class ProxyHandler(JsonHandler):
    """HTTP request handler that routes page requests through the worker."""

    # Class-level references set by factory
    worker: Optional[ServiceWorker] = None
    fetch: Optional[Fetch] = None
    sync_endpoint_url: str = ""

    def _build_request(self, body: bytes | None = None) -> Request:
        target = self.path
        if target.startswith(("http://", "https://")):
            url = target
        else:
            url = resolve_url(self.worker.config.origin, target)

        headers = {
            name: value
            for name, value in strip_hop_by_hop(dict(self.headers.items())).items()
            if name.lower() not in _PROXY_ONLY_HEADERS
        }

        return Request(
            url=url,
            method=self.command,
            mode=self.headers.get("Sec-Fetch-Mode", MODE_NO_CORS),
            destination=self.headers.get("Sec-Fetch-Dest", ""),
            headers=headers,
            body=body,
        )

    def _send_response_snapshot(self, response: Response) -> None:
        headers = dict(response.headers)
        if response.from_cache:
            headers["X-From-Cache"] = "true"
        self._send_body(response.status, response.body, headers)

    def _is_control(self) -> bool:
        return urlsplit(self.path).path.startswith(CONTROL_PREFIX)

    def _proxy(self) -> None:
        """Serve the current request through the worker, or pass it through."""
        try:
            body = self._read_body() if self.command not in ("GET", "HEAD") else None
        except RequestBodyError as e:
            self._send_json(e.status, {"error": str(e)})
            return

        request = self._build_request(body)
        response = self.worker.dispatch(FetchEvent(request)).result()
        if response is not None:
            self._send_response_snapshot(response)
            return

        try:
            response = self.fetch(request)
        except NetworkError as e:
            if self._should_queue(request):
                self._queue_submission(request)
                return
            logger.warning("Passthrough failed for %s %s: %s", request.method, request.url, e)
            self._send_json(502, {"error": "Bad gateway"})
            return

        self._send_response_snapshot(response)

    def _should_queue(self, request: Request) -> bool:
        return (
            request.method == "POST"
            and self.worker.sync_queue is not None
            and urldefrag(request.url)[0].split("?")[0] == self.sync_endpoint_url
        )

    def _queue_submission(self, request: Request) -> None:
        """Keep a form POST that could not reach the network for background sync."""
        try:
            payload = json.loads(request.body or b"null")
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._send_json(502, {"error": "Bad gateway"})
            return

        try:
            submission_id = self.worker.sync_queue.enqueue(payload)
        except SyncQueueError as e:
            logger.error("Could not queue offline submission: %s", e)
            self._send_json(502, {"error": "Bad gateway"})
            return

        self._send_json(
            202,
            {
                "success": True,
                "queued": True,
                "id": submission_id,
                "message": "You are offline. Your message will be sent when the connection is restored.",
            },
        )

    def do_GET(self) -> None:
        """Handle GET requests."""
        try:
            if self._is_control():
                self._handle_control_get()
            else:
                self._proxy()
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            self._send_json(500, {"error": "Internal server error"})

    do_HEAD = do_GET

    def do_POST(self) -> None:
        """Handle POST requests."""
        try:
            if self._is_control():
                self._handle_control_post()
            else:
                self._proxy()
        except Exception as e:
            logger.exception("Error handling POST request: %s", e)
            self._send_json(500, {"error": "Internal server error"})

    def do_DELETE(self) -> None:
        """Handle DELETE requests."""
        try:
            if self._is_control():
                self._handle_control_delete()
            else:
                self._proxy()
        except Exception as e:
            logger.exception("Error handling DELETE request: %s", e)
            self._send_json(500, {"error": "Internal server error"})

    def do_PUT(self) -> None:
        self._proxy()

    def do_PATCH(self) -> None:
        self._proxy()

    def _handle_control_get(self) -> None:
        path = urlsplit(self.path).path
        if path == "/__sw/version":
            self._send_json(200, {"version": self.worker.version, "state": self.worker.state.value})
            return

        parts = path[len(CONTROL_PREFIX):].split("/")
        if len(parts) == 3 and parts[0] == "clients" and parts[2] == "messages":
            client = self.worker.clients.get(parts[1])
            if client is None:
                self._send_json(404, {"error": "Unknown client"})
                return
            self._send_json(200, {"messages": client.drain()})
            return

        self._send_json(404, {"error": "Not found"})

    def _handle_control_post(self) -> None:
        path = urlsplit(self.path).path
        try:
            data = self._read_json()
        except RequestBodyError as e:
            self._send_json(e.status, {"error": str(e)})
            return

        if path == "/__sw/message":
            self._handle_message(data)
        elif path == "/__sw/sync":
            self._handle_sync(data)
        elif path == "/__sw/queue":
            self._handle_queue(data)
        elif path == "/__sw/clients":
            self._handle_register_client(data)
        else:
            self._send_json(404, {"error": "Not found"})

    def _handle_control_delete(self) -> None:
        parts = urlsplit(self.path).path[len(CONTROL_PREFIX):].split("/")
        if len(parts) == 2 and parts[0] == "clients":
            if self.worker.clients.unregister(parts[1]):
                self._send_json(200, {"success": True})
            else:
                self._send_json(404, {"error": "Unknown client"})
            return
        self._send_json(404, {"error": "Not found"})

    def _handle_message(self, data: Any) -> None:
        replies: list[dict] = []
        self.worker.dispatch(MessageEvent(data, reply=replies.append)).result()
        self._send_json(200, {"reply": replies[0] if replies else None})

    def _handle_sync(self, data: Any) -> None:
        tag = data.get("tag") if isinstance(data, dict) else None
        if not isinstance(tag, str) or not tag:
            self._send_json(400, {"error": "Sync tag is required"})
            return

        report = self.worker.dispatch(SyncEvent(tag)).result()
        if report is None:
            self._send_json(200, {"tag": tag, "ignored": True})
            return
        self._send_json(200, {"tag": tag, "delivered": report.delivered, "failed": report.failed})

    def _handle_queue(self, data: Any) -> None:
        if self.worker.sync_queue is None:
            self._send_json(503, {"error": "Background sync is not available"})
            return
        if data is None:
            self._send_json(400, {"error": "Submission body is required"})
            return
        try:
            submission_id = self.worker.sync_queue.enqueue(data)
        except SyncQueueError as e:
            logger.error("Could not queue submission: %s", e)
            self._send_json(500, {"error": "Could not queue submission"})
            return
        self._send_json(202, {"id": submission_id})

    def _handle_register_client(self, data: Any) -> None:
        url = data.get("url") if isinstance(data, dict) else None
        if not isinstance(url, str) or not url:
            self._send_json(400, {"error": "Client url is required"})
            return
        client = self.worker.clients.register(Client(url=url))
        self._send_json(201, {"id": client.id, "controller": client.controller})


def _create_handler_class(worker: ServiceWorker, fetch: Fetch, sync_endpoint_url: str) -> type:
    """Create a handler class with the worker and network bound."""

    class BoundProxyHandler(ProxyHandler):
        pass

    BoundProxyHandler.worker = worker
    BoundProxyHandler.fetch = staticmethod(fetch)
    BoundProxyHandler.sync_endpoint_url = sync_endpoint_url
    return BoundProxyHandler


class ProxyServer(BackgroundServer):
    """Threaded caching proxy in front of the site origin."""

    name = "proxy-server"

    def __init__(
        self,
        config: ProxyConfig,
        worker: ServiceWorker,
        fetch: Fetch,
        sync_endpoint: str = "/api/contact",
    ) -> None:
        super().__init__(config.port)
        self.config = config
        self.worker = worker
        self._fetch = fetch
        self.sync_endpoint_url = resolve_url(worker.config.origin, sync_endpoint)

    def _handler_class(self) -> type:
        return _create_handler_class(self.worker, self._fetch, self.sync_endpoint_url)

"""Shared plumbing for the threaded HTTP servers (proxy and contact backend)."""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Largest request body accepted by either server.
MAX_BODY_BYTES = 64 * 1024


class ServerError(Exception):
    """Raised when a server fails to start."""

    pass


class RequestBodyError(Exception):
    """Raised when a request body is missing, too large, or malformed."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class JsonHandler(BaseHTTPRequestHandler):
    """Request handler base with JSON helpers and logging integration."""

    # Extra headers added to every response (e.g. CORS)
    extra_headers: dict[str, str] = {}

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("HTTP %s - %s", self.address_string(), format % args)

    def _send_body(self, code: int, body: bytes, headers: dict[str, str]) -> None:
        self.send_response(code)
        for name, value in headers.items():
            self.send_header(name, value)
        for name, value in self.extra_headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _send_json(self, code: int, data: Any) -> None:
        """Send a JSON response with the given status code."""
        body = json.dumps(data, indent=2).encode("utf-8")
        self._send_body(code, body, {"Content-Type": "application/json"})

    def _read_body(self) -> bytes:
        """Read the request body, bounded by MAX_BODY_BYTES.

        Raises:
            RequestBodyError: If Content-Length is invalid or too large.
        """
        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            raise RequestBodyError(400, "Invalid Content-Length")
        if length < 0:
            raise RequestBodyError(400, "Invalid Content-Length")
        if length > MAX_BODY_BYTES:
            raise RequestBodyError(413, "Request body too large")
        return self.rfile.read(length) if length else b""

    def _read_json(self) -> Any:
        """Read and decode a JSON request body.

        Raises:
            RequestBodyError: If the body is not valid JSON.
        """
        body = self._read_body()
        try:
            return json.loads(body or b"null")
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise RequestBodyError(400, "Request body must be valid JSON")


class BackgroundServer:
    """Runs a ThreadingHTTPServer on a background thread."""

    name = "http-server"

    def __init__(self, port: int, host: str = "") -> None:
        self._host = host
        self._port = port
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

    def _handler_class(self) -> type:
        raise NotImplementedError

    @property
    def port(self) -> int:
        """The bound port (useful when configured with port 0)."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._port

    def start(self) -> None:
        """Start the server in a background thread.

        Raises:
            ServerError: If the server fails to start.
        """
        if self.is_running:
            logger.warning("%s is already running", self.name)
            return

        try:
            self._server = ThreadingHTTPServer((self._host, self._port), self._handler_class())
            self._server.daemon_threads = True
            self._server.timeout = 1.0  # Allow periodic shutdown checks

            self._shutdown_event.clear()
            self._thread = threading.Thread(
                target=self._serve_forever,
                name=self.name,
                daemon=True,
            )
            self._thread.start()

            logger.info("%s started on port %d", self.name, self.port)

        except OSError as e:
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise ServerError(
                    f"Port {self._port} is already in use. "
                    f"Another process may be using this port, or {self.name} is already running."
                )
            elif e.errno == 13:  # EACCES - Permission denied
                raise ServerError(
                    f"Permission denied for port {self._port}. "
                    f"Ports below 1024 require root privileges. "
                    f"Use a port >= 1024 or run with elevated permissions."
                )
            else:
                raise ServerError(f"Failed to start {self.name} on port {self._port}: {e}")

    def _serve_forever(self) -> None:
        """Server loop that checks for shutdown."""
        while not self._shutdown_event.is_set():
            if self._server:
                self._server.handle_request()

    def stop(self) -> None:
        """Stop the server gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping %s...", self.name)
        self._shutdown_event.set()

        if self._server:
            self._server.server_close()

        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._server = None
        self._thread = None
        logger.info("%s stopped", self.name)

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()

"""Pages controlled by the worker and the messages posted to them."""

import logging
import queue
import threading
import uuid
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

CLIENT_TYPE_WINDOW = "window"
CLIENT_TYPE_WORKER = "worker"


@dataclass
class Client:
    """A page (or nested worker) that the offline worker can talk to.

    Attributes:
        id: Unique client identifier.
        url: URL of the page.
        type: "window" for browser tabs.
        controller: Version tag of the worker controlling this client, or None.
    """

    url: str
    type: str = CLIENT_TYPE_WINDOW
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    controller: str | None = None
    inbox: queue.Queue = field(default_factory=queue.Queue, repr=False)

    def post_message(self, message: dict) -> None:
        self.inbox.put(message)

    def drain(self) -> list[dict]:
        """Return and remove every message posted so far."""
        messages = []
        while True:
            try:
                messages.append(self.inbox.get_nowait())
            except queue.Empty:
                return messages


class ClientRegistry:
    """Thread-safe registry of open clients."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: dict[str, Client] = {}

    def register(self, client: Client) -> Client:
        with self._lock:
            self._clients[client.id] = client
        logger.debug("Registered %s client %s (%s)", client.type, client.id, client.url)
        return client

    def unregister(self, client_id: str) -> bool:
        with self._lock:
            return self._clients.pop(client_id, None) is not None

    def get(self, client_id: str) -> Client | None:
        with self._lock:
            return self._clients.get(client_id)

    def match_all(self, client_type: str | None = None) -> list[Client]:
        with self._lock:
            clients = list(self._clients.values())
        if client_type is None:
            return clients
        return [c for c in clients if c.type == client_type]

    def claim(self, version: str) -> int:
        """Make the given worker version the controller of every client.

        Returns:
            Number of clients whose controller changed.
        """
        changed = 0
        with self._lock:
            for client in self._clients.values():
                if client.controller != version:
                    client.controller = version
                    changed += 1
        return changed

"""Offline worker: lifecycle and fetch event dispatch.

Every incoming event (install, activate, fetch, message, sync) is mapped to
a handler by ``ServiceWorker.dispatch``. Handlers run on a thread pool and
the dispatcher returns a Future the host awaits before finalizing its
response.

Handles caching strategy per request class:
- API paths: network-first (runtime store)
- HTML pages: network-first with offline page fallback (static store)
- Static assets: cache-first (static store)
- Other origins: stale-while-revalidate (runtime store)
- Everything else: network-first (runtime store)
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from .cache_store import CacheStorage, CacheStorageError, Fetch
from .clients import CLIENT_TYPE_WINDOW, ClientRegistry
from .config import DEFAULT_SYNC_TAG, WorkerConfig
from .fallback import OfflineFallbackResolver, offline_response
from .models import ActivationReport, InstallReport, Request, Response, SyncReport
from .network import resolve_url
from .router import Strategy, classify, should_handle
from .strategies import cache_first, network_first, network_first_with_offline, stale_while_revalidate
from .sync_queue import BackgroundSyncQueue
from .versioning import CacheVersionManager

logger = logging.getLogger(__name__)

MESSAGE_SKIP_WAITING = "SKIP_WAITING"
MESSAGE_GET_VERSION = "GET_VERSION"
MESSAGE_ACTIVATED = "SW_ACTIVATED"


class WorkerState(str, Enum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


@dataclass(frozen=True)
class InstallEvent:
    kind: ClassVar[str] = "install"


@dataclass(frozen=True)
class ActivateEvent:
    kind: ClassVar[str] = "activate"


@dataclass(frozen=True)
class FetchEvent:
    kind: ClassVar[str] = "fetch"

    request: Request


@dataclass(frozen=True)
class MessageEvent:
    """A message posted by a page. ``reply`` plays the role of a reply port."""

    kind: ClassVar[str] = "message"

    data: Any
    reply: Callable[[dict], None] | None = field(default=None, compare=False)


@dataclass(frozen=True)
class SyncEvent:
    kind: ClassVar[str] = "sync"

    tag: str


Event = InstallEvent | ActivateEvent | FetchEvent | MessageEvent | SyncEvent


class ServiceWorker:
    """One generation of the offline worker.

    All collaborators are injected so independent instances (with different
    generations or stores) can run side by side. Call ``shutdown`` to tear
    an instance down.
    """

    def __init__(
        self,
        config: WorkerConfig,
        storage: CacheStorage,
        fetch: Fetch,
        sync_queue: BackgroundSyncQueue | None = None,
        sync_tag: str = DEFAULT_SYNC_TAG,
        clients: ClientRegistry | None = None,
    ) -> None:
        self.config = config
        self.versions = CacheVersionManager(storage, config.version, config.cache_prefix)
        self.clients = clients if clients is not None else ClientRegistry()
        self.sync_queue = sync_queue
        self.sync_tag = sync_tag
        self._fetch = fetch
        self._state = WorkerState.PARSED
        self._state_lock = threading.Lock()
        self._skip_waiting = False
        self._executor = ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="sw-event")
        # Background refreshes get their own pool so a handler waiting on a
        # refresh can never starve the pool it runs on.
        self._refresh_executor = ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="sw-refresh")
        self._handlers: dict[str, Callable[[Any], Any]] = {
            InstallEvent.kind: self._on_install,
            ActivateEvent.kind: self._on_activate,
            FetchEvent.kind: self._on_fetch,
            MessageEvent.kind: self._on_message,
            SyncEvent.kind: self._on_sync,
        }
        logger.debug("Service worker %s loaded", self.version)

    @property
    def version(self) -> str:
        return self.config.version

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def offline_page_url(self) -> str:
        return resolve_url(self.config.origin, self.config.offline_page)

    @property
    def placeholder_image_url(self) -> str:
        return resolve_url(self.config.origin, self.config.placeholder_image)

    def _set_state(self, state: WorkerState) -> None:
        with self._state_lock:
            self._state = state
        logger.debug("Worker %s is now %s", self.version, state.value)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, event: Event) -> Future:
        """Schedule the handler for an event and return its Future.

        Raises:
            ValueError: If no handler exists for the event kind.
        """
        handler = self._handlers.get(event.kind)
        if handler is None:
            raise ValueError(f"No handler for event kind '{event.kind}'")
        return self._executor.submit(handler, event)

    def _on_install(self, event: InstallEvent) -> InstallReport:
        report = self.install()
        self._promote_if_ready()
        return report

    def _on_activate(self, event: ActivateEvent) -> ActivationReport:
        return self.activate()

    def _on_fetch(self, event: FetchEvent) -> Response | None:
        return self.handle_fetch(event.request)

    def _on_message(self, event: MessageEvent) -> dict | None:
        data = event.data
        if not isinstance(data, dict):
            logger.debug("Ignoring non-object message: %r", data)
            return None

        message_type = data.get("type")
        if message_type == MESSAGE_SKIP_WAITING:
            self.skip_waiting()
            self._promote_if_ready()
            return None

        if message_type == MESSAGE_GET_VERSION:
            reply = {"version": self.version}
            if event.reply is not None:
                event.reply(reply)
            return reply

        logger.debug("Ignoring unknown message type: %r", message_type)
        return None

    def _on_sync(self, event: SyncEvent) -> SyncReport | None:
        if event.tag != self.sync_tag:
            logger.debug("Ignoring sync event with tag %r", event.tag)
            return None
        if self.sync_queue is None:
            logger.warning("Sync event %r received but no sync queue is configured", event.tag)
            return SyncReport()
        return self.sync_queue.sync()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def install(self) -> InstallReport:
        """Populate the static store of this generation.

        A partially cached manifest still completes the install. The worker
        then skips the waiting phase so it activates without waiting for
        open pages to close.
        """
        logger.info("Installing version %s", self.version)
        self._set_state(WorkerState.INSTALLING)

        manifest = [resolve_url(self.config.origin, url) for url in self.config.static_assets]
        try:
            report = self.versions.install(manifest, self._fetch)
        except Exception:
            self._set_state(WorkerState.REDUNDANT)
            raise

        self._set_state(WorkerState.INSTALLED)
        self.skip_waiting()
        return report

    def skip_waiting(self) -> None:
        """Let an installed generation activate without waiting for clients."""
        self._skip_waiting = True

    def _promote_if_ready(self) -> None:
        if self._state == WorkerState.INSTALLED and self._skip_waiting:
            self.activate()

    def activate(self) -> ActivationReport:
        """Evict stale generations, claim every client and announce the version."""
        logger.info("Activating version %s", self.version)
        self._set_state(WorkerState.ACTIVATING)

        deleted, failed = self.versions.evict_stale()

        claimed = self.clients.claim(self.version)
        logger.debug("Claimed %d client(s)", claimed)

        windows = self.clients.match_all(CLIENT_TYPE_WINDOW)
        for client in windows:
            client.post_message({"type": MESSAGE_ACTIVATED, "version": self.version})

        self._set_state(WorkerState.ACTIVATED)
        return ActivationReport(
            version=self.version,
            deleted=deleted,
            failed=failed,
            notified_clients=len(windows),
        )

    # ------------------------------------------------------------------
    # Fetch handling
    # ------------------------------------------------------------------

    def handle_fetch(self, request: Request) -> Response | None:
        """Serve an intercepted request.

        Returns:
            The response to hand back to the page, or None when the request
            is not intercepted and should go to the network unmodified.
        """
        if self._state != WorkerState.ACTIVATED:
            return None
        if not should_handle(request):
            return None

        route = classify(request, self.config.origin)
        logger.debug("%s %s -> %s (%s)", request.method, request.url, route.strategy.value, route.rule)

        try:
            return self._execute(route.strategy, request)
        except Exception as e:
            logger.warning("Request failed: %s: %s", request.url, e)
            return self._fallback(request)

    def _fallback(self, request: Request) -> Response:
        try:
            resolver = self.fallback_resolver()
        except CacheStorageError as e:
            logger.error("Static cache unavailable for offline fallback: %s", e)
            return offline_response()
        return resolver.resolve(request)

    def _execute(self, strategy: Strategy, request: Request) -> Response:
        if strategy is Strategy.CACHE_FIRST:
            return cache_first(request, self.versions.static_cache(), self._fetch)
        if strategy is Strategy.NETWORK_FIRST_OFFLINE:
            return network_first_with_offline(
                request,
                self.versions.static_cache(),
                self._fetch,
                self.offline_page_url,
            )
        if strategy is Strategy.STALE_WHILE_REVALIDATE:
            return stale_while_revalidate(
                request,
                self.versions.runtime_cache(),
                self._fetch,
                self._refresh_executor,
            )
        return network_first(request, self.versions.runtime_cache(), self._fetch)

    def fallback_resolver(self) -> OfflineFallbackResolver:
        return OfflineFallbackResolver(
            self.versions.static_cache(),
            self.offline_page_url,
            self.placeholder_image_url,
        )

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events and wait for in-flight handlers and refreshes."""
        self._executor.shutdown(wait=wait)
        self._refresh_executor.shutdown(wait=wait)
        logger.debug("Service worker %s shut down", self.version)

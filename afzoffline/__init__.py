"""AFZ Offline - offline-first caching layer for the AFZ advocacy website."""

import argparse
import logging
import signal
import sys
from threading import Event
from typing import Optional

__version__ = "3.0.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _load_config_or_exit(path: Optional[str]):
    from .config import ConfigError, load_config

    try:
        return load_config(path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)


def _build_worker(config):
    """Open the stores and queue and construct the worker for a config."""
    from .cache_store import CacheStorage, CacheStorageError, init_cache_db
    from .network import Fetcher, resolve_url
    from .sync_queue import BackgroundSyncQueue, SyncQueueError, init_queue_db
    from .worker import ServiceWorker

    try:
        cache_conn = init_cache_db(config.storage.cache_path)
        queue_conn = init_queue_db(config.storage.queue_path)
    except (CacheStorageError, SyncQueueError) as e:
        logger.error("Storage error: %s", e)
        sys.exit(1)

    fetcher = Fetcher(timeout=config.worker.network_timeout)
    sync_fetcher = Fetcher(timeout=config.sync.timeout)
    sync_queue = BackgroundSyncQueue(
        queue_conn,
        resolve_url(config.worker.origin, config.sync.endpoint),
        sync_fetcher.post_json,
    )
    worker = ServiceWorker(
        config.worker,
        CacheStorage(cache_conn),
        fetcher,
        sync_queue=sync_queue,
        sync_tag=config.sync.tag,
    )
    return worker, fetcher


def _close_worker(worker) -> None:
    worker.shutdown()
    worker.versions.storage.close()
    if worker.sync_queue is not None:
        worker.sync_queue.close()


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - start the proxy and contact backend."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("AFZ Offline %s starting...", __version__)

    # Import here to avoid circular imports and allow logging setup first
    from ._http import ServerError
    from .contact import ContactServer, ContactService
    from .mailer import Mailer
    from .proxy import ProxyServer
    from .worker import InstallEvent

    # 1. Load configuration
    config = _load_config_or_exit(args.config)
    logger.info("Worker version %s for origin %s", config.worker.version, config.worker.origin)

    # 2. Open storage and build the worker
    worker, fetcher = _build_worker(config)

    # 3. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    # 4. Install (and, by skipping the waiting phase, activate) the worker
    report = worker.dispatch(InstallEvent()).result()
    if report.failed:
        logger.warning("%d static asset(s) could not be cached", len(report.failed))
    logger.info("Worker %s is %s", worker.version, worker.state.value)

    # 5. Start servers
    servers = []
    try:
        if config.contact.enabled:
            mailer = Mailer(config.contact.smtp)
            if mailer.is_development:
                logger.info("Running in email development mode - emails will be simulated")
            servers.append(ContactServer(config.contact, ContactService(config.contact, mailer)))

        if config.proxy.enabled:
            servers.append(ProxyServer(config.proxy, worker, fetcher, config.sync.endpoint))

        for server in servers:
            try:
                server.start()
            except ServerError as e:
                logger.error("Failed to start %s: %s", server.name, e)
                logger.warning("Continuing without %s", server.name)

        logger.info("All components started, waiting for shutdown signal...")

        # 6. Wait for shutdown signal
        _shutdown_event.wait()

    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        # 7. Cleanup - stop all components
        logger.info("Shutting down components...")

        for server in servers:
            server.stop()

        _close_worker(worker)
        logger.info("Shutdown complete")


def _cmd_install(args: argparse.Namespace) -> None:
    """Execute the install command - populate the static store."""
    _setup_logging(args.verbose)
    config = _load_config_or_exit(args.config)
    worker, _ = _build_worker(config)

    try:
        report = worker.install()
    finally:
        _close_worker(worker)

    for result in report.results:
        status = "✓ CACHED" if result.cached else "✗ FAILED"
        suffix = f" ({result.error})" if result.error else ""
        print(f"{status}: {result.url}{suffix}")

    print(f"\nResult: {report.cached_count}/{len(report.results)} assets cached in {report.cache_name}")

    if report.failed:
        sys.exit(1)


def _cmd_activate(args: argparse.Namespace) -> None:
    """Execute the activate command - evict stale cache generations."""
    _setup_logging(args.verbose)
    config = _load_config_or_exit(args.config)
    worker, _ = _build_worker(config)

    try:
        report = worker.activate()
    finally:
        _close_worker(worker)

    for name in report.deleted:
        print(f"Deleted: {name}")
    for name in report.failed:
        print(f"Failed to delete: {name}")
    print(f"\nActive version: {report.version}")

    if report.failed:
        sys.exit(1)


def _cmd_sync(args: argparse.Namespace) -> None:
    """Execute the sync command - deliver queued submissions once."""
    _setup_logging(args.verbose)
    config = _load_config_or_exit(args.config)
    worker, _ = _build_worker(config)

    from .worker import SyncEvent

    try:
        report = worker.dispatch(SyncEvent(config.sync.tag)).result()
    finally:
        _close_worker(worker)

    print(f"Delivered {len(report.delivered)} submission(s), {len(report.failed)} still pending.")

    if report.failed:
        sys.exit(1)


def _cmd_stores(args: argparse.Namespace) -> None:
    """Execute the stores command - list cache stores."""
    config = _load_config_or_exit(args.config)
    worker, _ = _build_worker(config)

    try:
        names = worker.versions.storage.keys()
        pending = worker.sync_queue.count() if worker.sync_queue is not None else 0
    finally:
        _close_worker(worker)

    if not names:
        print("No cache stores.")
    for name in names:
        if worker.versions.is_stale(name):
            marker = "stale"
        elif name.startswith(worker.versions.prefix):
            marker = "current"
        else:
            marker = "foreign"
        print(f"{name} [{marker}]")

    print(f"\nPending submissions: {pending}")


def _cmd_test_email(args: argparse.Namespace) -> None:
    """Execute the test-email command - verify SMTP configuration."""
    _setup_logging(args.verbose)
    config = _load_config_or_exit(args.config)

    from .mailer import EmailMessage, MailError, Mailer

    mailer = Mailer(config.contact.smtp)
    if mailer.is_development:
        print("Error: SMTP is not enabled or credentials are missing (development mode)")
        sys.exit(1)

    print(f"Connecting to {config.contact.smtp.host}:{config.contact.smtp.port}...")
    if not mailer.verify():
        print("✗ FAILED: could not connect or log in to the SMTP server")
        sys.exit(1)

    try:
        message_id = mailer.send(
            EmailMessage(
                from_addr=config.contact.from_email,
                to_addr=config.contact.admin_email,
                subject="✅ AFZ Offline SMTP Test",
                html_body="<p>This is a test email. If you received this, your SMTP configuration works.</p>",
            )
        )
    except MailError as e:
        print(f"✗ FAILED: {e}")
        sys.exit(1)

    print(f"✓ SUCCESS: sent {message_id} to {config.contact.admin_email}")


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )


def main() -> None:
    """Main entry point for the afzoffline package."""
    parser = argparse.ArgumentParser(
        description="AFZ Offline - offline-first caching layer for the AFZ advocacy website"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"afzoffline {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser(
        "run",
        help="Start the caching proxy and contact backend (default)",
    )
    _add_common_arguments(run_parser)
    run_parser.set_defaults(func=_cmd_run)

    install_parser = subparsers.add_parser(
        "install",
        help="Populate the static cache with the asset manifest",
    )
    _add_common_arguments(install_parser)
    install_parser.set_defaults(func=_cmd_install)

    activate_parser = subparsers.add_parser(
        "activate",
        help="Delete cache stores of older versions",
    )
    _add_common_arguments(activate_parser)
    activate_parser.set_defaults(func=_cmd_activate)

    sync_parser = subparsers.add_parser(
        "sync",
        help="Deliver queued contact form submissions",
    )
    _add_common_arguments(sync_parser)
    sync_parser.set_defaults(func=_cmd_sync)

    stores_parser = subparsers.add_parser(
        "stores",
        help="List cache stores and pending submissions",
    )
    _add_common_arguments(stores_parser)
    stores_parser.set_defaults(func=_cmd_stores)

    test_email_parser = subparsers.add_parser(
        "test-email",
        help="Send a test email to the admin address",
    )
    _add_common_arguments(test_email_parser)
    test_email_parser.set_defaults(func=_cmd_test_email)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = None
        args.verbose = False
        args.func = _cmd_run

    args.func(args)

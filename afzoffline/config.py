"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


DEFAULT_VERSION = "afz-sw-v3.0"
DEFAULT_CACHE_PREFIX = "afz-"
DEFAULT_ORIGIN = "http://localhost:8002"
DEFAULT_OFFLINE_PAGE = "./pages/offline.html"
DEFAULT_PLACEHOLDER_IMAGE = "./images/placeholder.svg"
DEFAULT_SYNC_TAG = "contact-form-sync"
DEFAULT_SYNC_ENDPOINT = "/api/contact"

# Critical assets cached on install so the site keeps working offline.
DEFAULT_STATIC_ASSETS = (
    "./",
    "./index.html",
    "./manifest.json",
    "./css/afz-unified-design.css",
    "./js/main.js",
    "./js/language.js",
    "./js/navigation.js",
    "./js/pwa.js",
    "./js/contact-handler.js",
    "./favicon.jpg",
    "./images/placeholder.svg",
    "./pages/contact.html",
    "./pages/about.html",
    "./pages/offline.html",
)


def _get_default_data_dir() -> Path:
    """Get the default data directory using XDG-compliant layout.

    Returns ~/.local/share/afzoffline which is the standard
    location for user-specific data files on Linux/macOS.
    """
    return Path.home() / ".local" / "share" / "afzoffline"


DEFAULT_CACHE_PATH = str(_get_default_data_dir() / "cache.db")
DEFAULT_QUEUE_PATH = str(_get_default_data_dir() / "offline.db")


@dataclass(frozen=True)
class WorkerConfig:
    """Configuration for the offline worker and its cache generation.

    The version tag names the current generation. Store names are derived
    from it: ``<cache_prefix>cache-<version>`` for the static store and
    ``<cache_prefix>runtime-<version>`` for the runtime store.
    """

    version: str = DEFAULT_VERSION
    cache_prefix: str = DEFAULT_CACHE_PREFIX
    origin: str = DEFAULT_ORIGIN
    offline_page: str = DEFAULT_OFFLINE_PAGE
    placeholder_image: str = DEFAULT_PLACEHOLDER_IMAGE
    network_timeout: int = 10  # seconds per network fetch
    max_workers: int = 4  # concurrent event handlers
    static_assets: tuple[str, ...] = DEFAULT_STATIC_ASSETS

    def __post_init__(self) -> None:
        if not self.version:
            raise ConfigError("Worker version cannot be empty")
        if not self.cache_prefix:
            raise ConfigError("Worker cache_prefix cannot be empty")
        if not self.origin.startswith(("http://", "https://")):
            raise ConfigError(f"Worker origin must start with http:// or https://, got '{self.origin}'")
        if urlsplit(self.origin).path not in ("", "/"):
            raise ConfigError(f"Worker origin must not contain a path, got '{self.origin}'")
        if self.network_timeout < 1:
            raise ConfigError(f"Network timeout must be at least 1 second (got {self.network_timeout})")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1 (got {self.max_workers})")
        if not self.offline_page:
            raise ConfigError("Offline page cannot be empty")


@dataclass(frozen=True)
class StorageConfig:
    """Configuration for the SQLite files backing the stores and the queue."""

    cache_path: str = DEFAULT_CACHE_PATH
    queue_path: str = DEFAULT_QUEUE_PATH

    def __post_init__(self) -> None:
        if not self.cache_path:
            raise ConfigError("Storage cache_path cannot be empty")
        if not self.queue_path:
            raise ConfigError("Storage queue_path cannot be empty")


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for background delivery of queued form submissions."""

    tag: str = DEFAULT_SYNC_TAG
    endpoint: str = DEFAULT_SYNC_ENDPOINT
    timeout: int = 10

    def __post_init__(self) -> None:
        if not self.tag:
            raise ConfigError("Sync tag cannot be empty")
        if not self.endpoint.startswith(("/", "http://", "https://")):
            raise ConfigError(f"Sync endpoint must be a path or http(s) URL, got '{self.endpoint}'")
        if self.timeout < 1:
            raise ConfigError(f"Sync timeout must be at least 1 second (got {self.timeout})")


@dataclass(frozen=True)
class ProxyConfig:
    """Configuration for the caching proxy that pages talk to."""

    enabled: bool = True
    port: int = 8080

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"Proxy port must be between 1 and 65535, got {self.port}")


@dataclass(frozen=True)
class SmtpConfig:
    """Configuration for the SMTP mail transport.

    When disabled, or when credentials are missing, mail is only logged
    (development mode).
    """

    enabled: bool = False
    host: str = "smtp.gmail.com"
    port: int = 587
    username: str | None = None
    password: str | None = None
    use_tls: bool = True

    def __post_init__(self) -> None:
        if self.enabled and not self.host:
            raise ConfigError("SMTP host is required when SMTP is enabled")
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"SMTP port must be between 1 and 65535, got {self.port}")

    @property
    def is_development(self) -> bool:
        return not self.enabled or not self.username or not self.password


@dataclass(frozen=True)
class ContactConfig:
    """Configuration for the contact and newsletter backend."""

    enabled: bool = True
    port: int = 3000
    admin_email: str = "info@afz.org.zm"
    from_email: str = "noreply@afz.org.zm"
    allowed_origins: tuple[str, ...] = ("http://localhost:3000",)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"Contact port must be between 1 and 65535, got {self.port}")
        if "@" not in self.admin_email:
            raise ConfigError(f"Invalid admin_email '{self.admin_email}'")
        if "@" not in self.from_email:
            raise ConfigError(f"Invalid from_email '{self.from_email}'")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    worker: WorkerConfig = field(default_factory=WorkerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    contact: ContactConfig = field(default_factory=ContactConfig)

    def __post_init__(self) -> None:
        if self.proxy.enabled and self.contact.enabled and self.proxy.port == self.contact.port:
            raise ConfigError(f"Proxy and contact backend cannot share port {self.proxy.port}")


def _section(data: dict, name: str) -> dict:
    """Return a config section as a dict, validating its type."""
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a dictionary")
    return section


def _parse_str_list(value: object, name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ConfigError(f"'{name}' must be a list")
    return tuple(str(item) for item in value)


def _parse_worker_config(data: dict) -> WorkerConfig:
    """Parse worker configuration section."""
    assets = data.get("static_assets")
    return WorkerConfig(
        version=str(data.get("version", DEFAULT_VERSION)),
        cache_prefix=str(data.get("cache_prefix", DEFAULT_CACHE_PREFIX)),
        origin=str(data.get("origin", DEFAULT_ORIGIN)).rstrip("/"),
        offline_page=str(data.get("offline_page", DEFAULT_OFFLINE_PAGE)),
        placeholder_image=str(data.get("placeholder_image", DEFAULT_PLACEHOLDER_IMAGE)),
        network_timeout=int(data.get("network_timeout", 10)),
        max_workers=int(data.get("max_workers", 4)),
        static_assets=(
            _parse_str_list(assets, "worker.static_assets") if assets is not None else DEFAULT_STATIC_ASSETS
        ),
    )


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage configuration section."""
    return StorageConfig(
        cache_path=os.path.expanduser(str(data.get("cache_path", DEFAULT_CACHE_PATH))),
        queue_path=os.path.expanduser(str(data.get("queue_path", DEFAULT_QUEUE_PATH))),
    )


def _parse_sync_config(data: dict) -> SyncConfig:
    """Parse sync configuration section."""
    return SyncConfig(
        tag=str(data.get("tag", DEFAULT_SYNC_TAG)),
        endpoint=str(data.get("endpoint", DEFAULT_SYNC_ENDPOINT)),
        timeout=int(data.get("timeout", 10)),
    )


def _parse_proxy_config(data: dict) -> ProxyConfig:
    """Parse proxy configuration section."""
    return ProxyConfig(
        enabled=bool(data.get("enabled", True)),
        port=int(data.get("port", 8080)),
    )


def _parse_smtp_config(data: dict) -> SmtpConfig:
    """Parse the contact.smtp configuration section."""
    username = data.get("username")
    password = data.get("password")
    return SmtpConfig(
        enabled=bool(data.get("enabled", False)),
        host=str(data.get("host", "smtp.gmail.com")),
        port=int(data.get("port", 587)),
        username=str(username) if username is not None else None,
        password=str(password) if password is not None else None,
        use_tls=bool(data.get("use_tls", True)),
    )


def _parse_contact_config(data: dict) -> ContactConfig:
    """Parse contact configuration section."""
    origins = data.get("allowed_origins")
    return ContactConfig(
        enabled=bool(data.get("enabled", True)),
        port=int(data.get("port", 3000)),
        admin_email=str(data.get("admin_email", "info@afz.org.zm")),
        from_email=str(data.get("from_email", "noreply@afz.org.zm")),
        allowed_origins=(
            _parse_str_list(origins, "contact.allowed_origins")
            if origins is not None
            else ("http://localhost:3000",)
        ),
        smtp=_parse_smtp_config(_section(data, "smtp")),
    )


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - AFZ_WORKER_VERSION: Override worker.version
    - AFZ_WORKER_ORIGIN: Override worker.origin
    - AFZ_PROXY_PORT: Override proxy.port
    - AFZ_CONTACT_PORT: Override contact.port
    - AFZ_CACHE_PATH: Override storage.cache_path
    - AFZ_QUEUE_PATH: Override storage.queue_path
    - AFZ_SMTP_USER: Override contact.smtp.username
    - AFZ_SMTP_PASSWORD: Override contact.smtp.password
    """
    for section in ("worker", "storage", "proxy", "contact"):
        if config_data.get(section) is None:
            config_data[section] = {}
    if config_data["contact"].get("smtp") is None:
        config_data["contact"]["smtp"] = {}

    version = os.environ.get("AFZ_WORKER_VERSION")
    if version is not None:
        config_data["worker"]["version"] = version

    origin = os.environ.get("AFZ_WORKER_ORIGIN")
    if origin is not None:
        config_data["worker"]["origin"] = origin

    proxy_port = os.environ.get("AFZ_PROXY_PORT")
    if proxy_port is not None:
        config_data["proxy"]["port"] = int(proxy_port)

    contact_port = os.environ.get("AFZ_CONTACT_PORT")
    if contact_port is not None:
        config_data["contact"]["port"] = int(contact_port)

    cache_path = os.environ.get("AFZ_CACHE_PATH")
    if cache_path is not None:
        config_data["storage"]["cache_path"] = cache_path

    queue_path = os.environ.get("AFZ_QUEUE_PATH")
    if queue_path is not None:
        config_data["storage"]["queue_path"] = queue_path

    smtp_user = os.environ.get("AFZ_SMTP_USER")
    if smtp_user is not None:
        config_data["contact"]["smtp"]["username"] = smtp_user

    smtp_password = os.environ.get("AFZ_SMTP_PASSWORD")
    if smtp_password is not None:
        config_data["contact"]["smtp"]["password"] = smtp_password

    return config_data


def parse_config(data: dict) -> Config:
    """Build a validated Config from an already-loaded mapping.

    Raises:
        ConfigError: If a section is malformed or a value is invalid.
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    data = _apply_env_overrides(data)

    try:
        return Config(
            worker=_parse_worker_config(_section(data, "worker")),
            storage=_parse_storage_config(_section(data, "storage")),
            sync=_parse_sync_config(_section(data, "sync")),
            proxy=_parse_proxy_config(_section(data, "proxy")),
            contact=_parse_contact_config(_section(data, "contact")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")


def load_config(config_path: str | None) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file, or None to use
            defaults (environment overrides still apply).

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    if config_path is None:
        return parse_config({})

    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    return parse_config(data)

"""Configuration management for pycsync.

Settings live in a JSON file (``~/.config/pycsync/config.json`` by default).
Missing keys fall back to defaults; credentials may also come from
environment variables so that they do not have to be written to disk.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from .exceptions import ConfigError
from .sync.patterns import DEFAULT_IGNORE_PATTERNS, FilterSet
from .utils import (
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    parse_duration,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PYCSYNC_CONFIG"
PROVIDERS = ("local", "pcloud", "gdrive")
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def default_config_path() -> Path:
    """Return the config file location (``PYCSYNC_CONFIG`` wins)."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME")
    config_home = Path(base) if base else Path.home() / ".config"
    return config_home / "pycsync" / "config.json"


@dataclass
class GeneralConfig:
    """Settings shared by every provider."""

    source_path: str = ""
    """Local directory to synchronize"""

    max_concurrency: int = DEFAULT_CONCURRENCY
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY

    ignore_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS)
    )
    include_patterns: list[str] = field(default_factory=list)

    providers: list[str] = field(default_factory=list)
    """Providers to sync to; empty means every configured one"""

    hash_cache: bool = True
    """Reuse content hashes of unchanged files between passes"""


@dataclass
class DaemonConfig:
    sync_interval: str = "5m"
    watch_mode: bool = False
    poll_interval: str = "1s"
    debounce: str = "2s"
    pid_file: str = ""


@dataclass
class LoggingConfig:
    log_file: str = ""
    log_level: str = "info"
    verbose: bool = False


@dataclass
class LocalConfig:
    destination: str = ""
    """Destination directory (provider is enabled when set)"""


@dataclass
class PCloudConfig:
    username: str = ""
    password: str = ""
    auth_token: str = ""
    api_host: str = "https://api.pcloud.com"
    destination_path: str = ""


@dataclass
class GoogleDriveConfig:
    access_token: str = ""
    token_path: str = ""
    """OAuth token JSON file holding an ``access_token``"""

    folder_id: str = ""
    destination_path: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    """Custom properties attached to uploaded files"""


_SECTIONS = {
    "general": GeneralConfig,
    "daemon": DaemonConfig,
    "logging": LoggingConfig,
    "local": LocalConfig,
    "pcloud": PCloudConfig,
    "google_drive": GoogleDriveConfig,
}


def _section_from_dict(name: str, cls: type, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Config section '{name}' must be an object")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{name}': {', '.join(unknown)}")
    try:
        return cls(**{key: value for key, value in data.items() if key in known})
    except TypeError as e:
        raise ConfigError(f"Invalid config section '{name}': {e}") from e


@dataclass
class Config:
    """Complete pycsync configuration."""

    general: GeneralConfig = field(default_factory=GeneralConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    local: LocalConfig = field(default_factory=LocalConfig)
    pcloud: PCloudConfig = field(default_factory=PCloudConfig)
    google_drive: GoogleDriveConfig = field(default_factory=GoogleDriveConfig)
    path: Optional[Path] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        """Build a config from parsed JSON, filling in defaults."""
        if not isinstance(data, Mapping):
            raise ConfigError("Config file must contain a JSON object")
        sections = {
            name: _section_from_dict(name, section_cls, data.get(name))
            for name, section_cls in _SECTIONS.items()
        }
        return cls(**sections)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {name: asdict(getattr(self, name)) for name in _SECTIONS}

    @classmethod
    def load(
        cls,
        path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Config":
        """Load configuration from file and environment.

        A missing file yields the defaults.

        Args:
            path: Config file (defaults to default_config_path())
            environ: Environment mapping (defaults to os.environ)

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        path = Path(path).expanduser() if path else default_config_path()
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
            except OSError as e:
                raise ConfigError(f"Cannot read config file {path}: {e}") from e
            except ValueError as e:
                raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e
            config = cls.from_dict(data)
        else:
            logger.debug(f"Config file {path} not found, using defaults")
            config = cls()
        config.path = path
        config.apply_env(os.environ if environ is None else environ)
        return config

    def apply_env(self, environ: Mapping[str, str]) -> None:
        """Override credentials from environment variables."""
        if environ.get("PCLOUD_USERNAME"):
            self.pcloud.username = environ["PCLOUD_USERNAME"]
        if environ.get("PCLOUD_PASSWORD"):
            self.pcloud.password = environ["PCLOUD_PASSWORD"]
        if environ.get("PCLOUD_AUTH_TOKEN"):
            self.pcloud.auth_token = environ["PCLOUD_AUTH_TOKEN"]
        if environ.get("GOOGLE_ACCESS_TOKEN"):
            self.google_drive.access_token = environ["GOOGLE_ACCESS_TOKEN"]
        if environ.get("GOOGLE_TOKEN_PATH"):
            self.google_drive.token_path = environ["GOOGLE_TOKEN_PATH"]

    def save(self, path: Optional[Path] = None) -> Path:
        """Write the configuration file (readable by the owner only).

        Returns:
            The path written to
        """
        path = Path(path or self.path or default_config_path()).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
            f.write("\n")
        os.chmod(path, 0o600)
        self.path = path
        return path

    def validate(self) -> None:
        """Check the configuration for invalid values.

        Raises:
            ConfigError: Describing the first problem found
        """
        general = self.general
        if not isinstance(general.max_concurrency, int) or general.max_concurrency < 1:
            raise ConfigError("general.max_concurrency must be a positive integer")
        if not isinstance(general.retry_attempts, int) or general.retry_attempts < 0:
            raise ConfigError("general.retry_attempts must be zero or more")
        if not isinstance(general.retry_delay, (int, float)) or general.retry_delay < 0:
            raise ConfigError("general.retry_delay must be zero or more")
        for key in ("ignore_patterns", "include_patterns", "providers"):
            value = getattr(general, key)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigError(f"general.{key} must be a list of strings")
        unknown = [p for p in general.providers if p not in PROVIDERS]
        if unknown:
            raise ConfigError(
                f"Unknown provider(s) {', '.join(unknown)}; "
                f"choose from {', '.join(PROVIDERS)}"
            )

        for key in ("sync_interval", "poll_interval", "debounce"):
            try:
                seconds = parse_duration(getattr(self.daemon, key))
            except (AttributeError, ValueError) as e:
                raise ConfigError(f"daemon.{key}: {e}") from e
            if key == "poll_interval" and seconds <= 0:
                raise ConfigError("daemon.poll_interval must be positive")

        if self.logging.log_level.lower() not in LOG_LEVELS:
            raise ConfigError(
                f"logging.log_level must be one of {', '.join(LOG_LEVELS)}"
            )

    @property
    def sync_interval(self) -> float:
        return parse_duration(self.daemon.sync_interval)

    @property
    def poll_interval(self) -> float:
        return parse_duration(self.daemon.poll_interval)

    @property
    def debounce(self) -> float:
        return parse_duration(self.daemon.debounce)

    def filters(self, ignore: Iterable[str] = (), include: Iterable[str] = ()) -> FilterSet:
        """Build the filter set from the configured patterns.

        Args:
            ignore: Extra ignore patterns appended to the configured ones
            include: Include patterns replacing the configured ones when given
        """
        include_patterns = list(include) or self.general.include_patterns
        return FilterSet.from_lists(
            list(self.general.ignore_patterns) + list(ignore), include_patterns
        )

    def configured_providers(self) -> list[str]:
        """Providers that have enough settings to be used."""
        configured = []
        if self.local.destination:
            configured.append("local")
        if self.pcloud.auth_token or (self.pcloud.username and self.pcloud.password):
            configured.append("pcloud")
        if self.google_drive.access_token or self.google_drive.token_path:
            configured.append("gdrive")
        return configured

    def enabled_providers(self) -> list[str]:
        """Providers to sync to by default."""
        if self.general.providers:
            return list(self.general.providers)
        return self.configured_providers()


def load_config(path: Optional[Path] = None, validate: bool = True) -> Config:
    """Load (and by default validate) the configuration."""
    config = Config.load(path)
    if validate:
        config.validate()
    return config

"""Create remote stores from configuration."""

from pathlib import Path

from ..config import Config
from ..exceptions import ConfigError
from .base import RemoteStore
from .gdrive import GoogleDriveStore, load_access_token
from .local import LocalDirectoryStore
from .pcloud import PCloudStore


def create_store(provider: str, config: Config) -> RemoteStore:
    """Create the store for a provider from configuration.

    Args:
        provider: One of "local", "pcloud", "gdrive"
        config: Loaded configuration

    Returns:
        Ready to use store

    Raises:
        ConfigError: If the provider is unknown or not configured
        RemoteAuthError: If credentials are missing or unreadable
    """
    if provider == "local":
        if not config.local.destination:
            raise ConfigError("local.destination is not configured")
        return LocalDirectoryStore(Path(config.local.destination))

    if provider == "pcloud":
        return PCloudStore(
            username=config.pcloud.username,
            password=config.pcloud.password,
            api_host=config.pcloud.api_host,
            destination_path=config.pcloud.destination_path,
            auth_token=config.pcloud.auth_token,
        )

    if provider == "gdrive":
        drive = config.google_drive
        token = drive.access_token
        if not token and drive.token_path:
            token = load_access_token(Path(drive.token_path))
        return GoogleDriveStore(
            access_token=token,
            folder_id=drive.folder_id,
            destination_path=drive.destination_path,
            metadata=drive.metadata,
        )

    raise ConfigError(f"Unknown provider: {provider}")


def create_stores(providers: list[str], config: Config) -> dict[str, RemoteStore]:
    """Create stores for several providers, keyed by provider name."""
    stores: dict[str, RemoteStore] = {}
    try:
        for provider in providers:
            stores[provider] = create_store(provider, config)
    except Exception:
        for store in stores.values():
            store.close()
        raise
    return stores

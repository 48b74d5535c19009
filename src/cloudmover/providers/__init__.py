"""Providers module - Storage provider interface and adapters."""

from cloudmover.providers.base import RemoteFile, ResourceRef, StorageProvider, UploadResult
from cloudmover.providers.dropbox import DropboxProvider, parse_dropbox_url
from cloudmover.providers.google_drive import GoogleDriveProvider, parse_drive_url
from cloudmover.providers.memory import InMemoryProvider
from cloudmover.providers.pool import ProviderPool, env_token_lookup, http_provider_factory

__all__ = [
    # Contract
    "RemoteFile",
    "ResourceRef",
    "StorageProvider",
    "UploadResult",
    # Adapters
    "DropboxProvider",
    "GoogleDriveProvider",
    "InMemoryProvider",
    "parse_drive_url",
    "parse_dropbox_url",
    # Pool
    "ProviderPool",
    "env_token_lookup",
    "http_provider_factory",
]

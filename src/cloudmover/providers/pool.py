"""Bounded cache of per-user provider clients."""

from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict
from collections.abc import Callable

from cloudmover.core.errors import AuthorizationError, InvalidInputError
from cloudmover.core.types import ProviderName
from cloudmover.providers.base import StorageProvider
from cloudmover.providers.dropbox import DropboxProvider
from cloudmover.providers.google_drive import GoogleDriveProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, str], StorageProvider]
TokenLookup = Callable[[str, str], str | None]


def env_token_lookup(provider: str, user_id: str) -> str | None:
    """Read an access token from the environment.

    Looks up ``CLOUDMOVER_TOKEN_<PROVIDER>_<USER>`` first, then
    ``CLOUDMOVER_TOKEN_<PROVIDER>``.
    """
    user_key = "".join(c if c.isalnum() else "_" for c in user_id).upper()
    return os.environ.get(f"CLOUDMOVER_TOKEN_{provider.upper()}_{user_key}") or os.environ.get(
        f"CLOUDMOVER_TOKEN_{provider.upper()}"
    )


def http_provider_factory(token_lookup: TokenLookup = env_token_lookup) -> ProviderFactory:
    """Build a factory creating REST adapters from stored access tokens.

    Args:
        token_lookup: Returns the access token of a user for a provider.

    Returns:
        Factory usable by ProviderPool.
    """

    def factory(provider: str, user_id: str) -> StorageProvider:
        token = token_lookup(provider, user_id)
        if not token:
            raise AuthorizationError(
                f"No {provider} credentials for user {user_id}", provider=provider
            )
        if provider == ProviderName.GOOGLE.value:
            return GoogleDriveProvider(token)
        if provider == ProviderName.DROPBOX.value:
            return DropboxProvider(token)
        raise InvalidInputError(f"Unsupported provider: {provider}", provider=provider)

    return factory


class ProviderPool:
    """Provider clients keyed by (provider, user), oldest evicted first.

    The pool may temporarily grow past ``max_size`` while jobs run. The
    worker heartbeat calls ``shrink()`` to bring it back under the bound.
    """

    def __init__(self, factory: ProviderFactory, max_size: int = 10) -> None:
        self._factory = factory
        self._max_size = max_size
        self._clients: OrderedDict[tuple[str, str], StorageProvider] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, provider: str, user_id: str) -> StorageProvider:
        """Get the client of a user for a provider, creating it on first use."""
        key = (provider, user_id)
        with self._lock:
            client = self._clients.get(key)
            if client is not None:
                self._clients.move_to_end(key)
                return client
        client = self._factory(provider, user_id)
        with self._lock:
            existing = self._clients.get(key)
            if existing is not None:
                return existing
            self._clients[key] = client
            return client

    def shrink(self) -> int:
        """Drop the least recently used clients beyond the bound.

        Evicted clients are not closed since a running job may still hold
        one. They are released once the last reference goes away.

        Returns:
            Number of clients evicted.
        """
        evicted = 0
        with self._lock:
            while len(self._clients) > self._max_size:
                key, _ = self._clients.popitem(last=False)
                evicted += 1
                logger.debug("Evicted %s client for user %s from pool", key[0], key[1])
        return evicted

    def close(self) -> None:
        """Close and drop every cached client."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    @property
    def max_size(self) -> int:
        """Get the pool bound."""
        return self._max_size

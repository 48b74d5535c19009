"""Shared fixtures: a file-backed store and in-memory providers."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from cloudmover.providers.memory import InMemoryProvider
from cloudmover.providers.pool import ProviderPool
from cloudmover.store.database import JobStore


@pytest.fixture
def store(tmp_path: Path) -> Iterator[JobStore]:
    """Create a SQLite job store."""
    job_store = JobStore(f"sqlite:///{tmp_path / 'cloudmover.db'}")
    yield job_store
    job_store.close()


@pytest.fixture
def source() -> InMemoryProvider:
    """Source provider (registered as "google")."""
    return InMemoryProvider("google")


@pytest.fixture
def dest() -> InMemoryProvider:
    """Destination provider (registered as "dropbox")."""
    return InMemoryProvider("dropbox")


@pytest.fixture
def pool(source: InMemoryProvider, dest: InMemoryProvider) -> ProviderPool:
    """Provider pool serving the two in-memory providers to every user."""
    providers = {source.name: source, dest.name: dest}
    return ProviderPool(lambda provider, user_id: providers[provider])

"""Time-windowed local cache of the registry catalog snapshot.

A cached snapshot is used while the cache file is younger than the
freshness window and parses. Anything else, including a missing or
corrupt file, is a cache miss: the snapshot is fetched live and the cache
rewritten. Only a failing live fetch is an error.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from ohx_addon_cli.manifest.schema import AddonEntryMap
from ohx_addon_cli.registry.catalog import (
    dump_registry,
    fetch_registry,
    parse_registry,
)

logger = logging.getLogger(__name__)

# Seconds a cached snapshot stays fresh
DEFAULT_FRESHNESS_WINDOW = 500


class CacheStore(Protocol):
    """Storage of the cached snapshot."""

    def modified_at(self) -> float | None:
        """Last modification as unix timestamp, None if nothing is stored."""
        ...

    def read(self) -> bytes:
        """Return the stored snapshot."""
        ...

    def write(self, content: bytes) -> None:
        """Replace the stored snapshot."""
        ...


class FileCacheStore:
    """CacheStore backed by a file; freshness comes from its mtime."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def modified_at(self) -> float | None:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None

    def read(self) -> bytes:
        return self.path.read_bytes()

    def write(self, content: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(content)


class RegistryCache:
    """Serves the registry catalog from cache or a live fetch.

    Args:
        store: Cache storage.
        url: Catalog snapshot URL for live fetches.
        freshness_window: Maximum cache age in seconds.
        now: Wall clock, comparable with ``store.modified_at()``.
    """

    def __init__(
        self,
        store: CacheStore,
        url: str,
        freshness_window: float = DEFAULT_FRESHNESS_WINDOW,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.url = url
        self.freshness_window = freshness_window
        self._now = now

    def load_cached(self) -> AddonEntryMap | None:
        """Return the cached snapshot if it is fresh and readable."""
        modified = self.store.modified_at()
        if modified is None:
            return None
        age = self._now() - modified
        if age < 0:
            logger.debug("Registry cache is dated in the future, refetching")
            return None
        if age >= self.freshness_window:
            logger.debug("Registry cache is stale (%.0f s old)", age)
            return None
        try:
            return parse_registry(self.store.read())
        except (OSError, PydanticValidationError) as e:
            logger.debug("Registry cache unreadable, refetching: %s", e)
            return None

    def fetch(self, client: httpx.Client) -> AddonEntryMap:
        """Return the catalog snapshot, refreshing the cache if needed.

        Raises:
            RegistryError: If a live fetch is required and fails.
        """
        cached = self.load_cached()
        if cached is not None:
            logger.debug("Using cached registry with %d entries", len(cached))
            return cached

        entries = fetch_registry(client, self.url)
        try:
            self.store.write(dump_registry(entries))
        except OSError as e:
            logger.warning("Failed to update registry cache: %s", e)
        return entries


__all__ = [
    "DEFAULT_FRESHNESS_WINDOW",
    "CacheStore",
    "FileCacheStore",
    "RegistryCache",
]

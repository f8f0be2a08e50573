"""Addon registry catalog access.

The registry publishes two JSON snapshots: the full catalog (addon id to
entry) and usage statistics (addon id to stats).
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError as PydanticValidationError

from ohx_addon_cli.manifest.schema import (
    AddonEntryMap,
    AddonStatsMap,
    addon_entry_map_adapter,
    addon_stats_map_adapter,
)

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Raised when a registry snapshot cannot be fetched."""

    def __init__(self, message: str, code: str = "registry_error") -> None:
        """Initialize RegistryError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


def fetch_snapshot(client: httpx.Client, url: str) -> bytes:
    """Download a registry snapshot.

    Args:
        client: HTTPX client instance.
        url: Snapshot URL.

    Returns:
        Raw snapshot content.

    Raises:
        RegistryError: If the request fails.
    """
    logger.debug("Fetching registry snapshot from %s", url)
    try:
        response = client.get(url)
        response.raise_for_status()
        return response.content
    except httpx.HTTPStatusError as e:
        raise RegistryError(
            f"HTTP error fetching {url}: "
            f"{e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise RegistryError(f"Timeout fetching {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise RegistryError(
            f"Network error fetching {url}: {e}", code="network_error"
        ) from e


def parse_registry(content: bytes) -> AddonEntryMap:
    """Parse a catalog snapshot.

    Raises:
        pydantic.ValidationError: If the content is not a valid snapshot.
    """
    return addon_entry_map_adapter.validate_json(content)


def dump_registry(entries: AddonEntryMap) -> bytes:
    """Serialize a catalog snapshot using the registry's key names."""
    return addon_entry_map_adapter.dump_json(entries, by_alias=True, exclude_none=True)


def fetch_registry(client: httpx.Client, url: str) -> AddonEntryMap:
    """Fetch and parse the full catalog snapshot.

    Raises:
        RegistryError: If the snapshot cannot be fetched or parsed.
    """
    content = fetch_snapshot(client, url)
    try:
        entries = parse_registry(content)
    except PydanticValidationError as e:
        raise RegistryError(
            f"Invalid registry snapshot from {url}: {e}", code="invalid_snapshot"
        ) from e
    logger.info("Fetched %d registry entries", len(entries))
    return entries


def fetch_registry_stats(client: httpx.Client, url: str) -> AddonStatsMap:
    """Fetch and parse the statistics snapshot.

    Raises:
        RegistryError: If the snapshot cannot be fetched or parsed.
    """
    content = fetch_snapshot(client, url)
    try:
        return addon_stats_map_adapter.validate_json(content)
    except PydanticValidationError as e:
        raise RegistryError(
            f"Invalid registry statistics from {url}: {e}", code="invalid_snapshot"
        ) from e


__all__ = [
    "RegistryError",
    "dump_registry",
    "fetch_registry",
    "fetch_registry_stats",
    "fetch_snapshot",
    "parse_registry",
]

"""Addon registry access.

This module handles:
- Catalog and statistics snapshots
- The time-windowed local catalog cache
- Publishing enriched addon records
"""

from ohx_addon_cli.registry.cache import FileCacheStore, RegistryCache
from ohx_addon_cli.registry.catalog import (
    RegistryError,
    fetch_registry,
    fetch_registry_stats,
)
from ohx_addon_cli.registry.publish import PublishClient, PublishError, build_record

__all__ = [
    "FileCacheStore",
    "PublishClient",
    "PublishError",
    "RegistryCache",
    "RegistryError",
    "build_record",
    "fetch_registry",
    "fetch_registry_stats",
]

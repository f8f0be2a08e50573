"""Catalog of permissions an addon service may request.

The catalog ships with the package as ``addon-permissions.json`` and is
loaded once per process. It is never mutated.
"""

import json
import logging
from collections.abc import Iterator, Mapping
from functools import lru_cache
from importlib import resources
from types import MappingProxyType

from ohx_addon_cli.manifest.schema import PermissionEntry

logger = logging.getLogger(__name__)

PERMISSIONS_RESOURCE = "addon-permissions.json"


class PermissionCatalog(Mapping[str, PermissionEntry]):
    """Read-only mapping of permission id to PermissionEntry."""

    def __init__(self, entries: Mapping[str, PermissionEntry]) -> None:
        self._entries = MappingProxyType(dict(entries))

    @classmethod
    def from_json(cls, content: str) -> "PermissionCatalog":
        """Parse a catalog from its JSON representation.

        Args:
            content: JSON object mapping permission id to entry.

        Returns:
            PermissionCatalog instance.

        Raises:
            ValueError: If the content is not a JSON object.
            pydantic.ValidationError: If an entry is malformed.
        """
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        return cls(
            {key: PermissionEntry.model_validate(value) for key, value in data.items()}
        )

    def __getitem__(self, key: str) -> PermissionEntry:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


@lru_cache(maxsize=1)
def load_permission_catalog() -> PermissionCatalog:
    """Load the bundled permission catalog.

    Returns:
        The process-wide PermissionCatalog.
    """
    content = (
        resources.files("ohx_addon_cli.manifest")
        .joinpath(PERMISSIONS_RESOURCE)
        .read_text(encoding="utf-8")
    )
    catalog = PermissionCatalog.from_json(content)
    logger.debug("Loaded %d known permissions", len(catalog))
    return catalog


__all__ = ["PERMISSIONS_RESOURCE", "PermissionCatalog", "load_permission_catalog"]

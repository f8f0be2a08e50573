"""Addon description file handling.

This module handles:
- Pydantic models for addon files and registry entries
- The bundled permission catalog
- Structural and semantic validation
"""

from ohx_addon_cli.manifest.permissions import (
    PermissionCatalog,
    load_permission_catalog,
)
from ohx_addon_cli.manifest.schema import (
    AddonEntryMap,
    AddonManifest,
    AddonRegistryEntry,
    AddonStats,
    AddonStatsMap,
    PermissionEntry,
    RegistryMetadata,
    RuntimeRequirements,
    Service,
)
from ohx_addon_cli.manifest.validator import (
    ManifestValidator,
    ValidationError,
    load_manifest,
    validate_manifest,
)

__all__ = [
    "AddonEntryMap",
    "AddonManifest",
    "AddonRegistryEntry",
    "AddonStats",
    "AddonStatsMap",
    "ManifestValidator",
    "PermissionCatalog",
    "PermissionEntry",
    "RegistryMetadata",
    "RuntimeRequirements",
    "Service",
    "ValidationError",
    "load_manifest",
    "load_permission_catalog",
    "validate_manifest",
]

"""Tests for manifest/schema.py, manifest/permissions.py and manifest/io.py."""

import json

import pytest
from pydantic import ValidationError

from ohx_addon_cli.manifest.io import parse_document, record_to_json_string
from ohx_addon_cli.manifest.permissions import (
    PermissionCatalog,
    load_permission_catalog,
)
from ohx_addon_cli.manifest.schema import (
    AddonManifest,
    AddonStats,
    Service,
    addon_entry_map_adapter,
)
from ohx_addon_cli.types import AddonStatusCode

REGISTRY_METADATA = {
    "title": "Hue",
    "description": "Philips Hue binding",
    "license": "EPL-2.0",
    "type": "binding",
    "id": "hue",
    "version": "2.1.0",
}


class TestAddonManifest:
    """Tests for AddonManifest model."""

    def test_aliases(self):
        """Should read the namespaced keys."""
        manifest = AddonManifest.model_validate(
            {
                "services": {"hue": {"image": "hue"}},
                "x-ohx-registry": REGISTRY_METADATA,
                "x-runtime": {"memory_min": 1, "memory_max": 2},
            }
        )

        assert manifest.registry.type_field == "binding"
        assert manifest.registry.status.code == AddonStatusCode.AVAILABLE
        assert manifest.registry.authors == []

    def test_to_document_uses_file_keys(self):
        """Should dump with the file's key names and without unset options."""
        manifest = AddonManifest.model_validate(
            {
                "services": {"hue": {"image": "hue"}},
                "x-ohx-registry": REGISTRY_METADATA,
                "x-runtime": {"memory_min": 1, "memory_max": 2},
            }
        )

        document = manifest.to_document()

        assert "x-ohx-registry" in document
        assert "x-runtime" in document
        assert document["x-ohx-registry"]["type"] == "binding"
        assert document["services"]["hue"] == {"image": "hue"}

    def test_invalid_status(self):
        """Should reject unknown status codes."""
        with pytest.raises(ValidationError):
            AddonManifest.model_validate(
                {
                    "services": {},
                    "x-ohx-registry": {**REGISTRY_METADATA, "status": {"code": "GONE"}},
                    "x-runtime": {"memory_min": 1, "memory_max": 2},
                }
            )


class TestService:
    """Tests for Service model."""

    def test_unknown_keys_ignored(self):
        """Compose keys without meaning to the registry are dropped."""
        service = Service.model_validate({"image": "x", "environment": ["A=1"]})

        assert service.image == "x"
        assert not hasattr(service, "environment")

    def test_is_local_build(self):
        assert Service.model_validate({"build": "."}).is_local_build
        assert not Service.model_validate({"image": "x"}).is_local_build


class TestRegistrySnapshot:
    """Tests for registry snapshot models."""

    def test_parse_entry_map(self):
        """Should parse a catalog snapshot."""
        content = json.dumps(
            {"hue": {**REGISTRY_METADATA, "owner": "abc", "last_updated": 1_600}}
        )

        entries = addon_entry_map_adapter.validate_json(content)

        assert entries["hue"].owner == "abc"
        assert entries["hue"].version == "2.1.0"

    def test_stats_rating(self):
        """Should average rating points over voters."""
        assert AddonStats(v=4, p=18).rating == 4.5
        assert AddonStats().rating == 0.0


class TestPermissionCatalog:
    """Tests for PermissionCatalog."""

    def test_bundled_catalog(self):
        """Should load the bundled resource once."""
        catalog = load_permission_catalog()

        assert "network" in catalog
        assert catalog["network"].label
        assert load_permission_catalog() is catalog

    def test_read_only(self):
        """Should not allow mutation."""
        catalog = PermissionCatalog.from_json(
            '{"gpio": {"id": "gpio", "label": "GPIO", "standalone": true}}'
        )

        assert catalog["gpio"].standalone is True
        assert len(catalog) == 1
        with pytest.raises(TypeError):
            catalog["x"] = catalog["gpio"]  # type: ignore[index]

    def test_from_json_requires_object(self):
        """Should reject non-object JSON."""
        with pytest.raises(ValueError):
            PermissionCatalog.from_json("[]")


class TestRecordExport:
    """Tests for manifest/io.py helpers."""

    def test_record_to_json_string(self):
        rendered = record_to_json_string({"title": "Hé", "archs": ["amd64"]})

        assert json.loads(rendered) == {"title": "Hé", "archs": ["amd64"]}
        assert "Hé" in rendered

    def test_parse_document_rejects_lists(self):
        with pytest.raises(ValueError):
            parse_document(b"- a\n- b\n")

    def test_parse_empty_document(self):
        assert parse_document(b"") == {}

"""Structural and semantic validation of addon description files.

Validation is fail-fast: the first violation is raised as a
ValidationError naming the offending service and value. Checks run per
service, in file order:

1. image reference (``[registry[:port]/]name[:tag]``)
2. permissions (mandatory, then optional) against the permission catalog
3. port specifications (``[host:]container[/tcp|udp]`` with ranges)
4. ``depends_on`` entries, which must name services of the same file
5. volumes, of which only ``logvolume`` is supported
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from ohx_addon_cli.manifest.io import parse_document, read_manifest_bytes
from ohx_addon_cli.manifest.permissions import (
    PermissionCatalog,
    load_permission_catalog,
)
from ohx_addon_cli.manifest.schema import AddonManifest, Service

logger = logging.getLogger(__name__)

REGISTRY_PATTERN = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9.\-]*[a-zA-Z0-9])?(:\d+)?$")
IMAGE_NAME_PATTERN = re.compile(
    r"^[a-z0-9_\-]+(/[a-z0-9_\-]+)*(:[a-zA-Z0-9_][a-zA-Z0-9_.\-]*)?$"
)

PORT_PROTOCOLS = frozenset({"tcp", "udp"})
PRIVILEGED_PORT_LIMIT = 1024
MAX_PORT = 65535

SUPPORTED_VOLUME = "logvolume"


class ValidationError(Exception):
    """Raised when an addon description file is invalid."""

    def __init__(
        self,
        message: str,
        code: str = "validation",
        service: str | None = None,
        value: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.service = service
        self.value = value


def _describe_pydantic_error(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "(root)"
    return f"{location}: {first['msg']}"


class ManifestValidator:
    """Validates addon description files against the permission catalog."""

    def __init__(self, catalog: PermissionCatalog | None = None) -> None:
        self.catalog = catalog if catalog is not None else load_permission_catalog()

    def validate(self, raw: bytes) -> AddonManifest:
        """Parse and validate an addon description file.

        Args:
            raw: File content.

        Returns:
            The validated AddonManifest.

        Raises:
            ValidationError: On the first structural or semantic defect.
        """
        manifest = self._parse(raw)
        for service_id, service in manifest.services.items():
            self._check_image(service_id, service)
            self._check_permissions(service_id, service)
            self._check_ports(service_id, service)
            self._check_depends_on(service_id, service, manifest)
            self._check_volumes(service_id, service)
        logger.debug(
            "Validated addon %s with %d service(s)",
            manifest.registry.id,
            len(manifest.services),
        )
        return manifest

    def _parse(self, raw: bytes) -> AddonManifest:
        try:
            data = parse_document(raw)
            manifest = AddonManifest.model_validate(data)
        except yaml.YAMLError as e:
            raise ValidationError(
                f"Addon file is not valid YAML: {e}", code="empty_or_malformed"
            ) from e
        except ValueError as e:
            # pydantic's ValidationError is a ValueError as well
            message = (
                _describe_pydantic_error(e)
                if isinstance(e, PydanticValidationError)
                else str(e)
            )
            raise ValidationError(
                f"Addon file is malformed. {message}", code="empty_or_malformed"
            ) from e
        if not manifest.services:
            raise ValidationError("No services defined", code="empty_or_malformed")
        return manifest

    def _check_image(self, service_id: str, service: Service) -> None:
        if service.image is None:
            return
        parts = service.image.split("/")
        image_name = service.image
        if len(parts) >= 2:
            if not REGISTRY_PATTERN.match(parts[0]):
                raise ValidationError(
                    "Service registry address invalid for "
                    f"{service_id}: {service.image}",
                    code="image",
                    service=service_id,
                    value=service.image,
                )
            image_name = "/".join(parts[1:])
        if not IMAGE_NAME_PATTERN.match(image_name):
            raise ValidationError(
                f"Service image name invalid for {service_id}: {image_name}",
                code="image",
                service=service_id,
                value=image_name,
            )

    def _check_permissions(self, service_id: str, service: Service) -> None:
        if service.permissions is None:
            return
        for kind, permissions in (
            ("Mandatory", service.permissions.mandatory),
            ("Optional", service.permissions.optional),
        ):
            for permission in permissions:
                if permission not in self.catalog:
                    raise ValidationError(
                        f"{kind} permission unknown for {service_id}: {permission}",
                        code="permission",
                        service=service_id,
                        value=permission,
                    )

    def _check_ports(self, service_id: str, service: Service) -> None:
        for port_spec in service.ports or []:
            check_port_spec(service_id, port_spec)

    def _check_depends_on(
        self, service_id: str, service: Service, manifest: AddonManifest
    ) -> None:
        for dependency in service.depends_on or []:
            if dependency not in manifest.services:
                raise ValidationError(
                    "Only same-file dependencies are supported: you can only depend "
                    "on services defined in your own addon file. "
                    f"For {service_id}: Did not find '{dependency}'!",
                    code="depends_on",
                    service=service_id,
                    value=dependency,
                )

    def _check_volumes(self, service_id: str, service: Service) -> None:
        for volume in service.volumes or []:
            if volume.split(":")[0] != SUPPORTED_VOLUME:
                raise ValidationError(
                    f"There is currently only '{SUPPORTED_VOLUME}' supported. "
                    f"For {service_id}. You requested volume: '{volume}'!",
                    code="volume",
                    service=service_id,
                    value=volume,
                )


def check_port_spec(service_id: str, port_spec: str) -> None:
    """Validate a single port specification.

    Accepted forms: ``8080``, ``8080:80``, ``5000-5010:5000-5010`` each
    optionally followed by ``/tcp`` or ``/udp``. With two positions the
    first one is the host side, which must not use privileged ports.

    Raises:
        ValidationError: If the port specification is invalid.
    """
    parts = port_spec.split("/")
    if len(parts) > 2 or (len(parts) == 2 and parts[1] not in PORT_PROTOCOLS):
        raise ValidationError(
            "Ports pattern invalid. The part after / must be tcp or udp "
            f"for {service_id}: {port_spec}",
            code="port",
            service=service_id,
            value=port_spec,
        )

    positions = parts[0].split(":")
    if len(positions) > 2:
        raise ValidationError(
            "Ports pattern invalid. Maximum of two colon separated segments "
            f"allowed for {service_id}: {port_spec}",
            code="port",
            service=service_id,
            value=port_spec,
        )

    for index, position in enumerate(positions):
        is_host_side = len(positions) == 2 and index == 0
        bounds = position.split("-")
        if len(bounds) > 2:
            raise ValidationError(
                "Ports pattern invalid. A range can have only two segments "
                f"{service_id}: {position}",
                code="port",
                service=service_id,
                value=position,
            )
        for bound in bounds:
            is_number = bound.isascii() and bound.isdigit()
            if not is_number or int(bound) > MAX_PORT:
                raise ValidationError(
                    f"A port must be a number! For {service_id}: {bound}",
                    code="port",
                    service=service_id,
                    value=bound,
                )
            if is_host_side and int(bound) < PRIVILEGED_PORT_LIMIT:
                raise ValidationError(
                    "You cannot map to a privileged port below "
                    f"{PRIVILEGED_PORT_LIMIT}. For {service_id}: {bound}",
                    code="port",
                    service=service_id,
                    value=bound,
                )


def validate_manifest(
    raw: bytes, catalog: PermissionCatalog | None = None
) -> AddonManifest:
    """Validate raw addon file content with the bundled permission catalog."""
    return ManifestValidator(catalog).validate(raw)


def load_manifest(
    path: Path, catalog: PermissionCatalog | None = None
) -> AddonManifest:
    """Read and validate an addon description file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValidationError: If the file is invalid.
    """
    return validate_manifest(read_manifest_bytes(path), catalog)


__all__ = [
    "IMAGE_NAME_PATTERN",
    "ManifestValidator",
    "REGISTRY_PATTERN",
    "ValidationError",
    "check_port_spec",
    "load_manifest",
    "validate_manifest",
]

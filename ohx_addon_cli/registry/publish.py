"""Publishing of addon records to the registry catalog.

The published record is the addon description file enriched with the
architectures that were built and the aggregate image size. Local build
contexts are replaced by the published image reference so no build
directive ever reaches the catalog.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ohx_addon_cli.auth.session import UserSession
from ohx_addon_cli.builds.models import BuildTarget
from ohx_addon_cli.builds.targets import published_image_name
from ohx_addon_cli.manifest.io import record_to_json_string
from ohx_addon_cli.manifest.schema import AddonManifest

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """Raised when the catalog rejects or cannot receive a record."""

    def __init__(
        self,
        message: str,
        code: str = "publish_error",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def aggregate_size(targets: list[BuildTarget]) -> int:
    """Integer mean of the image sizes of all targets.

    Targets without a recorded size count as 0.
    """
    if not targets:
        return 0
    return sum(t.image_size for t in targets) // len(targets)


def build_record(
    manifest: AddonManifest,
    targets: list[BuildTarget],
    registry: str,
    namespace: str,
) -> dict[str, Any]:
    """Assemble the record submitted to the catalog.

    Args:
        manifest: Validated addon description.
        targets: Build targets after build and push.
        registry: Image registry host.
        namespace: Image namespace.

    Returns:
        JSON-serializable record.
    """
    record = manifest.to_document()
    image = published_image_name(
        registry, namespace, manifest.registry.id, manifest.registry.version
    )
    for service_id, service in manifest.services.items():
        if service.is_local_build:
            entry = record["services"][service_id]
            entry.pop("build", None)
            entry["image"] = image

    record["archs"] = [t.arch for t in targets]
    record["size"] = aggregate_size(targets)
    return record


class PublishClient:
    """Submits addon records to the catalog endpoint.

    Args:
        client: HTTPX client instance.
        url: Catalog endpoint.
        registry: Image registry host.
        namespace: Image namespace.
    """

    def __init__(
        self, client: httpx.Client, url: str, registry: str, namespace: str
    ) -> None:
        self.client = client
        self.url = url
        self.registry = registry
        self.namespace = namespace

    def publish(
        self,
        manifest: AddonManifest,
        targets: list[BuildTarget],
        session: UserSession,
    ) -> dict[str, Any]:
        """Publish the addon record.

        Returns:
            The submitted record.

        Raises:
            PublishError: On a network failure or any non-200 response.
        """
        record = build_record(manifest, targets, self.registry, self.namespace)
        logger.info(
            "Publishing %s %s for %s",
            manifest.registry.id,
            manifest.registry.version,
            ", ".join(record["archs"]),
        )
        logger.debug("Record: %s", record_to_json_string(record))
        try:
            response = self.client.post(
                self.url,
                json=record,
                headers={"Authorization": f"Bearer {session.access_token}"},
            )
        except httpx.RequestError as e:
            raise PublishError(
                f"Failed to contact {self.url}: {e}", code="network_error"
            ) from e

        if response.status_code != 200:
            raise PublishError(
                f"Publishing failed with {response.status_code}: {response.text}",
                code="rejected",
                status_code=response.status_code,
            )
        logger.info("Published %s", manifest.registry.id)
        return record


__all__ = ["PublishClient", "PublishError", "aggregate_size", "build_record"]

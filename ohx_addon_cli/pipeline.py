"""End-to-end publish pipeline.

Stages run strictly in order and each may end the run:

    [1/6] validate the addon file
    [2/6] log in
    [3/6] refresh the registry cache (informational)
    [4/6] build all targets
    [5/6] push all successfully built targets and their manifest list
    [6/6] publish the enriched record

Only the build and push stages tolerate partial failure; their per-target
outcome is returned in PublishOutcome.targets.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from ohx_addon_cli.auth.device_flow import DeviceAuthorization, DeviceAuthSession
from ohx_addon_cli.auth.session import FileSessionStore, SessionStore, UserSession
from ohx_addon_cli.builds.credentials import get_registry_credentials
from ohx_addon_cli.builds.models import BuildTarget
from ohx_addon_cli.builds.orchestrator import (
    BuildOrchestrator,
    Builder,
    ProgressSink,
)
from ohx_addon_cli.builds.runner import BuildExecutionError, PodmanBuilder
from ohx_addon_cli.builds.targets import discover_targets, published_image_name
from ohx_addon_cli.config import Settings
from ohx_addon_cli.manifest.schema import AddonManifest, AddonRegistryEntry
from ohx_addon_cli.manifest.validator import load_manifest
from ohx_addon_cli.registry.cache import CacheStore, FileCacheStore, RegistryCache
from ohx_addon_cli.registry.publish import PublishClient, PublishError

logger = logging.getLogger(__name__)


@dataclass
class PublishOptions:
    """Inputs of a pipeline run.

    Attributes:
        input_file: Addon description file.
        build_directory: Directory for build logs.
        image_directory: Directory holding the build files; defaults to
            the addon file's directory.
        validate_only: Stop after validation.
        login_only: Stop after logging in.
        username: Optional account hint for the device login.
    """

    input_file: Path
    build_directory: Path = Path("out")
    image_directory: Path | None = None
    validate_only: bool = False
    login_only: bool = False
    username: str | None = None


@dataclass
class PublishOutcome:
    """Result of a pipeline run; later fields stay empty if it stopped early."""

    manifest: AddonManifest
    session: UserSession | None = None
    existing_entry: AddonRegistryEntry | None = None
    targets: list[BuildTarget] = field(default_factory=list)
    record: dict[str, Any] | None = None

    @property
    def published(self) -> bool:
        return self.record is not None


def run_publish(
    options: PublishOptions,
    settings: Settings,
    client: httpx.Client,
    *,
    builder: Builder | None = None,
    progress: ProgressSink | None = None,
    session_store: SessionStore | None = None,
    cache_store: CacheStore | None = None,
    notify: Callable[[DeviceAuthorization], None] | None = None,
) -> PublishOutcome:
    """Validate, build, push and publish an addon.

    Args:
        options: Run options.
        settings: Application settings.
        client: HTTPX client for all remote calls.
        builder: Container tool wrapper; PodmanBuilder if None.
        progress: Progress sink for the build and push stages.
        session_store: Session storage; the configured session file if None.
        cache_store: Registry cache storage; the configured file if None.
        notify: Shows the device login URL and code to the user.

    Returns:
        PublishOutcome describing how far the run got.

    Raises:
        FileNotFoundError: If the addon file does not exist.
        ValidationError: If the addon file is invalid.
        AuthError: If logging in or the credential exchange fails.
        RegistryError: If the registry snapshot cannot be fetched.
        BuildExecutionError: If a locally built addon has no build files
            or the image directory does not exist.
        PublishError: If nothing was pushed, if the manifest list push
            fails, or if the catalog rejects the record.
    """
    logger.info("[1/6] Validating %s", options.input_file)
    manifest = load_manifest(options.input_file)
    outcome = PublishOutcome(manifest=manifest)
    if options.validate_only:
        return outcome

    logger.info("[2/6] Logging in")
    auth = DeviceAuthSession(
        client,
        session_store or FileSessionStore(settings.session_file),
        settings,
        login_hint=options.username,
        notify=notify,
    )
    session = auth.login()
    outcome.session = session
    if options.login_only:
        return outcome

    addon_id = manifest.registry.id
    version = manifest.registry.version

    logger.info("[3/6] Refreshing registry")
    cache = RegistryCache(
        cache_store or FileCacheStore(settings.registry_cache_file),
        settings.registry_data_url,
        freshness_window=settings.registry_cache_ttl,
    )
    entries = cache.fetch(client)
    outcome.existing_entry = entries.get(addon_id)
    if outcome.existing_entry is not None:
        logger.info(
            "Updating %s (registry has version %s)",
            addon_id,
            outcome.existing_entry.version,
        )
    else:
        logger.info("Publishing new addon %s", addon_id)

    credentials = get_registry_credentials(client, session, settings.vault_url)

    workdir = options.input_file.resolve().parent
    image_directory = options.image_directory or workdir
    try:
        targets = discover_targets(
            image_directory,
            settings.image_registry,
            settings.image_namespace,
            addon_id,
            version,
        )
    except FileNotFoundError as e:
        raise BuildExecutionError(
            f"Image directory not found: {image_directory}",
            code="no_image_directory",
        ) from e
    outcome.targets = targets
    image = published_image_name(
        settings.image_registry, settings.image_namespace, addon_id, version
    )
    local_builds = [sid for sid, s in manifest.services.items() if s.is_local_build]
    if local_builds and not targets:
        raise BuildExecutionError(
            f"No build files found in {image_directory} for services: "
            f"{', '.join(local_builds)}",
            code="no_build_files",
        )

    orchestrator = BuildOrchestrator(
        builder
        or PodmanBuilder(
            settings.builder_executable,
            log_dir=options.build_directory / addon_id,
        ),
        workdir,
        progress,
        max_workers=settings.max_concurrent_builds,
    )
    if targets:
        logger.info("[4/6] Building %d image(s)", len(targets))
        orchestrator.build(targets, credentials)
        logger.info("[5/6] Pushing images")
        orchestrator.push(targets, credentials)
        if not any(t.uploaded for t in targets):
            raise PublishError(
                "No image was built and pushed, nothing to publish",
                code="nothing_pushed",
            )
        if not orchestrator.push_manifest(targets, image, credentials):
            raise PublishError(
                f"Failed to push manifest list {image}, nothing to publish",
                code="manifest_failed",
            )

    logger.info("[6/6] Publishing %s %s", addon_id, version)
    publisher = PublishClient(
        client,
        settings.publish_url,
        settings.image_registry,
        settings.image_namespace,
    )
    outcome.record = publisher.publish(manifest, targets, session)
    return outcome


__all__ = ["PublishOptions", "PublishOutcome", "run_publish"]

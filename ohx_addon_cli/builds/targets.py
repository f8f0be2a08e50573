"""Build target discovery.

Build files are named ``Dockerfile`` or ``Containerfile``, optionally with
an architecture suffix (``Dockerfile.aarch64``). A bare name builds the
default architecture. Files with unknown suffixes are ignored.
"""

import logging
from pathlib import Path

from ohx_addon_cli.builds.models import BuildTarget

logger = logging.getLogger(__name__)

BUILD_FILE_NAMES = ("Dockerfile", "Containerfile")
SUPPORTED_ARCHS = ("amd64", "aarch64", "armv7", "armhf", "i386")
DEFAULT_ARCH = "amd64"


def published_image_name(
    registry: str, namespace: str, addon_id: str, version: str
) -> str:
    """Image reference recorded in the published addon record."""
    return f"{registry}/{namespace}/{addon_id}:{version}"


def target_image_name(
    registry: str, namespace: str, addon_id: str, version: str, arch: str
) -> str:
    """Per-architecture image tag that is built and pushed."""
    return f"{published_image_name(registry, namespace, addon_id, version)}-{arch}"


def parse_build_file_name(name: str) -> str | None:
    """Return the architecture a build file targets, or None if not a build file.

    Args:
        name: File name without directory.

    Returns:
        Architecture tag, or None for unrelated files.
    """
    if name in BUILD_FILE_NAMES:
        return DEFAULT_ARCH
    base, sep, suffix = name.partition(".")
    if sep and base in BUILD_FILE_NAMES and suffix in SUPPORTED_ARCHS:
        return suffix
    return None


def discover_targets(
    directory: Path,
    registry: str,
    namespace: str,
    addon_id: str,
    version: str,
) -> list[BuildTarget]:
    """Find the build files of an addon.

    Args:
        directory: Directory containing the build files.
        registry: Image registry host.
        namespace: Image namespace.
        addon_id: Addon id from the description file.
        version: Addon version from the description file.

    Returns:
        Targets sorted by file name, at most one per architecture.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")

    targets: list[BuildTarget] = []
    seen: dict[str, str] = {}
    for path in sorted(directory.iterdir()):
        if not path.is_file():
            continue
        arch = parse_build_file_name(path.name)
        if arch is None:
            continue
        if arch in seen:
            logger.warning(
                "Ignoring %s: architecture %s is already built from %s",
                path.name,
                arch,
                seen[arch],
            )
            continue
        seen[arch] = path.name
        targets.append(
            BuildTarget(
                filename=path.name,
                arch=arch,
                image_name=target_image_name(
                    registry, namespace, addon_id, version, arch
                ),
                build_file=path,
            )
        )

    logger.info(
        "Found %d build target(s): %s",
        len(targets),
        ", ".join(t.arch for t in targets),
    )
    return targets


__all__ = [
    "BUILD_FILE_NAMES",
    "DEFAULT_ARCH",
    "SUPPORTED_ARCHS",
    "discover_targets",
    "parse_build_file_name",
    "published_image_name",
    "target_image_name",
]

"""Shared type definitions for ohx_addon_cli.

This module contains enums and type aliases shared across subpackages
to avoid circular imports.
"""

from enum import Enum


class AddonStatusCode(str, Enum):
    """Lifecycle status of an addon in the registry."""

    AVAILABLE = "AVAILABLE"
    REPLACED = "REPLACED"
    REMOVED = "REMOVED"
    UNMAINTAINED = "UNMAINTAINED"


class TargetState(str, Enum):
    """Combined build/push state of a single build target."""

    PENDING = "pending"
    BUILD_FAILED = "build_failed"
    BUILT = "built"
    PUSH_FAILED = "push_failed"
    UPLOADED = "uploaded"


class GrantType(str, Enum):
    """OAuth grant types used against the token endpoint."""

    REFRESH_TOKEN = "refresh_token"
    DEVICE_CODE = "urn:ietf:params:oauth:grant-type:device_code"


__all__ = [
    "AddonStatusCode",
    "GrantType",
    "TargetState",
]

"""Build target model.

A BuildTarget is one (build file, architecture) pair. The orchestrator
owns the target list and mutates the outcome fields in place; the
publish step only reads them.
"""

from dataclasses import dataclass
from pathlib import Path

from ohx_addon_cli.types import TargetState


@dataclass
class BuildTarget:
    """A single image to build and push.

    Attributes:
        filename: Build file name, e.g. ``Dockerfile.aarch64``.
        arch: Target architecture tag.
        image_name: Fully qualified image tag to build and push.
        build_file: Path to the build file.
        built: Whether the build succeeded.
        uploaded: Whether the push succeeded.
        image_size: Image size in bytes as reported by inspect.
        log_path: Log of the last tool invocation for this target.
        error_message: Reason of the last failure.
    """

    filename: str
    arch: str
    image_name: str
    build_file: Path
    built: bool = False
    uploaded: bool = False
    image_size: int = 0
    log_path: Path | None = None
    error_message: str | None = None

    @property
    def state(self) -> TargetState:
        """Combined build/push state for reporting."""
        if self.uploaded:
            return TargetState.UPLOADED
        if not self.built:
            return (
                TargetState.BUILD_FAILED
                if self.error_message
                else TargetState.PENDING
            )
        if self.error_message:
            return TargetState.PUSH_FAILED
        return TargetState.BUILT


__all__ = ["BuildTarget"]

"""Multi-architecture build and push orchestration.

Every target is attempted regardless of earlier failures. The outcome of
each step is recorded on the target itself (``built``, ``uploaded``,
``image_size``); the resulting list is the authoritative build result.
Targets that failed to build are never pushed. The uploaded images are
finally combined into one manifest list under the published tag.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Protocol

from ohx_addon_cli.builds.models import BuildTarget
from ohx_addon_cli.builds.runner import BuildExecutionError, LineCallback

logger = logging.getLogger(__name__)

BUILD_STEP_LABEL = "[4/6]"
PUSH_STEP_LABEL = "[5/6]"


class Builder(Protocol):
    """Builds and pushes the image of a single target."""

    def build(
        self,
        target: BuildTarget,
        credentials: str,
        cwd: Path,
        on_line: LineCallback | None = None,
    ) -> bool: ...

    def push(
        self,
        target: BuildTarget,
        credentials: str,
        cwd: Path,
        on_line: LineCallback | None = None,
    ) -> bool: ...

    def push_manifest(
        self,
        list_name: str,
        targets: list[BuildTarget],
        credentials: str,
        cwd: Path,
        on_line: LineCallback | None = None,
    ) -> bool: ...

    def inspect_size(self, target: BuildTarget) -> int | None: ...


class ProgressSink(Protocol):
    """Receives progress of a multi-target step."""

    def start(self, total: int, label: str) -> None: ...

    def update(self, message: str) -> None: ...

    def advance(self) -> None: ...

    def finish(self) -> None: ...


class NullProgress:
    """ProgressSink that discards everything."""

    def start(self, total: int, label: str) -> None:
        pass

    def update(self, message: str) -> None:
        pass

    def advance(self) -> None:
        pass

    def finish(self) -> None:
        pass


class BuildOrchestrator:
    """Builds and pushes all targets, tolerating per-target failures.

    Args:
        builder: Executes the container tool.
        workdir: Working directory of the tool (the addon file's directory).
        progress: Progress sink; nothing is reported if None.
        max_workers: Number of targets processed concurrently. With 1 the
            targets are processed strictly in order.
    """

    def __init__(
        self,
        builder: Builder,
        workdir: Path,
        progress: ProgressSink | None = None,
        max_workers: int = 1,
    ) -> None:
        self.builder = builder
        self.workdir = workdir
        self.progress = progress or NullProgress()
        self.max_workers = max(1, max_workers)

    def build(self, targets: list[BuildTarget], credentials: str) -> list[BuildTarget]:
        """Build every target, recording ``built`` and ``image_size``.

        Returns:
            The same target list, updated in place.
        """
        self._run(targets, BUILD_STEP_LABEL, lambda t: self._build_one(t, credentials))
        built = sum(1 for t in targets if t.built)
        logger.info("Built %d of %d image(s)", built, len(targets))
        return targets

    def push(self, targets: list[BuildTarget], credentials: str) -> list[BuildTarget]:
        """Push every successfully built target, recording ``uploaded``.

        Returns:
            The same target list, updated in place.
        """
        self._run(targets, PUSH_STEP_LABEL, lambda t: self._push_one(t, credentials))
        uploaded = sum(1 for t in targets if t.uploaded)
        logger.info("Pushed %d of %d image(s)", uploaded, len(targets))
        return targets

    def push_manifest(
        self, targets: list[BuildTarget], list_name: str, credentials: str
    ) -> bool:
        """Publish the uploaded targets under one multi-arch manifest list.

        Returns:
            True if the manifest list was pushed. False if no target was
            uploaded or the container tool failed.
        """
        uploaded = [t for t in targets if t.uploaded]
        if not uploaded:
            return False

        self.progress.start(1, PUSH_STEP_LABEL)
        try:
            self.progress.update(f"Upload manifest list {list_name}")
            try:
                pushed = self.builder.push_manifest(
                    list_name, uploaded, credentials, self.workdir, self.progress.update
                )
            except (BuildExecutionError, OSError) as e:
                logger.error("Failed to push manifest list %s: %s", list_name, e)
                pushed = False
            self.progress.advance()
        finally:
            self.progress.finish()
        if pushed:
            logger.info(
                "Pushed manifest list %s (%s)",
                list_name,
                ", ".join(t.arch for t in uploaded),
            )
        return pushed

    def _run(
        self,
        targets: list[BuildTarget],
        label: str,
        step: Callable[[BuildTarget], None],
    ) -> None:
        self.progress.start(len(targets), label)
        try:
            if self.max_workers == 1 or len(targets) <= 1:
                for target in targets:
                    step(target)
            else:
                with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                    # list() re-raises exceptions from the workers
                    list(pool.map(step, targets))
        finally:
            self.progress.finish()

    def _build_one(self, target: BuildTarget, credentials: str) -> None:
        self.progress.update(f"Building {target.filename} - arch {target.arch}")
        target.error_message = None
        try:
            target.built = self.builder.build(
                target, credentials, self.workdir, self.progress.update
            )
        except (BuildExecutionError, OSError) as e:
            target.built = False
            target.error_message = str(e)

        if target.built:
            size = self.builder.inspect_size(target)
            if size is not None:
                target.image_size = size
        else:
            target.error_message = target.error_message or "Build failed"
            logger.error(
                "Failed to build %s - arch %s: %s",
                target.filename,
                target.arch,
                target.error_message,
            )
        self.progress.advance()

    def _push_one(self, target: BuildTarget, credentials: str) -> None:
        if not target.built:
            logger.debug("Skipping push of %s: not built", target.image_name)
            self.progress.advance()
            return

        self.progress.update(f"Upload Image {target.image_name}")
        try:
            target.uploaded = self.builder.push(
                target, credentials, self.workdir, self.progress.update
            )
        except (BuildExecutionError, OSError) as e:
            target.uploaded = False
            target.error_message = str(e)

        if not target.uploaded:
            target.error_message = target.error_message or "Push failed"
            logger.error(
                "Failed to push %s: %s", target.image_name, target.error_message
            )
        self.progress.advance()


__all__ = [
    "BUILD_STEP_LABEL",
    "PUSH_STEP_LABEL",
    "BuildOrchestrator",
    "Builder",
    "NullProgress",
    "ProgressSink",
]

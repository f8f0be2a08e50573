"""Container tool runner for building, inspecting and pushing images.

This module handles:
- Composing ``podman build``, ``image inspect`` and ``push`` commands
- Assembling and pushing the multi-arch manifest list
- Executing them with subprocess, streaming stdout line by line
- Capturing the output to per-target log files

The tool is an opaque subprocess: its exit status and captured output are
the only contract. Registry credentials never appear in logs.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from ohx_addon_cli.builds.models import BuildTarget

logger = logging.getLogger(__name__)

SIZE_FORMAT = "{{.Size}}"
INSPECT_TIMEOUT = 60
TERMINATE_TIMEOUT = 10

LineCallback = Callable[[str], None]


class BuildExecutionError(Exception):
    """Raised when the container tool cannot be executed."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


def compose_build_command(
    executable: str, target: BuildTarget, credentials: str
) -> list[str]:
    """Compose the image build command for a target."""
    return [
        executable,
        "build",
        "-t",
        target.image_name,
        "-f",
        str(target.build_file),
        f"--creds={credentials}",
    ]


def compose_inspect_command(executable: str, image_name: str) -> list[str]:
    """Compose the command printing an image's size in bytes."""
    return [executable, "image", "inspect", image_name, f"--format={SIZE_FORMAT}"]


def compose_push_command(
    executable: str, image_name: str, credentials: str
) -> list[str]:
    """Compose the image push command."""
    return [executable, "push", image_name, f"--creds={credentials}"]


def compose_manifest_rm_command(executable: str, list_name: str) -> list[str]:
    """Compose the command removing a local manifest list."""
    return [executable, "manifest", "rm", list_name]


def compose_manifest_create_command(executable: str, list_name: str) -> list[str]:
    """Compose the command creating an empty local manifest list."""
    return [executable, "manifest", "create", list_name]


def compose_manifest_add_command(
    executable: str, list_name: str, image_name: str
) -> list[str]:
    """Compose the command adding a locally built image to a manifest list."""
    return [
        executable,
        "manifest",
        "add",
        list_name,
        f"containers-storage:{image_name}",
    ]


def compose_manifest_push_command(
    executable: str, list_name: str, credentials: str
) -> list[str]:
    """Compose the command pushing a manifest list and all its images."""
    return [
        executable,
        "manifest",
        "push",
        "--all",
        f"--creds={credentials}",
        list_name,
        f"docker://{list_name}",
    ]


def redact_command(cmd: list[str]) -> str:
    """Render a command for logs with credentials masked."""
    return shlex.join(
        "--creds=***" if part.startswith("--creds=") else part for part in cmd
    )


def _open_log(
    log_path: Path, cmd_str: str, cwd: Path, started_at: datetime
) -> TextIO:
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = log_path.open("w", encoding="utf-8")
    except OSError as e:
        raise BuildExecutionError(
            f"Cannot write log file {log_path}: {e}", code="log_error"
        ) from e
    try:
        log_file.write(f"# Command: {cmd_str}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.write(f"# CWD: {cwd}\n")
        log_file.write("# " + "=" * 70 + "\n\n")
        log_file.flush()
    except OSError as e:
        log_file.close()
        raise BuildExecutionError(
            f"Cannot write log file {log_path}: {e}", code="log_error"
        ) from e
    return log_file


def _drain(
    stream: Iterable[str],
    log_file: TextIO | None,
    on_line: LineCallback | None,
) -> None:
    """Read the child's output to EOF.

    The pipe is read until EOF whatever happens to the log file or the
    callback, otherwise the child blocks on a full pipe buffer.
    """
    for line in stream:
        if log_file is not None:
            try:
                log_file.write(line)
            except (OSError, ValueError) as e:
                logger.warning("Stopped writing log file: %s", e)
                log_file = None
        if on_line is not None:
            try:
                on_line(line.rstrip())
            except Exception:
                logger.exception("Output callback failed, no longer forwarding")
                on_line = None


def run_streaming(
    cmd: list[str],
    cwd: Path,
    log_path: Path | None = None,
    on_line: LineCallback | None = None,
) -> int:
    """Run a command, forwarding each stdout line as it arrives.

    Output is drained on a background thread; the caller blocks until the
    process exits. Undecodable bytes are replaced, never fatal. On
    KeyboardInterrupt the child is terminated and the interrupt re-raised.

    Args:
        cmd: Command as list of strings.
        cwd: Working directory.
        log_path: Optional file receiving the full output.
        on_line: Optional callback for each output line.

    Returns:
        Process exit code.

    Raises:
        BuildExecutionError: If the log file cannot be written or the
            process cannot be started.
    """
    cmd_str = redact_command(cmd)
    logger.debug("Executing: %s (cwd: %s)", cmd_str, cwd)
    started_at = datetime.now(timezone.utc)

    log_file = None
    if log_path is not None:
        log_file = _open_log(log_path, cmd_str, cwd, started_at)

    try:
        try:
            process = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            message = f"Failed to execute {cmd[0]}: {e}"
            logger.error(message)
            raise BuildExecutionError(message, code="execution_error") from e

        reader = threading.Thread(
            target=_drain, args=(process.stdout, log_file, on_line), daemon=True
        )
        reader.start()
        try:
            exit_code = process.wait()
        except KeyboardInterrupt:
            logger.warning("Interrupted, stopping %s", cmd[0])
            process.terminate()
            try:
                process.wait(timeout=TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                process.kill()
            raise
        reader.join()

        if log_file is not None:
            finished_at = datetime.now(timezone.utc)
            duration = (finished_at - started_at).total_seconds()
            try:
                log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
                log_file.write(f"# Exit code: {exit_code}\n")
                log_file.write(f"# Duration: {duration:.1f}s\n")
            except (OSError, ValueError) as e:
                logger.warning("Could not finish log file %s: %s", log_path, e)
        return exit_code
    finally:
        if log_file is not None:
            try:
                log_file.close()
            except OSError as e:
                logger.warning("Could not close log file %s: %s", log_path, e)


class PodmanBuilder:
    """Builds, inspects and pushes images with a podman compatible tool.

    Args:
        executable: Tool to invoke (``podman`` or a compatible CLI).
        log_dir: Directory for per-target logs; no logs if None.
    """

    def __init__(
        self, executable: str = "podman", log_dir: Path | None = None
    ) -> None:
        self.executable = executable
        self.log_dir = log_dir

    def _log_path(self, target: BuildTarget, step: str) -> Path | None:
        if self.log_dir is None:
            return None
        return self.log_dir / f"{target.arch}-{step}.log"

    def build(
        self,
        target: BuildTarget,
        credentials: str,
        cwd: Path,
        on_line: LineCallback | None = None,
    ) -> bool:
        """Build the target's image. Returns True on a zero exit status."""
        target.log_path = self._log_path(target, "build")
        exit_code = run_streaming(
            compose_build_command(self.executable, target, credentials),
            cwd,
            target.log_path,
            on_line,
        )
        if exit_code != 0:
            target.error_message = f"Build failed with exit code {exit_code}"
        return exit_code == 0

    def push(
        self,
        target: BuildTarget,
        credentials: str,
        cwd: Path,
        on_line: LineCallback | None = None,
    ) -> bool:
        """Push the target's image. Returns True on a zero exit status."""
        target.log_path = self._log_path(target, "push")
        exit_code = run_streaming(
            compose_push_command(self.executable, target.image_name, credentials),
            cwd,
            target.log_path,
            on_line,
        )
        if exit_code != 0:
            target.error_message = f"Push failed with exit code {exit_code}"
        return exit_code == 0

    def push_manifest(
        self,
        list_name: str,
        targets: list[BuildTarget],
        credentials: str,
        cwd: Path,
        on_line: LineCallback | None = None,
    ) -> bool:
        """Assemble the targets' images into a manifest list and push it.

        Any local manifest list of the same name is replaced first.

        Returns:
            True if every step exited with status zero.
        """
        exe = self.executable
        log_dir = self.log_dir
        # A missing list is fine; the exit status is ignored
        run_streaming(compose_manifest_rm_command(exe, list_name), cwd)

        steps = [("manifest-create", compose_manifest_create_command(exe, list_name))]
        for t in targets:
            add = compose_manifest_add_command(exe, list_name, t.image_name)
            steps.append((f"manifest-add-{t.arch}", add))
        push = compose_manifest_push_command(exe, list_name, credentials)
        steps.append(("manifest-push", push))

        for step, cmd in steps:
            log_path = log_dir / f"{step}.log" if log_dir is not None else None
            exit_code = run_streaming(cmd, cwd, log_path, on_line)
            if exit_code != 0:
                logger.error(
                    "Manifest list %s: %s failed with exit code %d",
                    list_name,
                    step,
                    exit_code,
                )
                return False
        return True

    def inspect_size(self, target: BuildTarget) -> int | None:
        """Read the built image's size in bytes, None if unavailable."""
        cmd = compose_inspect_command(self.executable, target.image_name)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=INSPECT_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("Could not inspect %s: %s", target.image_name, e)
            return None
        if result.returncode != 0:
            logger.debug(
                "Inspect of %s failed: %s", target.image_name, result.stderr.strip()
            )
            return None
        try:
            return int(result.stdout.strip())
        except ValueError:
            logger.debug("Unexpected image size output: %r", result.stdout)
            return None


__all__ = [
    "BuildExecutionError",
    "PodmanBuilder",
    "compose_build_command",
    "compose_inspect_command",
    "compose_manifest_add_command",
    "compose_manifest_create_command",
    "compose_manifest_push_command",
    "compose_manifest_rm_command",
    "compose_push_command",
    "redact_command",
    "run_streaming",
]

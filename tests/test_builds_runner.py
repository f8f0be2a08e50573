"""Tests for builds/runner.py module.

Tests command composition and execution. Streaming tests run a real
``sh``; inspect tests use a mocked subprocess.
"""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ohx_addon_cli.builds.models import BuildTarget
from ohx_addon_cli.builds.runner import (
    BuildExecutionError,
    PodmanBuilder,
    compose_build_command,
    compose_inspect_command,
    compose_manifest_add_command,
    compose_manifest_push_command,
    compose_push_command,
    redact_command,
    run_streaming,
)


@pytest.fixture
def target(tmp_path: Path) -> BuildTarget:
    """Create a build target with an existing build file."""
    build_file = tmp_path / "Dockerfile.aarch64"
    build_file.write_text("FROM scratch\n")
    return BuildTarget(
        filename="Dockerfile.aarch64",
        arch="aarch64",
        image_name="docker.io/ohx/hue:1.0.0-aarch64",
        build_file=build_file,
    )


class TestComposeCommands:
    """Tests for command composition."""

    def test_build_command(self, target):
        cmd = compose_build_command("podman", target, "user:secret")

        assert cmd == [
            "podman",
            "build",
            "-t",
            "docker.io/ohx/hue:1.0.0-aarch64",
            "-f",
            str(target.build_file),
            "--creds=user:secret",
        ]

    def test_inspect_command(self):
        cmd = compose_inspect_command("podman", "docker.io/ohx/hue:1")

        assert cmd == [
            "podman",
            "image",
            "inspect",
            "docker.io/ohx/hue:1",
            "--format={{.Size}}",
        ]

    def test_push_command(self):
        cmd = compose_push_command("podman", "docker.io/ohx/hue:1", "user:secret")

        assert cmd == ["podman", "push", "docker.io/ohx/hue:1", "--creds=user:secret"]

    def test_manifest_commands(self):
        assert compose_manifest_add_command(
            "podman", "docker.io/ohx/hue:1", "docker.io/ohx/hue:1-amd64"
        ) == [
            "podman",
            "manifest",
            "add",
            "docker.io/ohx/hue:1",
            "containers-storage:docker.io/ohx/hue:1-amd64",
        ]
        assert compose_manifest_push_command(
            "podman", "docker.io/ohx/hue:1", "user:secret"
        ) == [
            "podman",
            "manifest",
            "push",
            "--all",
            "--creds=user:secret",
            "docker.io/ohx/hue:1",
            "docker://docker.io/ohx/hue:1",
        ]

    def test_redact_command(self):
        """Credentials should never show up in rendered commands."""
        rendered = redact_command(["podman", "push", "img", "--creds=user:secret"])

        assert "secret" not in rendered
        assert "--creds=***" in rendered


class TestRunStreaming:
    """Tests for run_streaming function."""

    def test_streams_lines_and_logs(self, tmp_path: Path):
        """Should forward each line and capture output in the log."""
        lines: list[str] = []
        log_path = tmp_path / "logs" / "build.log"

        exit_code = run_streaming(
            ["sh", "-c", "echo one; echo two >&2"],
            tmp_path,
            log_path,
            lines.append,
        )

        assert exit_code == 0
        assert lines == ["one", "two"]
        content = log_path.read_text()
        assert "# Command: sh -c" in content
        assert "one\ntwo\n" in content
        assert "# Exit code: 0" in content

    def test_nonzero_exit(self, tmp_path: Path):
        assert run_streaming(["sh", "-c", "exit 3"], tmp_path) == 3

    def test_missing_executable(self, tmp_path: Path):
        """Should raise BuildExecutionError if the tool cannot start."""
        with pytest.raises(BuildExecutionError) as exc_info:
            run_streaming(["definitely-not-a-real-tool-xyz"], tmp_path)

        assert exc_info.value.code == "execution_error"

    def test_log_redacts_credentials(self, tmp_path: Path):
        log_path = tmp_path / "push.log"

        run_streaming(["sh", "-c", "true", "--creds=user:secret"], tmp_path, log_path)

        assert "secret" not in log_path.read_text()

    def test_invalid_utf8_output(self, tmp_path: Path):
        """Undecodable bytes must not stop the output from being drained."""
        lines: list[str] = []
        script = (
            "printf '\\377\\376 broken\\n'; "
            "i=0; while [ $i -lt 20000 ]; do echo line $i; i=$((i+1)); done"
        )

        exit_code = run_streaming(["sh", "-c", script], tmp_path, on_line=lines.append)

        assert exit_code == 0
        assert "\ufffd" in lines[0]
        assert lines[-1] == "line 19999"

    def test_failing_callback(self, tmp_path: Path):
        """A raising callback stops forwarding but the log stays complete."""
        log_path = tmp_path / "build.log"
        calls: list[str] = []

        def on_line(line: str) -> None:
            calls.append(line)
            raise RuntimeError("console gone")

        exit_code = run_streaming(
            ["sh", "-c", "echo one; echo two; echo three"], tmp_path, log_path, on_line
        )

        assert exit_code == 0
        assert calls == ["one"]
        assert "one\ntwo\nthree\n" in log_path.read_text()

    def test_unwritable_log(self, tmp_path: Path):
        blocker = tmp_path / "logs"
        blocker.write_text("not a directory")

        with pytest.raises(BuildExecutionError) as exc_info:
            run_streaming(["sh", "-c", "true"], tmp_path, blocker / "build.log")

        assert exc_info.value.code == "log_error"


class TestPodmanBuilder:
    """Tests for PodmanBuilder."""

    def test_build_success(self, target, tmp_path: Path):
        """Should run the build command and log per arch."""
        builder = PodmanBuilder("podman", log_dir=tmp_path / "out")

        with patch(
            "ohx_addon_cli.builds.runner.run_streaming", return_value=0
        ) as mock_run:
            assert builder.build(target, "user:secret", tmp_path) is True

        cmd, cwd, log_path, _ = mock_run.call_args.args
        assert cmd[:2] == ["podman", "build"]
        assert cwd == tmp_path
        assert log_path == tmp_path / "out" / "aarch64-build.log"
        assert target.log_path == log_path
        assert target.error_message is None

    def test_build_failure(self, target, tmp_path: Path):
        builder = PodmanBuilder("podman")

        with patch("ohx_addon_cli.builds.runner.run_streaming", return_value=125):
            assert builder.build(target, "user:secret", tmp_path) is False

        assert target.error_message == "Build failed with exit code 125"
        assert target.log_path is None

    def test_push_failure(self, target, tmp_path: Path):
        builder = PodmanBuilder("podman", log_dir=tmp_path)

        with patch(
            "ohx_addon_cli.builds.runner.run_streaming", return_value=1
        ) as mock_run:
            assert builder.push(target, "user:secret", tmp_path) is False

        assert mock_run.call_args.args[0][:2] == ["podman", "push"]
        assert target.log_path == tmp_path / "aarch64-push.log"
        assert target.error_message == "Push failed with exit code 1"

    def test_inspect_size(self, target):
        """Should parse the size printed by inspect."""
        result = MagicMock(returncode=0, stdout="104857600\n", stderr="")

        with patch("subprocess.run", return_value=result) as mock_run:
            assert PodmanBuilder().inspect_size(target) == 104_857_600

        assert mock_run.call_args.args[0][1:3] == ["image", "inspect"]

    def test_inspect_size_failure(self, target):
        result = MagicMock(returncode=125, stdout="", stderr="no such image")

        with patch("subprocess.run", return_value=result):
            assert PodmanBuilder().inspect_size(target) is None

    def test_inspect_size_garbage(self, target):
        result = MagicMock(returncode=0, stdout="12 MB", stderr="")

        with patch("subprocess.run", return_value=result):
            assert PodmanBuilder().inspect_size(target) is None

    def test_inspect_size_timeout(self, target):
        with patch(
            "subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="podman", timeout=60),
        ):
            assert PodmanBuilder().inspect_size(target) is None

    def test_push_manifest(self, target, tmp_path: Path):
        """Should replace, fill and push the manifest list in order."""
        builder = PodmanBuilder("podman", log_dir=tmp_path)

        with patch(
            "ohx_addon_cli.builds.runner.run_streaming", return_value=0
        ) as mock_run:
            assert builder.push_manifest(
                "docker.io/ohx/hue:1.0.0", [target], "user:secret", tmp_path
            )

        steps = [c.args[0][1:3] for c in mock_run.call_args_list]
        assert steps == [
            ["manifest", "rm"],
            ["manifest", "create"],
            ["manifest", "add"],
            ["manifest", "push"],
        ]
        assert mock_run.call_args_list[2].args[2] == (
            tmp_path / "manifest-add-aarch64.log"
        )

    def test_push_manifest_ignores_missing_list(self, target, tmp_path: Path):
        """A failing rm of a list that does not exist yet is not an error."""
        with patch(
            "ohx_addon_cli.builds.runner.run_streaming", side_effect=[1, 0, 0, 0]
        ):
            assert PodmanBuilder().push_manifest(
                "docker.io/ohx/hue:1.0.0", [target], "user:secret", tmp_path
            )

    def test_push_manifest_failure(self, target, tmp_path: Path):
        """Stops at the first failing step."""
        with patch(
            "ohx_addon_cli.builds.runner.run_streaming", side_effect=[0, 0, 125]
        ) as mock_run:
            assert not PodmanBuilder().push_manifest(
                "docker.io/ohx/hue:1.0.0", [target], "user:secret", tmp_path
            )

        assert mock_run.call_count == 3

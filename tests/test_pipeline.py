"""Tests for pipeline.py module.

Runs the whole publish pipeline against mocked HTTP endpoints and a fake
builder.
"""

import json
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx
import yaml

from ohx_addon_cli.auth.session import UserSession
from ohx_addon_cli.builds.runner import BuildExecutionError
from ohx_addon_cli.config import Settings
from ohx_addon_cli.manifest.validator import ValidationError
from ohx_addon_cli.pipeline import PublishOptions, run_publish
from ohx_addon_cli.registry.publish import PublishError

MB = 1024 * 1024

SETTINGS = Settings(
    oauth_base_url="https://auth.test",
    vault_url="https://vault.test/docker_registry",
    registry_data_url="https://registry.test/extensions.json",
    publish_url="https://registry.test/addon",
)

REGISTRY_METADATA = {
    "title": "Hue",
    "description": "Philips Hue binding",
    "license": "EPL-2.0",
    "type": "binding",
    "id": "hue",
    "version": "2.1.0",
}


class MemorySessionStore:
    def __init__(self, session: UserSession | None = None) -> None:
        self.session = session

    def load(self) -> UserSession | None:
        return self.session

    def save(self, session: UserSession) -> None:
        self.session = session

    def clear(self) -> bool:
        self.session = None
        return True


class MemoryCacheStore:
    def __init__(self) -> None:
        self.content: bytes | None = None

    def modified_at(self) -> float | None:
        return None

    def read(self) -> bytes:
        raise OSError("empty")

    def write(self, content: bytes) -> None:
        self.content = content


class FakeBuilder:
    """Builds everything except the listed archs; sizes per arch."""

    def __init__(
        self,
        failing: set[str],
        sizes: dict[str, int],
        manifest_ok: bool = True,
    ) -> None:
        self.failing = failing
        self.sizes = sizes
        self.manifest_ok = manifest_ok
        self.pushed: list[str] = []
        self.manifests: dict[str, list[str]] = {}

    def build(self, target, credentials, cwd, on_line=None):
        assert credentials == "ohx-bot:s3cr3t"
        return target.arch not in self.failing

    def push(self, target, credentials, cwd, on_line=None):
        self.pushed.append(target.image_name)
        return True

    def inspect_size(self, target):
        return self.sizes.get(target.arch)

    def push_manifest(self, list_name, targets, credentials, cwd, on_line=None):
        self.manifests[list_name] = [t.image_name for t in targets]
        return self.manifest_ok


def write_addon(
    directory: Path, services: dict[str, Any], build_files: tuple[str, ...] = ()
) -> Path:
    path = directory / "addons.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "services": services,
                "x-ohx-registry": REGISTRY_METADATA,
                "x-runtime": {"memory_min": 1, "memory_max": 2},
            }
        )
    )
    for name in build_files:
        (directory / name).write_text("FROM scratch\n")
    return path


def logged_in_store() -> MemorySessionStore:
    return MemorySessionStore(
        UserSession(
            refresh_token="refresh-1",
            access_token="old",
            access_token_expires=0,
            user_id="u1",
            user_email="jane@example.com",
            user_display_name="Jane",
        )
    )


def mock_remote(publish_status: int = 200) -> respx.Route:
    """Mock login, registry, vault and publish endpoints."""
    respx.post("https://auth.test/token").mock(
        return_value=httpx.Response(
            200, json={"access_token": "access-xyz", "expires_in": 3600}
        )
    )
    respx.get(SETTINGS.registry_data_url).mock(
        return_value=httpx.Response(
            200,
            json={
                "hue": {
                    **REGISTRY_METADATA,
                    "version": "2.0.0",
                    "owner": "u1",
                    "last_updated": 1,
                }
            },
        )
    )
    respx.get(SETTINGS.vault_url).mock(
        return_value=httpx.Response(
            200, json={"Username": "ohx-bot", "Secret": "s3cr3t"}
        )
    )
    return respx.post(SETTINGS.publish_url).mock(
        return_value=httpx.Response(publish_status)
    )


class TestRunPublish:
    """Tests for run_publish function."""

    @respx.mock
    def test_partial_build_failure_still_publishes(self, tmp_path: Path):
        """One failing arch: the rest is pushed and the record lists both."""
        publish = mock_remote()
        input_file = write_addon(
            tmp_path,
            {"api": {"build": "."}},
            ("Dockerfile", "Dockerfile.aarch64"),
        )
        builder = FakeBuilder({"aarch64"}, {"amd64": 100 * MB})

        with httpx.Client() as client:
            outcome = run_publish(
                PublishOptions(input_file=input_file),
                SETTINGS,
                client,
                builder=builder,
                session_store=logged_in_store(),
                cache_store=MemoryCacheStore(),
            )

        assert outcome.published
        assert outcome.existing_entry is not None
        assert outcome.existing_entry.version == "2.0.0"
        assert [t.arch for t in outcome.targets] == ["amd64", "aarch64"]
        assert [t.uploaded for t in outcome.targets] == [True, False]
        assert builder.pushed == ["docker.io/ohx/hue:2.1.0-amd64"]
        assert builder.manifests == {
            "docker.io/ohx/hue:2.1.0": ["docker.io/ohx/hue:2.1.0-amd64"]
        }

        record = json.loads(publish.calls[0].request.content)
        assert record["archs"] == ["amd64", "aarch64"]
        assert record["size"] == 50 * MB
        assert record["services"]["api"] == {"image": "docker.io/ohx/hue:2.1.0"}
        assert publish.calls[0].request.headers["Authorization"] == (
            "Bearer access-xyz"
        )

    @respx.mock
    def test_validate_only(self, tmp_path: Path):
        """Validation alone makes no network calls."""
        input_file = write_addon(tmp_path, {"api": {"image": "ohx/api:1"}})

        with httpx.Client() as client:
            outcome = run_publish(
                PublishOptions(input_file=input_file, validate_only=True),
                SETTINGS,
                client,
            )

        assert outcome.manifest.registry.id == "hue"
        assert outcome.session is None
        assert not outcome.published
        assert not respx.calls

    @respx.mock
    def test_login_only(self, tmp_path: Path):
        publish = mock_remote()
        input_file = write_addon(tmp_path, {"api": {"image": "ohx/api:1"}})
        store = logged_in_store()

        with httpx.Client() as client:
            outcome = run_publish(
                PublishOptions(input_file=input_file, login_only=True),
                SETTINGS,
                client,
                session_store=store,
            )

        assert outcome.session is not None
        assert outcome.session.access_token == "access-xyz"
        assert store.session == outcome.session
        assert not publish.called

    def test_invalid_file(self, tmp_path: Path):
        input_file = write_addon(tmp_path, {"api": {"volumes": ["data:/data"]}})

        with httpx.Client() as client, pytest.raises(ValidationError):
            run_publish(PublishOptions(input_file=input_file), SETTINGS, client)

    def test_missing_file(self, tmp_path: Path):
        with httpx.Client() as client, pytest.raises(FileNotFoundError):
            run_publish(
                PublishOptions(input_file=tmp_path / "addons.yml"), SETTINGS, client
            )

    @respx.mock
    def test_nothing_pushed(self, tmp_path: Path):
        """If every build fails nothing is published."""
        publish = mock_remote()
        input_file = write_addon(tmp_path, {"api": {"build": "."}}, ("Dockerfile",))

        with httpx.Client() as client, pytest.raises(PublishError) as exc_info:
            run_publish(
                PublishOptions(input_file=input_file),
                SETTINGS,
                client,
                builder=FakeBuilder({"amd64"}, {}),
                session_store=logged_in_store(),
                cache_store=MemoryCacheStore(),
            )

        assert exc_info.value.code == "nothing_pushed"
        assert not publish.called

    @respx.mock
    def test_local_build_without_build_files(self, tmp_path: Path):
        mock_remote()
        input_file = write_addon(tmp_path, {"api": {"build": "."}})

        with httpx.Client() as client, pytest.raises(BuildExecutionError) as exc_info:
            run_publish(
                PublishOptions(input_file=input_file),
                SETTINGS,
                client,
                builder=FakeBuilder(set(), {}),
                session_store=logged_in_store(),
                cache_store=MemoryCacheStore(),
            )

        assert exc_info.value.code == "no_build_files"

    @respx.mock
    def test_image_only_addon(self, tmp_path: Path):
        """An addon referencing published images is published without builds."""
        publish = mock_remote()
        input_file = write_addon(tmp_path, {"api": {"image": "ohx/api:1"}})

        with httpx.Client() as client:
            outcome = run_publish(
                PublishOptions(input_file=input_file),
                SETTINGS,
                client,
                builder=FakeBuilder(set(), {}),
                session_store=logged_in_store(),
                cache_store=MemoryCacheStore(),
            )

        assert outcome.targets == []
        record = json.loads(publish.calls[0].request.content)
        assert record["archs"] == []
        assert record["size"] == 0

    @respx.mock
    def test_separate_image_directory(self, tmp_path: Path):
        mock_remote()
        input_file = write_addon(tmp_path, {"api": {"build": "."}})
        images = tmp_path / "images"
        images.mkdir()
        (images / "Containerfile.armv7").write_text("FROM scratch\n")

        with httpx.Client() as client:
            outcome = run_publish(
                PublishOptions(input_file=input_file, image_directory=images),
                SETTINGS,
                client,
                builder=FakeBuilder(set(), {}),
                session_store=logged_in_store(),
                cache_store=MemoryCacheStore(),
            )

        assert [t.arch for t in outcome.targets] == ["armv7"]
        assert outcome.published

    @respx.mock
    def test_publish_rejected(self, tmp_path: Path):
        mock_remote(publish_status=403)
        input_file = write_addon(tmp_path, {"api": {"image": "ohx/api:1"}})

        with httpx.Client() as client, pytest.raises(PublishError) as exc_info:
            run_publish(
                PublishOptions(input_file=input_file),
                SETTINGS,
                client,
                session_store=logged_in_store(),
                cache_store=MemoryCacheStore(),
            )

        assert exc_info.value.status_code == 403

    @respx.mock
    def test_manifest_list_push_fails(self, tmp_path: Path):
        """The published tag must exist before the record is submitted."""
        publish = mock_remote()
        input_file = write_addon(tmp_path, {"api": {"build": "."}}, ("Dockerfile",))
        builder = FakeBuilder(set(), {}, manifest_ok=False)

        with httpx.Client() as client, pytest.raises(PublishError) as exc_info:
            run_publish(
                PublishOptions(input_file=input_file),
                SETTINGS,
                client,
                builder=builder,
                session_store=logged_in_store(),
                cache_store=MemoryCacheStore(),
            )

        assert exc_info.value.code == "manifest_failed"
        assert "docker.io/ohx/hue:2.1.0" in builder.manifests
        assert not publish.called

    @respx.mock
    def test_missing_image_directory(self, tmp_path: Path):
        publish = mock_remote()
        input_file = write_addon(tmp_path, {"api": {"build": "."}})

        with httpx.Client() as client, pytest.raises(BuildExecutionError) as exc_info:
            run_publish(
                PublishOptions(
                    input_file=input_file, image_directory=tmp_path / "missing"
                ),
                SETTINGS,
                client,
                builder=FakeBuilder(set(), {}),
                session_store=logged_in_store(),
                cache_store=MemoryCacheStore(),
            )

        assert exc_info.value.code == "no_image_directory"
        assert "missing" in str(exc_info.value)
        assert not publish.called

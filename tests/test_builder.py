"""Tests for the image builder."""

from pathlib import Path
from typing import Any

import pytest

from kube_release import builder
from kube_release.builder import ImageBuilder, OrasRegistry, Registry, registry_host
from kube_release.config import ImageConfig
from kube_release.exceptions import BuildFailure
from kube_release.manifest import ArtifactReference

from .conftest import REPOSITORY, TAG


class FakeRegistry(Registry):
    """Registry with a fixed set of published tags."""

    def __init__(self, tags: list[str] | None = None) -> None:
        self.published = tags or []
        self.lookups = 0

    async def tags(self, repository: str) -> list[str]:
        self.lookups += 1
        return self.published


@pytest.fixture(name="image")
def image_fixture() -> ImageConfig:
    return ImageConfig(
        repository=REPOSITORY,
        cache_from="type=gha",
        cache_to="type=gha,mode=max",
    )


def test_build_command(image: ImageConfig, tmp_path: Path) -> None:
    """Test the multi-platform build and push command."""
    image.dockerfile = "docker/Dockerfile"
    image_builder = ImageBuilder(image, tmp_path)
    cmd = image_builder.command(ArtifactReference(REPOSITORY, TAG))
    assert cmd.cmd == [
        "docker",
        "buildx",
        "build",
        "--platform",
        "linux/amd64,linux/arm64",
        "--tag",
        f"{REPOSITORY}:{TAG}",
        "--label",
        f"org.opencontainers.image.revision={TAG}",
        "--file",
        str(tmp_path / "docker/Dockerfile"),
        "--cache-from",
        "type=gha",
        "--cache-to",
        "type=gha,mode=max",
        "--push",
        str(tmp_path / "."),
    ]
    assert cmd.exc is BuildFailure


async def test_build(image: ImageConfig, tmp_path: Path) -> None:
    """Test a new tag is built and published."""
    registry = FakeRegistry(["older"])
    image_builder = ImageBuilder(image, tmp_path, registry=registry, docker_bin="echo")
    artifact = await image_builder.build(TAG)
    assert artifact == ArtifactReference(REPOSITORY, TAG)
    assert registry.lookups == 1


async def test_existing_tag_is_reused(image: ImageConfig, tmp_path: Path) -> None:
    """Test a published tag is never rebuilt."""
    image_builder = ImageBuilder(
        image, tmp_path, registry=FakeRegistry([TAG]), docker_bin="false"
    )
    assert await image_builder.build(TAG) == ArtifactReference(REPOSITORY, TAG)


async def test_build_failure(image: ImageConfig, tmp_path: Path) -> None:
    image_builder = ImageBuilder(
        image, tmp_path, registry=FakeRegistry(), docker_bin="false"
    )
    with pytest.raises(BuildFailure, match="return code 1"):
        await image_builder.build(TAG)


async def test_missing_tag(image: ImageConfig, tmp_path: Path) -> None:
    with pytest.raises(BuildFailure, match="commit identifier"):
        await ImageBuilder(image, tmp_path).build("")


async def test_missing_dockerfile(image: ImageConfig, tmp_path: Path) -> None:
    image.dockerfile = "Dockerfile.missing"
    with pytest.raises(BuildFailure, match="does not exist"):
        await ImageBuilder(image, tmp_path, docker_bin="echo").build(TAG)


@pytest.mark.parametrize(
    ("repository", "host"),
    [
        ("docker.io/example/booker", "docker.io"),
        ("ghcr.io/example/booker", "ghcr.io"),
        ("localhost:5000/booker", "localhost:5000"),
        ("example/booker", "docker.io"),
        ("booker", "docker.io"),
    ],
)
def test_registry_host(repository: str, host: str) -> None:
    assert registry_host(repository) == host


class FakeOrasClient:
    """Stand in for the oras client recording calls."""

    instances: list["FakeOrasClient"] = []
    tags: dict[str, Any] = {}

    def __init__(self, insecure: bool = False) -> None:
        self.insecure = insecure
        self.logins: list[dict[str, str]] = []
        FakeOrasClient.instances.append(self)

    def login(self, hostname: str, username: str, password: str) -> None:
        self.logins.append({"hostname": hostname, "username": username})

    def get_tags(self, name: str) -> list[str]:
        result = self.tags[name]
        if isinstance(result, Exception):
            raise result
        return list(result)


@pytest.fixture(name="oras_client")
def oras_client_fixture(monkeypatch: pytest.MonkeyPatch) -> type[FakeOrasClient]:
    FakeOrasClient.instances = []
    FakeOrasClient.tags = {}
    monkeypatch.setattr(builder, "OrasClient", FakeOrasClient)
    return FakeOrasClient


async def test_oras_registry(oras_client: type[FakeOrasClient]) -> None:
    """Test tags are read with registry credentials."""
    oras_client.tags[REPOSITORY] = [TAG]
    registry = OrasRegistry(username="robot", password="secret")
    assert await registry.has_tag(ArtifactReference(REPOSITORY, TAG))
    assert oras_client.instances[0].logins == [
        {"hostname": "docker.io", "username": "robot"}
    ]


async def test_oras_registry_new_repository(oras_client: type[FakeOrasClient]) -> None:
    oras_client.tags[REPOSITORY] = ValueError("Issue with https://x: Not Found")
    assert await OrasRegistry().tags(REPOSITORY) == []


async def test_oras_registry_failure(oras_client: type[FakeOrasClient]) -> None:
    oras_client.tags[REPOSITORY] = ValueError("Issue with https://x: Unauthorized")
    with pytest.raises(BuildFailure, match="Unauthorized"):
        await OrasRegistry().tags(REPOSITORY)

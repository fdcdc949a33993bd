"""Library for building and publishing the container image of the workload.

The image is built for every configured platform with `docker buildx` and
pushed to the registry under a tag equal to the commit identifier. Tags are
immutable: when the registry already holds the tag the build is skipped and
the existing image is reused.

```python
from kube_release.builder import ImageBuilder, OrasRegistry
from kube_release.config import ImageConfig

builder = ImageBuilder(
    ImageConfig(repository="docker.io/example/booker"),
    base_dir=Path("."),
    registry=OrasRegistry(),
)
artifact = await builder.build("4b825dc642cb6eb9a060e54bf8d69288fbee4904")
```
"""

from abc import ABC, abstractmethod
import asyncio
import logging
from pathlib import Path

from aiofiles.ospath import exists, isdir
from oras.client import OrasClient

from . import command
from .command import Command
from .config import DEFAULT_TIMEOUT, ImageConfig
from .exceptions import BuildFailure
from .manifest import ArtifactReference

__all__ = [
    "Registry",
    "OrasRegistry",
    "ImageBuilder",
]

_LOGGER = logging.getLogger(__name__)

DOCKER_BIN = "docker"

BUILD_TIMEOUT = 1800.0

REVISION_LABEL = "org.opencontainers.image.revision"

# Reason returned by the registry for a repository that was never pushed.
_NOT_FOUND = "Not Found"


def registry_host(repository: str) -> str:
    """Return the registry host of a repository path."""
    host, sep, _ = repository.partition("/")
    if not sep or ("." not in host and ":" not in host and host != "localhost"):
        return "docker.io"
    return host


class Registry(ABC):
    """Container registry holding the published images."""

    @abstractmethod
    async def tags(self, repository: str) -> list[str]:
        """Return the tags published for the repository."""

    async def has_tag(self, artifact: ArtifactReference) -> bool:
        """Return True if the artifact is already published."""
        return artifact.tag in await self.tags(artifact.repository)


class OrasRegistry(Registry):
    """Registry client that reads tags with the OCI distribution API."""

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        insecure: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize OrasRegistry."""
        self._username = username
        self._password = password
        self._insecure = insecure
        self._timeout = timeout

    def _get_tags(self, repository: str) -> list[str]:
        client = OrasClient(insecure=self._insecure)
        if self._username:
            host = registry_host(repository)
            _LOGGER.info("Using authentication for registry %s", host)
            client.login(
                hostname=host,
                username=self._username,
                password=self._password or "",
            )
        try:
            return list(client.get_tags(repository))
        except ValueError as err:
            if _NOT_FOUND in str(err):
                _LOGGER.debug("Repository %s has no published images", repository)
                return []
            raise

    async def tags(self, repository: str) -> list[str]:
        """Return the tags published for the repository."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._get_tags, repository), self._timeout
            )
        except asyncio.TimeoutError as err:
            raise BuildFailure(
                f"Timed out listing tags of {repository} after {self._timeout:.0f}s"
            ) from err
        except Exception as err:
            raise BuildFailure(f"Unable to list tags of {repository}: {err}") from err


class ImageBuilder:
    """Builds and publishes the workload image for a commit."""

    def __init__(
        self,
        image: ImageConfig,
        base_dir: Path,
        registry: Registry | None = None,
        timeout: float = BUILD_TIMEOUT,
        docker_bin: str = DOCKER_BIN,
    ) -> None:
        """Initialize ImageBuilder."""
        self._image = image
        self._base_dir = base_dir
        self._registry = registry
        self._timeout = timeout
        self._docker_bin = docker_bin

    @property
    def context(self) -> Path:
        return self._base_dir / self._image.context

    @property
    def dockerfile(self) -> Path | None:
        if self._image.dockerfile is None:
            return None
        return self._base_dir / self._image.dockerfile

    def command(self, artifact: ArtifactReference, push: bool = True) -> Command:
        """Return the build command for the artifact."""
        args = [
            self._docker_bin,
            "buildx",
            "build",
            "--platform",
            ",".join(self._image.platforms),
            "--tag",
            artifact.image,
            "--label",
            f"{REVISION_LABEL}={artifact.tag}",
        ]
        if (dockerfile := self.dockerfile) is not None:
            args.extend(["--file", str(dockerfile)])
        if self._image.cache_from:
            args.extend(["--cache-from", self._image.cache_from])
        if self._image.cache_to:
            args.extend(["--cache-to", self._image.cache_to])
        if push:
            args.append("--push")
        args.append(str(self.context))
        return Command(args, exc=BuildFailure, timeout=self._timeout)

    async def build(self, tag: str, push: bool = True) -> ArtifactReference:
        """Build the image for the commit and publish it.

        Raises:
            BuildFailure: If the image could not be built or published.
        """
        if not tag:
            raise BuildFailure("A commit identifier is required to tag the image")
        artifact = ArtifactReference(repository=self._image.repository, tag=tag)
        if push and self._registry is not None:
            if await self._registry.has_tag(artifact):
                _LOGGER.info("Image %s is already published, reusing it", artifact)
                return artifact

        if not await isdir(self.context):
            raise BuildFailure(f"Build context {self.context} does not exist")
        if (dockerfile := self.dockerfile) is not None and not await exists(dockerfile):
            raise BuildFailure(f"Dockerfile {dockerfile} does not exist")

        _LOGGER.info(
            "Building %s for %s", artifact, ", ".join(self._image.platforms)
        )
        await command.run(self.command(artifact, push=push))
        _LOGGER.info("Published %s", artifact)
        return artifact

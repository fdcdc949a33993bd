"""Configuration objects for kube-release.

The release configuration is read from a YAML file that lives next to the
workload source, for example:

```yaml
service: nordic-wellness-booker
namespace: booker
topology: scheduled-job
image:
  repository: docker.io/example/nordic_wellness_booker
config_path: assets
remote_outputs:
  base_url:
    namespace: stacks
    stack: rsb-config
    output: base_url
secret_env:
  api_key: RSB_CONFIG_API_KEY
backend:
  type: kubernetes
  namespace: stacks
  stack: nordic-wellness-booker
```
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import cast

import aiofiles
from mashumaro.exceptions import MissingField, InvalidFieldValue
import yaml

from .exceptions import InputException
from .manifest import BaseManifest, Topology

__all__ = [
    "ReleaseConfig",
    "read_config",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_PLATFORMS = ["linux/amd64", "linux/arm64"]
DEFAULT_SCHEDULE = "0 5 * * *"
DEFAULT_REQUIRED_SECRET_KEYS = ["base_url", "api_key"]
DEFAULT_TIMEOUT = 60.0

BACKEND_MEMORY = "memory"
BACKEND_LOCAL = "local"
BACKEND_KUBERNETES = "kubernetes"


@dataclass
class ImageConfig(BaseManifest):
    """How the container image is built and where it is published."""

    repository: str
    """Registry path of the image, without a tag."""

    context: str = "."
    """Build context relative to the config file."""

    dockerfile: str | None = None
    """Optional Dockerfile path relative to the config file."""

    platforms: list[str] = field(default_factory=lambda: list(DEFAULT_PLATFORMS))
    """Target platforms for a multi-arch build."""

    cache_from: str | None = None
    """Optional buildx cache source e.g. `type=gha`."""

    cache_to: str | None = None
    """Optional buildx cache destination e.g. `type=gha,mode=max`."""


@dataclass
class OutputReference(BaseManifest):
    """A named output of another stack persisted in the shared backend."""

    stack: str
    """Identifier of the stack that owns the output."""

    output: str
    """Name of the output."""

    namespace: str = "default"
    """Backend namespace the stack state lives in."""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.stack}#{self.output}"


@dataclass
class BackendConfig(BaseManifest):
    """Location of the shared state backend."""

    type: str = BACKEND_LOCAL
    """One of `local`, `kubernetes` or `memory`."""

    stack: str | None = None
    """Identifier of this stack, defaults to the service name."""

    namespace: str = "default"
    """Backend namespace holding this stack's state."""

    path: str = ".kube-release"
    """Directory for the local backend, relative to the config file."""


@dataclass
class LockConfig(BaseManifest):
    """Retry policy for acquiring the backend lock."""

    attempts: int = 5
    delay: float = 1.0
    factor: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"lock.attempts must be at least 1, got {self.attempts}")


@dataclass
class ReleaseConfig(BaseManifest):
    """Configuration for releasing a single workload."""

    service: str
    """Fixed logical service name, the source of all resource names."""

    namespace: str
    """Target namespace for the workload."""

    image: ImageConfig
    """Image build and publish settings."""

    topology: Topology = Topology.SERVICE
    """Shape of the workload."""

    schedule: str = DEFAULT_SCHEDULE
    """Cron schedule for the scheduled-job shape."""

    config_path: str | None = None
    """Directory with the static config payload, relative to the config file."""

    remote_outputs: dict[str, OutputReference] = field(default_factory=dict)
    """Secret keys populated from outputs of other stacks."""

    secret_env: dict[str, str] = field(default_factory=dict)
    """Secret keys populated from environment variables of the pipeline."""

    required_secret_keys: list[str] = field(
        default_factory=lambda: list(DEFAULT_REQUIRED_SECRET_KEYS)
    )
    """Secret keys that must be present when the workload consumes the secret."""

    backend: BackendConfig = field(default_factory=BackendConfig)
    """Shared state backend."""

    lock: LockConfig = field(default_factory=LockConfig)
    """Lock retry policy."""

    max_output_age: float | None = None
    """Seconds after which remote stack outputs are considered stale."""

    timeout: float = DEFAULT_TIMEOUT
    """Seconds before a network call fails the run."""

    base_dir: Path = field(default_factory=Path.cwd, metadata={"serialize": "omit"})
    """Directory relative paths are resolved against."""

    @property
    def stack(self) -> str:
        """Identifier of this stack in the backend."""
        return self.backend.stack or self.service

    def resolve_path(self, path: str) -> Path:
        """Return a path relative to the config file."""
        return self.base_dir / path


def parse_config(content: str, base_dir: Path | None = None) -> ReleaseConfig:
    """Parse the contents of a release configuration file."""
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse release configuration: {err}") from err
    if not isinstance(doc, dict):
        raise InputException("Release configuration must be a mapping")
    doc.pop("base_dir", None)
    try:
        config = cast(ReleaseConfig, ReleaseConfig.from_dict(doc))
    except (MissingField, InvalidFieldValue, ValueError) as err:
        raise InputException(f"Invalid release configuration: {err}") from err
    if base_dir is not None:
        config.base_dir = base_dir
    return config


async def read_config(config_path: Path) -> ReleaseConfig:
    """Return the release configuration stored in a file."""
    _LOGGER.debug("Reading release configuration %s", config_path)
    try:
        async with aiofiles.open(str(config_path)) as config_file:
            content = await config_file.read()
    except FileNotFoundError as err:
        raise InputException(f"Release configuration {config_path} not found") from err
    return parse_config(content, base_dir=config_path.resolve().parent)

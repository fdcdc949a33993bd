"""Release pipeline sequencing build, planning and apply for one commit.

A run moves through these stages in order:

- `build`: produce and publish the image tagged with the commit identifier.
- `resolve`: read remote stack outputs and pipeline secrets.
- `render`: compute the desired resource set.
- `reconcile`: plan and apply while holding the backend lock.

Failures in the first three stages abort the run before any cluster mutation.

```python
from kube_release.pipeline import ReleasePipeline

pipeline = ReleasePipeline(config, builder=builder, cluster=cluster, backend=backend)
report = await pipeline.run(tag="4b825dc642cb6eb9a060e54bf8d69288fbee4904")
print(report.summary())
```
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
import datetime
import logging
import os
from pathlib import Path
import re

import aiofiles
from aiofiles.ospath import exists, isdir

from .applier import ApplyResult, OperationStatus, ReconcilingApplier
from .backend import (
    InMemoryBackend,
    KubernetesBackend,
    LocalBackend,
    StackId,
    StateBackend,
)
from .builder import ImageBuilder
from .cluster import Cluster
from .config import (
    BACKEND_KUBERNETES,
    BACKEND_LOCAL,
    BACKEND_MEMORY,
    ReleaseConfig,
)
from .context import get_trace_collector, trace_context
from .exceptions import InputException
from .kubectl import Kubectl
from .manifest import ArtifactReference, DesiredResourceSet, Topology
from .planner import DEFAULT_CONFIG_KEY, ResourcePlanner
from .resolver import RemoteConfigResolver

__all__ = [
    "ReleasePipeline",
    "RunReport",
    "create_backend",
    "read_config_files",
]

_LOGGER = logging.getLogger(__name__)

_CONFIG_KEY_RE = re.compile(r"^[-._a-zA-Z0-9]+$")


@dataclass
class RunReport:
    """Outcome of a single pipeline run."""

    artifact: ArtifactReference | None = None
    desired: DesiredResourceSet | None = None
    result: ApplyResult | None = None
    timings: dict[str, float] = field(default_factory=dict)
    """Seconds spent in each stage."""

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.succeeded

    def summary(self) -> str:
        """Return a human readable summary of the run."""
        lines = []
        if self.artifact:
            lines.append(f"Image: {self.artifact}")
        if self.result:
            counts = ", ".join(
                f"{count} to {action}"
                for action, count in self.result.plan.summary().items()
            )
            lines.append(f"Plan: {counts}")
            if self.result.results:
                applied = len(self.result.by_status(OperationStatus.SUCCEEDED))
                lines.append(f"Applied: {applied} of {len(self.result.results)}")
        for stage, seconds in self.timings.items():
            lines.append(f"{stage}: {seconds:0.2f}s")
        return "\n".join(lines)


def create_backend(
    config: ReleaseConfig, kubectl: Kubectl | None = None
) -> StateBackend:
    """Return the state backend described by the configuration."""
    backend_type = config.backend.type
    if backend_type == BACKEND_LOCAL:
        return LocalBackend(config.resolve_path(config.backend.path))
    if backend_type == BACKEND_KUBERNETES:
        return KubernetesBackend(kubectl or Kubectl(timeout=config.timeout))
    if backend_type == BACKEND_MEMORY:
        return InMemoryBackend()
    raise InputException(f"Unsupported backend type '{backend_type}'")


def _config_key(relative: Path) -> str:
    key = ".".join(relative.parts)
    if not _CONFIG_KEY_RE.match(key):
        raise InputException(f"Config file '{relative}' is not a valid key")
    return key


async def read_config_files(
    path: Path, file_key: str = DEFAULT_CONFIG_KEY
) -> dict[str, bytes]:
    """Read the static config payload as bytes keyed by file name.

    Files in nested directories are flattened into keys joined with `.`. A
    path naming a single file is stored under `file_key`.
    """
    if not await exists(path):
        raise InputException(f"Config path {path} does not exist")
    if not await isdir(path):
        files = [(Path(file_key), path)]
    else:
        files = [
            (file.relative_to(path), file)
            for file in sorted(path.rglob("*"))
            if file.is_file()
        ]
    result: dict[str, bytes] = {}
    for relative, file in files:
        key = _config_key(relative)
        if key in result:
            raise InputException(f"Config file '{relative}' duplicates key '{key}'")
        async with aiofiles.open(str(file), mode="rb") as config_file:
            result[key] = await config_file.read()
    _LOGGER.debug("Read %d config files from %s", len(result), path)
    return result


class ReleasePipeline:
    """Sequences the stages of a release for one commit."""

    def __init__(
        self,
        config: ReleaseConfig,
        cluster: Cluster,
        backend: StateBackend,
        builder: ImageBuilder | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize ReleasePipeline."""
        self._config = config
        self._cluster = cluster
        self._backend = backend
        self._builder = builder
        self._env = env if env is not None else os.environ
        max_age = None
        if config.max_output_age is not None:
            max_age = datetime.timedelta(seconds=config.max_output_age)
        self._resolver = RemoteConfigResolver(
            backend, max_age=max_age, timeout=config.timeout
        )

    @property
    def stack_id(self) -> StackId:
        return StackId(self._config.backend.namespace, self._config.stack)

    def applier(self) -> ReconcilingApplier:
        lock = self._config.lock
        return ReconcilingApplier(
            self._cluster,
            self._backend,
            self.stack_id,
            required_secret_keys=self._config.required_secret_keys,
            lock_attempts=lock.attempts,
            lock_delay=lock.delay,
            lock_factor=lock.factor,
        )

    async def build(self, tag: str, push: bool = True) -> ArtifactReference:
        """Build and publish the image for the commit."""
        if self._builder is None:
            _LOGGER.info("No builder configured, using existing image for %s", tag)
            return ArtifactReference(self._config.image.repository, tag)
        return await self._builder.build(tag, push=push)

    def secret_payload(self) -> dict[str, str]:
        """Return secret values supplied through the pipeline environment."""
        payload: dict[str, str] = {}
        for key, var in sorted(self._config.secret_env.items()):
            if (value := self._env.get(var)) is None:
                raise InputException(
                    f"Environment variable {var} for secret '{key}' is not set"
                )
            payload[key] = value
        return payload

    async def render(
        self, artifact: ArtifactReference, topology: Topology | None = None
    ) -> DesiredResourceSet:
        """Resolve configuration and compute the desired resource set.

        Raises:
            ConfigurationUnavailable: If a remote output cannot be resolved.
        """
        topology = topology or self._config.topology
        with trace_context("resolve"):
            resolved = await self._resolver.resolve_all(self._config.remote_outputs)
            secrets = self.secret_payload()
            config_files: dict[str, bytes] = {}
            if topology == Topology.SCHEDULED_JOB and self._config.config_path:
                config_files = await read_config_files(
                    self._config.resolve_path(self._config.config_path)
                )
        with trace_context("render"):
            planner = ResourcePlanner(
                self._config.service,
                self._config.namespace,
                schedule=self._config.schedule,
            )
            return planner.plan(
                artifact,
                resolved_config=resolved,
                topology=topology,
                config_files=config_files,
                secret_payload=secrets,
            )

    async def run(
        self,
        tag: str,
        topology: Topology | None = None,
        plan_only: bool = False,
        skip_build: bool = False,
    ) -> RunReport:
        """Run the pipeline for a commit.

        With `plan_only` nothing is built, pushed or applied and the report
        holds the plan that an apply would execute.
        """
        report = RunReport()
        with get_trace_collector() as collector:
            try:
                with trace_context("build"):
                    if plan_only or skip_build:
                        report.artifact = ArtifactReference(
                            self._config.image.repository, tag
                        )
                    else:
                        report.artifact = await self.build(tag)
                report.desired = await self.render(report.artifact, topology)
                with trace_context("reconcile"):
                    report.result = await self.applier().reconcile(
                        report.desired, dry_run=plan_only
                    )
            finally:
                report.timings = dict(collector.timings)
        _LOGGER.info("Release of %s finished:\n%s", self._config.service, report.summary())
        return report

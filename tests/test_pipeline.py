"""Tests for the release pipeline."""

from pathlib import Path

import pytest

from kube_release.backend import InMemoryBackend, LocalBackend
from kube_release.cluster import InMemoryCluster
from kube_release.config import ReleaseConfig, parse_config
from kube_release.exceptions import (
    ConfigurationUnavailable,
    InputException,
    StackNotFoundError,
)
from kube_release.manifest import NamedResource, StackState, Topology
from kube_release.pipeline import ReleasePipeline, create_backend, read_config_files

from .conftest import CONFIG_STACK, REPOSITORY, STACK, TAG

RELEASE_YAML = f"""\
service: booker
namespace: booker
image:
  repository: {REPOSITORY}
config_path: assets
remote_outputs:
  base_url:
    namespace: stacks
    stack: rsb-config
    output: base_url
secret_env:
  api_key: RSB_CONFIG_API_KEY
backend:
  type: memory
  namespace: stacks
lock:
  attempts: 1
"""

ENV = {"RSB_CONFIG_API_KEY": "abc123"}


@pytest.fixture(name="config")
def config_fixture(tmp_path: Path) -> ReleaseConfig:
    assets = tmp_path / "assets"
    assets.mkdir()
    (assets / "bookable-activities.json").write_text('{"activities":[]}')
    return parse_config(RELEASE_YAML, base_dir=tmp_path)


@pytest.fixture(name="pipeline")
def pipeline_fixture(
    config: ReleaseConfig, cluster: InMemoryCluster, backend: InMemoryBackend
) -> ReleasePipeline:
    return ReleasePipeline(config, cluster=cluster, backend=backend, env=ENV)


async def test_service_release(
    pipeline: ReleasePipeline,
    cluster: InMemoryCluster,
    config_stack: StackState,
) -> None:
    """Test a full run of the service shape."""
    report = await pipeline.run(TAG, skip_build=True)

    assert report.succeeded
    assert report.artifact and report.artifact.tag == TAG
    assert cluster.resource_ids() == [
        NamedResource("Deployment", "booker", "booker"),
        NamedResource("Namespace", None, "booker"),
        NamedResource("Secret", "booker", "booker-secret"),
    ]
    assert set(report.timings) >= {
        "build",
        "resolve",
        "render",
        "reconcile",
        "reconcile > plan",
        "reconcile > apply",
    }
    assert "Image: docker.io/example/booker:" in report.summary()


async def test_scheduled_job_release(
    config: ReleaseConfig,
    cluster: InMemoryCluster,
    backend: InMemoryBackend,
) -> None:
    """Test the scheduled job shape mounts the static payload without a secret."""
    pipeline = ReleasePipeline(
        parse_config(
            f"service: booker\nnamespace: booker\nimage:\n  repository: {REPOSITORY}\n"
            "config_path: assets\nbackend:\n  type: memory\n  namespace: stacks\n",
            base_dir=config.base_dir,
        ),
        cluster=cluster,
        backend=backend,
        env={},
    )
    report = await pipeline.run(TAG, topology=Topology.SCHEDULED_JOB, skip_build=True)

    assert report.succeeded
    assert cluster.resource_ids() == [
        NamedResource("ConfigMap", "booker", "booker-config"),
        NamedResource("CronJob", "booker", "booker"),
        NamedResource("Namespace", None, "booker"),
    ]
    config_map = await cluster.get_object(
        NamedResource("ConfigMap", "booker", "booker-config")
    )
    assert config_map
    assert config_map["data"] == {"bookable-activities.json": '{"activities":[]}'}


async def test_unavailable_configuration(
    pipeline: ReleasePipeline, cluster: InMemoryCluster, backend: InMemoryBackend
) -> None:
    """Test a missing upstream stack aborts before any cluster mutation."""
    with pytest.raises(StackNotFoundError):
        await pipeline.run(TAG, skip_build=True)
    assert not cluster.mutations
    assert backend.writes == 0


async def test_missing_secret_env(
    config: ReleaseConfig,
    cluster: InMemoryCluster,
    backend: InMemoryBackend,
    config_stack: StackState,
) -> None:
    pipeline = ReleasePipeline(config, cluster=cluster, backend=backend, env={})
    with pytest.raises(InputException, match="RSB_CONFIG_API_KEY"):
        await pipeline.run(TAG, skip_build=True)
    assert not cluster.mutations


async def test_plan_only(
    pipeline: ReleasePipeline,
    cluster: InMemoryCluster,
    backend: InMemoryBackend,
    config_stack: StackState,
) -> None:
    """Test a plan reports the changes without applying them."""
    report = await pipeline.run(TAG, plan_only=True)
    assert report.result
    assert report.result.plan.summary() == {"create": 3, "update": 0, "delete": 0}
    assert not report.result.results
    assert not cluster.mutations
    assert await backend.read_state(STACK) is None


async def test_stale_configuration(
    config: ReleaseConfig,
    cluster: InMemoryCluster,
    backend: InMemoryBackend,
) -> None:
    await backend.write_state(
        CONFIG_STACK,
        StackState(lineage="x", outputs={"base_url": "https://cfg.example/x"}),
    )
    config.max_output_age = 60
    pipeline = ReleasePipeline(config, cluster=cluster, backend=backend, env=ENV)
    with pytest.raises(ConfigurationUnavailable):
        await pipeline.run(TAG, skip_build=True)
    assert not cluster.mutations


async def test_read_config_files(tmp_path: Path) -> None:
    """Test a payload directory is flattened into keys."""
    (tmp_path / "sites").mkdir()
    (tmp_path / "activities.json").write_bytes(b"[]")
    (tmp_path / "sites" / "gbg.json").write_bytes(b"{}")
    assert await read_config_files(tmp_path) == {
        "activities.json": b"[]",
        "sites.gbg.json": b"{}",
    }
    assert await read_config_files(tmp_path / "activities.json") == {
        "bookable-activities.json": b"[]"
    }


async def test_read_config_files_invalid(tmp_path: Path) -> None:
    with pytest.raises(InputException, match="does not exist"):
        await read_config_files(tmp_path / "missing")
    (tmp_path / "bad name.json").write_bytes(b"{}")
    with pytest.raises(InputException, match="not a valid key"):
        await read_config_files(tmp_path)


def test_create_backend(config: ReleaseConfig) -> None:
    assert isinstance(create_backend(config), InMemoryBackend)
    config.backend.type = "local"
    assert isinstance(create_backend(config), LocalBackend)
    config.backend.type = "s3"
    with pytest.raises(InputException, match="Unsupported backend"):
        create_backend(config)

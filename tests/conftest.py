"""Shared fixtures for kube-release tests."""

import datetime

import pytest

from kube_release.applier import ReconcilingApplier
from kube_release.backend import InMemoryBackend, StackId
from kube_release.cluster import InMemoryCluster
from kube_release.manifest import ArtifactReference, StackState
from kube_release.planner import ResourcePlanner

REPOSITORY = "docker.io/example/booker"
TAG = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
NEXT_TAG = "9c1185a5c5e9fc54612808977ee8f548b2258d31"

CONFIG_STACK = StackId("stacks", "rsb-config")
STACK = StackId("stacks", "booker")


@pytest.fixture(name="backend")
def backend_fixture() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture(name="cluster")
def cluster_fixture() -> InMemoryCluster:
    return InMemoryCluster()


@pytest.fixture(name="artifact")
def artifact_fixture() -> ArtifactReference:
    return ArtifactReference(REPOSITORY, TAG)


@pytest.fixture(name="planner")
def planner_fixture() -> ResourcePlanner:
    return ResourcePlanner(service="booker", namespace="booker")


@pytest.fixture(name="applier")
def applier_fixture(
    cluster: InMemoryCluster, backend: InMemoryBackend
) -> ReconcilingApplier:
    return ReconcilingApplier(cluster, backend, STACK, lock_attempts=1)


@pytest.fixture(name="config_stack")
async def config_stack_fixture(backend: InMemoryBackend) -> StackState:
    """Publish the outputs of the configuration service stack."""
    state = StackState(
        lineage="cfg-lineage",
        serial=3,
        updated_at=datetime.datetime.now(tz=datetime.timezone.utc),
        outputs={"base_url": "https://cfg.example/x"},
    )
    await backend.write_state(CONFIG_STACK, state)
    return state

"""Tests for the resource planner."""

import base64
import json

import pytest

from kube_release.exceptions import InputException
from kube_release.manifest import (
    ArtifactReference,
    DesiredResourceSet,
    NamedResource,
    Topology,
)
from kube_release.planner import CONFIG_MOUNT_PATH, ResourcePlanner

ACTIVITIES = json.dumps({"activities": []}).encode()


def plan_service(
    planner: ResourcePlanner, artifact: ArtifactReference
) -> DesiredResourceSet:
    return planner.plan(
        artifact,
        resolved_config={"base_url": "https://cfg.example/x"},
        topology=Topology.SERVICE,
        config_files={},
        secret_payload={"api_key": "abc123"},
    )


def test_service_shape(planner: ResourcePlanner, artifact: ArtifactReference) -> None:
    """Test the desired set of a continuously running service."""
    desired = plan_service(planner, artifact)

    assert desired.resource_ids() == [
        NamedResource("Namespace", None, "booker"),
        NamedResource("Secret", "booker", "booker-secret"),
        NamedResource("Deployment", "booker", "booker"),
    ]
    secret = desired.by_kind("Secret")[0]
    assert {
        key: base64.b64decode(value).decode() for key, value in secret["data"].items()
    } == {"base_url": "https://cfg.example/x", "api_key": "abc123"}

    deployment = desired.by_kind("Deployment")[0]
    assert deployment["spec"]["replicas"] == 1
    containers = deployment["spec"]["template"]["spec"]["containers"]
    assert len(containers) == 1
    assert containers[0]["image"] == artifact.image
    assert containers[0]["envFrom"] == [{"secretRef": {"name": "booker-secret"}}]
    assert "env" not in containers[0]
    assert not desired.by_kind("ConfigMap")
    assert not desired.by_kind("CronJob")


def test_scheduled_job_shape(
    planner: ResourcePlanner, artifact: ArtifactReference
) -> None:
    """Test the desired set of a scheduled job with a static config payload."""
    desired = planner.plan(
        artifact,
        resolved_config={},
        topology=Topology.SCHEDULED_JOB,
        config_files={"bookable-activities.json": ACTIVITIES},
        secret_payload={},
    )

    assert desired.resource_ids() == [
        NamedResource("Namespace", None, "booker"),
        NamedResource("ConfigMap", "booker", "booker-config"),
        NamedResource("CronJob", "booker", "booker"),
    ]
    config_map = desired.by_kind("ConfigMap")[0]
    assert config_map["data"] == {"bookable-activities.json": '{"activities": []}'}

    cron_job = desired.by_kind("CronJob")[0]
    assert cron_job["spec"]["schedule"] == "0 5 * * *"
    pod = cron_job["spec"]["jobTemplate"]["spec"]["template"]["spec"]
    assert pod["volumes"] == [{"name": "config", "configMap": {"name": "booker-config"}}]
    container = pod["containers"][0]
    assert container["image"] == artifact.image
    assert container["volumeMounts"][0]["mountPath"] == CONFIG_MOUNT_PATH
    assert "envFrom" not in container
    assert not desired.by_kind("Secret")
    assert not desired.by_kind("Deployment")


def test_scheduled_job_with_secret(
    planner: ResourcePlanner, artifact: ArtifactReference
) -> None:
    """Test a scheduled job consumes the secret when secret data exists."""
    desired = planner.plan(
        artifact,
        resolved_config={"base_url": "https://cfg.example/x"},
        topology=Topology.SCHEDULED_JOB,
        config_files={"bookable-activities.json": ACTIVITIES},
        secret_payload={"api_key": "abc123"},
    )
    assert len(desired.by_kind("Secret")) == 1
    cron_job = desired.by_kind("CronJob")[0]
    container = cron_job["spec"]["jobTemplate"]["spec"]["template"]["spec"][
        "containers"
    ][0]
    assert container["envFrom"] == [{"secretRef": {"name": "booker-secret"}}]


def test_binary_config_file(
    planner: ResourcePlanner, artifact: ArtifactReference
) -> None:
    """Test config files that are not text are stored as binary data."""
    desired = planner.plan(
        artifact,
        resolved_config={},
        topology=Topology.SCHEDULED_JOB,
        config_files={"logo.png": b"\x89PNG\xff\xfe", "a.json": b"{}"},
        secret_payload={},
    )
    config_map = desired.by_kind("ConfigMap")[0]
    assert config_map["data"] == {"a.json": "{}"}
    assert base64.b64decode(config_map["binaryData"]["logo.png"]) == b"\x89PNG\xff\xfe"


def test_deterministic(planner: ResourcePlanner, artifact: ArtifactReference) -> None:
    """Test identical inputs produce byte-identical output."""
    first = plan_service(planner, artifact).yaml()
    second = plan_service(
        ResourcePlanner(service="booker", namespace="booker"), artifact
    ).yaml()
    assert first == second


def test_resolved_config_overridden_by_secret(
    planner: ResourcePlanner, artifact: ArtifactReference
) -> None:
    desired = planner.plan(
        artifact,
        resolved_config={"api_key": "from-stack", "retries": 3, "debug": False},
        topology=Topology.SERVICE,
        config_files={},
        secret_payload={"api_key": "from-env"},
    )
    data = desired.by_kind("Secret")[0]["data"]
    assert base64.b64decode(data["api_key"]) == b"from-env"
    assert base64.b64decode(data["retries"]) == b"3"
    assert base64.b64decode(data["debug"]) == b"false"


def test_structured_secret_value_rejected(
    planner: ResourcePlanner, artifact: ArtifactReference
) -> None:
    with pytest.raises(InputException, match="must be a scalar"):
        planner.plan(
            artifact,
            resolved_config={"base_url": {"nested": "value"}},
            topology=Topology.SERVICE,
            config_files={},
            secret_payload={},
        )


def test_resource_names_from_service() -> None:
    """Test resource names derive from the service name only."""
    planner = ResourcePlanner(service="Nordic Wellness Booker", namespace="booker-prod")
    assert planner.name == "nordic-wellness-booker"
    assert planner.config_name == "nordic-wellness-booker-config"
    assert planner.secret_name == "nordic-wellness-booker-secret"


def test_invalid_service_name() -> None:
    with pytest.raises(InputException):
        ResourcePlanner(service="!!!", namespace="booker")


def test_redacted_output(planner: ResourcePlanner, artifact: ArtifactReference) -> None:
    desired = plan_service(planner, artifact)
    redacted = desired.yaml(redact=True)
    encoded = base64.b64encode(b"abc123").decode()
    assert encoded not in redacted
    assert encoded in desired.yaml()

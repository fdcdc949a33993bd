"""Tests for the kubectl backed cluster."""

import copy
from pathlib import Path

import pytest

from kube_release.cluster import KubectlCluster
from kube_release.exceptions import KubectlException, ObjectExistsError, ObjectNotFoundError
from kube_release.kubectl import Kubectl, kubeconfig_file
from kube_release.manifest import NamedResource

from ..fakes import FakeKubectl

SECRET = {
    "apiVersion": "v1",
    "kind": "Secret",
    "metadata": {"name": "booker-secret", "namespace": "booker"},
    "data": {"api_key": "YWJjMTIz"},
}
SECRET_ID = NamedResource("Secret", "booker", "booker-secret")
CRON_JOB = {
    "apiVersion": "batch/v1",
    "kind": "CronJob",
    "metadata": {"name": "booker", "namespace": "booker"},
    "spec": {
        "schedule": "0 5 * * *",
        "jobTemplate": {
            "spec": {
                "template": {
                    "spec": {
                        "containers": [
                            {
                                "name": "booker",
                                "image": "docker.io/example/booker:abc",
                                "envFrom": [{"secretRef": {"name": "booker-secret"}}],
                            }
                        ]
                    }
                }
            }
        },
    },
}
CRON_JOB_ID = NamedResource("CronJob", "booker", "booker")


def test_command() -> None:
    """Test connection flags are added to every command."""
    kubectl = Kubectl(kubeconfig=Path("/tmp/kubeconfig"), context="prod", timeout=30)
    cmd = kubectl.command(["get", "Secret"])
    assert cmd.cmd == [
        "kubectl",
        "--kubeconfig",
        "/tmp/kubeconfig",
        "--context",
        "prod",
        "get",
        "Secret",
        "--request-timeout=30s",
    ]
    assert cmd.timeout == 30
    assert cmd.exc is KubectlException


async def test_create_get_delete() -> None:
    kubectl = FakeKubectl()
    cluster = KubectlCluster(kubectl)

    await cluster.create(SECRET)
    assert await cluster.get_object(SECRET_ID) == SECRET
    assert kubectl.commands[0] == ["create", "--filename", "-"]
    with pytest.raises(ObjectExistsError):
        await cluster.create(SECRET)

    await cluster.update({**SECRET, "data": {}})
    assert kubectl.commands[-1] == ["replace", "--filename", "-"]

    await cluster.delete(SECRET_ID)
    assert await cluster.get_object(SECRET_ID) is None
    assert kubectl.commands[-2] == [
        "delete",
        "Secret",
        "booker-secret",
        "--ignore-not-found",
        "--wait=true",
        "--namespace",
        "booker",
    ]


async def test_update_removes_fields() -> None:
    """Test fields missing from the updated document are removed from the object."""
    kubectl = FakeKubectl()
    cluster = KubectlCluster(kubectl)
    await cluster.create(CRON_JOB)

    updated = copy.deepcopy(CRON_JOB)
    container = updated["spec"]["jobTemplate"]["spec"]["template"]["spec"][
        "containers"
    ][0]
    del container["envFrom"]
    await cluster.update(updated)

    live = await cluster.get_object(CRON_JOB_ID)
    assert live == updated
    assert [command[0] for command in kubectl.commands] == ["create", "replace", "get"]


async def test_list_objects() -> None:
    kubectl = FakeKubectl()
    kubectl.objects[SECRET_ID] = {k: v for k, v in SECRET.items() if k != "kind"}
    cluster = KubectlCluster(kubectl)
    items = await cluster.list_objects(
        "Secret", namespace="booker", label_selector={"b": "2", "a": "1"}
    )
    assert [item["kind"] for item in items] == ["Secret"]
    assert kubectl.commands[0][-2:] == ["--selector", "a=1,b=2"]


async def test_update_not_found() -> None:
    kubectl = FakeKubectl()
    kubectl.errors.append('Error from server (NotFound): secrets "x" not found')
    with pytest.raises(ObjectNotFoundError):
        await KubectlCluster(kubectl).update(SECRET)
    with pytest.raises(ObjectNotFoundError):
        await KubectlCluster(kubectl).update(SECRET)
    assert kubectl.objects == {}


async def test_invalid_output() -> None:
    kubectl = FakeKubectl()
    kubectl.objects[SECRET_ID] = SECRET

    async def garbage(args: list[str], stdin: bytes | None = None) -> str:
        return "not json"

    kubectl.run = garbage  # type: ignore[method-assign]
    with pytest.raises(KubectlException, match="Unable to parse"):
        await KubectlCluster(kubectl).get_object(SECRET_ID)


def test_kubeconfig_file() -> None:
    """Test kubeconfig content only exists for the duration of the context."""
    with kubeconfig_file("apiVersion: v1\n") as path:
        assert path
        assert path.read_text() == "apiVersion: v1\n"
    assert not path.exists()
    with kubeconfig_file(None) as empty:
        assert empty is None

"""Representation of the resources managed for a single workload.

The objects in this module describe both sides of a reconciliation: the
desired resource set computed by the planner and the reconciliation state
persisted in the shared backend between runs. Kubernetes objects themselves
are kept as plain documents so they can be compared directly with the output
of the orchestration platform.
"""

import base64
import copy
from dataclasses import dataclass, field
import datetime
from enum import StrEnum
import logging
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.codecs.yaml import yaml_decode, yaml_encode
from mashumaro.config import BaseConfig
import yaml

from .exceptions import InputException

__all__ = [
    "NamedResource",
    "ArtifactReference",
    "AppliedResource",
    "StackState",
    "Topology",
    "DesiredResourceSet",
]

_LOGGER = logging.getLogger(__name__)


NAMESPACE_KIND = "Namespace"
CONFIG_MAP_KIND = "ConfigMap"
SECRET_KIND = "Secret"
DEPLOYMENT_KIND = "Deployment"
CRON_JOB_KIND = "CronJob"

WORKLOAD_KINDS = (DEPLOYMENT_KIND, CRON_JOB_KIND)

API_VERSIONS = {
    NAMESPACE_KIND: "v1",
    CONFIG_MAP_KIND: "v1",
    SECRET_KIND: "v1",
    DEPLOYMENT_KIND: "apps/v1",
    CRON_JOB_KIND: "batch/v1",
}

NAME_LABEL = "app.kubernetes.io/name"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "kube-release"

VALUE_PLACEHOLDER_TEMPLATE = "..PLACEHOLDER_{name}.."


class Topology(StrEnum):
    """Shape of the workload resource."""

    SERVICE = "service"
    """A continuously running Deployment."""

    SCHEDULED_JOB = "scheduled-job"
    """A CronJob triggered on a recurring schedule."""

    @property
    def workload_kind(self) -> str:
        """Kind of the workload resource for this shape."""
        if self == Topology.SERVICE:
            return DEPLOYMENT_KIND
        return CRON_JOB_KIND


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all serialized objects."""

    @classmethod
    def parse_yaml(cls, content: str) -> "BaseManifest":
        """Parse a serialized object."""
        return yaml_decode(content, cls)

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml_encode(self, self.__class__)  # type: ignore[return-value]

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "NamedResource":
        """Return the identifier of a raw kubernetes object."""
        if not (kind := doc.get("kind")):
            raise InputException(f"Invalid object missing kind: {doc}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid object missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid object missing metadata.name: {doc}")
        return cls(kind=kind, namespace=metadata.get("namespace"), name=name)

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class ArtifactReference(BaseManifest):
    """An immutable container image in a registry."""

    repository: str
    """The registry path e.g. `docker.io/example/app`."""

    tag: str
    """The immutable tag, the identifier of the commit that produced the image."""

    @property
    def image(self) -> str:
        """The pinned image reference used by the workload."""
        return f"{self.repository}:{self.tag}"

    @classmethod
    def parse(cls, image: str) -> "ArtifactReference":
        """Parse an image reference of the form `repository:tag`."""
        repository, sep, tag = image.rpartition(":")
        if not sep or not repository or not tag or "/" in tag:
            raise InputException(f"Image reference '{image}' has no tag")
        return cls(repository=repository, tag=tag)

    def __str__(self) -> str:
        return self.image


@dataclass
class AppliedResource(BaseManifest):
    """A resource recorded as applied by a previous reconciliation."""

    kind: str
    name: str
    namespace: str | None = None
    owned: bool = True
    """False for pre-existing objects (e.g. a shared namespace) that must never be deleted."""

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(self.kind, self.namespace, self.name)

    @classmethod
    def from_resource_id(
        cls, resource_id: NamedResource, owned: bool = True
    ) -> "AppliedResource":
        return cls(
            kind=resource_id.kind,
            name=resource_id.name,
            namespace=resource_id.namespace,
            owned=owned,
        )


@dataclass
class StackState(BaseManifest):
    """State of a logical stack persisted in the shared backend.

    The same document shape is used both for this system's reconciliation
    state and for reading outputs of other, independently managed stacks.
    """

    lineage: str
    """Random identifier fixed when the state is first created."""

    serial: int = 0
    """Incremented on every write."""

    updated_at: datetime.datetime | None = None
    """Time of the last write."""

    outputs: dict[str, Any] = field(default_factory=dict)
    """Named values exported for other stacks."""

    resources: list[AppliedResource] = field(default_factory=list)
    """Resources applied by the last reconciliation."""

    image: str | None = None
    """Image reference of the workload applied by the last reconciliation."""

    @property
    def resource_ids(self) -> dict[NamedResource, AppliedResource]:
        """Applied resources keyed by identifier."""
        return {resource.resource_id: resource for resource in self.resources}

    def age(self, now: datetime.datetime | None = None) -> datetime.timedelta | None:
        """Return the time since the state was last written."""
        if self.updated_at is None:
            return None
        now = now or datetime.datetime.now(tz=datetime.timezone.utc)
        return now - self.updated_at


def pod_spec(doc: dict[str, Any]) -> dict[str, Any]:
    """Return the pod template spec of a workload document."""
    spec = doc.get("spec") or {}
    if doc.get("kind") == CRON_JOB_KIND:
        spec = (spec.get("jobTemplate") or {}).get("spec") or {}
    return (spec.get("template") or {}).get("spec") or {}


def secret_refs(pod: dict[str, Any]) -> set[str]:
    """Return the names of Secrets a pod consumes."""
    refs = set()
    for container in pod.get("containers") or []:
        for env_from in container.get("envFrom") or []:
            if name := (env_from.get("secretRef") or {}).get("name"):
                refs.add(name)
        for env in container.get("env") or []:
            if name := ((env.get("valueFrom") or {}).get("secretKeyRef") or {}).get(
                "name"
            ):
                refs.add(name)
    return refs


def config_refs(pod: dict[str, Any]) -> set[str]:
    """Return the names of ConfigMaps a pod mounts."""
    return {
        name
        for volume in pod.get("volumes") or []
        if (name := (volume.get("configMap") or {}).get("name"))
    }


def workload_references(doc: dict[str, Any]) -> set[NamedResource]:
    """Return the Secrets and ConfigMaps a workload document depends on."""
    namespace = (doc.get("metadata") or {}).get("namespace")
    pod = pod_spec(doc)
    return {NamedResource(SECRET_KIND, namespace, name) for name in secret_refs(pod)} | {
        NamedResource(CONFIG_MAP_KIND, namespace, name) for name in config_refs(pod)
    }


def redact_secret(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a Secret document with values replaced by placeholders."""
    if doc.get("kind") != SECRET_KIND:
        return doc
    result = copy.deepcopy(doc)
    if data := result.get("data"):
        result["data"] = {
            key: base64.b64encode(
                VALUE_PLACEHOLDER_TEMPLATE.format(name=key).encode()
            ).decode()
            for key in data
        }
    if string_data := result.get("stringData"):
        result["stringData"] = {
            key: VALUE_PLACEHOLDER_TEMPLATE.format(name=key) for key in string_data
        }
    return result


def dump_docs(docs: list[dict[str, Any]]) -> str:
    """Render kubernetes objects as a deterministic multi document YAML string."""
    return yaml.dump_all(docs, sort_keys=True, explicit_start=True)


@dataclass
class DesiredResourceSet:
    """The complete set of resources that should exist for the workload."""

    namespace: str
    """The target namespace."""

    topology: Topology
    """The workload shape."""

    artifact: ArtifactReference
    """The image the workload runs."""

    objects: list[dict[str, Any]] = field(default_factory=list)
    """Kubernetes objects in dependency order."""

    def resource_ids(self) -> list[NamedResource]:
        """Identifiers of all desired objects in dependency order."""
        return [NamedResource.from_doc(doc) for doc in self.objects]

    def get(self, resource_id: NamedResource) -> dict[str, Any] | None:
        """Return the desired document for an identifier."""
        for doc in self.objects:
            if NamedResource.from_doc(doc) == resource_id:
                return doc
        return None

    def by_kind(self, kind: str) -> list[dict[str, Any]]:
        """Return the desired documents of a specific kind."""
        return [doc for doc in self.objects if doc.get("kind") == kind]

    @property
    def workloads(self) -> list[dict[str, Any]]:
        """Return all workload documents in the set."""
        return [doc for doc in self.objects if doc.get("kind") in WORKLOAD_KINDS]

    def yaml(self, redact: bool = False) -> str:
        """Render the set as YAML, optionally with secret values hidden."""
        docs = self.objects
        if redact:
            docs = [redact_secret(doc) for doc in docs]
        return dump_docs(docs)

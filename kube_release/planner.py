"""Library for computing the desired resource set of the workload.

The planner is a pure function of its inputs: identical inputs produce a
byte-identical desired resource set, which is what allows the applier to be
idempotent.

```python
from kube_release.planner import ResourcePlanner
from kube_release.manifest import ArtifactReference, Topology

planner = ResourcePlanner(service="booker", namespace="booker")
desired = planner.plan(
    artifact=ArtifactReference("docker.io/example/booker", "4b825dc"),
    resolved_config={"base_url": "https://cfg.example/x"},
    topology=Topology.SERVICE,
    config_files={},
    secret_payload={"api_key": "abc123"},
)
print(desired.yaml(redact=True))
```
"""

import base64
from collections.abc import Mapping
import logging
from typing import Any

from slugify import slugify

from .config import DEFAULT_SCHEDULE
from .exceptions import InputException
from .manifest import (
    API_VERSIONS,
    CONFIG_MAP_KIND,
    CRON_JOB_KIND,
    DEPLOYMENT_KIND,
    MANAGED_BY,
    MANAGED_BY_LABEL,
    NAME_LABEL,
    NAMESPACE_KIND,
    SECRET_KIND,
    ArtifactReference,
    DesiredResourceSet,
    Topology,
)

__all__ = [
    "ResourcePlanner",
]

_LOGGER = logging.getLogger(__name__)

# Fixed at design time for both workload shapes.
RESOURCES = {
    "requests": {"cpu": "50m", "memory": "64Mi"},
    "limits": {"cpu": "250m", "memory": "128Mi"},
}

CONFIG_MOUNT_PATH = "/app/assets"
CONFIG_VOLUME = "config"
DEFAULT_CONFIG_KEY = "bookable-activities.json"
CONFIG_SUFFIX = "config"
SECRET_SUFFIX = "secret"
JOB_BACKOFF_LIMIT = 2
JOB_HISTORY_LIMIT = 3


def _metadata(name: str, namespace: str | None, labels: dict[str, str]) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name, "labels": dict(labels)}
    if namespace is not None:
        metadata["namespace"] = namespace
    return metadata


class ResourcePlanner:
    """Computes the desired resource set for one logical service."""

    def __init__(
        self,
        service: str,
        namespace: str,
        schedule: str = DEFAULT_SCHEDULE,
    ) -> None:
        """Initialize ResourcePlanner."""
        if not (name := slugify(service, max_length=52)):
            raise InputException(f"Service name '{service}' is not a valid name")
        self._name = name
        self._namespace = namespace
        self._schedule = schedule

    @property
    def name(self) -> str:
        """Name of the workload resource."""
        return self._name

    @property
    def config_name(self) -> str:
        return f"{self._name}-{CONFIG_SUFFIX}"

    @property
    def secret_name(self) -> str:
        return f"{self._name}-{SECRET_SUFFIX}"

    @property
    def labels(self) -> dict[str, str]:
        return {NAME_LABEL: self._name, MANAGED_BY_LABEL: MANAGED_BY}

    def plan(
        self,
        artifact: ArtifactReference,
        resolved_config: Mapping[str, Any],
        topology: Topology,
        config_files: Mapping[str, bytes],
        secret_payload: Mapping[str, str],
    ) -> DesiredResourceSet:
        """Return the full desired resource set for the inputs."""
        secret_data = {
            **{key: _secret_value(key, value) for key, value in resolved_config.items()},
            **{key: _secret_value(key, value) for key, value in secret_payload.items()},
        }
        objects: list[dict[str, Any]] = [self._namespace_doc()]
        if topology == Topology.SERVICE:
            secret = self._secret_doc(secret_data)
            objects.append(secret)
            objects.append(self._deployment_doc(artifact))
        elif topology == Topology.SCHEDULED_JOB:
            objects.append(self._config_map_doc(config_files))
            if secret_data:
                objects.append(self._secret_doc(secret_data))
            objects.append(self._cron_job_doc(artifact, use_secret=bool(secret_data)))
        else:
            raise InputException(f"Unsupported topology '{topology}'")
        _LOGGER.debug(
            "Planned %d objects for %s (%s)", len(objects), self._name, topology
        )
        return DesiredResourceSet(
            namespace=self._namespace,
            topology=topology,
            artifact=artifact,
            objects=objects,
        )

    def _namespace_doc(self) -> dict[str, Any]:
        return {
            "apiVersion": API_VERSIONS[NAMESPACE_KIND],
            "kind": NAMESPACE_KIND,
            "metadata": {"name": self._namespace},
        }

    def _secret_doc(self, secret_data: Mapping[str, str]) -> dict[str, Any]:
        return {
            "apiVersion": API_VERSIONS[SECRET_KIND],
            "kind": SECRET_KIND,
            "type": "Opaque",
            "metadata": _metadata(self.secret_name, self._namespace, self.labels),
            "data": {
                key: base64.b64encode(secret_data[key].encode("utf-8")).decode()
                for key in sorted(secret_data)
            },
        }

    def _config_map_doc(self, config_files: Mapping[str, bytes]) -> dict[str, Any]:
        data: dict[str, str] = {}
        binary_data: dict[str, str] = {}
        for key in sorted(config_files):
            content = config_files[key]
            try:
                data[key] = content.decode("utf-8")
            except UnicodeDecodeError:
                binary_data[key] = base64.b64encode(content).decode()
        doc: dict[str, Any] = {
            "apiVersion": API_VERSIONS[CONFIG_MAP_KIND],
            "kind": CONFIG_MAP_KIND,
            "metadata": _metadata(self.config_name, self._namespace, self.labels),
            "data": data,
        }
        if binary_data:
            doc["binaryData"] = binary_data
        return doc

    def _container(
        self,
        artifact: ArtifactReference,
        use_secret: bool,
        mount_config: bool,
    ) -> dict[str, Any]:
        container: dict[str, Any] = {
            "name": self._name,
            "image": artifact.image,
            "imagePullPolicy": "IfNotPresent",
            "resources": {
                "requests": dict(RESOURCES["requests"]),
                "limits": dict(RESOURCES["limits"]),
            },
        }
        if use_secret:
            container["envFrom"] = [{"secretRef": {"name": self.secret_name}}]
        if mount_config:
            container["volumeMounts"] = [
                {
                    "name": CONFIG_VOLUME,
                    "mountPath": CONFIG_MOUNT_PATH,
                    "readOnly": True,
                }
            ]
        return container

    def _deployment_doc(self, artifact: ArtifactReference) -> dict[str, Any]:
        return {
            "apiVersion": API_VERSIONS[DEPLOYMENT_KIND],
            "kind": DEPLOYMENT_KIND,
            "metadata": _metadata(self._name, self._namespace, self.labels),
            "spec": {
                "replicas": 1,
                "selector": {"matchLabels": {NAME_LABEL: self._name}},
                "template": {
                    "metadata": {"labels": self.labels},
                    "spec": {
                        "containers": [
                            self._container(
                                artifact, use_secret=True, mount_config=False
                            )
                        ],
                    },
                },
            },
        }

    def _cron_job_doc(
        self, artifact: ArtifactReference, use_secret: bool
    ) -> dict[str, Any]:
        return {
            "apiVersion": API_VERSIONS[CRON_JOB_KIND],
            "kind": CRON_JOB_KIND,
            "metadata": _metadata(self._name, self._namespace, self.labels),
            "spec": {
                "schedule": self._schedule,
                "concurrencyPolicy": "Forbid",
                "successfulJobsHistoryLimit": JOB_HISTORY_LIMIT,
                "failedJobsHistoryLimit": JOB_HISTORY_LIMIT,
                "jobTemplate": {
                    "spec": {
                        "backoffLimit": JOB_BACKOFF_LIMIT,
                        "template": {
                            "metadata": {"labels": self.labels},
                            "spec": {
                                "restartPolicy": "Never",
                                "containers": [
                                    self._container(
                                        artifact,
                                        use_secret=use_secret,
                                        mount_config=True,
                                    )
                                ],
                                "volumes": [
                                    {
                                        "name": CONFIG_VOLUME,
                                        "configMap": {"name": self.config_name},
                                    }
                                ],
                            },
                        },
                    },
                },
            },
        }


def _secret_value(key: str, value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise InputException(f"Secret value for '{key}' must be a scalar")
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

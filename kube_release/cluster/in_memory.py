"""Module for in memory cluster."""

import copy
import datetime
import itertools
import logging
from typing import Any

from kube_release.exceptions import ObjectExistsError, ObjectNotFoundError
from kube_release.manifest import NAMESPACE_KIND, NamedResource

from .cluster import Cluster, matches_labels

_LOGGER = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


class InMemoryCluster(Cluster):
    """In-memory implementation of the Cluster interface.

    Behaves like the platform where it matters for reconciliation: objects
    gain server populated metadata and status on write, namespaced objects
    require their namespace, and deleting a namespace deletes its contents.
    Every mutating call is recorded in `mutations`.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryCluster."""
        self._objects: dict[NamedResource, dict[str, Any]] = {}
        self._failures: dict[tuple[str, NamedResource], Exception] = {}
        self._versions = itertools.count(1)
        self.mutations: list[tuple[str, NamedResource]] = []

    def inject_failure(
        self, action: str, resource_id: NamedResource, err: Exception
    ) -> None:
        """Make the next `action` on the resource raise the error."""
        self._failures[(action, resource_id)] = err

    def _check_failure(self, action: str, resource_id: NamedResource) -> None:
        if (err := self._failures.pop((action, resource_id), None)) is not None:
            raise err

    def _stored(self, doc: dict[str, Any], existing: dict[str, Any] | None) -> dict[str, Any]:
        stored = copy.deepcopy(doc)
        metadata = stored.setdefault("metadata", {})
        if existing is not None:
            metadata["uid"] = existing["metadata"]["uid"]
            metadata["creationTimestamp"] = existing["metadata"]["creationTimestamp"]
        else:
            metadata["uid"] = f"uid-{len(self._objects) + len(self.mutations)}"
            metadata["creationTimestamp"] = datetime.datetime.now(
                tz=datetime.timezone.utc
            ).isoformat()
        metadata["resourceVersion"] = str(next(self._versions))
        stored.setdefault("status", {})
        return stored

    async def list_objects(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List live objects of a kind."""
        return [
            copy.deepcopy(doc)
            for resource_id, doc in sorted(self._objects.items())
            if resource_id.kind == kind
            and (namespace is None or resource_id.namespace == namespace)
            and matches_labels(doc, label_selector)
        ]

    async def get_object(self, resource_id: NamedResource) -> dict[str, Any] | None:
        """Return the live object."""
        if (doc := self._objects.get(resource_id)) is None:
            return None
        return copy.deepcopy(doc)

    async def create(self, doc: dict[str, Any]) -> None:
        """Create a new object."""
        resource_id = NamedResource.from_doc(doc)
        self.mutations.append((CREATE, resource_id))
        self._check_failure(CREATE, resource_id)
        if resource_id in self._objects:
            raise ObjectExistsError(f"{resource_id} already exists")
        if resource_id.namespace is not None:
            namespace_id = NamedResource(NAMESPACE_KIND, None, resource_id.namespace)
            if namespace_id not in self._objects:
                raise ObjectNotFoundError(f"Namespace {resource_id.namespace} not found")
        _LOGGER.debug("Creating %s", resource_id)
        self._objects[resource_id] = self._stored(doc, None)

    async def update(self, doc: dict[str, Any]) -> None:
        """Update an existing object."""
        resource_id = NamedResource.from_doc(doc)
        self.mutations.append((UPDATE, resource_id))
        self._check_failure(UPDATE, resource_id)
        if (existing := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"{resource_id} not found")
        _LOGGER.debug("Updating %s", resource_id)
        self._objects[resource_id] = self._stored(doc, existing)

    async def delete(self, resource_id: NamedResource) -> None:
        """Delete an object and, for namespaces, everything inside it."""
        self.mutations.append((DELETE, resource_id))
        self._check_failure(DELETE, resource_id)
        if resource_id not in self._objects:
            raise ObjectNotFoundError(f"{resource_id} not found")
        _LOGGER.debug("Deleting %s", resource_id)
        del self._objects[resource_id]
        if resource_id.kind == NAMESPACE_KIND:
            for child in [
                key for key in self._objects if key.namespace == resource_id.name
            ]:
                del self._objects[child]

    def resource_ids(self) -> list[NamedResource]:
        """Return the identifiers of all live objects."""
        return sorted(self._objects)

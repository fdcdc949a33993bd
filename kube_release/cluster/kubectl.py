"""Cluster implementation that talks to the platform API through kubectl."""

import logging
from typing import Any

from kube_release.exceptions import (
    KubectlException,
    ObjectExistsError,
    ObjectNotFoundError,
)
from kube_release.kubectl import ALREADY_EXISTS, Kubectl
from kube_release.manifest import NamedResource

from .cluster import Cluster

_LOGGER = logging.getLogger(__name__)

NOT_FOUND = "NotFound"


class KubectlCluster(Cluster):
    """Cluster backed by kubectl commands."""

    def __init__(self, kubectl: Kubectl) -> None:
        """Initialize KubectlCluster."""
        self._kubectl = kubectl

    async def list_objects(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List live objects of a kind."""
        items = await self._kubectl.get_objects(
            kind, namespace=namespace, label_selector=label_selector
        )
        for item in items:
            # List items omit the kind and apiVersion of the containing list
            item.setdefault("kind", kind)
        return items

    async def get_object(self, resource_id: NamedResource) -> dict[str, Any] | None:
        """Return the live object."""
        return await self._kubectl.get_object(
            resource_id.kind, resource_id.name, namespace=resource_id.namespace
        )

    async def create(self, doc: dict[str, Any]) -> None:
        """Create a new object."""
        try:
            await self._kubectl.create(doc)
        except KubectlException as err:
            if ALREADY_EXISTS in str(err):
                raise ObjectExistsError(
                    f"{NamedResource.from_doc(doc)} already exists"
                ) from err
            raise

    async def update(self, doc: dict[str, Any]) -> None:
        """Replace an existing object, removing fields absent from the document."""
        try:
            await self._kubectl.replace(doc)
        except KubectlException as err:
            if NOT_FOUND in str(err):
                raise ObjectNotFoundError(
                    f"{NamedResource.from_doc(doc)} not found"
                ) from err
            raise

    async def delete(self, resource_id: NamedResource) -> None:
        """Delete an object."""
        await self._kubectl.delete(
            resource_id.kind, resource_id.name, namespace=resource_id.namespace
        )

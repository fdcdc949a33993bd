"""Cluster module for reading and mutating live resources."""

from abc import ABC, abstractmethod
from typing import Any

from kube_release.manifest import NamedResource


class Cluster(ABC):
    """Abstract base class for the orchestration platform API.

    Objects are plain kubernetes documents keyed by `(kind, namespace, name)`.
    """

    @abstractmethod
    async def list_objects(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List live objects of a kind, optionally scoped to a namespace and labels."""

    @abstractmethod
    async def get_object(self, resource_id: NamedResource) -> dict[str, Any] | None:
        """Return the live object or None if it does not exist."""

    @abstractmethod
    async def create(self, doc: dict[str, Any]) -> None:
        """Create a new object.

        Raises:
            ObjectExistsError: If the object already exists.
        """

    @abstractmethod
    async def update(self, doc: dict[str, Any]) -> None:
        """Update an existing object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def delete(self, resource_id: NamedResource) -> None:
        """Delete an object."""


def matches_labels(doc: dict[str, Any], label_selector: dict[str, str] | None) -> bool:
    """Return True if the object carries every label in the selector."""
    if not label_selector:
        return True
    labels = doc.get("metadata", {}).get("labels") or {}
    return all(labels.get(key) == value for key, value in label_selector.items())

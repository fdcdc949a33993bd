"""State backend storing stack state inside the cluster.

State for a stack is stored in a Secret named `kube-release-state-<stack>` in
the backend namespace and locked with a Lease named
`kube-release-lock-<stack>`. Creating the Lease fails when it already exists,
which gives the acquire-before-write protocol without any extra service.
"""

import base64
import logging
from typing import Any, cast

from slugify import slugify

from kube_release.exceptions import (
    KubectlException,
    LockContention,
    ReleaseException,
)
from kube_release.kubectl import Kubectl, ALREADY_EXISTS
from kube_release.manifest import MANAGED_BY, MANAGED_BY_LABEL, StackState

from .backend import LockInfo, StackId, StateBackend

_LOGGER = logging.getLogger(__name__)

STATE_PREFIX = "kube-release-state"
LOCK_PREFIX = "kube-release-lock"
STATE_KEY = "state"
LOCK_INFO_ANNOTATION = "kube-release/lock-info"
STACK_LABEL = "kube-release/stack"


def _resource_name(prefix: str, stack_id: StackId) -> str:
    return slugify(f"{prefix}-{stack_id.stack}", max_length=63)


class KubernetesBackend(StateBackend):
    """StateBackend storing state in Secrets and locks in Leases."""

    def __init__(self, kubectl: Kubectl) -> None:
        """Initialize KubernetesBackend."""
        self._kubectl = kubectl

    async def read_state(self, stack_id: StackId) -> StackState | None:
        """Return the persisted state of a stack."""
        doc = await self._kubectl.get_object(
            "Secret", _resource_name(STATE_PREFIX, stack_id), stack_id.namespace
        )
        if doc is None:
            _LOGGER.debug("No state secret found for %s", stack_id)
            return None
        if not (encoded := (doc.get("data") or {}).get(STATE_KEY)):
            raise ReleaseException(f"State secret for {stack_id} has no '{STATE_KEY}'")
        content = base64.b64decode(encoded).decode("utf-8")
        return cast(StackState, StackState.parse_yaml(content))

    async def write_state(self, stack_id: StackId, state: StackState) -> None:
        """Persist the state of a stack in its Secret."""
        doc: dict[str, Any] = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {
                "name": _resource_name(STATE_PREFIX, stack_id),
                "namespace": stack_id.namespace,
                "labels": {
                    MANAGED_BY_LABEL: MANAGED_BY,
                    STACK_LABEL: slugify(stack_id.stack, max_length=63),
                },
            },
            "data": {
                STATE_KEY: base64.b64encode(state.yaml().encode("utf-8")).decode(),
            },
        }
        await self._kubectl.apply(doc)
        _LOGGER.debug("Wrote state %s serial %d", stack_id, state.serial)

    async def acquire_lock(self, stack_id: StackId, info: LockInfo) -> LockInfo:
        """Acquire the lock by creating the Lease."""
        doc = {
            "apiVersion": "coordination.k8s.io/v1",
            "kind": "Lease",
            "metadata": {
                "name": _resource_name(LOCK_PREFIX, stack_id),
                "namespace": stack_id.namespace,
                "labels": {MANAGED_BY_LABEL: MANAGED_BY},
                "annotations": {LOCK_INFO_ANNOTATION: info.yaml()},
            },
            "spec": {"holderIdentity": info.id},
        }
        try:
            await self._kubectl.create(doc)
        except KubectlException as err:
            if ALREADY_EXISTS not in str(err):
                raise
            holder = await self._read_lock(stack_id)
            raise LockContention(
                str(stack_id), str(holder) if holder else None
            ) from err
        return info

    async def release_lock(self, stack_id: StackId, info: LockInfo) -> None:
        """Release the lock by deleting the Lease."""
        holder = await self._read_lock(stack_id)
        if holder is None:
            _LOGGER.warning("Lock for %s was already released", stack_id)
            return
        if holder.id != info.id:
            raise ReleaseException(
                f"Lock for {stack_id} is held by {holder}, not {info.id}"
            )
        await self._kubectl.delete(
            "Lease", _resource_name(LOCK_PREFIX, stack_id), stack_id.namespace
        )

    async def _read_lock(self, stack_id: StackId) -> LockInfo | None:
        doc = await self._kubectl.get_object(
            "Lease", _resource_name(LOCK_PREFIX, stack_id), stack_id.namespace
        )
        if doc is None:
            return None
        annotations = doc.get("metadata", {}).get("annotations") or {}
        if content := annotations.get(LOCK_INFO_ANNOTATION):
            return cast(LockInfo, LockInfo.parse_yaml(content))
        holder_id = doc.get("spec", {}).get("holderIdentity") or ""
        return LockInfo(id=holder_id, who="unknown", operation="unknown")

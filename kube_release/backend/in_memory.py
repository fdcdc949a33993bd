"""Module for in memory state backend."""

import logging
from typing import cast

from kube_release.exceptions import LockContention, ReleaseException
from kube_release.manifest import StackState

from .backend import LockInfo, StackId, StateBackend

_LOGGER = logging.getLogger(__name__)


class InMemoryBackend(StateBackend):
    """In-memory implementation of the StateBackend interface.

    State is stored serialized so callers never share mutable objects with
    the backend, matching the behavior of a remote store.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryBackend."""
        self._states: dict[StackId, str] = {}
        self._locks: dict[StackId, LockInfo] = {}
        self.reads = 0
        self.writes = 0

    async def read_state(self, stack_id: StackId) -> StackState | None:
        """Return the persisted state of a stack."""
        self.reads += 1
        if (content := self._states.get(stack_id)) is None:
            return None
        return cast(StackState, StackState.parse_yaml(content))

    async def write_state(self, stack_id: StackId, state: StackState) -> None:
        """Persist the state of a stack."""
        _LOGGER.debug("Writing state %s serial %d", stack_id, state.serial)
        self.writes += 1
        self._states[stack_id] = state.yaml()

    async def acquire_lock(self, stack_id: StackId, info: LockInfo) -> LockInfo:
        """Acquire the lock for a stack."""
        if (holder := self._locks.get(stack_id)) is not None:
            raise LockContention(str(stack_id), str(holder))
        self._locks[stack_id] = info
        return info

    async def release_lock(self, stack_id: StackId, info: LockInfo) -> None:
        """Release the lock for a stack."""
        holder = self._locks.get(stack_id)
        if holder is None:
            _LOGGER.warning("Lock for %s was already released", stack_id)
            return
        if holder.id != info.id:
            raise ReleaseException(
                f"Lock for {stack_id} is held by {holder}, not {info.id}"
            )
        del self._locks[stack_id]

    def is_locked(self, stack_id: StackId) -> bool:
        """Return True if the lock for the stack is currently held."""
        return stack_id in self._locks

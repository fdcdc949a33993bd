"""Backend module for persisting stack state between runs."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import datetime
import getpass
import socket
import uuid

from kube_release.manifest import BaseManifest, StackState


@dataclass(frozen=True, order=True)
class StackId:
    """Key of a stack's state in the shared backend."""

    namespace: str
    stack: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.stack}"


def _default_holder() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


@dataclass
class LockInfo(BaseManifest):
    """Describes the holder of a backend lock."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    """Unique identifier of this acquisition, required to release it."""

    operation: str = "apply"
    """The operation the lock was taken for."""

    who: str = field(default_factory=_default_holder)
    """User and host holding the lock."""

    created: str = field(
        default_factory=lambda: datetime.datetime.now(
            tz=datetime.timezone.utc
        ).isoformat()
    )
    """Time the lock was acquired."""

    def __str__(self) -> str:
        return f"{self.who} ({self.operation} since {self.created}, id {self.id})"


class StateBackend(ABC):
    """Abstract base class for the shared store of stack state and locks.

    The backend holds both the outputs of independently managed stacks and the
    reconciliation state of this stack. Writers must hold the lock for the
    stack they write.
    """

    @abstractmethod
    async def read_state(self, stack_id: StackId) -> StackState | None:
        """Return the persisted state of a stack or None if it was never written."""

    @abstractmethod
    async def write_state(self, stack_id: StackId, state: StackState) -> None:
        """Persist the state of a stack, replacing any previous version."""

    @abstractmethod
    async def acquire_lock(self, stack_id: StackId, info: LockInfo) -> LockInfo:
        """Acquire the lock for a stack.

        Raises:
            LockContention: If the lock is currently held.
        """

    @abstractmethod
    async def release_lock(self, stack_id: StackId, info: LockInfo) -> None:
        """Release a lock previously returned by `acquire_lock`."""

"""
The backend module provides the shared store that holds the state of stacks
between runs.

- Keys each stack by `(namespace, stack)` through StackId.
- Holds both this stack's reconciliation state and the outputs of
  independently managed stacks, in the same StackState document shape.
- Serializes writers with an acquire-before-write, release-after-write lock.

This abstract interface allows for various implementations (in-memory, local
directory, kubernetes).
"""

from .backend import StateBackend, StackId, LockInfo
from .in_memory import InMemoryBackend
from .local import LocalBackend
from .kubernetes import KubernetesBackend
from .lock import backend_lock

__all__ = [
    "StateBackend",
    "StackId",
    "LockInfo",
    "InMemoryBackend",
    "LocalBackend",
    "KubernetesBackend",
    "backend_lock",
]

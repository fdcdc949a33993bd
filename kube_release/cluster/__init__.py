"""
The cluster module provides access to the live state of the orchestration
platform: list, get, create, update and delete of kubernetes objects keyed by
`(kind, namespace, name)`.

The in-memory implementation is used in tests and dry runs, the kubectl
implementation in real releases.
"""

from .cluster import Cluster
from .in_memory import InMemoryCluster
from .kubectl import KubectlCluster

__all__ = [
    "Cluster",
    "InMemoryCluster",
    "KubectlCluster",
]

"""Cluster object store clients.

Backends:
- InMemoryObjectStore: single process, tests
- RedisObjectStore: leases and records in Redis
- KubernetesObjectStore: Lease objects, pod labels and ConfigMaps
"""

from leasekeeper.store.base import (
    ConflictError,
    Lease,
    NotFoundError,
    ObjectStore,
    StoreError,
)
from leasekeeper.store.memory import InMemoryObjectStore

__all__ = [
    "ConflictError",
    "InMemoryObjectStore",
    "Lease",
    "NotFoundError",
    "ObjectStore",
    "StoreError",
]

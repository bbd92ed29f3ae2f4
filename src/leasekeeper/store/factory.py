"""Object store factory for leasekeeper."""

from __future__ import annotations

from leasekeeper.config import Settings
from leasekeeper.store.base import ObjectStore
from leasekeeper.store.memory import InMemoryObjectStore


def create_store(settings: Settings) -> ObjectStore:
    """Build the ObjectStore selected by `settings.store_backend`.

    Raises:
        StoreError: If the backend client cannot be constructed
        ValueError: If the backend is unknown
    """
    backend = settings.store_backend.lower()
    if backend == "kubernetes":
        from leasekeeper.store.kubernetes import KubernetesObjectStore, load_client_config

        return KubernetesObjectStore(
            namespace=settings.namespace,
            api_client=load_client_config(settings.kubeconfig),
        )
    elif backend == "redis":
        from leasekeeper.store.redis import RedisObjectStore

        # Namespace scopes the keys so several election domains can share a server
        return RedisObjectStore.from_url(
            settings.redis_url,
            key_prefix=f"{settings.redis_key_prefix}{settings.namespace}:",
        )
    elif backend == "memory":
        return InMemoryObjectStore()
    raise ValueError(
        "Unsupported store_backend. Supported values: kubernetes, redis, memory."
    )

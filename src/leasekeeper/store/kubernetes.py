"""Kubernetes object store.

Maps the store interface onto namespaced Kubernetes objects:
- leases are coordination.k8s.io/v1 Lease objects
- candidates are pods, markers are pod labels
- records are ConfigMaps

The object's resourceVersion is the version token. The official client is
synchronous, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Callable, TypeVar

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from leasekeeper.store.base import ConflictError, Lease, NotFoundError, ObjectStore, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Page size when listing pods by label selector
LIST_PAGE_SIZE = 100


def load_client_config(kubeconfig: str | None = None) -> client.ApiClient:
    """Build an API client from in-cluster credentials or a kubeconfig file.

    Raises:
        StoreError: If no usable configuration is found
    """
    configuration = client.Configuration()
    try:
        if kubeconfig:
            config.load_kube_config(config_file=kubeconfig, client_configuration=configuration)
        else:
            try:
                config.load_incluster_config(client_configuration=configuration)
            except config.ConfigException:
                config.load_kube_config(client_configuration=configuration)
    except (config.ConfigException, OSError) as e:
        raise StoreError(f"cannot load Kubernetes configuration: {e}") from e
    return client.ApiClient(configuration)


def _translate(e: ApiException, what: str) -> StoreError:
    if e.status == 404:
        return NotFoundError(f"{what} not found")
    if e.status == 409:
        return ConflictError(f"{what}: {e.reason}")
    return StoreError(f"{what}: {e.status} {e.reason}")


class KubernetesObjectStore(ObjectStore):
    """Object store backed by the Kubernetes API of one namespace.

    Args:
        namespace: Namespace holding the lease, pods and ConfigMaps
        api_client: Configured API client (see load_client_config)
    """

    def __init__(self, namespace: str, api_client: client.ApiClient):
        self.namespace = namespace
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.coordination = client.CoordinationV1Api(api_client)

    async def _call(self, what: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ApiException as e:
            raise _translate(e, what) from e
        except (TransportError, OSError) as e:
            # Exhausted urllib3 retries raise MaxRetryError, not OSError
            raise StoreError(f"{what}: {e}") from e

    # -------------------------------------------------------------------------
    # Leases
    # -------------------------------------------------------------------------

    async def get_lease(self, name: str) -> tuple[Lease, str]:
        obj = await self._call(
            f"lease {name}",
            self.coordination.read_namespaced_lease,
            name,
            self.namespace,
        )
        spec = obj.spec
        lease = Lease(
            holder_identity=spec.holder_identity or "",
            lease_duration_seconds=float(spec.lease_duration_seconds or 0),
            renew_time=spec.renew_time,
            acquire_time=spec.acquire_time,
            leader_transitions=spec.lease_transitions or 0,
        )
        return lease, obj.metadata.resource_version

    async def compare_and_swap_lease(
        self,
        name: str,
        lease: Lease,
        expected_version: str | None,
    ) -> str:
        body = client.V1Lease(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=self.namespace,
                resource_version=expected_version,
            ),
            spec=client.V1LeaseSpec(
                holder_identity=lease.holder_identity or None,
                lease_duration_seconds=max(1, round(lease.lease_duration_seconds)),
                renew_time=lease.renew_time,
                acquire_time=lease.acquire_time,
                lease_transitions=lease.leader_transitions,
            ),
        )

        try:
            if expected_version is None:
                obj = await self._call(
                    f"create lease {name}",
                    self.coordination.create_namespaced_lease,
                    self.namespace,
                    body,
                )
            else:
                obj = await self._call(
                    f"replace lease {name}",
                    self.coordination.replace_namespaced_lease,
                    name,
                    self.namespace,
                    body,
                )
        except NotFoundError as e:
            raise ConflictError(str(e)) from e
        return obj.metadata.resource_version

    # -------------------------------------------------------------------------
    # Candidate markers
    # -------------------------------------------------------------------------

    async def list_candidates_by_marker(self, key: str, value: str) -> AsyncIterator[str]:
        selector = f"{key}={value}"
        continue_token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"label_selector": selector, "limit": LIST_PAGE_SIZE}
            if continue_token:
                kwargs["_continue"] = continue_token
            page = await self._call(
                f"list pods {selector}",
                self.core.list_namespaced_pod,
                self.namespace,
                **kwargs,
            )
            for pod in page.items:
                yield pod.metadata.name
            continue_token = page.metadata._continue if page.metadata else None
            if not continue_token:
                return

    async def set_candidate_marker(self, identity: str, key: str, value: str | None) -> None:
        # Merge patch: a null label value removes the label
        patch = {"metadata": {"labels": {key: value}}}
        await self._call(
            f"patch pod {identity}",
            self.core.patch_namespaced_pod,
            identity,
            self.namespace,
            patch,
        )

    # -------------------------------------------------------------------------
    # Shared key/value records
    # -------------------------------------------------------------------------

    async def get_record(self, name: str) -> tuple[dict[str, str], str]:
        obj = await self._call(
            f"configmap {name}",
            self.core.read_namespaced_config_map,
            name,
            self.namespace,
        )
        return dict(obj.data or {}), obj.metadata.resource_version

    async def create_record(self, name: str, fields: dict[str, str]) -> None:
        body = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name=name, namespace=self.namespace),
            data=dict(fields),
        )
        await self._call(
            f"create configmap {name}",
            self.core.create_namespaced_config_map,
            self.namespace,
            body,
        )

    async def update_record(self, name: str, fields: dict[str, str], version: str) -> None:
        # Replace the object as read so labels and annotations set by others survive
        body = await self._call(
            f"configmap {name}",
            self.core.read_namespaced_config_map,
            name,
            self.namespace,
        )
        if body.metadata.resource_version != version:
            raise ConflictError(
                f"configmap {name} version {version} is stale "
                f"(current {body.metadata.resource_version})"
            )
        body.data = dict(fields)
        await self._call(
            f"replace configmap {name}",
            self.core.replace_namespaced_config_map,
            name,
            self.namespace,
            body,
        )

    async def close(self) -> None:
        await asyncio.to_thread(self.api_client.close)

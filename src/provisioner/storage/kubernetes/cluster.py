"""Single entry point for the cluster objects the provisioner touches."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client import ApiClient, V1Namespace, V1StorageClass
from structlog.stdlib import BoundLogger

from ...models.domain.kubernetes import (
    ClusterObject,
    ObjectKind,
    PropagationPolicy,
    object_name,
    object_namespace,
)
from ...timeout import Timeout
from .objects import NamespacedObjectStorage, build_object_storage
from .readers import ClusterReader

__all__ = ["ClusterObjectStore"]


class ClusterObjectStore:
    """Read and write namespaced cluster objects by kind.

    This is the only interface the provisioning services use to talk to
    Kubernetes. Objects are typed ``kubernetes_asyncio`` models, except for
    custom objects, which are dicts in their camelCase wire form. Writes
    take the kind, name, and namespace from the object itself.

    Failures are raised as `~provisioner.exceptions.KubernetesError`, whose
    ``not_found``, ``conflict``, and ``invalid`` properties distinguish the
    outcomes callers act on.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._reader = ClusterReader(api_client)
        self._storage = build_object_storage(api_client, logger)

    def supports(self, kind: ObjectKind) -> bool:
        """Whether objects of this kind can be written through the store."""
        return kind in self._storage

    async def create(self, obj: ClusterObject, timeout: Timeout) -> Any:
        """Create an object and return it as stored by the API server.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ValueError
            Raised if the object has no namespace or is of a kind the store
            does not write.
        """
        storage, namespace = self._locate(obj)
        return await storage.create(
            namespace, object_name(obj), obj, timeout
        )

    async def delete(
        self,
        obj: ClusterObject,
        timeout: Timeout,
        *,
        propagation_policy: PropagationPolicy | None = None,
    ) -> None:
        """Delete an object, treating a missing object as success.

        Only the kind, name, and namespace of ``obj`` are used.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        storage, namespace = self._locate(obj)
        await storage.delete(
            namespace,
            object_name(obj),
            timeout,
            propagation_policy=propagation_policy,
        )

    async def get(
        self, kind: ObjectKind, namespace: str, name: str, timeout: Timeout
    ) -> Any:
        """Read an object, returning `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        return await self._for_kind(kind).read(namespace, name, timeout)

    async def list(
        self,
        kind: ObjectKind,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[Any]:
        """List the objects of one kind in a namespace.

        Parameters
        ----------
        kind
            Kind of the objects. Events can be listed but not written.
        namespace
            Namespace to list.
        timeout
            Deadline for the call.
        label_selector
            Only return objects matching this label selector.
        field_selector
            Only return objects matching this field selector. Custom
            objects do not support field selectors.

        Returns
        -------
        list
            Objects found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        if kind == ObjectKind.EVENT:
            return await self._reader.list_events(
                namespace, timeout, field_selector=field_selector
            )
        return await self._for_kind(kind).list(
            namespace,
            timeout,
            label_selector=label_selector,
            field_selector=field_selector,
        )

    async def read_namespace(
        self, name: str, timeout: Timeout
    ) -> V1Namespace | None:
        """Read a namespace, returning `None` if it does not exist."""
        return await self._reader.read_namespace(name, timeout)

    async def read_storage_class(
        self, name: str, timeout: Timeout
    ) -> V1StorageClass | None:
        """Read a storage class, returning `None` if it does not exist."""
        return await self._reader.read_storage_class(name, timeout)

    async def update(self, obj: ClusterObject, timeout: Timeout) -> Any:
        """Replace an object and return it as stored by the API server.

        The write is rejected with a conflict if ``obj`` carries a resource
        version and the cluster object changed since that version.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        storage, namespace = self._locate(obj)
        return await storage.replace(
            namespace, object_name(obj), obj, timeout
        )

    def _for_kind(self, kind: ObjectKind) -> NamespacedObjectStorage:
        if kind not in self._storage:
            raise ValueError(f"Unsupported object kind {kind.value}")
        return self._storage[kind]

    def _locate(
        self, obj: ClusterObject
    ) -> tuple[NamespacedObjectStorage, str]:
        kind = ObjectKind.for_object(obj)
        namespace = object_namespace(obj)
        if not namespace:
            msg = f"{kind.value} {object_name(obj)} has no namespace"
            raise ValueError(msg)
        return self._for_kind(kind), namespace

"""Sizing, construction, and expansion of workspace PVCs."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1ObjectMeta,
    V1OwnerReference,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1VolumeResourceRequirements,
)
from structlog.stdlib import BoundLogger

from ...exceptions import FailError, RetryError
from ...models.domain.workspace import Component
from ...storage.kubernetes.cluster import ClusterObjectStore
from ...timeout import Timeout
from ...units import bytes_to_quantity, quantity_to_bytes

__all__ = ["PVCExpander", "build_pvc", "compute_pvc_size"]


def compute_pvc_size(volumes: list[Component], default: str) -> str:
    """Compute the size a PVC needs to hold a set of volumes.

    If every volume has an explicit size, the PVC is exactly large enough
    to hold all of them. Otherwise the default size is used, unless the
    explicit sizes alone already add up to more.

    Parameters
    ----------
    volumes
        Persistent volume components that will live on the PVC.
    default
        Default size, either from the namespace or from the global
        configuration.

    Returns
    -------
    str
        Required size as a Kubernetes quantity.

    Raises
    ------
    FailError
        Raised if a volume size is not a valid quantity.
    """
    total = 0
    all_sized = bool(volumes)
    for component in volumes:
        size = component.volume.size if component.volume else None
        if not size:
            all_sized = False
            continue
        try:
            total += quantity_to_bytes(size)
        except ValueError as e:
            msg = f"failed to parse size for volume '{component.name}': {size}"
            raise FailError(msg, cause=e) from e
    if all_sized:
        return bytes_to_quantity(total)
    if total > quantity_to_bytes(default):
        return bytes_to_quantity(total)
    return default


def build_pvc(
    name: str,
    namespace: str,
    size: str,
    *,
    storage_class: str | None = None,
    owner: V1OwnerReference | None = None,
) -> V1PersistentVolumeClaim:
    """Construct a ``ReadWriteOnce`` PVC.

    Parameters
    ----------
    name
        Name of the PVC.
    namespace
        Namespace of the PVC.
    size
        Requested storage.
    storage_class
        Storage class, or `None` for the cluster default.
    owner
        Owner of the PVC, if it should be deleted along with its owner.

    Returns
    -------
    kubernetes_asyncio.client.V1PersistentVolumeClaim
        PVC to create.
    """
    return V1PersistentVolumeClaim(
        api_version="v1",
        kind="PersistentVolumeClaim",
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            owner_references=[owner] if owner else None,
        ),
        spec=V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            resources=V1VolumeResourceRequirements(
                requests={"storage": size}
            ),
            storage_class_name=storage_class,
        ),
    )


class PVCExpander:
    """Grow existing PVCs whose required size has increased.

    PVCs are otherwise immutable as far as provisioning is concerned, so
    this is the only place that modifies one after creation.

    Parameters
    ----------
    store
        Cluster object store.
    enabled
        Whether expansion is enabled at all.
    logger
        Logger to use.
    """

    def __init__(
        self, store: ClusterObjectStore, *, enabled: bool, logger: BoundLogger
    ) -> None:
        self._store = store
        self._enabled = enabled
        self._logger = logger

    async def expand(
        self, pvc: V1PersistentVolumeClaim, size: str, timeout: Timeout
    ) -> None:
        """Expand a PVC if it is smaller than required.

        Parameters
        ----------
        pvc
            PVC as read from the cluster.
        size
            Required size.
        timeout
            Timeout on the Kubernetes calls.

        Raises
        ------
        RetryError
            Raised if the PVC was expanded.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        if not self._enabled:
            return
        requests = pvc.spec.resources.requests or {}
        current = requests.get("storage")
        if current and quantity_to_bytes(size) <= quantity_to_bytes(current):
            return
        name = pvc.metadata.name
        class_name = pvc.spec.storage_class_name
        storage_class = None
        if class_name:
            storage_class = await self._store.read_storage_class(
                class_name, timeout
            )
        if not storage_class or not storage_class.allow_volume_expansion:
            self._logger.info(
                "Storage class does not allow expansion, not expanding PVC",
                name=name,
                namespace=pvc.metadata.namespace,
                storage_class=class_name,
            )
            return
        self._logger.info(
            "Expanding PVC",
            name=name,
            namespace=pvc.metadata.namespace,
            old_size=current,
            new_size=size,
        )
        pvc.spec.resources.requests = {**requests, "storage": size}
        await self._store.update(pvc, timeout)
        raise RetryError("Expanding PVC")

"""Storage strategy sharing one PVC between all workspaces in a namespace."""

from __future__ import annotations

from kubernetes_asyncio.client import V1PersistentVolumeClaim
from structlog.stdlib import BoundLogger

from ...config import Config, StorageConfig
from ...constants import COMMON_PVC_TERMINATING_INTERVAL
from ...exceptions import RetryError
from ...models.domain.kubernetes import ObjectKind
from ...models.domain.workspace import PodAdditions, StorageType, Workspace
from ...storage.kubernetes.cluster import ClusterObjectStore
from ...timeout import Timeout
from ..namespace import NamespaceConfigReader
from ..sync import SyncEngine
from .base import StorageProvisioner
from .cleanup import CleanupJobRunner
from .pvc import build_pvc, compute_pvc_size
from .volumes import (
    add_ephemeral_volumes,
    check_volume_mounts,
    get_workspace_volumes,
    rewrite_volume_mounts,
)

__all__ = [
    "COMMON_STORAGE_TYPES",
    "CommonStorageProvisioner",
    "find_shared_pvc",
]

COMMON_STORAGE_TYPES = frozenset(
    {"", StorageType.COMMON.value, StorageType.PER_USER.value}
)
"""Storage type attribute values that select the shared PVC strategy."""


async def find_shared_pvc(
    store: ClusterObjectStore,
    config: StorageConfig,
    namespace: str,
    timeout: Timeout,
) -> tuple[str, V1PersistentVolumeClaim | None]:
    """Determine the name of the shared PVC of a namespace.

    If a PVC with the alternate name exists, it is used in preference to the
    configured name.

    Parameters
    ----------
    store
        Cluster object store.
    config
        Storage configuration.
    namespace
        Namespace of the workspaces.
    timeout
        Timeout on the Kubernetes calls.

    Returns
    -------
    tuple
        Name of the shared PVC and the PVC itself, or `None` if it does not
        exist yet.
    """
    kind = ObjectKind.PERSISTENT_VOLUME_CLAIM
    if config.alternate_pvc_name:
        name = config.alternate_pvc_name
        pvc = await store.get(kind, namespace, name, timeout)
        if pvc:
            return name, pvc
    name = config.pvc_name
    return name, await store.get(kind, namespace, name, timeout)


class CommonStorageProvisioner(StorageProvisioner):
    """Store every workspace in a namespace on one shared PVC.

    Each workspace gets its own directory, named for its workspace ID, on the
    shared PVC. The PVC is deleted when the last workspace using it goes
    away.

    Parameters
    ----------
    config
        Provisioner configuration.
    store
        Cluster object store.
    sync
        Sync engine.
    namespace_config
        Reader for per-namespace overrides.
    cleanup
        Runner for the Job that deletes a workspace directory.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: Config,
        store: ClusterObjectStore,
        sync: SyncEngine,
        namespace_config: NamespaceConfigReader,
        cleanup: CleanupJobRunner,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            config=config,
            store=store,
            sync=sync,
            namespace_config=namespace_config,
            logger=logger,
        )
        self._cleanup = cleanup

    async def provision_storage(
        self, pod_additions: PodAdditions, workspace: Workspace
    ) -> None:
        volumes = get_workspace_volumes(workspace.template)
        add_ephemeral_volumes(pod_additions, volumes.ephemeral)
        if not volumes.persistent:
            return
        check_volume_mounts(pod_additions, volumes)
        timeout = self._timeout()
        namespace = workspace.namespace

        pvc_name, pvc = await find_shared_pvc(
            self._store, self._config.storage, namespace, timeout
        )
        if pvc and pvc.metadata.deletion_timestamp:
            raise RetryError(
                f"Shared PVC {pvc_name} is being deleted",
                requeue_after=COMMON_PVC_TERMINATING_INTERVAL,
            )

        namespace_config = await self._namespace_config.read(
            namespace, timeout
        )
        storage = self._config.storage
        default = namespace_config.common_pvc_size or storage.common_size
        size = compute_pvc_size(volumes.persistent, default)
        desired = build_pvc(
            pvc_name,
            namespace,
            size,
            storage_class=self._config.storage.storage_class_name,
        )
        cluster_pvc = await self._sync.ensure(desired, timeout)
        await self._expander.expand(cluster_pvc, size, timeout)
        prefix = f"{workspace.workspace_id}/"
        rewrite_volume_mounts(pod_additions, volumes, pvc_name, prefix)

    async def cleanup_workspace_storage(self, workspace: Workspace) -> None:
        if not self.needs_storage(workspace.template):
            return
        timeout = self._timeout()
        namespace = workspace.namespace
        pvc_name, pvc = await find_shared_pvc(
            self._store, self._config.storage, namespace, timeout
        )
        if not pvc:
            return
        others = await self._list_other_workspaces(
            workspace, COMMON_STORAGE_TYPES, timeout
        )
        if not others:
            self._logger.info(
                "No workspaces use shared PVC, deleting it",
                name=pvc_name,
                namespace=namespace,
                workspace=workspace.name,
            )
            await self._store.delete(pvc, timeout)
            return
        namespace_config = await self._namespace_config.read(
            namespace, timeout
        )
        await self._cleanup.run(workspace, pvc_name, namespace_config, timeout)

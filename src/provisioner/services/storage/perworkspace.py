"""Storage strategy giving each workspace its own PVC."""

from __future__ import annotations

from ...exceptions import FailError
from ...models.domain.workspace import PodAdditions, Workspace
from .base import StorageProvisioner
from .pvc import build_pvc, compute_pvc_size
from .volumes import (
    add_ephemeral_volumes,
    check_volume_mounts,
    get_workspace_volumes,
    rewrite_volume_mounts,
)

__all__ = ["PerWorkspaceStorageProvisioner"]


class PerWorkspaceStorageProvisioner(StorageProvisioner):
    """Store each workspace on a dedicated PVC.

    The PVC is owned by the workspace, so Kubernetes garbage collection
    deletes it along with the workspace and there is nothing to clean up.
    """

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

        namespace_config = await self._namespace_config.read(
            namespace, timeout
        )
        default = (
            namespace_config.per_workspace_pvc_size
            or self._config.storage.per_workspace_size
        )
        size = compute_pvc_size(volumes.persistent, default)
        pvc_name = f"storage-{workspace.workspace_id}"
        desired = build_pvc(
            pvc_name,
            namespace,
            size,
            storage_class=self._config.storage.storage_class_name,
            owner=workspace.owner_reference(),
        )
        pvc = await self._sync.ensure(desired, timeout)
        if pvc.metadata.deletion_timestamp:
            raise FailError("DevWorkspace PVC is being deleted")
        await self._expander.expand(pvc, size, timeout)
        rewrite_volume_mounts(pod_additions, volumes, pvc_name)

    async def cleanup_workspace_storage(self, workspace: Workspace) -> None:
        self._logger.debug(
            "Per-workspace PVC is removed by garbage collection",
            namespace=workspace.namespace,
            workspace=workspace.name,
        )

"""Storage strategy backing every volume with an emptyDir."""

from __future__ import annotations

from typing import override

from ...models.domain.workspace import (
    PodAdditions,
    Workspace,
    WorkspaceTemplate,
)
from .base import StorageProvisioner
from .volumes import add_ephemeral_volumes, get_workspace_volumes

__all__ = ["EphemeralStorageProvisioner"]


class EphemeralStorageProvisioner(StorageProvisioner):
    """Keep workspace data only for the lifetime of the pod."""

    @override
    def needs_storage(self, template: WorkspaceTemplate) -> bool:
        return False

    async def provision_storage(
        self, pod_additions: PodAdditions, workspace: Workspace
    ) -> None:
        volumes = get_workspace_volumes(workspace.template)
        add_ephemeral_volumes(pod_additions, volumes.all)

    async def cleanup_workspace_storage(self, workspace: Workspace) -> None:
        pass

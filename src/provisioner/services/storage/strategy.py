"""Selection of the storage provisioner for a workspace."""

from __future__ import annotations

from ...exceptions import UnsupportedStorageStrategyError
from ...models.domain.workspace import StorageType, Workspace
from .asyncstorage.provisioner import AsyncStorageProvisioner
from .base import StorageProvisioner
from .common import COMMON_STORAGE_TYPES, CommonStorageProvisioner
from .ephemeral import EphemeralStorageProvisioner
from .perworkspace import PerWorkspaceStorageProvisioner

__all__ = ["StorageStrategySelector"]


class StorageStrategySelector:
    """Choose the storage provisioner requested by a workspace.

    Parameters
    ----------
    common
        Provisioner for the shared PVC strategy.
    per_workspace
        Provisioner for the per-workspace PVC strategy.
    async_storage
        Provisioner for the async strategy.
    ephemeral
        Provisioner for the ephemeral strategy.
    """

    def __init__(
        self,
        *,
        common: CommonStorageProvisioner,
        per_workspace: PerWorkspaceStorageProvisioner,
        async_storage: AsyncStorageProvisioner,
        ephemeral: EphemeralStorageProvisioner,
    ) -> None:
        self._common = common
        self._per_workspace = per_workspace
        self._async = async_storage
        self._ephemeral = ephemeral

    def get_provisioner(self, workspace: Workspace) -> StorageProvisioner:
        """Return the provisioner for the storage type of a workspace.

        Parameters
        ----------
        workspace
            Workspace to provision.

        Returns
        -------
        StorageProvisioner
            Provisioner implementing the requested strategy.

        Raises
        ------
        UnsupportedStorageStrategyError
            Raised if the workspace requests an unknown storage type.
        """
        storage_type = workspace.storage_type
        if storage_type in COMMON_STORAGE_TYPES:
            return self._common
        match storage_type:
            case StorageType.PER_WORKSPACE:
                return self._per_workspace
            case StorageType.ASYNC:
                return self._async
            case StorageType.EPHEMERAL:
                return self._ephemeral
            case _:
                raise UnsupportedStorageStrategyError(storage_type)

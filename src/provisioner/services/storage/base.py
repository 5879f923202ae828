"""Base class for storage provisioners."""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
from collections.abc import Collection

from structlog.stdlib import BoundLogger

from ...config import Config
from ...models.domain.kubernetes import ObjectKind
from ...models.domain.workspace import (
    PodAdditions,
    Workspace,
    WorkspaceTemplate,
)
from ...storage.kubernetes.cluster import ClusterObjectStore
from ...timeout import Timeout
from ..namespace import NamespaceConfigReader
from ..sync import SyncEngine
from .pvc import PVCExpander
from .volumes import get_workspace_volumes

__all__ = ["StorageProvisioner"]


class StorageProvisioner(metaclass=ABCMeta):
    """Base class for storage provisioners.

    A storage provisioner implements one storage strategy. It adds the
    volumes of a workspace to the pod, creates whatever cluster objects back
    them, and reclaims those objects when the workspace is deleted.

    Both operations are idempotent and are called again from the start after
    any `~provisioner.exceptions.RetryError`. Neither waits for the cluster
    to converge.

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
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._store = store
        self._sync = sync
        self._namespace_config = namespace_config
        self._logger = logger
        self._expander = PVCExpander(
            store, enabled=config.experimental_features, logger=logger
        )

    def needs_storage(self, template: WorkspaceTemplate) -> bool:
        """Whether a workspace needs persistent storage.

        Parameters
        ----------
        template
            Flattened workspace template.

        Returns
        -------
        bool
            `True` if the template has a non-ephemeral volume, including an
            implicit projects volume.
        """
        return bool(get_workspace_volumes(template).persistent)

    @abstractmethod
    async def provision_storage(
        self, pod_additions: PodAdditions, workspace: Workspace
    ) -> None:
        """Add the storage of a workspace to its pod.

        Parameters
        ----------
        pod_additions
            Pod contributions to modify.
        workspace
            Workspace being started.

        Raises
        ------
        RetryError
            Raised if cluster objects were changed or are not yet ready.
        FailError
            Raised if the workspace cannot be provisioned as requested.
        KubernetesError
            Raised for other exceptions from the Kubernetes API server.
        """

    @abstractmethod
    async def cleanup_workspace_storage(self, workspace: Workspace) -> None:
        """Reclaim the storage of a deleted workspace.

        Parameters
        ----------
        workspace
            Workspace being deleted.

        Raises
        ------
        RetryError
            Raised if cleanup is still in progress.
        FailError
            Raised if cleanup cannot complete.
        KubernetesError
            Raised for other exceptions from the Kubernetes API server.
        """

    async def _list_other_workspaces(
        self,
        workspace: Workspace,
        storage_types: Collection[str],
        timeout: Timeout,
    ) -> list[Workspace]:
        """List the other workspaces in the namespace using some strategies.

        Workspaces that are being deleted are not included.
        """
        objs = await self._store.list(
            ObjectKind.WORKSPACE, workspace.namespace, timeout
        )
        others = (Workspace.from_kubernetes(o) for o in objs)
        return [
            w
            for w in others
            if w.name != workspace.name
            and not w.is_being_deleted
            and w.storage_type in storage_types
        ]

    def _timeout(self) -> Timeout:
        return Timeout(self._config.request_timeout)

"""Component factory for the workspace provisioner."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from typing import Self

import structlog
from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging
from structlog.stdlib import BoundLogger

from .config import Config
from .models.domain.workspace import Workspace
from .services.automount.gitconfig import GitConfigProvisioner
from .services.automount.merger import AutomountMerger
from .services.namespace import NamespaceConfigReader
from .services.podstatus import PodInspector
from .services.storage.asyncstorage.provisioner import AsyncStorageProvisioner
from .services.storage.base import StorageProvisioner
from .services.storage.cleanup import CleanupJobRunner
from .services.storage.common import CommonStorageProvisioner
from .services.storage.ephemeral import EphemeralStorageProvisioner
from .services.storage.perworkspace import PerWorkspaceStorageProvisioner
from .services.storage.strategy import StorageStrategySelector
from .services.sync import SyncEngine
from .storage.kubernetes.cluster import ClusterObjectStore

__all__ = ["Factory"]


class Factory:
    """Build provisioner components.

    All components built by one factory share its Kubernetes API client.

    Parameters
    ----------
    config
        Provisioner configuration.
    api_client
        Kubernetes API client.
    logger
        Logger to use for messages.
    """

    @classmethod
    async def create(cls, config: Config) -> Self:
        """Create a factory with a new Kubernetes API client.

        Loads Kubernetes credentials from the cluster environment or from a
        kubeconfig file and configures logging. The caller must call
        `aclose` when done.

        Parameters
        ----------
        config
            Provisioner configuration.

        Returns
        -------
        Factory
            Newly-created factory.
        """
        configure_logging(
            name=config.name,
            profile=config.profile,
            log_level=config.log_level,
        )
        await initialize_kubernetes()
        logger = structlog.get_logger(config.name)
        return cls(config, client.ApiClient(), logger)

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for provisioner components.

        Parameters
        ----------
        config
            Provisioner configuration.

        Yields
        ------
        Factory
            Newly-created factory, closed on exit.
        """
        factory = await cls.create(config)
        async with aclosing(factory):
            yield factory

    def __init__(
        self, config: Config, api_client: ApiClient, logger: BoundLogger
    ) -> None:
        self._config = config
        self._api_client = api_client
        self._logger = logger

    async def aclose(self) -> None:
        """Close the Kubernetes API client shared by created components."""
        await self._api_client.close()

    def create_automount_merger(self) -> AutomountMerger:
        """Create the service that mounts labeled objects into workspaces.

        Returns
        -------
        AutomountMerger
            Newly-created automount merger.
        """
        store = self.create_cluster_store()
        gitconfig = GitConfigProvisioner(
            store, self.create_sync_engine(), self._logger
        )
        return AutomountMerger(
            store,
            gitconfig,
            request_timeout=self._config.request_timeout,
            logger=self._logger,
        )

    def create_cluster_store(self) -> ClusterObjectStore:
        """Create the Kubernetes storage layer for all handled kinds.

        Returns
        -------
        ClusterObjectStore
            Newly-created cluster object store.
        """
        return ClusterObjectStore(self._api_client, self._logger)

    def create_namespace_config_reader(self) -> NamespaceConfigReader:
        """Create the reader for per-namespace overrides.

        Returns
        -------
        NamespaceConfigReader
            Newly-created reader.
        """
        return NamespaceConfigReader(self.create_cluster_store(), self._logger)

    def create_pod_inspector(self) -> PodInspector:
        """Create the service that looks for unrecoverable pod failures.

        Returns
        -------
        PodInspector
            Newly-created pod inspector.
        """
        return PodInspector(
            self.create_cluster_store(),
            ignored_reasons=self._config.ignored_unrecoverable_events,
            logger=self._logger,
        )

    def create_storage_selector(self) -> StorageStrategySelector:
        """Create the selector of storage provisioners.

        Returns
        -------
        StorageStrategySelector
            Newly-created selector with one provisioner per strategy.
        """
        store = self.create_cluster_store()
        sync = self.create_sync_engine()
        namespace_config = NamespaceConfigReader(store, self._logger)
        cleanup = CleanupJobRunner(
            sync,
            PodInspector(
                store,
                ignored_reasons=self._config.ignored_unrecoverable_events,
                logger=self._logger,
            ),
            image=self._config.images.cleanup_job,
            logger=self._logger,
        )
        return StorageStrategySelector(
            common=CommonStorageProvisioner(
                config=self._config,
                store=store,
                sync=sync,
                namespace_config=namespace_config,
                cleanup=cleanup,
                logger=self._logger,
            ),
            per_workspace=PerWorkspaceStorageProvisioner(
                config=self._config,
                store=store,
                sync=sync,
                namespace_config=namespace_config,
                logger=self._logger,
            ),
            async_storage=AsyncStorageProvisioner(
                config=self._config,
                store=store,
                sync=sync,
                namespace_config=namespace_config,
                cleanup=cleanup,
                logger=self._logger,
            ),
            ephemeral=EphemeralStorageProvisioner(
                config=self._config,
                store=store,
                sync=sync,
                namespace_config=namespace_config,
                logger=self._logger,
            ),
        )

    def create_sync_engine(self) -> SyncEngine:
        """Create the engine that converges objects with the cluster.

        Returns
        -------
        SyncEngine
            Newly-created sync engine.
        """
        return SyncEngine(
            self.create_cluster_store(),
            experimental_features=self._config.experimental_features,
            logger=self._logger,
        )

    def get_provisioner(self, workspace: Workspace) -> StorageProvisioner:
        """Return the storage provisioner for a workspace.

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
        return self.create_storage_selector().get_provisioner(workspace)

    def set_logger(self, logger: BoundLogger) -> None:
        """Replace the internal logger.

        Used to bind additional context, such as the workspace being
        provisioned, to the logger of all newly-created components.

        Parameters
        ----------
        logger
            New logger.
        """
        self._logger = logger

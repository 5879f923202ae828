"""Storage strategy syncing workspace volumes to a shared relay."""

from __future__ import annotations

from kubernetes_asyncio.client import V1ConfigMap, V1Deployment
from structlog.stdlib import BoundLogger

from ....config import Config
from ....constants import (
    ASYNC_AUTHORIZED_KEYS_CONFIGMAP,
    ASYNC_AUTHORIZED_KEYS_KEY,
    ASYNC_DEPLOYMENT_NAME,
    ASYNC_RETRY_INTERVAL,
    COMMON_PVC_TERMINATING_INTERVAL,
)
from ....exceptions import (
    FailError,
    NotInSyncError,
    RetryError,
    UnrecoverableSyncError,
    wrap_sync_error,
)
from ....models.domain.kubernetes import ClusterObject, ObjectKind
from ....models.domain.workspace import (
    PodAdditions,
    StorageType,
    Workspace,
    WorkspacePhase,
)
from ....storage.kubernetes.cluster import ClusterObjectStore
from ....timeout import Timeout
from ...namespace import NamespaceConfigReader, NamespacedConfig
from ...sync import SyncEngine
from ..base import StorageProvisioner
from ..cleanup import CleanupJobRunner
from ..common import find_shared_pvc
from ..pvc import build_pvc, compute_pvc_size
from ..volumes import (
    WorkspaceVolumes,
    add_ephemeral_volumes,
    check_volume_mounts,
    get_workspace_volumes,
)
from .relay import (
    add_authorized_key,
    build_authorized_keys,
    build_relay_deployment,
    build_relay_service,
    remove_authorized_key,
)
from .sidecar import build_sidecar, build_ssh_volume
from .ssh import (
    build_ssh_secret,
    generate_private_key,
    public_key_from_secret,
    ssh_secret_name,
)

__all__ = ["AsyncStorageProvisioner"]

_ASYNC_TYPES = frozenset({StorageType.ASYNC.value})
_ACTIVE_PHASES = frozenset({WorkspacePhase.RUNNING, WorkspacePhase.STARTING})


class AsyncStorageProvisioner(StorageProvisioner):
    """Keep workspace volumes in emptyDirs synced to a shared relay.

    The workspace pod uses only emptyDir volumes. A sidecar copies them over
    SSH to a relay deployment that stores them on the shared PVC of the
    namespace, and restores them when the workspace starts again. The relay
    serves one running workspace at a time.

    Provisioning is a handshake spread over several calls: each step that
    changes the cluster raises `~provisioner.exceptions.RetryError`, and the
    next call starts again from the beginning.

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
        await self._check_single_workspace(workspace, timeout)

        pvc_name, pvc = await find_shared_pvc(
            self._store, self._config.storage, namespace, timeout
        )
        if pvc and pvc.metadata.deletion_timestamp:
            raise RetryError(
                f"Shared PVC {pvc_name} is being deleted",
                requeue_after=COMMON_PVC_TERMINATING_INTERVAL,
            )

        # Key pair and authorized keys.
        secret_name = ssh_secret_name(workspace)
        secret = await self._store.get(
            ObjectKind.SECRET, namespace, secret_name, timeout
        )
        if not secret:
            self._logger.info(
                "Generating SSH key for async storage",
                name=secret_name,
                namespace=namespace,
                workspace=workspace.name,
            )
            secret = build_ssh_secret(workspace, generate_private_key())
            await self._ensure_then_wait(secret, timeout)
        public_key = public_key_from_secret(secret)
        await self._authorize_key(namespace, public_key, timeout)

        # Relay storage and server.
        namespace_config = await self._namespace_config.read(
            namespace, timeout
        )
        storage = self._config.storage
        default = namespace_config.common_pvc_size or storage.common_size
        size = compute_pvc_size(volumes.persistent, default)
        desired_pvc = build_pvc(
            pvc_name,
            namespace,
            size,
            storage_class=self._config.storage.storage_class_name,
        )
        await self._ensure_then_wait(desired_pvc, timeout)
        deployment = self._build_deployment(
            namespace, pvc_name, namespace_config
        )
        cluster_deployment = await self._ensure_then_wait(deployment, timeout)
        status = cluster_deployment.status
        if not status or not status.ready_replicas:
            raise RetryError(
                "Waiting for async storage server deployment to be ready",
                requeue_after=ASYNC_RETRY_INTERVAL,
            )
        await self._ensure_then_wait(build_relay_service(namespace), timeout)

        self._add_to_pod(pod_additions, volumes, secret_name)

    async def cleanup_workspace_storage(self, workspace: Workspace) -> None:
        if not self.needs_storage(workspace.template):
            return
        timeout = self._timeout()
        namespace = workspace.namespace
        pvc_name, pvc = await find_shared_pvc(
            self._store, self._config.storage, namespace, timeout
        )
        namespace_config = await self._namespace_config.read(
            namespace, timeout
        )

        # The relay must release the PVC before the cleanup Job can mount it.
        relay = await self._store.get(
            ObjectKind.DEPLOYMENT, namespace, ASYNC_DEPLOYMENT_NAME, timeout
        )
        if relay:
            scaled_down = self._build_deployment(
                namespace, pvc_name, namespace_config, replicas=0
            )
            relay = await self._ensure_then_wait(scaled_down, timeout)
            if relay.status and relay.status.replicas:
                raise RetryError(
                    "Waiting for async storage server to scale down",
                    requeue_after=ASYNC_RETRY_INTERVAL,
                )
        if pvc:
            await self._cleanup.run(
                workspace, pvc_name, namespace_config, timeout
            )
        await self._revoke_key(workspace, timeout)

        others = await self._list_other_workspaces(
            workspace, _ASYNC_TYPES, timeout
        )
        if not others:
            self._logger.info(
                "No workspaces use async storage, removing server",
                namespace=namespace,
                workspace=workspace.name,
            )
            service = build_relay_service(namespace)
            await self._store.delete(service, timeout)
            if relay:
                await self._store.delete(relay, timeout)
        elif relay:
            scaled_up = self._build_deployment(
                namespace, pvc_name, namespace_config
            )
            try:
                await self._sync.sync(scaled_up, timeout)
            except NotInSyncError:
                self._logger.info(
                    "Scaled async storage server back up",
                    name=ASYNC_DEPLOYMENT_NAME,
                    namespace=namespace,
                )

    def _add_to_pod(
        self,
        pod_additions: PodAdditions,
        volumes: WorkspaceVolumes,
        secret_name: str,
    ) -> None:
        # Persistent volumes live in emptyDirs synced by the sidecar.
        add_ephemeral_volumes(pod_additions, volumes.persistent)
        if secret_name not in pod_additions.volume_names():
            pod_additions.volumes.append(build_ssh_volume(secret_name))
        sidecar = build_sidecar(
            self._config.images.async_sidecar, secret_name, volumes.all
        )
        if all(c.name != sidecar.name for c in pod_additions.containers):
            pod_additions.containers.append(sidecar)

    async def _authorize_key(
        self, namespace: str, public_key: str, timeout: Timeout
    ) -> None:
        configmap: V1ConfigMap | None = await self._store.get(
            ObjectKind.CONFIG_MAP,
            namespace,
            ASYNC_AUTHORIZED_KEYS_CONFIGMAP,
            timeout,
        )
        current = ""
        if configmap:
            current = (configmap.data or {}).get(ASYNC_AUTHORIZED_KEYS_KEY, "")
        keys = add_authorized_key(current, public_key)
        if keys is not None:
            desired = build_authorized_keys(namespace, keys)
            await self._ensure_then_wait(desired, timeout)

    def _build_deployment(
        self,
        namespace: str,
        pvc_name: str,
        namespace_config: NamespacedConfig,
        *,
        replicas: int = 1,
    ) -> V1Deployment:
        return build_relay_deployment(
            namespace,
            pvc_name,
            self._config.images.async_server,
            namespace_config,
            replicas=replicas,
        )

    async def _check_single_workspace(
        self, workspace: Workspace, timeout: Timeout
    ) -> None:
        others = await self._list_other_workspaces(
            workspace, _ASYNC_TYPES, timeout
        )
        for other in others:
            if other.phase in _ACTIVE_PHASES:
                msg = (
                    "async storage does not support running more than one"
                    f" workspace at a time (workspace '{other.name}' is"
                    " running)"
                )
                raise FailError(msg)

    async def _ensure_then_wait(
        self, desired: ClusterObject, timeout: Timeout
    ) -> ClusterObject:
        """Sync an object, waiting briefly before retrying if it changed."""
        try:
            return await self._sync.sync(desired, timeout)
        except NotInSyncError as e:
            raise RetryError(
                str(e), requeue_after=ASYNC_RETRY_INTERVAL
            ) from e
        except UnrecoverableSyncError as e:
            raise wrap_sync_error(e) from e

    async def _revoke_key(
        self, workspace: Workspace, timeout: Timeout
    ) -> None:
        namespace = workspace.namespace
        secret = await self._store.get(
            ObjectKind.SECRET, namespace, ssh_secret_name(workspace), timeout
        )
        if not secret:
            return
        configmap = await self._store.get(
            ObjectKind.CONFIG_MAP,
            namespace,
            ASYNC_AUTHORIZED_KEYS_CONFIGMAP,
            timeout,
        )
        if not configmap:
            return
        current = (configmap.data or {}).get(ASYNC_AUTHORIZED_KEYS_KEY, "")
        keys = remove_authorized_key(current, public_key_from_secret(secret))
        if keys is not None:
            desired = build_authorized_keys(namespace, keys)
            await self._ensure_then_wait(desired, timeout)

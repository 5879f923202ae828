"""Collection of automounted objects into pod resources."""

from __future__ import annotations

from datetime import timedelta

from kubernetes_asyncio.client import V1Volume, V1VolumeMount
from structlog.stdlib import BoundLogger

from ...constants import AUTOMOUNT_LABEL, GITCONFIG_MOUNT_PATH
from ...exceptions import FailError
from ...models.domain.automount import AutomountResources
from ...models.domain.kubernetes import ObjectKind
from ...models.domain.workspace import PodAdditions
from ...storage.kubernetes.cluster import ClusterObjectStore
from ...timeout import Timeout
from .common import (
    build_configmap_resources,
    build_secret_resources,
    describe_volume,
)
from .gitconfig import GENERATED_OBJECT_NAMES, GitConfigProvisioner
from .projected import merge_projected_volumes
from .pvcs import build_pvc_resources

__all__ = ["AutomountMerger"]


class AutomountMerger:
    """Mount labeled ConfigMaps, Secrets, and PVCs into workspace pods.

    Parameters
    ----------
    store
        Cluster object store.
    gitconfig
        Provisioner for the generated git configuration.
    request_timeout
        Total time allowed for the Kubernetes calls of one collection.
    logger
        Logger to use.
    """

    def __init__(
        self,
        store: ClusterObjectStore,
        gitconfig: GitConfigProvisioner,
        *,
        request_timeout: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._store = store
        self._gitconfig = gitconfig
        self._request_timeout = request_timeout
        self._logger = logger

    async def collect_automount_resources(
        self, namespace: str
    ) -> AutomountResources:
        """Build the resources for every automounted object in a namespace.

        All labeled objects are read and validated before the generated git
        configuration is synced, so that invalid annotations are reported
        without changing the cluster.

        Parameters
        ----------
        namespace
            Namespace of the workspace.

        Returns
        -------
        AutomountResources
            Volumes, mounts, and environment sources to add to the pod.

        Raises
        ------
        FailError
            Raised if an automounted object is misconfigured or if two
            automounted objects cannot share their mount path.
        RetryError
            Raised if the generated git configuration changed.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = Timeout(self._request_timeout)
        selector = f"{AUTOMOUNT_LABEL}=true"
        configmaps = await self._store.list(
            ObjectKind.CONFIG_MAP, namespace, timeout, label_selector=selector
        )
        secrets = await self._store.list(
            ObjectKind.SECRET, namespace, timeout, label_selector=selector
        )
        collected = AutomountResources()
        for configmap in sorted(configmaps, key=lambda c: c.metadata.name):
            if configmap.metadata.name not in GENERATED_OBJECT_NAMES:
                collected.extend(build_configmap_resources(configmap))
        for secret in sorted(secrets, key=lambda s: s.metadata.name):
            if secret.metadata.name not in GENERATED_OBJECT_NAMES:
                collected.extend(build_secret_resources(secret))

        git = await self._gitconfig.build(namespace, timeout)
        if git:
            _remove_gitconfig_mount(collected)
        merged = merge_projected_volumes(collected)

        pvcs = await self._store.list(
            ObjectKind.PERSISTENT_VOLUME_CLAIM,
            namespace,
            timeout,
            label_selector=selector,
        )
        pvc_resources = [
            build_pvc_resources(p)
            for p in sorted(pvcs, key=lambda p: p.metadata.name)
        ]

        result = AutomountResources.merge(
            [git.resources if git else AutomountResources(), merged]
            + pvc_resources
        )
        _check_automount_paths(result)
        await self._gitconfig.sync(namespace, git, timeout)
        self._logger.debug(
            "Collected automount resources",
            namespace=namespace,
            volumes=[v.name for v in result.volumes],
        )
        return result

    def check_collisions(
        self, resources: AutomountResources, pod_additions: PodAdditions
    ) -> None:
        """Check automount resources against what the workspace declares.

        Parameters
        ----------
        resources
            Resources collected for automounted objects.
        pod_additions
            Pod contributions of the workspace, including its storage.

        Raises
        ------
        FailError
            Raised if an automounted volume has the name of a workspace
            volume, if two automounted volumes share a mount path, or if an
            automounted volume would be mounted at a path a workspace
            container already uses.
        """
        by_name = {v.name: v for v in resources.volumes}
        for volume in pod_additions.volumes:
            if conflict := by_name.get(volume.name):
                msg = (
                    f"DevWorkspace volume '{volume.name}' conflicts with"
                    f" automounted volume from {describe_volume(conflict)}"
                )
                raise FailError(msg)

        by_path = _check_automount_paths(resources)
        containers = pod_additions.containers + pod_additions.init_containers
        for container in containers:
            for mount in container.volume_mounts or []:
                if conflict := by_path.get(mount.mount_path):
                    ours = _describe_mount(mount, pod_additions.volumes)
                    theirs = _describe_mount(conflict, resources.volumes)
                    msg = (
                        f"DevWorkspace volume {ours} in container"
                        f" {container.name} has same mountpath as auto-mounted"
                        f" volume from {theirs}"
                    )
                    raise FailError(msg)

    def apply_to_pod_additions(
        self, resources: AutomountResources, pod_additions: PodAdditions
    ) -> None:
        """Add automount resources to the pod contributions of a workspace.

        Every container and init container gets every mount and environment
        source.

        Parameters
        ----------
        resources
            Resources collected for automounted objects.
        pod_additions
            Pod contributions to modify in place.

        Raises
        ------
        FailError
            Raised if the resources collide with the workspace.
        """
        self.check_collisions(resources, pod_additions)
        containers = pod_additions.containers + pod_additions.init_containers
        for container in containers:
            mounts = container.volume_mounts or []
            container.volume_mounts = mounts + list(resources.volume_mounts)
            env_from = container.env_from or []
            container.env_from = env_from + list(resources.env_from)
        pod_additions.volumes.extend(resources.volumes)
        pod_additions.validate()


def _check_automount_paths(
    resources: AutomountResources,
) -> dict[str, V1VolumeMount]:
    by_path: dict[str, V1VolumeMount] = {}
    for mount in resources.volume_mounts:
        if conflict := by_path.get(mount.mount_path):
            first = _describe_mount(mount, resources.volumes)
            second = _describe_mount(conflict, resources.volumes)
            msg = (
                f"auto-mounted volumes from {first} and {second} have the"
                " same mount path"
            )
            raise FailError(msg)
        by_path[mount.mount_path] = mount
    return by_path


def _describe_mount(mount: V1VolumeMount, volumes: list[V1Volume]) -> str:
    for volume in volumes:
        if volume.name == mount.name:
            return describe_volume(volume)
    return mount.name


def _remove_gitconfig_mount(resources: AutomountResources) -> None:
    """Drop the administrator gitconfig, which is merged into ours."""
    removed = {
        m.name
        for m in resources.volume_mounts
        if m.mount_path == GITCONFIG_MOUNT_PATH
    }
    if not removed:
        return
    resources.volume_mounts = [
        m
        for m in resources.volume_mounts
        if m.mount_path != GITCONFIG_MOUNT_PATH
    ]
    still_used = {m.name for m in resources.volume_mounts}
    resources.volumes = [
        v
        for v in resources.volumes
        if v.name not in removed or v.name in still_used
    ]

"""Helpers for the logical volumes declared by a workspace."""

from __future__ import annotations

from dataclasses import dataclass, field

from kubernetes_asyncio.client import (
    V1EmptyDirVolumeSource,
    V1PersistentVolumeClaimVolumeSource,
    V1Volume,
    V1VolumeMount,
)

from ...constants import PROJECTS_VOLUME_NAME
from ...exceptions import FailError
from ...models.domain.workspace import (
    Component,
    PodAdditions,
    VolumeComponent,
    WorkspaceTemplate,
)
from ...units import quantity_to_bytes

__all__ = [
    "WorkspaceVolumes",
    "add_ephemeral_volumes",
    "check_volume_mounts",
    "get_workspace_volumes",
    "rewrite_volume_mounts",
]


@dataclass
class WorkspaceVolumes:
    """Volumes of a workspace, split by how they are stored."""

    persistent: list[Component] = field(default_factory=list)
    """Volumes backed by a PVC, including the projects volume if it is."""

    ephemeral: list[Component] = field(default_factory=list)
    """Volumes backed by an emptyDir."""

    @property
    def all(self) -> list[Component]:
        """All volumes, persistent first."""
        return self.persistent + self.ephemeral

    def names(self) -> set[str]:
        """Names of all volumes."""
        return {v.name for v in self.all}


def get_workspace_volumes(template: WorkspaceTemplate) -> WorkspaceVolumes:
    """Split the volumes of a template into persistent and ephemeral.

    If a container mounts the project sources and the template does not
    declare a ``projects`` volume, an implicit persistent one is added.

    Parameters
    ----------
    template
        Flattened workspace template.

    Returns
    -------
    WorkspaceVolumes
        Volumes of the workspace.

    Raises
    ------
    FailError
        Raised if two volume components share a name.
    """
    result = WorkspaceVolumes()
    seen: set[str] = set()
    for component in template.volumes:
        if component.name in seen:
            msg = f"volume component '{component.name}' is defined twice"
            raise FailError(msg)
        seen.add(component.name)
        if component.volume and component.volume.ephemeral:
            result.ephemeral.append(component)
        else:
            result.persistent.append(component)
    if template.mounts_sources() and PROJECTS_VOLUME_NAME not in seen:
        projects = Component(
            name=PROJECTS_VOLUME_NAME, volume=VolumeComponent()
        )
        result.persistent.append(projects)
    return result


def _empty_dir(component: Component) -> V1Volume:
    size = component.volume.size if component.volume else None
    if size:
        try:
            quantity_to_bytes(size)
        except ValueError as e:
            msg = f"failed to parse size for volume '{component.name}': {size}"
            raise FailError(msg, cause=e) from e
    return V1Volume(
        name=component.name,
        empty_dir=V1EmptyDirVolumeSource(size_limit=size or None),
    )


def add_ephemeral_volumes(
    pod_additions: PodAdditions, volumes: list[Component]
) -> None:
    """Add emptyDir volumes to the pod.

    Volumes already present in the pod are left alone, so this may be called
    again on retry.

    Parameters
    ----------
    pod_additions
        Pod contributions to modify.
    volumes
        Volume components to back with emptyDir.

    Raises
    ------
    FailError
        Raised if a volume size is not a valid quantity.
    """
    existing = pod_additions.volume_names()
    new = [_empty_dir(v) for v in volumes if v.name not in existing]
    pod_additions.volumes.extend(new)


def check_volume_mounts(
    pod_additions: PodAdditions, volumes: WorkspaceVolumes
) -> None:
    """Check that every container mount references a known volume.

    Parameters
    ----------
    pod_additions
        Pod contributions whose containers are checked.
    volumes
        Volumes of the workspace.

    Raises
    ------
    FailError
        Raised if a mount references a volume that is neither a workspace
        volume nor already in the pod.
    """
    known = volumes.names() | pod_additions.volume_names()
    for container in pod_additions.containers + pod_additions.init_containers:
        for mount in container.volume_mounts or []:
            if mount.name not in known:
                msg = (
                    f"container '{container.name}' references undefined"
                    f" volume '{mount.name}'"
                )
                raise FailError(msg)


def rewrite_volume_mounts(
    pod_additions: PodAdditions,
    volumes: WorkspaceVolumes,
    pvc_name: str,
    subpath_prefix: str = "",
) -> None:
    """Point mounts of persistent volumes at subpaths of one PVC.

    Each mount of a persistent volume is renamed to the PVC volume and given
    a ``subPath`` of the prefix followed by the logical volume name. Mounts
    of volumes already in the pod are left alone. The PVC volume is added to
    the pod if it is not already present.

    Parameters
    ----------
    pod_additions
        Pod contributions to modify.
    volumes
        Volumes of the workspace.
    pvc_name
        Name of the PVC, also used as the name of the pod volume.
    subpath_prefix
        Prefix of every subpath, such as the workspace ID and a slash.

    Raises
    ------
    FailError
        Raised if a mount references an undefined volume.
    """
    check_volume_mounts(pod_additions, volumes)
    persistent = {v.name for v in volumes.persistent}
    persistent -= pod_additions.volume_names()
    for container in pod_additions.containers + pod_additions.init_containers:
        mounts: list[V1VolumeMount] = container.volume_mounts or []
        for mount in mounts:
            if mount.name in persistent:
                mount.sub_path = f"{subpath_prefix}{mount.name}"
                mount.name = pvc_name
    if pvc_name not in pod_additions.volume_names():
        source = V1PersistentVolumeClaimVolumeSource(claim_name=pvc_name)
        volume = V1Volume(name=pvc_name, persistent_volume_claim=source)
        pod_additions.volumes.append(volume)

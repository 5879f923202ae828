"""Merging of automounted volumes that share a mount path."""

from __future__ import annotations

from collections import defaultdict

from kubernetes_asyncio.client import (
    V1ConfigMapProjection,
    V1ProjectedVolumeSource,
    V1SecretProjection,
    V1Volume,
    V1VolumeMount,
    V1VolumeProjection,
)

from ...constants import DEFAULT_ACCESS_MODE
from ...exceptions import FailError
from ...models.domain.automount import AutomountResources
from .common import describe_volume, drop_volume_items, projected_volume_name

__all__ = ["merge_projected_volumes"]


def merge_projected_volumes(
    resources: AutomountResources,
) -> AutomountResources:
    """Replace volumes mounted at the same path with one projected volume.

    Two volumes cannot be mounted at the same path, but ConfigMaps and
    Secrets mounted as whole directories can be combined into a single
    projected volume. Explicit items are dropped from every ConfigMap or
    Secret volume that is not merged.

    Parameters
    ----------
    resources
        Resources collected from automounted ConfigMaps and Secrets.

    Returns
    -------
    AutomountResources
        New resources in which every mount path is used at most once.
        Environment sources are passed through unchanged.

    Raises
    ------
    FailError
        Raised if mounts sharing a path cannot be merged because one of them
        uses a subpath or mounts a PVC.
    """
    volumes = {v.name: v for v in resources.volumes}
    by_path: defaultdict[str, list[V1VolumeMount]] = defaultdict(list)
    for mount in resources.volume_mounts:
        by_path[mount.mount_path].append(mount)

    result = AutomountResources(env_from=list(resources.env_from))
    kept: dict[str, V1Volume] = {}
    for path in sorted(by_path):
        mounts = by_path[path]
        if len(mounts) == 1:
            mount = mounts[0]
            result.volume_mounts.append(mount)
            if mount.name in volumes:
                kept.setdefault(mount.name, volumes[mount.name])
            continue
        _check_can_project(mounts, volumes)
        sources = [volumes[m.name] for m in mounts]
        volume = _build_projected_volume(path, sources)
        result.volumes.append(volume)
        result.volume_mounts.append(
            V1VolumeMount(name=volume.name, mount_path=path, read_only=True)
        )

    unmerged = list(kept.values())
    drop_volume_items(unmerged)
    result.volumes = unmerged + result.volumes
    return result


def _build_projected_volume(path: str, sources: list[V1Volume]) -> V1Volume:
    projections = []
    modes = set()
    for volume in sources:
        if volume.config_map:
            modes.add(volume.config_map.default_mode)
            projection = V1VolumeProjection(
                config_map=V1ConfigMapProjection(
                    name=volume.config_map.name,
                    items=volume.config_map.items,
                )
            )
        else:
            modes.add(volume.secret.default_mode)
            projection = V1VolumeProjection(
                secret=V1SecretProjection(
                    name=volume.secret.secret_name,
                    items=volume.secret.items,
                )
            )
        projections.append(projection)

    # ConfigMaps first, then by name, so the pod spec is stable.
    projections.sort(
        key=lambda p: (
            (0, p.config_map.name) if p.config_map else (1, p.secret.name)
        )
    )
    mode = modes.pop() if len(modes) == 1 else DEFAULT_ACCESS_MODE
    return V1Volume(
        name=projected_volume_name(path),
        projected=V1ProjectedVolumeSource(
            default_mode=mode if mode is not None else DEFAULT_ACCESS_MODE,
            sources=projections,
        ),
    )


def _check_can_project(
    mounts: list[V1VolumeMount], volumes: dict[str, V1Volume]
) -> None:
    can_project = True
    for mount in mounts:
        if mount.sub_path or mount.sub_path_expr:
            can_project = False
        volume = volumes[mount.name]
        if not (volume.config_map or volume.secret):
            can_project = False
    if not can_project:
        names = ", ".join(describe_volume(volumes[m.name]) for m in mounts)
        msg = f"auto-mounted volumes from ({names}) have the same mount path"
        raise FailError(msg)

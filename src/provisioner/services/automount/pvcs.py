"""Construction of pod resources for automounted PVCs."""

from __future__ import annotations

import posixpath

from kubernetes_asyncio.client import (
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimVolumeSource,
    V1Volume,
    V1VolumeMount,
)

from ...constants import MOUNT_PATH_ANNOTATION, READ_ONLY_ANNOTATION
from ...models.domain.automount import AutomountResources
from .common import automount_volume_name

__all__ = ["build_pvc_resources"]


def build_pvc_resources(pvc: V1PersistentVolumeClaim) -> AutomountResources:
    """Build the pod resources for an automounted PVC.

    The PVC is mounted at the path given by its mount path annotation, or
    under ``/tmp`` by default, and is read-only if annotated as such.
    """
    name = pvc.metadata.name
    annotations = pvc.metadata.annotations or {}
    mount_path = annotations.get(MOUNT_PATH_ANNOTATION) or posixpath.join(
        "/tmp", name
    )
    read_only = annotations.get(READ_ONLY_ANNOTATION) == "true"
    volume = V1Volume(
        name=automount_volume_name("pvc", name),
        persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
            claim_name=name, read_only=read_only
        ),
    )
    mount = V1VolumeMount(name=volume.name, mount_path=mount_path)
    return AutomountResources(volumes=[volume], volume_mounts=[mount])

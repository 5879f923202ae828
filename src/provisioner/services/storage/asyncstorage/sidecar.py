"""Sidecar that syncs async workspace volumes with the relay."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1Container,
    V1ContainerPort,
    V1EnvVar,
    V1ExecAction,
    V1Lifecycle,
    V1LifecycleHandler,
    V1ResourceRequirements,
    V1SecretVolumeSource,
    V1Volume,
    V1VolumeMount,
)

from ....constants import (
    ASYNC_SERVER_PORT,
    ASYNC_SIDECAR_CONTAINER_NAME,
    ASYNC_SIDECAR_MEMORY_LIMIT,
    ASYNC_SIDECAR_MEMORY_REQUEST,
    ASYNC_SIDECAR_PORT,
    ASYNC_SSH_MOUNT_PATH,
)
from ....models.domain.workspace import Component

__all__ = ["build_sidecar", "build_ssh_volume"]


def build_ssh_volume(secret_name: str) -> V1Volume:
    """Construct the pod volume holding the SSH private key.

    Parameters
    ----------
    secret_name
        Name of the Secret holding the key, also used as the volume name.

    Returns
    -------
    kubernetes_asyncio.client.V1Volume
        Volume to add to the workspace pod.
    """
    return V1Volume(
        name=secret_name,
        secret=V1SecretVolumeSource(
            secret_name=secret_name, default_mode=0o600
        ),
    )


def build_sidecar(
    image: str, secret_name: str, volumes: list[Component]
) -> V1Container:
    """Construct the sidecar container.

    Parameters
    ----------
    image
        Sidecar image.
    secret_name
        Name of the Secret and pod volume holding the SSH private key.
    volumes
        Workspace volumes to sync, each mounted at ``/<name>``.

    Returns
    -------
    kubernetes_asyncio.client.V1Container
        Container to add to the workspace pod.
    """
    mounts = [
        V1VolumeMount(
            name=secret_name, mount_path=ASYNC_SSH_MOUNT_PATH, read_only=True
        )
    ]
    mounts.extend(
        V1VolumeMount(name=v.name, mount_path=f"/{v.name}") for v in volumes
    )
    return V1Container(
        name=ASYNC_SIDECAR_CONTAINER_NAME,
        image=image,
        image_pull_policy="Always",
        env=[V1EnvVar(name="RSYNC_PORT", value=str(ASYNC_SERVER_PORT))],
        ports=[
            V1ContainerPort(
                name="rsync-port",
                container_port=ASYNC_SIDECAR_PORT,
                protocol="TCP",
            )
        ],
        volume_mounts=mounts,
        resources=V1ResourceRequirements(
            requests={"memory": ASYNC_SIDECAR_MEMORY_REQUEST},
            limits={"memory": ASYNC_SIDECAR_MEMORY_LIMIT},
        ),
        lifecycle=V1Lifecycle(
            pre_stop=V1LifecycleHandler(
                _exec=V1ExecAction(
                    command=["/bin/sh", "-c", "/scripts/backup.sh"]
                )
            )
        ),
    )

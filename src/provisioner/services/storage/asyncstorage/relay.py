"""Objects making up the async storage relay of a namespace.

The relay is a single-replica deployment running an SSH server that stores
the data of async workspaces on the shared PVC. Workspace sidecars copy
their volumes to and from it with rsync.
"""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1ConfigMap,
    V1ConfigMapVolumeSource,
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStrategy,
    V1LabelSelector,
    V1ObjectMeta,
    V1PersistentVolumeClaimVolumeSource,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1Volume,
    V1VolumeMount,
)

from ....constants import (
    ASYNC_AUTHORIZED_KEYS_CONFIGMAP,
    ASYNC_AUTHORIZED_KEYS_KEY,
    ASYNC_DEPLOYMENT_NAME,
    ASYNC_SERVER_CONTAINER_NAME,
    ASYNC_SERVER_MOUNT_PATH,
    ASYNC_SERVER_PORT,
    ASYNC_SERVICE_NAME,
    COMPONENT_LABEL,
    DEFAULT_ACCESS_MODE,
)
from ...namespace import NamespacedConfig

__all__ = [
    "RELAY_LABELS",
    "add_authorized_key",
    "build_authorized_keys",
    "build_relay_deployment",
    "build_relay_service",
    "remove_authorized_key",
]

RELAY_LABELS = {COMPONENT_LABEL: ASYNC_DEPLOYMENT_NAME}
"""Labels selecting the relay pods."""

_AUTHORIZED_KEYS_VOLUME = "async-storage-config"
_STORAGE_VOLUME = "async-storage-data"


def build_authorized_keys(namespace: str, keys: str) -> V1ConfigMap:
    """Construct the ConfigMap of keys the relay accepts.

    Parameters
    ----------
    namespace
        Namespace of the relay.
    keys
        Contents of the ``authorized_keys`` file.

    Returns
    -------
    kubernetes_asyncio.client.V1ConfigMap
        ConfigMap to create.
    """
    return V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=V1ObjectMeta(
            name=ASYNC_AUTHORIZED_KEYS_CONFIGMAP, namespace=namespace
        ),
        data={ASYNC_AUTHORIZED_KEYS_KEY: keys},
    )


def add_authorized_key(keys: str, public_key: str) -> str | None:
    """Add a public key to the contents of an ``authorized_keys`` file.

    Parameters
    ----------
    keys
        Current contents, possibly empty.
    public_key
        Key to add, without trailing newline.

    Returns
    -------
    str or None
        New contents, or `None` if the key is already present.
    """
    lines = keys.splitlines()
    if public_key.strip() in (line.strip() for line in lines):
        return None
    return "".join(f"{line}\n" for line in [*lines, public_key.strip()])


def remove_authorized_key(keys: str, public_key: str) -> str | None:
    """Remove a public key from the contents of an ``authorized_keys`` file.

    Parameters
    ----------
    keys
        Current contents.
    public_key
        Key to remove.

    Returns
    -------
    str or None
        New contents, or `None` if the key was not present.
    """
    lines = keys.splitlines()
    kept = [line for line in lines if line.strip() != public_key.strip()]
    if len(kept) == len(lines):
        return None
    return "".join(f"{line}\n" for line in kept)


def build_relay_deployment(
    namespace: str,
    pvc_name: str,
    image: str,
    namespace_config: NamespacedConfig,
    *,
    replicas: int = 1,
) -> V1Deployment:
    """Construct the relay deployment.

    Parameters
    ----------
    namespace
        Namespace of the relay.
    pvc_name
        Name of the shared PVC holding workspace data.
    image
        Relay image.
    namespace_config
        Overrides for the namespace, for tolerations and node selector.
    replicas
        Number of replicas, which is zero only while a workspace's data is
        being removed from the PVC.

    Returns
    -------
    kubernetes_asyncio.client.V1Deployment
        Deployment to sync.
    """
    container = V1Container(
        name=ASYNC_SERVER_CONTAINER_NAME,
        image=image,
        ports=[
            V1ContainerPort(
                name="rsync-port",
                container_port=ASYNC_SERVER_PORT,
                protocol="TCP",
            )
        ],
        volume_mounts=[
            V1VolumeMount(
                name=_STORAGE_VOLUME, mount_path=ASYNC_SERVER_MOUNT_PATH
            ),
            V1VolumeMount(
                name=_AUTHORIZED_KEYS_VOLUME,
                mount_path=f"/.ssh/{ASYNC_AUTHORIZED_KEYS_KEY}",
                sub_path=ASYNC_AUTHORIZED_KEYS_KEY,
                read_only=True,
            ),
        ],
    )
    volumes = [
        V1Volume(
            name=_STORAGE_VOLUME,
            persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                claim_name=pvc_name
            ),
        ),
        V1Volume(
            name=_AUTHORIZED_KEYS_VOLUME,
            config_map=V1ConfigMapVolumeSource(
                name=ASYNC_AUTHORIZED_KEYS_CONFIGMAP,
                default_mode=DEFAULT_ACCESS_MODE,
            ),
        ),
    ]
    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(
            name=ASYNC_DEPLOYMENT_NAME,
            namespace=namespace,
            labels=dict(RELAY_LABELS),
        ),
        spec=V1DeploymentSpec(
            replicas=replicas,
            selector=V1LabelSelector(match_labels=dict(RELAY_LABELS)),
            strategy=V1DeploymentStrategy(type="Recreate"),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=dict(RELAY_LABELS)),
                spec=V1PodSpec(
                    containers=[container],
                    volumes=volumes,
                    tolerations=namespace_config.to_tolerations(),
                    node_selector=namespace_config.node_selector or None,
                ),
            ),
        ),
    )


def build_relay_service(namespace: str) -> V1Service:
    """Construct the Service in front of the relay.

    Parameters
    ----------
    namespace
        Namespace of the relay.

    Returns
    -------
    kubernetes_asyncio.client.V1Service
        Service to sync.
    """
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=V1ObjectMeta(
            name=ASYNC_SERVICE_NAME,
            namespace=namespace,
            labels=dict(RELAY_LABELS),
        ),
        spec=V1ServiceSpec(
            selector=dict(RELAY_LABELS),
            ports=[
                V1ServicePort(
                    name="rsync-port",
                    port=ASYNC_SERVER_PORT,
                    target_port=ASYNC_SERVER_PORT,
                    protocol="TCP",
                )
            ],
        ),
    )

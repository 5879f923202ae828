"""Kubernetes object kinds and helpers that work on any object form."""

from __future__ import annotations

from enum import Enum, StrEnum
from typing import Any, Protocol, Self

from kubernetes_asyncio.client import (
    CoreV1Event,
    V1ConfigMap,
    V1Deployment,
    V1Job,
    V1Namespace,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1Pod,
    V1Role,
    V1RoleBinding,
    V1Secret,
    V1Service,
    V1ServiceAccount,
    V1StorageClass,
)

__all__ = [
    "ClusterObject",
    "KubernetesModel",
    "ObjectKind",
    "PropagationPolicy",
    "object_annotations",
    "object_labels",
    "object_name",
    "object_namespace",
    "object_resource_version",
    "set_resource_version",
]


class KubernetesModel(Protocol):
    """Shape shared by the typed ``kubernetes_asyncio`` object models.

    The generated models are untyped, so this only records the two members
    the provisioner relies on.
    """

    metadata: V1ObjectMeta

    def to_dict(self, *, serialize: bool = False) -> dict[str, Any]: ...


type ClusterObject = KubernetesModel | dict[str, Any]
"""A Kubernetes object, either a typed model or a custom object dict."""


class ObjectKind(StrEnum):
    """Kinds of Kubernetes objects handled by the cluster object store."""

    CONFIG_MAP = "ConfigMap"
    DEPLOYMENT = "Deployment"
    EVENT = "Event"
    JOB = "Job"
    NAMESPACE = "Namespace"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    POD = "Pod"
    ROLE = "Role"
    ROLE_BINDING = "RoleBinding"
    ROUTING = "DevWorkspaceRouting"
    SECRET = "Secret"
    SERVICE = "Service"
    SERVICE_ACCOUNT = "ServiceAccount"
    STORAGE_CLASS = "StorageClass"
    WORKSPACE = "DevWorkspace"

    @classmethod
    def for_object(cls, obj: ClusterObject) -> Self:
        """Determine the kind of an object.

        Parameters
        ----------
        obj
            Typed Kubernetes model or custom object dict.

        Returns
        -------
        ObjectKind
            Kind of the object.

        Raises
        ------
        ValueError
            Raised if the object is of a kind not known to this package.
        """
        if isinstance(obj, dict):
            return cls(obj.get("kind", ""))
        for kind, model in _MODELS.items():
            if isinstance(obj, model):
                return cls(kind)
        raise ValueError(f"Unknown object type {type(obj).__name__}")

    @property
    def immutable(self) -> bool:
        """Whether objects of this kind cannot be changed once created."""
        return self == ObjectKind.PERSISTENT_VOLUME_CLAIM


_MODELS: dict[ObjectKind, type] = {
    ObjectKind.CONFIG_MAP: V1ConfigMap,
    ObjectKind.DEPLOYMENT: V1Deployment,
    ObjectKind.EVENT: CoreV1Event,
    ObjectKind.JOB: V1Job,
    ObjectKind.NAMESPACE: V1Namespace,
    ObjectKind.PERSISTENT_VOLUME_CLAIM: V1PersistentVolumeClaim,
    ObjectKind.POD: V1Pod,
    ObjectKind.ROLE: V1Role,
    ObjectKind.ROLE_BINDING: V1RoleBinding,
    ObjectKind.SECRET: V1Secret,
    ObjectKind.SERVICE: V1Service,
    ObjectKind.SERVICE_ACCOUNT: V1ServiceAccount,
    ObjectKind.STORAGE_CLASS: V1StorageClass,
}


class PropagationPolicy(Enum):
    """How dependents of a deleted object are cleaned up."""

    FOREGROUND = "Foreground"
    BACKGROUND = "Background"
    ORPHAN = "Orphan"


def object_name(obj: ClusterObject) -> str:
    """Return the name of a Kubernetes object."""
    if isinstance(obj, dict):
        return obj["metadata"]["name"]
    return obj.metadata.name


def object_namespace(obj: ClusterObject) -> str | None:
    """Return the namespace of a Kubernetes object, if any."""
    if isinstance(obj, dict):
        return obj["metadata"].get("namespace")
    return obj.metadata.namespace


def object_labels(obj: ClusterObject) -> dict[str, str]:
    """Return the labels of a Kubernetes object, empty if none are set."""
    if isinstance(obj, dict):
        return obj["metadata"].get("labels") or {}
    return obj.metadata.labels or {}


def object_annotations(obj: ClusterObject) -> dict[str, str]:
    """Return the annotations of a Kubernetes object, empty if none are set."""
    if isinstance(obj, dict):
        return obj["metadata"].get("annotations") or {}
    return obj.metadata.annotations or {}


def object_resource_version(obj: ClusterObject) -> str | None:
    """Return the resource version of a Kubernetes object, if known."""
    if isinstance(obj, dict):
        return obj["metadata"].get("resourceVersion")
    return obj.metadata.resource_version


def set_resource_version(obj: ClusterObject, version: str | None) -> None:
    """Set the resource version of a Kubernetes object.

    Used before an update so that the API server rejects the write with a
    conflict if the object changed since it was read.

    Parameters
    ----------
    obj
        Object to modify in place.
    version
        Resource version of the object as last read from the cluster.
    """
    if isinstance(obj, dict):
        obj["metadata"]["resourceVersion"] = version
    else:
        obj.metadata.resource_version = version

"""Construction of pod resources for automounted ConfigMaps and Secrets."""

from __future__ import annotations

import posixpath
import re

from kubernetes_asyncio.client import (
    V1ConfigMap,
    V1ConfigMapEnvSource,
    V1ConfigMapVolumeSource,
    V1EnvFromSource,
    V1KeyToPath,
    V1Secret,
    V1SecretEnvSource,
    V1SecretVolumeSource,
    V1Volume,
    V1VolumeMount,
)

from ...constants import (
    AUTOMOUNT_PREFIX,
    DEFAULT_ACCESS_MODE,
    KUBERNETES_NAME_LIMIT,
    MOUNT_ACCESS_MODE_ANNOTATION,
    MOUNT_AS_ANNOTATION,
    MOUNT_PATH_ANNOTATION,
    RESERVED_MOUNT_PATHS,
)
from ...exceptions import FailError
from ...models.domain.automount import AutomountResources, MountStyle

__all__ = [
    "automount_volume_name",
    "build_configmap_resources",
    "build_secret_resources",
    "check_automount_object",
    "describe_volume",
    "drop_volume_items",
    "parse_access_mode",
    "projected_volume_name",
]

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


def automount_volume_name(kind: str, name: str) -> str:
    """Name of the pod volume for an automounted object.

    Parameters
    ----------
    kind
        Short kind of the object: ``configmap``, ``secret``, or ``pvc``.
    name
        Name of the object.

    Returns
    -------
    str
        Volume name, truncated to the length Kubernetes allows.
    """
    volume_name = f"{AUTOMOUNT_PREFIX}-{kind}-{name}".lower()
    return volume_name[:KUBERNETES_NAME_LIMIT]


def projected_volume_name(mount_path: str) -> str:
    """Name of the projected volume merging everything at a mount path."""
    sanitized = _NON_ALPHANUMERIC.sub("-", mount_path.lower()).strip("-")
    return automount_volume_name("projected", sanitized)


def describe_volume(volume: V1Volume) -> str:
    """Describe the object behind a volume for error messages."""
    if volume.secret:
        return f"secret '{volume.secret.secret_name}'"
    if volume.config_map:
        return f"configmap '{volume.config_map.name}'"
    if volume.persistent_volume_claim:
        return f"pvc '{volume.persistent_volume_claim.claim_name}'"
    if volume.projected:
        sources = []
        for source in volume.projected.sources or []:
            if source.config_map:
                sources.append(f"configmap '{source.config_map.name}'")
            elif source.secret:
                sources.append(f"secret '{source.secret.name}'")
        if sources:
            return "projected volume of " + ", ".join(sources)
    return f"'{volume.name}'"


def check_automount_object(
    description: str, annotations: dict[str, str]
) -> None:
    """Reject automount annotations that can never produce a working pod.

    Parameters
    ----------
    description
        Kind and name of the object, such as ``configmap foo``.
    annotations
        Annotations of the object.

    Raises
    ------
    FailError
        Raised if an object mounted as environment variables also sets a
        mount path, or if an object mounted as files would be mounted at a
        path containing a colon or over a system directory.
    """
    style = MountStyle.from_annotation(annotations.get(MOUNT_AS_ANNOTATION))
    mount_path = annotations.get(MOUNT_PATH_ANNOTATION, "")
    match style:
        case MountStyle.ENV:
            if mount_path:
                msg = (
                    f"automatically mounted {description} should not define"
                    " a mount path if it is mounted as environment variables"
                )
                raise FailError(msg)
        case MountStyle.FILE:
            if not mount_path:
                return
            if not mount_path.endswith("/"):
                mount_path += "/"
            if ":" in mount_path:
                msg = (
                    f"automatically mounted {description} mount path cannot"
                    " contain ':'"
                )
                raise FailError(msg)
            if mount_path in RESERVED_MOUNT_PATHS:
                msg = (
                    f"automatically mounted {description} is mounted as files"
                    f" but collides with system path {mount_path} -- mount as"
                    " subpath instead"
                )
                raise FailError(msg)


def parse_access_mode(description: str, annotations: dict[str, str]) -> int:
    """Parse the access mode annotation of an automounted object.

    Parameters
    ----------
    description
        Kind and name of the object, for error messages.
    annotations
        Annotations of the object.

    Returns
    -------
    int
        Annotated file mode, or `~provisioner.constants.DEFAULT_ACCESS_MODE`
        if the annotation is not set.

    Raises
    ------
    FailError
        Raised if the annotation is not an integer between 0 and 0777. Both
        octal with a leading ``0o`` or ``0`` and decimal forms are accepted.
    """
    value = annotations.get(MOUNT_ACCESS_MODE_ANNOTATION)
    if not value:
        return DEFAULT_ACCESS_MODE
    try:
        if re.fullmatch(r"0[0-7]+", value):
            mode = int(value, 8)
        else:
            mode = int(value, 0)
    except ValueError as e:
        msg = f"invalid access mode annotation on {description}"
        raise FailError(msg, cause=e) from e
    if not 0 <= mode <= 0o777:
        msg = (
            f"invalid access mode annotation on {description}: value"
            f" '{value}' parsed to {mode:o} (octal)"
        )
        raise FailError(msg)
    return mode


def drop_volume_items(volumes: list[V1Volume]) -> None:
    """Remove explicit items from ConfigMap and Secret volumes.

    Without items, keys added to the object later appear in the pod without
    a change to the pod spec.
    """
    for volume in volumes:
        if volume.config_map:
            volume.config_map.items = None
        elif volume.secret:
            volume.secret.items = None


def build_configmap_resources(configmap: V1ConfigMap) -> AutomountResources:
    """Build the pod resources for an automounted ConfigMap.

    Parameters
    ----------
    configmap
        ConfigMap carrying the automount label.

    Returns
    -------
    AutomountResources
        Resources to add to the pod.

    Raises
    ------
    FailError
        Raised if the annotations of the ConfigMap are invalid.
    """
    name = configmap.metadata.name
    description = f"configmap {name}"
    annotations = configmap.metadata.annotations or {}
    check_automount_object(description, annotations)
    mode = parse_access_mode(description, annotations)
    keys = sorted({**(configmap.data or {}), **(configmap.binary_data or {})})
    volume = V1Volume(
        name=automount_volume_name("configmap", name),
        config_map=V1ConfigMapVolumeSource(
            name=name,
            default_mode=mode,
            items=_build_items(keys, mode),
        ),
    )
    env_from = V1EnvFromSource(config_map_ref=V1ConfigMapEnvSource(name=name))
    mount_path = annotations.get(MOUNT_PATH_ANNOTATION) or posixpath.join(
        "/etc/config", name
    )
    return _build_resources(
        volume, env_from, annotations, mount_path=mount_path, keys=keys
    )


def build_secret_resources(secret: V1Secret) -> AutomountResources:
    """Build the pod resources for an automounted Secret.

    Parameters
    ----------
    secret
        Secret carrying the automount label.

    Returns
    -------
    AutomountResources
        Resources to add to the pod.

    Raises
    ------
    FailError
        Raised if the annotations of the Secret are invalid.
    """
    name = secret.metadata.name
    description = f"secret {name}"
    annotations = secret.metadata.annotations or {}
    check_automount_object(description, annotations)
    mode = parse_access_mode(description, annotations)
    keys = sorted(secret.data or {})
    volume = V1Volume(
        name=automount_volume_name("secret", name),
        secret=V1SecretVolumeSource(
            secret_name=name,
            default_mode=mode,
            items=_build_items(keys, mode),
        ),
    )
    env_from = V1EnvFromSource(secret_ref=V1SecretEnvSource(name=name))
    mount_path = annotations.get(MOUNT_PATH_ANNOTATION) or posixpath.join(
        "/etc/secret", name
    )
    return _build_resources(
        volume, env_from, annotations, mount_path=mount_path, keys=keys
    )


def _build_items(keys: list[str], mode: int) -> list[V1KeyToPath] | None:
    # Explicit items carry the mode into a projected volume if one is needed.
    if mode == DEFAULT_ACCESS_MODE:
        return None
    return [V1KeyToPath(key=k, path=k, mode=mode) for k in keys]


def _build_resources(
    volume: V1Volume,
    env_from: V1EnvFromSource,
    annotations: dict[str, str],
    *,
    mount_path: str,
    keys: list[str],
) -> AutomountResources:
    style = MountStyle.from_annotation(annotations.get(MOUNT_AS_ANNOTATION))
    match style:
        case MountStyle.ENV:
            return AutomountResources(env_from=[env_from])
        case MountStyle.SUBPATH:
            mounts = [
                V1VolumeMount(
                    name=volume.name,
                    mount_path=posixpath.join(mount_path, key),
                    sub_path=key,
                    read_only=True,
                )
                for key in keys
            ]
            return AutomountResources(volumes=[volume], volume_mounts=mounts)
        case MountStyle.FILE:
            mount = V1VolumeMount(
                name=volume.name, mount_path=mount_path, read_only=True
            )
            return AutomountResources(volumes=[volume], volume_mounts=[mount])

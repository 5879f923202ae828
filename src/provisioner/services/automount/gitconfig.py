"""Generation of the git configuration mounted into every workspace."""

from __future__ import annotations

import base64
import posixpath
from dataclasses import dataclass
from typing import Any

from kubernetes_asyncio.client import V1ConfigMap, V1ObjectMeta, V1Secret
from structlog.stdlib import BoundLogger

from ...constants import (
    AUTOMOUNT_LABEL,
    GIT_CREDENTIAL_LABEL,
    GIT_CREDENTIALS_KEY,
    GIT_CREDENTIALS_SECRET_NAME,
    GIT_TLS_LABEL,
    GITCONFIG_CONFIGMAP_NAME,
    GITCONFIG_KEY,
    GITCONFIG_MOUNT_PATH,
    MOUNT_AS_ANNOTATION,
    MOUNT_PATH_ANNOTATION,
    PART_OF_LABEL,
    PART_OF_VALUE,
    WATCH_CONFIGMAP_LABEL,
    WATCH_SECRET_LABEL,
)
from ...exceptions import (
    FailError,
    NotInSyncError,
    RetryError,
    UnrecoverableSyncError,
)
from ...models.domain.automount import AutomountResources, MountStyle
from ...models.domain.kubernetes import ClusterObject, ObjectKind
from ...storage.kubernetes.cluster import ClusterObjectStore
from ...templates import templates
from ...timeout import Timeout
from ..sync import SyncEngine
from .common import build_configmap_resources, build_secret_resources

__all__ = [
    "GENERATED_OBJECT_NAMES",
    "GeneratedGitConfig",
    "GitConfigProvisioner",
    "TLSServer",
    "render_gitconfig",
]

GENERATED_OBJECT_NAMES = frozenset(
    {GIT_CREDENTIALS_SECRET_NAME, GITCONFIG_CONFIGMAP_NAME}
)
"""Names of the objects generated by this module.

They carry the automount label but are mounted by this module, so the
general automount collection skips them.
"""

_TLS_HOST_KEY = "host"
_TLS_CERTIFICATE_KEY = "certificate"


@dataclass
class GeneratedGitConfig:
    """Desired git objects for a namespace and how to mount them."""

    configmap: V1ConfigMap
    """ConfigMap holding the generated gitconfig."""

    secret: V1Secret | None
    """Secret holding the merged credentials, if there are any."""

    resources: AutomountResources
    """Volumes and mounts for the generated objects."""


@dataclass
class TLSServer:
    """A git server with a custom TLS certificate authority."""

    host: str | None
    """Host the certificate applies to, or `None` for all hosts."""

    certificate_path: str
    """Path to the certificate inside the workspace."""


def render_gitconfig(
    *,
    credentials_path: str | None,
    servers: list[TLSServer],
    base: str | None,
) -> str:
    """Render the workspace gitconfig.

    Parameters
    ----------
    credentials_path
        Path of the merged credentials file inside the workspace, or `None`
        if there are no credentials.
    servers
        Servers with custom certificate authorities, in output order.
    base
        Administrator-provided gitconfig appended at the end, if any.

    Returns
    -------
    str
        Contents of the gitconfig file.
    """
    template = templates.get_template("gitconfig.j2")
    return template.render(
        credentials_path=credentials_path,
        servers=servers,
        base=base.strip() if base else None,
    )


class GitConfigProvisioner:
    """Merge git credentials and TLS settings into generated objects.

    All Secrets labeled as git credentials are merged into a single Secret
    used by a read-only credential helper, and all ConfigMaps labeled as git
    TLS certificates become ``http`` stanzas in a generated gitconfig. Any
    gitconfig an administrator mounts at ``/etc/gitconfig`` is folded into
    the generated one.

    Parameters
    ----------
    store
        Cluster object store.
    sync
        Sync engine.
    logger
        Logger to use.
    """

    def __init__(
        self,
        store: ClusterObjectStore,
        sync: SyncEngine,
        logger: BoundLogger,
    ) -> None:
        self._store = store
        self._sync = sync
        self._logger = logger

    async def provision(
        self, namespace: str, timeout: Timeout
    ) -> AutomountResources | None:
        """Sync the generated git objects for a namespace.

        Parameters
        ----------
        namespace
            Namespace of the workspace.
        timeout
            Timeout on the Kubernetes calls.

        Returns
        -------
        AutomountResources or None
            Volumes and mounts for the generated objects, or `None` if there
            is no git configuration to provide. In that case any previously
            generated objects are deleted.

        Raises
        ------
        FailError
            Raised if the source objects are invalid or the generated objects
            are rejected by the API server.
        RetryError
            Raised if a generated object was changed and should be checked
            again.
        KubernetesError
            Raised for other errors from the Kubernetes API server.
        """
        generated = await self.build(namespace, timeout)
        await self.sync(namespace, generated, timeout)
        return generated.resources if generated else None

    async def build(
        self, namespace: str, timeout: Timeout
    ) -> GeneratedGitConfig | None:
        """Build the generated git objects without changing the cluster.

        Parameters
        ----------
        namespace
            Namespace of the workspace.
        timeout
            Timeout on the Kubernetes calls.

        Returns
        -------
        GeneratedGitConfig or None
            Desired objects and their pod resources, or `None` if there is
            no git configuration to provide.

        Raises
        ------
        FailError
            Raised if the source objects are invalid.
        KubernetesError
            Raised for errors from the Kubernetes API server.
        """
        credentials = await self._list_sorted(
            ObjectKind.SECRET, namespace, GIT_CREDENTIAL_LABEL, timeout
        )
        tls_configmaps = await self._list_sorted(
            ObjectKind.CONFIG_MAP, namespace, GIT_TLS_LABEL, timeout
        )
        base = await self._find_base_gitconfig(namespace, timeout)
        if not credentials and not tls_configmaps and base is None:
            return None

        secret = None
        credentials_path = None
        if credentials:
            mount_path = self._get_credentials_mount_path(credentials)
            secret = self._build_credentials_secret(
                namespace, mount_path, credentials
            )
            credentials_path = posixpath.join(mount_path, GIT_CREDENTIALS_KEY)
        servers = [self._build_tls_server(c) for c in tls_configmaps]
        if sum(1 for s in servers if s.host is None) > 1:
            msg = "multiple git tls credentials do not have host specified"
            raise FailError(msg)
        gitconfig = render_gitconfig(
            credentials_path=credentials_path, servers=servers, base=base
        )
        configmap = self._build_gitconfig_configmap(namespace, gitconfig)

        resources = AutomountResources()
        if secret:
            resources.extend(build_secret_resources(secret))
        resources.extend(build_configmap_resources(configmap))
        return GeneratedGitConfig(
            configmap=configmap, secret=secret, resources=resources
        )

    async def sync(
        self,
        namespace: str,
        generated: GeneratedGitConfig | None,
        timeout: Timeout,
    ) -> None:
        """Make the cluster match the generated git objects.

        Parameters
        ----------
        namespace
            Namespace of the workspace.
        generated
            Result of `build`. If `None`, any previously generated objects
            are deleted.
        timeout
            Timeout on the Kubernetes calls.

        Raises
        ------
        FailError
            Raised if the generated objects are rejected by the API server.
        RetryError
            Raised if a generated object was changed and should be checked
            again.
        KubernetesError
            Raised for other errors from the Kubernetes API server.
        """
        if not generated:
            await self._cleanup(namespace, timeout)
            return
        if generated.secret:
            await self._sync_generated(
                generated.secret, "merged git credentials secret", timeout
            )
        else:
            await self._delete_if_exists(
                ObjectKind.SECRET,
                namespace,
                GIT_CREDENTIALS_SECRET_NAME,
                timeout,
            )
        await self._sync_generated(
            generated.configmap, "gitconfig configmap", timeout
        )

    def _build_credentials_secret(
        self, namespace: str, mount_path: str, secrets: list[V1Secret]
    ) -> V1Secret:
        contents = []
        for secret in secrets:
            data = (secret.data or {}).get(GIT_CREDENTIALS_KEY)
            if data is None:
                msg = (
                    f"git-credentials secret {secret.metadata.name} does not"
                    f" contain data in key {GIT_CREDENTIALS_KEY}"
                )
                raise FailError(msg)
            contents.append(base64.b64decode(data).decode())
        merged = "\n".join(contents).encode()
        return V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=V1ObjectMeta(
                name=GIT_CREDENTIALS_SECRET_NAME,
                namespace=namespace,
                labels={
                    AUTOMOUNT_LABEL: "true",
                    PART_OF_LABEL: PART_OF_VALUE,
                    WATCH_SECRET_LABEL: "true",
                },
                annotations={
                    MOUNT_AS_ANNOTATION: MountStyle.SUBPATH.value,
                    MOUNT_PATH_ANNOTATION: mount_path,
                },
            ),
            data={GIT_CREDENTIALS_KEY: base64.b64encode(merged).decode()},
            type="Opaque",
        )

    def _build_gitconfig_configmap(
        self, namespace: str, gitconfig: str
    ) -> V1ConfigMap:
        return V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=V1ObjectMeta(
                name=GITCONFIG_CONFIGMAP_NAME,
                namespace=namespace,
                labels={
                    AUTOMOUNT_LABEL: "true",
                    PART_OF_LABEL: PART_OF_VALUE,
                    WATCH_CONFIGMAP_LABEL: "true",
                },
                annotations={
                    MOUNT_AS_ANNOTATION: MountStyle.SUBPATH.value,
                    MOUNT_PATH_ANNOTATION: posixpath.dirname(
                        GITCONFIG_MOUNT_PATH
                    ),
                },
            ),
            data={GITCONFIG_KEY: gitconfig},
        )

    def _build_tls_server(self, configmap: V1ConfigMap) -> TLSServer:
        name = configmap.metadata.name
        data = configmap.data or {}
        if _TLS_CERTIFICATE_KEY not in data:
            msg = f"could not find certificate field in configmap {name}"
            raise FailError(msg)
        annotations = configmap.metadata.annotations or {}
        mount_path = annotations.get(MOUNT_PATH_ANNOTATION)
        if not mount_path:
            mount_path = posixpath.join("/etc/config", name)
        return TLSServer(
            host=data.get(_TLS_HOST_KEY) or None,
            certificate_path=posixpath.join(mount_path, _TLS_CERTIFICATE_KEY),
        )

    async def _cleanup(self, namespace: str, timeout: Timeout) -> None:
        await self._delete_if_exists(
            ObjectKind.SECRET, namespace, GIT_CREDENTIALS_SECRET_NAME, timeout
        )
        await self._delete_if_exists(
            ObjectKind.CONFIG_MAP, namespace, GITCONFIG_CONFIGMAP_NAME, timeout
        )

    async def _delete_if_exists(
        self, kind: ObjectKind, namespace: str, name: str, timeout: Timeout
    ) -> None:
        obj = await self._store.get(kind, namespace, name, timeout)
        if obj:
            self._logger.info(
                "Deleting unused git configuration",
                kind=kind.value,
                name=name,
                namespace=namespace,
            )
            await self._store.delete(obj, timeout)

    async def _find_base_gitconfig(
        self, namespace: str, timeout: Timeout
    ) -> str | None:
        """Find a gitconfig an administrator mounts at ``/etc/gitconfig``.

        Only objects mounted with ``subpath`` are considered, since those are
        the only ones that can place a single file at that path.
        """
        found = None
        selector = f"{AUTOMOUNT_LABEL}=true"
        for kind in (ObjectKind.CONFIG_MAP, ObjectKind.SECRET):
            objs = await self._store.list(
                kind, namespace, timeout, label_selector=selector
            )
            for obj in objs:
                if obj.metadata.name in GENERATED_OBJECT_NAMES:
                    continue
                annotations = obj.metadata.annotations or {}
                style = annotations.get(MOUNT_AS_ANNOTATION)
                if style != MountStyle.SUBPATH:
                    continue
                mount_path = annotations.get(MOUNT_PATH_ANNOTATION, "")
                for key, value in (obj.data or {}).items():
                    if posixpath.join(mount_path, key) != GITCONFIG_MOUNT_PATH:
                        continue
                    if found is not None:
                        msg = (
                            "duplicate automount keys on path"
                            f" {GITCONFIG_MOUNT_PATH}"
                        )
                        raise FailError(msg)
                    if kind == ObjectKind.SECRET:
                        value = base64.b64decode(value).decode()
                    found = value
        return found

    def _get_credentials_mount_path(self, secrets: list[V1Secret]) -> str:
        mount_path = ""
        for secret in secrets:
            annotations = secret.metadata.annotations or {}
            path = annotations.get(MOUNT_PATH_ANNOTATION)
            if not path:
                continue
            if mount_path and path != mount_path:
                msg = (
                    "auto-mounted git credentials have conflicting"
                    f" mountPaths: {mount_path}, {path}"
                )
                raise FailError(msg)
            mount_path = path
        return mount_path or "/"

    async def _list_sorted(
        self, kind: ObjectKind, namespace: str, label: str, timeout: Timeout
    ) -> list[Any]:
        objs = await self._store.list(
            kind, namespace, timeout, label_selector=f"{label}=true"
        )
        return sorted(objs, key=lambda o: o.metadata.name)

    async def _sync_generated(
        self, desired: ClusterObject, description: str, timeout: Timeout
    ) -> None:
        try:
            await self._sync.sync(desired, timeout)
        except NotInSyncError as e:
            raise RetryError(f"syncing {description}", cause=e) from e
        except UnrecoverableSyncError as e:
            msg = f"failed to sync {description}"
            raise FailError(msg, cause=e) from e

"""Converge individual cluster objects toward their desired state."""

from __future__ import annotations

from typing import Any

from structlog.stdlib import BoundLogger

from ..exceptions import (
    KubernetesError,
    NotInSyncError,
    SyncReason,
    UnrecoverableSyncError,
    wrap_sync_error,
)
from ..models.domain.kubernetes import (
    ClusterObject,
    ObjectKind,
    PropagationPolicy,
    object_name,
    object_namespace,
    object_resource_version,
    set_resource_version,
)
from ..storage.kubernetes.cluster import ClusterObjectStore
from ..timeout import Timeout
from .diff import DIFF_FUNCTIONS, changed_fields

__all__ = ["SyncEngine"]


class SyncEngine:
    """Create, update, or delete one object so the cluster matches it.

    Every call either returns the cluster object, meaning the cluster
    already matches the desired state, or raises. `NotInSyncError` means the
    engine changed something and the caller should check again later.
    `UnrecoverableSyncError` means the desired object can never be synced.

    Parameters
    ----------
    store
        Cluster object store.
    experimental_features
        Whether to log the differing fields before an update.
    logger
        Logger to use.
    """

    def __init__(
        self,
        store: ClusterObjectStore,
        *,
        experimental_features: bool = False,
        logger: BoundLogger,
    ) -> None:
        self._store = store
        self._experimental = experimental_features
        self._logger = logger

    async def ensure(self, desired: ClusterObject, timeout: Timeout) -> Any:
        """Sync an object, translating sync outcomes to provisioning ones.

        Parameters
        ----------
        desired
            Desired object.
        timeout
            Timeout on the Kubernetes calls.

        Returns
        -------
        typing.Any
            Cluster object if it is in sync.

        Raises
        ------
        RetryError
            Raised if the object was just changed.
        FailError
            Raised if the object cannot be synced.
        KubernetesError
            Raised for other exceptions from the Kubernetes API server.
        """
        try:
            return await self.sync(desired, timeout)
        except (NotInSyncError, UnrecoverableSyncError) as e:
            raise wrap_sync_error(e) from e

    async def sync(self, desired: ClusterObject, timeout: Timeout) -> Any:
        """Sync an object with the cluster.

        Parameters
        ----------
        desired
            Desired object. Its metadata must carry a name and namespace.
        timeout
            Timeout on the Kubernetes calls.

        Returns
        -------
        typing.Any
            Cluster object if it already matches the desired object.

        Raises
        ------
        NotInSyncError
            Raised if the object was created, updated, or deleted, or if a
            concurrent change prevented an update.
        UnrecoverableSyncError
            Raised if the object is of an unknown kind or the API server
            rejected it as invalid.
        KubernetesError
            Raised for other exceptions from the Kubernetes API server.
        """
        try:
            kind = ObjectKind.for_object(desired)
        except ValueError as e:
            msg = f"attempting to sync unrecognized object {desired!r}"
            raise UnrecoverableSyncError(msg) from e
        if not self._store.supports(kind):
            msg = f"attempting to sync unrecognized object {kind.value}"
            raise UnrecoverableSyncError(msg)
        name = object_name(desired)
        namespace = object_namespace(desired) or ""
        actual = await self._store.get(kind, namespace, name, timeout)
        if actual is None:
            return await self._create(kind, desired, timeout)
        return await self._converge(kind, desired, actual, timeout)

    async def _converge(
        self,
        kind: ObjectKind,
        desired: ClusterObject,
        actual: ClusterObject,
        timeout: Timeout,
    ) -> Any:
        if kind.immutable:
            return actual
        diff_function = DIFF_FUNCTIONS.get(kind)
        if diff_function is None:
            msg = f"attempting to sync unrecognized object {kind.value}"
            raise UnrecoverableSyncError(msg)
        diff = diff_function(desired, actual)
        name = object_name(desired)
        if diff.should_delete:
            self._logger.info(
                f"Deleting {kind.value} to recreate it",
                name=name,
                namespace=object_namespace(desired),
            )
            await self._store.delete(
                actual,
                timeout,
                propagation_policy=PropagationPolicy.BACKGROUND,
            )
            raise NotInSyncError(kind.value, name, SyncReason.DELETED)
        if diff.should_update:
            await self._update(kind, desired, actual, timeout)
        return actual

    async def _create(
        self, kind: ObjectKind, desired: ClusterObject, timeout: Timeout
    ) -> Any:
        name = object_name(desired)
        try:
            await self._store.create(desired, timeout)
        except KubernetesError as e:
            if e.invalid:
                raise UnrecoverableSyncError(e) from e
            if not e.conflict:
                raise
            # Created by someone else since we looked.
            namespace = object_namespace(desired) or ""
            actual = await self._store.get(kind, namespace, name, timeout)
            if actual is None:
                raise NotInSyncError(
                    kind.value, name, SyncReason.NEED_RETRY
                ) from e
            return await self._converge(kind, desired, actual, timeout)
        raise NotInSyncError(kind.value, name, SyncReason.CREATED)

    async def _update(
        self,
        kind: ObjectKind,
        desired: ClusterObject,
        actual: ClusterObject,
        timeout: Timeout,
    ) -> None:
        name = object_name(desired)
        if self._experimental:
            self._logger.info(
                f"Updating {kind.value}",
                name=name,
                namespace=object_namespace(desired),
                changed=changed_fields(desired, actual),
            )
        set_resource_version(desired, object_resource_version(actual))
        try:
            await self._store.update(desired, timeout)
        except KubernetesError as e:
            if e.conflict or e.not_found:
                raise NotInSyncError(
                    kind.value, name, SyncReason.NEED_RETRY
                ) from e
            if e.invalid:
                raise UnrecoverableSyncError(e) from e
            raise
        raise NotInSyncError(kind.value, name, SyncReason.UPDATED)

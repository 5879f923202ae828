"""Reads of cluster state the provisioner never writes."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    CoreV1Event,
    V1Namespace,
    V1StorageClass,
)

from ...exceptions import KubernetesError
from ...timeout import Timeout
from .objects import translate_api_errors

__all__ = ["ClusterReader"]


class ClusterReader:
    """Read namespaces, storage classes, and events.

    Namespaces and storage classes are cluster-scoped and only consulted
    for their annotations and settings. Events are listed to explain why a
    pod is stuck.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    """

    def __init__(self, api_client: ApiClient) -> None:
        self._core = client.CoreV1Api(api_client)
        self._storage = client.StorageV1Api(api_client)

    async def list_events(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        field_selector: str | None = None,
    ) -> list[CoreV1Event]:
        """List events in a namespace, normally for one involved object."""
        args: dict[str, float | str] = {**timeout.request_args()}
        if field_selector:
            args["field_selector"] = field_selector
        with translate_api_errors(
            "Error listing events", kind="Event", namespace=namespace
        ):
            events = await self._core.list_namespaced_event(namespace, **args)
        return events.items

    async def read_namespace(
        self, name: str, timeout: Timeout
    ) -> V1Namespace | None:
        """Read a namespace, returning `None` if it does not exist."""
        try:
            with translate_api_errors(
                "Error reading namespace", kind="Namespace", name=name
            ):
                return await self._core.read_namespace(
                    name, **timeout.request_args()
                )
        except KubernetesError as e:
            if e.not_found:
                return None
            raise

    async def read_storage_class(
        self, name: str, timeout: Timeout
    ) -> V1StorageClass | None:
        """Read a storage class, returning `None` if it does not exist."""
        try:
            with translate_api_errors(
                "Error reading storage class", kind="StorageClass", name=name
            ):
                return await self._storage.read_storage_class(
                    name, **timeout.request_args()
                )
        except KubernetesError as e:
            if e.not_found:
                return None
            raise

"""Storage for the namespaced objects the provisioner writes.

Built-in kinds are reached through the generated ``kubernetes_asyncio`` API
classes, whose method names embed the resource name. Custom objects all go
through ``CustomObjectsApi`` with their group, version, and plural passed
as arguments. A small adapter per flavor hides that difference so that a
single `NamespacedObjectStorage` class handles logging and error
translation for every kind.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import ObjectKind, PropagationPolicy
from ...timeout import Timeout

__all__ = [
    "NamespacedObjectStorage",
    "build_object_storage",
    "translate_api_errors",
]

_BUILTIN_RESOURCES: dict[ObjectKind, tuple[str, str]] = {
    ObjectKind.CONFIG_MAP: ("CoreV1Api", "config_map"),
    ObjectKind.DEPLOYMENT: ("AppsV1Api", "deployment"),
    ObjectKind.JOB: ("BatchV1Api", "job"),
    ObjectKind.PERSISTENT_VOLUME_CLAIM: (
        "CoreV1Api",
        "persistent_volume_claim",
    ),
    ObjectKind.POD: ("CoreV1Api", "pod"),
    ObjectKind.ROLE: ("RbacAuthorizationV1Api", "role"),
    ObjectKind.ROLE_BINDING: ("RbacAuthorizationV1Api", "role_binding"),
    ObjectKind.SECRET: ("CoreV1Api", "secret"),
    ObjectKind.SERVICE: ("CoreV1Api", "service"),
    ObjectKind.SERVICE_ACCOUNT: ("CoreV1Api", "service_account"),
}
"""API class and method-name resource for each built-in kind."""

_CUSTOM_RESOURCES: dict[ObjectKind, tuple[str, str, str]] = {
    ObjectKind.ROUTING: (
        "controller.devfile.io",
        "v1alpha1",
        "devworkspaceroutings",
    ),
    ObjectKind.WORKSPACE: (
        "workspace.devfile.io",
        "v1alpha2",
        "devworkspaces",
    ),
}
"""Group, version, and plural for each custom object kind."""


@contextmanager
def translate_api_errors(
    message: str,
    *,
    kind: str,
    namespace: str | None = None,
    name: str | None = None,
) -> Iterator[None]:
    """Raise `~provisioner.exceptions.KubernetesError` for API failures.

    Parameters
    ----------
    message
        What was being attempted, used as the error summary.
    kind
        Kind of object the call was about.
    namespace
        Namespace of the object, if any.
    name
        Name of the object, if the call was about one object.
    """
    try:
        yield
    except ApiException as e:
        raise KubernetesError.from_exception(
            message, e, kind=kind, namespace=namespace, name=name
        ) from e


@dataclass
class _BuiltinApi:
    """Calls for one resource of a generated API class."""

    api: Any
    resource: str

    async def create(self, namespace: str, body: Any, **kwargs: Any) -> Any:
        method = self._method("create")
        return await method(namespace, body, **kwargs)

    async def delete(self, namespace: str, name: str, **kwargs: Any) -> None:
        await self._method("delete")(name, namespace, **kwargs)

    async def list(self, namespace: str, **kwargs: Any) -> list[Any]:
        result = await self._method("list")(namespace, **kwargs)
        return result.items

    async def read(self, namespace: str, name: str, **kwargs: Any) -> Any:
        return await self._method("read")(name, namespace, **kwargs)

    async def replace(
        self, namespace: str, name: str, body: Any, **kwargs: Any
    ) -> Any:
        method = self._method("replace")
        return await method(name, namespace, body, **kwargs)

    def _method(self, verb: str) -> Any:
        return getattr(self.api, f"{verb}_namespaced_{self.resource}")


@dataclass
class _CustomApi:
    """Calls for one custom resource through ``CustomObjectsApi``."""

    api: Any
    group: str
    version: str
    plural: str

    async def create(
        self, namespace: str, body: dict[str, Any], **kwargs: Any
    ) -> dict[str, Any]:
        return await self.api.create_namespaced_custom_object(
            self.group, self.version, namespace, self.plural, body, **kwargs
        )

    async def delete(self, namespace: str, name: str, **kwargs: Any) -> None:
        await self.api.delete_namespaced_custom_object(
            self.group, self.version, namespace, self.plural, name, **kwargs
        )

    async def list(
        self, namespace: str, **kwargs: Any
    ) -> list[dict[str, Any]]:
        result = await self.api.list_namespaced_custom_object(
            self.group, self.version, namespace, self.plural, **kwargs
        )
        return result["items"]

    async def read(
        self, namespace: str, name: str, **kwargs: Any
    ) -> dict[str, Any]:
        return await self.api.get_namespaced_custom_object(
            self.group, self.version, namespace, self.plural, name, **kwargs
        )

    async def replace(
        self, namespace: str, name: str, body: dict[str, Any], **kwargs: Any
    ) -> dict[str, Any]:
        return await self.api.replace_namespaced_custom_object(
            self.group,
            self.version,
            namespace,
            self.plural,
            name,
            body,
            **kwargs,
        )


class NamespacedObjectStorage:
    """Read and write one kind of namespaced object.

    A missing object is reported as `None` from `read` and ignored by
    `delete`. Every other API failure is raised as
    `~provisioner.exceptions.KubernetesError`.

    Parameters
    ----------
    api
        Adapter for the API calls of this kind.
    kind
        Kind of object, used in logs and errors.
    logger
        Logger to use.
    """

    def __init__(
        self,
        api: _BuiltinApi | _CustomApi,
        kind: ObjectKind,
        logger: BoundLogger,
    ) -> None:
        self._api = api
        self._kind = kind.value
        self._logger = logger.bind(kind=kind.value)

    async def create(
        self, namespace: str, name: str, body: Any, timeout: Timeout
    ) -> Any:
        """Create an object, returning it as stored by the API server.

        A status of 409 on the raised error means the object already
        exists, and 422 means the API server rejected it.
        """
        self._logger.debug("Creating object", name=name, namespace=namespace)
        with self._errors("Error creating object", namespace, name):
            return await self._api.create(
                namespace, body, **timeout.request_args()
            )

    async def delete(
        self,
        namespace: str,
        name: str,
        timeout: Timeout,
        *,
        propagation_policy: PropagationPolicy | None = None,
    ) -> None:
        """Delete an object if it exists."""
        args: dict[str, Any] = timeout.request_args()
        if propagation_policy:
            args["propagation_policy"] = propagation_policy.value
        self._logger.debug("Deleting object", name=name, namespace=namespace)
        try:
            with self._errors("Error deleting object", namespace, name):
                await self._api.delete(namespace, name, **args)
        except KubernetesError as e:
            if not e.not_found:
                raise

    async def list(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[Any]:
        """List the objects in a namespace, optionally filtered."""
        args: dict[str, Any] = timeout.request_args()
        if label_selector:
            args["label_selector"] = label_selector
        if field_selector:
            args["field_selector"] = field_selector
        with self._errors("Error listing objects", namespace):
            return await self._api.list(namespace, **args)

    async def read(
        self, namespace: str, name: str, timeout: Timeout
    ) -> Any | None:
        """Read an object, returning `None` if it does not exist."""
        try:
            with self._errors("Error reading object", namespace, name):
                return await self._api.read(
                    namespace, name, **timeout.request_args()
                )
        except KubernetesError as e:
            if e.not_found:
                return None
            raise

    async def replace(
        self, namespace: str, name: str, body: Any, timeout: Timeout
    ) -> Any:
        """Replace an object, returning it as stored by the API server.

        If the body carries a resource version, the API server rejects the
        write with a 409 when the object changed since that version.
        """
        self._logger.debug("Replacing object", name=name, namespace=namespace)
        with self._errors("Error replacing object", namespace, name):
            return await self._api.replace(
                namespace, name, body, **timeout.request_args()
            )

    def _errors(
        self, message: str, namespace: str, name: str | None = None
    ) -> AbstractContextManager[None]:
        return translate_api_errors(
            message, kind=self._kind, namespace=namespace, name=name
        )


def build_object_storage(
    api_client: ApiClient, logger: BoundLogger
) -> dict[ObjectKind, NamespacedObjectStorage]:
    """Create storage for every namespaced kind the provisioner writes.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.

    Returns
    -------
    dict of NamespacedObjectStorage
        Storage for each supported kind.
    """
    apis: dict[str, Any] = {}
    storage = {}
    for kind, (api_name, resource) in _BUILTIN_RESOURCES.items():
        if api_name not in apis:
            apis[api_name] = getattr(client, api_name)(api_client)
        builtin = _BuiltinApi(apis[api_name], resource)
        storage[kind] = NamespacedObjectStorage(builtin, kind, logger)
    custom_api = client.CustomObjectsApi(api_client)
    for kind, (group, version, plural) in _CUSTOM_RESOURCES.items():
        custom = _CustomApi(custom_api, group, version, plural)
        storage[kind] = NamespacedObjectStorage(custom, kind, logger)
    return storage

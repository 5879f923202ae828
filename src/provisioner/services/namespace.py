"""Per-namespace configuration overrides."""

from __future__ import annotations

import json
from typing import Annotated, Literal

from kubernetes_asyncio.client import V1Toleration
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel
from structlog.stdlib import BoundLogger

from ..constants import (
    NAMESPACED_CONFIG_LABEL,
    NODE_SELECTOR_ANNOTATION,
    POD_TOLERATIONS_ANNOTATION,
)
from ..exceptions import FailError
from ..models.domain.kubernetes import ObjectKind
from ..storage.kubernetes.cluster import ClusterObjectStore
from ..timeout import Timeout
from ..units import quantity_to_bytes

__all__ = ["NamespaceConfigReader", "NamespacedConfig", "TolerationSpec"]

type TaintEffect = Literal["NoSchedule", "PreferNoSchedule", "NoExecute"]


class TolerationSpec(BaseModel):
    """One entry of the pod tolerations annotation on a namespace.

    The annotation holds a JSON list of Kubernetes tolerations, so the
    fields use the Kubernetes names. Values are checked only as far as
    needed to reject typos before they reach a pod spec.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    key: str | None = None
    operator: Literal["Equal", "Exists"] | None = None
    value: str | None = None
    effect: TaintEffect | None = None
    toleration_seconds: int | None = None

    def to_kubernetes(self) -> V1Toleration:
        return V1Toleration(**self.model_dump())


_TOLERATIONS_ADAPTER = TypeAdapter(list[TolerationSpec])
_NODE_SELECTOR_ADAPTER = TypeAdapter(dict[str, str])


class NamespacedConfig(BaseModel):
    """Overrides set by a namespace administrator."""

    model_config = ConfigDict(extra="forbid")

    common_pvc_size: Annotated[
        str | None,
        Field(
            title="Shared PVC size",
            description="Overrides the default size of the shared PVC",
        ),
    ] = None

    per_workspace_pvc_size: Annotated[
        str | None,
        Field(
            title="Per-workspace PVC size",
            description="Overrides the default size of per-workspace PVCs",
        ),
    ] = None

    tolerations: Annotated[
        list[TolerationSpec],
        Field(
            title="Pod tolerations",
            description="Tolerations applied to pods created in the namespace",
        ),
    ] = []

    node_selector: Annotated[
        dict[str, str],
        Field(
            title="Node selector",
            description=(
                "Node selector applied to pods created in the namespace"
            ),
        ),
    ] = {}

    def to_tolerations(self) -> list[V1Toleration] | None:
        """Convert the tolerations to Kubernetes models, if any are set."""
        if not self.tolerations:
            return None
        return [t.to_kubernetes() for t in self.tolerations]


class NamespaceConfigReader:
    """Read the configuration overrides of a namespace.

    Size overrides come from the ConfigMap carrying the namespaced config
    label. Tolerations and node selectors come from JSON annotations on the
    namespace itself.

    Parameters
    ----------
    store
        Cluster object store.
    logger
        Logger to use.
    """

    def __init__(self, store: ClusterObjectStore, logger: BoundLogger) -> None:
        self._store = store
        self._logger = logger

    async def read(self, namespace: str, timeout: Timeout) -> NamespacedConfig:
        """Read the overrides for a namespace.

        Parameters
        ----------
        namespace
            Namespace to read.
        timeout
            Timeout on the Kubernetes calls.

        Returns
        -------
        NamespacedConfig
            Overrides, empty if none are set.

        Raises
        ------
        FailError
            Raised if there is more than one config ConfigMap, if a size is
            not a valid quantity, or if an annotation is not valid JSON of
            the right shape.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        config = NamespacedConfig()
        configmaps = await self._store.list(
            ObjectKind.CONFIG_MAP,
            namespace,
            timeout,
            label_selector=f"{NAMESPACED_CONFIG_LABEL}=true",
        )
        if len(configmaps) > 1:
            names = ", ".join(sorted(c.metadata.name for c in configmaps))
            msg = (
                "multiple ConfigMaps in namespace are labeled as namespaced"
                f" config: {names}"
            )
            raise FailError(msg)
        if configmaps:
            data = configmaps[0].data or {}
            config.common_pvc_size = self._parse_size(
                data.get("commonPVCSize"), "commonPVCSize"
            )
            config.per_workspace_pvc_size = self._parse_size(
                data.get("perWorkspacePVCSize"), "perWorkspacePVCSize"
            )

        ns = await self._store.read_namespace(namespace, timeout)
        annotations = (ns.metadata.annotations or {}) if ns else {}
        if value := annotations.get(POD_TOLERATIONS_ANNOTATION):
            config.tolerations = self._parse_json(
                _TOLERATIONS_ADAPTER, value, POD_TOLERATIONS_ANNOTATION
            )
        if value := annotations.get(NODE_SELECTOR_ANNOTATION):
            config.node_selector = self._parse_json(
                _NODE_SELECTOR_ADAPTER, value, NODE_SELECTOR_ANNOTATION
            )
        return config

    def _parse_size(self, value: str | None, key: str) -> str | None:
        if not value:
            return None
        try:
            quantity_to_bytes(value)
        except ValueError as e:
            msg = f"invalid value for {key} in namespaced config: {value}"
            raise FailError(msg, cause=e) from e
        return value

    def _parse_json[T](
        self, adapter: TypeAdapter[T], value: str, annotation: str
    ) -> T:
        try:
            return adapter.validate_python(json.loads(value))
        except (json.JSONDecodeError, ValidationError) as e:
            msg = f"failed to parse {annotation} annotation on namespace"
            raise FailError(msg, cause=e) from e

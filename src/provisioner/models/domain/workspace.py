"""Models for workspaces and the pod contributions built from them."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Self

from kubernetes_asyncio.client import (
    V1Container,
    V1LocalObjectReference,
    V1OwnerReference,
    V1Volume,
    V1VolumeMount,
)
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...constants import PROJECTS_VOLUME_NAME, STORAGE_TYPE_ATTRIBUTE
from ...exceptions import DuplicateObjectError

__all__ = [
    "Component",
    "ContainerComponent",
    "PodAdditions",
    "StorageType",
    "VolumeComponent",
    "Workspace",
    "WorkspacePhase",
    "WorkspaceTemplate",
]

WORKSPACE_API_VERSION = "workspace.devfile.io/v1alpha2"
"""API version of the workspace custom resource."""


class StorageType(StrEnum):
    """Storage strategies a workspace can request."""

    COMMON = "common"
    PER_USER = "per-user"
    PER_WORKSPACE = "per-workspace"
    ASYNC = "async"
    EPHEMERAL = "ephemeral"


class WorkspacePhase(StrEnum):
    """Phases reported in the status of a workspace."""

    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    FAILING = "Failing"
    FAILED = "Failed"
    ERROR = "Error"
    TERMINATING = "Terminating"


class VolumeComponent(BaseModel):
    """A volume declared by a workspace."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    size: Annotated[
        str | None,
        Field(
            title="Size",
            description="Requested size as a Kubernetes quantity",
        ),
    ] = None

    ephemeral: Annotated[
        bool,
        Field(
            title="Ephemeral",
            description="Whether the volume is backed by an emptyDir",
        ),
    ] = False


class ContainerComponent(BaseModel):
    """The parts of a workspace container relevant to storage."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    mount_sources: Annotated[
        bool,
        Field(
            title="Mount sources",
            description="Whether project sources are mounted in the container",
        ),
    ] = True


class Component(BaseModel):
    """A component of a workspace template.

    Only volume and container components matter here. Other component types
    parse with both fields unset.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    name: Annotated[str, Field(title="Name")]

    volume: Annotated[VolumeComponent | None, Field(title="Volume")] = None

    container: Annotated[
        ContainerComponent | None, Field(title="Container")
    ] = None


class WorkspaceTemplate(BaseModel):
    """The flattened template of a workspace."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    attributes: Annotated[
        dict[str, Any],
        Field(title="Attributes", description="Free-form template attributes"),
    ] = {}

    components: Annotated[list[Component], Field(title="Components")] = []

    @property
    def volumes(self) -> list[Component]:
        """Volume components of the template, in declaration order."""
        return [c for c in self.components if c.volume is not None]

    def mounts_sources(self) -> bool:
        """Whether any container mounts the project sources."""
        return any(
            c.container.mount_sources
            for c in self.components
            if c.container is not None
        )


class Workspace(BaseModel):
    """The parts of a workspace custom resource used for provisioning."""

    model_config = ConfigDict(extra="forbid")

    name: str
    """Name of the workspace object."""

    namespace: str
    """Namespace of the workspace object."""

    uid: str = ""
    """UID of the workspace object, used for owner references."""

    workspace_id: str
    """Unique identifier assigned to the workspace by the controller."""

    annotations: dict[str, str] = {}
    """Annotations on the workspace object."""

    deletion_timestamp: datetime | None = None
    """When deletion of the workspace was requested, if it was."""

    started: bool = True
    """Whether the workspace should be running."""

    phase: str | None = None
    """Last phase reported in the workspace status.

    Usually one of `WorkspacePhase`, but kept as a string so that a phase
    added by a newer controller does not prevent parsing.
    """

    template: WorkspaceTemplate = WorkspaceTemplate()
    """Flattened workspace template."""

    @classmethod
    def from_kubernetes(cls, obj: dict[str, Any]) -> Self:
        """Parse a workspace from its custom object representation.

        Parameters
        ----------
        obj
            Custom object as returned by the Kubernetes API.

        Returns
        -------
        Workspace
            Parsed workspace.
        """
        metadata = obj["metadata"]
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata["namespace"],
            uid=metadata.get("uid", ""),
            workspace_id=status.get("devworkspaceId", ""),
            annotations=metadata.get("annotations") or {},
            deletion_timestamp=metadata.get("deletionTimestamp"),
            started=spec.get("started", False),
            phase=status.get("phase"),
            template=WorkspaceTemplate.model_validate(
                spec.get("template") or {}
            ),
        )

    @property
    def is_being_deleted(self) -> bool:
        """Whether deletion of the workspace has been requested."""
        return self.deletion_timestamp is not None

    @property
    def storage_type(self) -> str:
        """Storage strategy requested by the workspace template."""
        value = self.template.attributes.get(STORAGE_TYPE_ATTRIBUTE)
        return str(value) if value else ""

    def owner_reference(self) -> V1OwnerReference:
        """Build an owner reference making the workspace own an object.

        Objects with this reference are garbage-collected by Kubernetes when
        the workspace is deleted.
        """
        return V1OwnerReference(
            api_version=WORKSPACE_API_VERSION,
            kind="DevWorkspace",
            name=self.name,
            uid=self.uid,
            controller=True,
            block_owner_deletion=True,
        )

    def has_projects_volume(self) -> bool:
        """Whether the template explicitly declares the projects volume."""
        return any(
            c.name == PROJECTS_VOLUME_NAME for c in self.template.volumes
        )


def _check_unique(kind: str, names: Iterable[str]) -> None:
    counts = Counter(names)
    for name, count in counts.items():
        if count > 1:
            raise DuplicateObjectError(kind, name)


@dataclass
class PodAdditions:
    """Contributions to a workspace pod accumulated by provisioning steps.

    Provisioning steps append to these lists. The wider controller turns the
    result into the workspace pod template.
    """

    containers: list[V1Container] = field(default_factory=list)
    """Containers to add to the pod."""

    init_containers: list[V1Container] = field(default_factory=list)
    """Init containers to add to the pod."""

    volumes: list[V1Volume] = field(default_factory=list)
    """Volumes to add to the pod."""

    volume_mounts: list[V1VolumeMount] = field(default_factory=list)
    """Volume mounts to add to every container."""

    pull_secrets: list[V1LocalObjectReference] = field(default_factory=list)
    """Image pull secrets to add to the pod."""

    labels: dict[str, str] = field(default_factory=dict)
    """Labels to add to the pod."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations to add to the pod."""

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check that every name that must be unique is unique.

        Raises
        ------
        DuplicateObjectError
            Raised if two volumes, two containers, two init containers, or
            two pod-level volume mounts share a name, or if two mounts in one
            container share a mount path.
        """
        _check_unique("volume", (v.name for v in self.volumes))
        _check_unique("volume mount", (m.name for m in self.volume_mounts))
        _check_unique("container", (c.name for c in self.containers))
        _check_unique("init container", (c.name for c in self.init_containers))
        for container in self.containers + self.init_containers:
            paths = (m.mount_path for m in container.volume_mounts or [])
            _check_unique(f"mount path in container {container.name}", paths)

    def volume_names(self) -> set[str]:
        """Return the names of all volumes already in the pod."""
        return {v.name for v in self.volumes}

"""Configuration for the workspace provisioner."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .units import quantity_to_bytes

__all__ = [
    "Config",
    "ImagesConfig",
    "StorageConfig",
]


def _validate_quantity(v: str) -> str:
    """Pydantic validator that rejects invalid storage quantities."""
    quantity_to_bytes(v)
    return v


class StorageConfig(BaseModel):
    """Configuration for persistent workspace storage."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    pvc_name: Annotated[
        str,
        Field(
            title="Shared PVC name",
            description=(
                "Name of the PVC shared by all workspaces in a namespace that"
                " use the common or async storage strategies"
            ),
        ),
    ] = "claim-devworkspace"

    alternate_pvc_name: Annotated[
        str | None,
        Field(
            title="Alternate shared PVC name",
            description=(
                "If a PVC with this name exists in a namespace, it is used as"
                " the shared PVC instead of ``pvcName``. This allows adopting"
                " a PVC created by another system."
            ),
        ),
    ] = "claim-che-workspace"

    storage_class_name: Annotated[
        str | None,
        Field(
            title="Storage class",
            description=(
                "Storage class of created PVCs. If not set, the cluster"
                " default is used."
            ),
        ),
    ] = None

    common_size: Annotated[
        str,
        AfterValidator(_validate_quantity),
        Field(
            title="Default shared PVC size",
            description="Default size of the PVC shared by workspaces",
            examples=["10Gi"],
        ),
    ] = "10Gi"

    per_workspace_size: Annotated[
        str,
        AfterValidator(_validate_quantity),
        Field(
            title="Default per-workspace PVC size",
            description="Default size of a PVC dedicated to one workspace",
            examples=["5Gi"],
        ),
    ] = "5Gi"


class ImagesConfig(BaseModel):
    """Container images used by pods this package creates."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    cleanup_job: Annotated[
        str,
        Field(
            title="Cleanup job image",
            description=(
                "Image that runs ``rm -rf`` to remove workspace files from a"
                " shared PVC"
            ),
        ),
    ] = "registry.access.redhat.com/ubi9-micro:latest"

    async_server: Annotated[
        str,
        Field(
            title="Async storage server image",
            description="Image of the relay that stores async workspace data",
        ),
    ] = "quay.io/eclipse/che-workspace-data-sync-storage:0.0.1"

    async_sidecar: Annotated[
        str,
        Field(
            title="Async storage sidecar image",
            description="Image of the sidecar that syncs workspace volumes",
        ),
    ] = "quay.io/eclipse/che-sidecar-workspace-data-sync:0.0.1"


class Config(BaseSettings):
    """Workspace provisioner configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel,
        env_prefix="PROVISIONER_",
        extra="forbid",
        populate_by_name=True,
    )

    name: Annotated[
        str,
        Field(
            title="Logger name",
            description="Name of the root logger for provisioner messages",
        ),
    ] = "provisioner"

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Minimum level of messages to log",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    profile: Annotated[
        Profile,
        Field(
            title="Log format",
            description=(
                "``production`` logs one JSON object per line for log"
                " collectors, ``development`` logs colored key-value text"
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    request_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Provisioning timeout",
            description=(
                "Total time allowed for the Kubernetes calls of one"
                " provisioning operation"
            ),
        ),
    ] = timedelta(seconds=30)

    experimental_features: Annotated[
        bool,
        Field(
            title="Enable experimental features",
            description=(
                "Enables PVC expansion and logging of the fields that differ"
                " when an object is updated"
            ),
        ),
    ] = False

    ignored_unrecoverable_events: Annotated[
        list[str],
        Field(
            title="Ignored failure reasons",
            description=(
                "Pod event reasons and container states that should not be"
                " treated as fatal when checking on pods, such as"
                " ``FailedScheduling`` on clusters with autoscaling"
            ),
        ),
    ] = []

    storage: Annotated[
        StorageConfig, Field(title="Storage configuration")
    ] = StorageConfig()

    images: Annotated[
        ImagesConfig, Field(title="Images for created pods")
    ] = ImagesConfig()

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load settings from a YAML file.

        Keys use the camelCase aliases. An empty file yields the defaults.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})

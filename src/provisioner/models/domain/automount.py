"""Models for automounted resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Self

from kubernetes_asyncio.client import (
    V1EnvFromSource,
    V1Volume,
    V1VolumeMount,
)

__all__ = ["AutomountResources", "MountStyle"]


class MountStyle(StrEnum):
    """How an automounted ConfigMap or Secret is exposed to containers."""

    ENV = "env"
    """Every key becomes an environment variable."""

    FILE = "file"
    """The whole object is mounted as a directory."""

    SUBPATH = "subpath"
    """Every key is mounted as a single file inside the mount path."""

    @classmethod
    def from_annotation(cls, value: str | None) -> Self:
        """Parse the mount style annotation.

        Unknown values fall back to `FILE`, the same as a missing annotation.

        Parameters
        ----------
        value
            Value of the annotation, if present.

        Returns
        -------
        MountStyle
            Corresponding mount style.
        """
        try:
            return cls(value) if value else cls.FILE
        except ValueError:
            return cls.FILE


@dataclass
class AutomountResources:
    """Volumes, mounts, and environment contributed by automounted objects."""

    volumes: list[V1Volume] = field(default_factory=list)
    """Volumes to add to the pod."""

    volume_mounts: list[V1VolumeMount] = field(default_factory=list)
    """Mounts to add to every container."""

    env_from: list[V1EnvFromSource] = field(default_factory=list)
    """Environment sources to add to every container."""

    def extend(self, other: AutomountResources) -> None:
        """Append the contents of another bundle to this one."""
        self.volumes.extend(other.volumes)
        self.volume_mounts.extend(other.volume_mounts)
        self.env_from.extend(other.env_from)

    @classmethod
    def merge(cls, bundles: list[AutomountResources]) -> Self:
        """Combine several bundles into one, preserving order."""
        result = cls()
        for bundle in bundles:
            result.extend(bundle)
        return result

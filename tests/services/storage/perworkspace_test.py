"""Tests for the per-workspace PVC storage strategy."""

from __future__ import annotations

import pytest
from kubernetes_asyncio.client import V1ObjectMeta, V1StorageClass

from provisioner.exceptions import FailError, RetryError
from provisioner.factory import Factory
from provisioner.services.storage.perworkspace import (
    PerWorkspaceStorageProvisioner,
)

from ...support.config import configure
from ...support.kubernetes import MockKubernetesApi
from ...support.workspaces import (
    NAMESPACE,
    build_pod_additions,
    build_workspace,
)


def _provisioner(factory: Factory) -> PerWorkspaceStorageProvisioner:
    workspace = build_workspace(storage_type="per-workspace")
    provisioner = factory.get_provisioner(workspace)
    assert isinstance(provisioner, PerWorkspaceStorageProvisioner)
    return provisioner


@pytest.mark.asyncio
async def test_provision(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    provisioner = _provisioner(factory)
    workspace = build_workspace(
        workspace_id="workspace1",
        storage_type="per-workspace",
        volumes={"tmp": {"ephemeral": True, "size": "100Mi"}},
    )
    pod = build_pod_additions(("projects", "/projects"), ("tmp", "/scratch"))

    with pytest.raises(RetryError):
        await provisioner.provision_storage(pod, workspace)
    pvc = mock_kubernetes.get_for_test(
        "PersistentVolumeClaim", NAMESPACE, "storage-workspace1"
    )
    assert pvc.spec.resources.requests == {"storage": "5Gi"}
    assert pvc.spec.access_modes == ["ReadWriteOnce"]
    owner = pvc.metadata.owner_references[0]
    assert owner.kind == "DevWorkspace"
    assert owner.name == "ws"
    assert owner.uid == "uid-ws"

    await provisioner.provision_storage(pod, workspace)
    mounts = [
        (m.name, m.mount_path, m.sub_path)
        for m in pod.containers[0].volume_mounts
    ]
    assert mounts == [
        ("storage-workspace1", "/projects", "projects"),
        ("tmp", "/scratch", None),
    ]
    volumes = {v.name: v for v in pod.volumes}
    assert volumes["tmp"].empty_dir.size_limit == "100Mi"
    claim = volumes["storage-workspace1"].persistent_volume_claim
    assert claim.claim_name == "storage-workspace1"

    # Cleanup is left to garbage collection.
    mock_kubernetes.reset_mutations_for_test()
    await provisioner.cleanup_workspace_storage(workspace)
    assert mock_kubernetes.mutations == []


@pytest.mark.asyncio
async def test_explicit_sizes(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    provisioner = _provisioner(factory)
    workspace = build_workspace(
        workspace_id="sized",
        mount_sources=False,
        volumes={"a": {"size": "1Gi"}, "b": {"size": "512Mi"}},
    )
    pod = build_pod_additions(("a", "/a"), ("b", "/b"))
    with pytest.raises(RetryError):
        await provisioner.provision_storage(pod, workspace)
    pvc = mock_kubernetes.get_for_test(
        "PersistentVolumeClaim", NAMESPACE, "storage-sized"
    )
    assert pvc.spec.resources.requests == {"storage": "1536Mi"}


@pytest.mark.asyncio
async def test_pvc_being_deleted(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    provisioner = _provisioner(factory)
    workspace = build_workspace(workspace_id="workspace1")
    pod = build_pod_additions(("projects", "/projects"))
    with pytest.raises(RetryError):
        await provisioner.provision_storage(pod, workspace)

    pvc = mock_kubernetes.get_for_test(
        "PersistentVolumeClaim", NAMESPACE, "storage-workspace1"
    )
    pvc.metadata.deletion_timestamp = "2026-01-01T00:00:00Z"
    with pytest.raises(FailError, match="PVC is being deleted"):
        await provisioner.provision_storage(pod, workspace)


@pytest.mark.asyncio
async def test_expansion(mock_kubernetes: MockKubernetesApi) -> None:
    storage_class = V1StorageClass(
        metadata=V1ObjectMeta(name="expandable"),
        provisioner="example.com/csi",
        allow_volume_expansion=True,
    )
    mock_kubernetes.set_storage_class_for_test(storage_class)
    config = configure("experimental")
    async with Factory.standalone(config) as factory:
        provisioner = _provisioner(factory)
        workspace = build_workspace(workspace_id="workspace1")
        pod = build_pod_additions(("projects", "/projects"))
        with pytest.raises(RetryError):
            await provisioner.provision_storage(pod, workspace)
        await provisioner.provision_storage(pod, workspace)
        pvc = mock_kubernetes.get_for_test(
            "PersistentVolumeClaim", NAMESPACE, "storage-workspace1"
        )
        assert pvc.spec.resources.requests == {"storage": "1Gi"}
        assert pvc.spec.storage_class_name == "expandable"

        # A larger volume grows the existing PVC.
        workspace = build_workspace(
            workspace_id="workspace1",
            mount_sources=False,
            volumes={"projects": {"size": "3Gi"}},
        )
        pod = build_pod_additions(("projects", "/projects"))
        with pytest.raises(RetryError, match="Expanding PVC"):
            await provisioner.provision_storage(pod, workspace)
        pvc = mock_kubernetes.get_for_test(
            "PersistentVolumeClaim", NAMESPACE, "storage-workspace1"
        )
        assert pvc.spec.resources.requests == {"storage": "3Gi"}
        await provisioner.provision_storage(pod, workspace)

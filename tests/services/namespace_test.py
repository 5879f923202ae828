"""Tests for per-namespace configuration overrides."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest
from kubernetes_asyncio.client import V1ConfigMap, V1Namespace, V1ObjectMeta

from provisioner.constants import (
    NAMESPACED_CONFIG_LABEL,
    NODE_SELECTOR_ANNOTATION,
    POD_TOLERATIONS_ANNOTATION,
)
from provisioner.exceptions import FailError
from provisioner.factory import Factory
from provisioner.timeout import Timeout

from ..support.kubernetes import MockKubernetesApi


async def _add_config(
    mock: MockKubernetesApi, name: str, data: dict[str, str]
) -> None:
    configmap = V1ConfigMap(
        metadata=V1ObjectMeta(
            name=name,
            namespace="user-ns",
            labels={NAMESPACED_CONFIG_LABEL: "true"},
        ),
        data=data,
    )
    await mock.create_namespaced_config_map("user-ns", configmap)


def _set_annotations(
    mock: MockKubernetesApi, annotations: dict[str, str]
) -> None:
    namespace = V1Namespace(
        metadata=V1ObjectMeta(name="user-ns", annotations=annotations)
    )
    mock.set_namespace_for_test(namespace)


@pytest.mark.asyncio
async def test_empty(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    reader = factory.create_namespace_config_reader()
    config = await reader.read("user-ns", Timeout(timedelta(seconds=30)))
    assert config.common_pvc_size is None
    assert config.per_workspace_pvc_size is None
    assert config.to_tolerations() is None
    assert config.node_selector == {}


@pytest.mark.asyncio
async def test_overrides(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    reader = factory.create_namespace_config_reader()
    timeout = Timeout(timedelta(seconds=30))
    await _add_config(
        mock_kubernetes,
        "config",
        {"commonPVCSize": "20Gi", "perWorkspacePVCSize": "2Gi"},
    )
    tolerations = [
        {"key": "gpu", "operator": "Equal", "value": "yes"},
        {"operator": "Exists", "effect": "NoSchedule"},
        {
            "key": "spot",
            "operator": "Exists",
            "effect": "NoExecute",
            "tolerationSeconds": 60,
        },
    ]
    _set_annotations(
        mock_kubernetes,
        {
            POD_TOLERATIONS_ANNOTATION: json.dumps(tolerations),
            NODE_SELECTOR_ANNOTATION: json.dumps({"disk": "ssd"}),
        },
    )

    config = await reader.read("user-ns", timeout)
    assert config.common_pvc_size == "20Gi"
    assert config.per_workspace_pvc_size == "2Gi"
    assert config.node_selector == {"disk": "ssd"}
    result = config.to_tolerations()
    assert result
    assert [(t.key, t.operator, t.effect) for t in result] == [
        ("gpu", "Equal", None),
        (None, "Exists", "NoSchedule"),
        ("spot", "Exists", "NoExecute"),
    ]
    assert result[2].toleration_seconds == 60


@pytest.mark.asyncio
async def test_invalid(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    reader = factory.create_namespace_config_reader()
    timeout = Timeout(timedelta(seconds=30))

    await _add_config(mock_kubernetes, "config", {"commonPVCSize": "huge"})
    with pytest.raises(FailError, match="invalid value for commonPVCSize"):
        await reader.read("user-ns", timeout)

    await _add_config(mock_kubernetes, "another", {})
    with pytest.raises(FailError, match="config, another|another, config"):
        await reader.read("user-ns", timeout)

    mock_kubernetes.objects["user-ns"]["ConfigMap"].clear()
    _set_annotations(mock_kubernetes, {POD_TOLERATIONS_ANNOTATION: "[{"})
    with pytest.raises(FailError, match=POD_TOLERATIONS_ANNOTATION):
        await reader.read("user-ns", timeout)
    for bad in ({"effect": "Sometimes"}, {"key": "a", "extra": "b"}):
        annotations = {POD_TOLERATIONS_ANNOTATION: json.dumps([bad])}
        _set_annotations(mock_kubernetes, annotations)
        with pytest.raises(FailError, match=POD_TOLERATIONS_ANNOTATION):
            await reader.read("user-ns", timeout)
    _set_annotations(
        mock_kubernetes,
        {NODE_SELECTOR_ANNOTATION: json.dumps({"disk": ["ssd"]})},
    )
    with pytest.raises(FailError, match=NODE_SELECTOR_ANNOTATION):
        await reader.read("user-ns", timeout)

"""Tests for the per-kind comparison of cluster objects."""

from __future__ import annotations

import copy

from kubernetes_asyncio.client import (
    RbacV1Subject,
    V1ConfigMap,
    V1Container,
    V1Deployment,
    V1DeploymentSpec,
    V1Job,
    V1JobSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
    V1PolicyRule,
    V1Role,
    V1RoleBinding,
    V1RoleRef,
    V1Secret,
    V1Service,
    V1ServiceAccount,
    V1ServicePort,
    V1ServiceSpec,
    V1Volume,
)

from provisioner.models.domain.kubernetes import ObjectKind
from provisioner.services.diff import (
    DIFF_FUNCTIONS,
    Diff,
    changed_fields,
    diff_config_map,
    diff_deployment,
    diff_job,
    diff_role,
    diff_role_binding,
    diff_routing,
    diff_secret,
    diff_service,
    diff_service_account,
)

IN_SYNC = Diff()
UPDATE = Diff(should_update=True)
DELETE = Diff(should_delete=True)


def _meta(**kwargs: dict[str, str]) -> V1ObjectMeta:
    return V1ObjectMeta(name="obj", namespace="user-ns", **kwargs)


def _pod_spec(image: str = "example.com/app:1") -> V1PodSpec:
    return V1PodSpec(
        containers=[
            V1Container(name="b", image=image),
            V1Container(name="a", image="example.com/helper:1"),
        ],
        volumes=[V1Volume(name="data")],
    )


def test_config_map() -> None:
    desired = V1ConfigMap(metadata=_meta(labels={"a": "b"}), data={"k": "v"})
    actual = copy.deepcopy(desired)
    actual.metadata.labels["extra"] = "label"
    actual.metadata.annotations = {"added": "by-someone"}
    actual.metadata.resource_version = "5"
    assert diff_config_map(desired, actual) == IN_SYNC

    actual.metadata.labels["a"] = "c"
    assert diff_config_map(desired, actual) == UPDATE
    actual = copy.deepcopy(desired)
    actual.data["other"] = "key"
    assert diff_config_map(desired, actual) == UPDATE
    actual = copy.deepcopy(desired)
    actual.binary_data = {"bin": "Zm9v"}
    assert diff_config_map(desired, actual) == UPDATE


def test_deployment() -> None:
    desired = V1Deployment(
        metadata=_meta(),
        spec=V1DeploymentSpec(
            replicas=1,
            selector=V1LabelSelector(match_labels={"app": "x"}),
            template=V1PodTemplateSpec(spec=_pod_spec()),
        ),
    )
    actual = copy.deepcopy(desired)

    # Defaults filled in by the API server and reordered lists are ignored.
    actual.spec.revision_history_limit = 10
    actual.spec.template.spec.dns_policy = "ClusterFirst"
    actual.spec.template.spec.containers.reverse()
    for container in actual.spec.template.spec.containers:
        container.termination_message_path = "/dev/termination-log"
        container.image_pull_policy = "IfNotPresent"
    assert diff_deployment(desired, actual) == IN_SYNC

    # Ignored fields in the desired object are ignored as well.
    desired.spec.template.spec.containers[0].image_pull_policy = "Always"
    assert diff_deployment(desired, actual) == IN_SYNC

    desired.spec.replicas = 0
    assert diff_deployment(desired, actual) == UPDATE
    desired.spec.replicas = 1
    desired.spec.template.spec.containers[0].image = "example.com/app:2"
    assert diff_deployment(desired, actual) == UPDATE
    desired.spec.selector = V1LabelSelector(match_labels={"app": "y"})
    assert diff_deployment(desired, actual) == DELETE


def test_job() -> None:
    desired = V1Job(
        metadata=_meta(labels={"id": "1"}),
        spec=V1JobSpec(template=V1PodTemplateSpec(spec=_pod_spec())),
    )
    actual = copy.deepcopy(desired)
    actual.spec.backoff_limit = 6
    actual.spec.template.spec.restart_policy = "Never"
    assert diff_job(desired, actual) == IN_SYNC

    actual.metadata.labels = {"id": "2"}
    assert diff_job(desired, actual) == UPDATE
    desired.spec.template.spec.containers[0].image = "example.com/app:2"
    assert diff_job(desired, actual) == DELETE


def test_role() -> None:
    rule = V1PolicyRule(
        api_groups=[""], resources=["pods"], verbs=["get", "list"]
    )
    desired = V1Role(metadata=_meta(), rules=[rule])
    actual = copy.deepcopy(desired)
    assert diff_role(desired, actual) == IN_SYNC
    actual.rules[0].verbs = ["get"]
    assert diff_role(desired, actual) == UPDATE


def test_role_binding() -> None:
    desired = V1RoleBinding(
        metadata=_meta(),
        role_ref=V1RoleRef(api_group="", kind="Role", name="reader"),
        subjects=[RbacV1Subject(kind="ServiceAccount", name="workspace")],
    )
    actual = copy.deepcopy(desired)
    actual.role_ref.api_group = "rbac.authorization.k8s.io"
    actual.subjects[0].api_group = ""
    assert diff_role_binding(desired, actual) == IN_SYNC

    actual.subjects[0].name = "other"
    assert diff_role_binding(desired, actual) == UPDATE
    actual = copy.deepcopy(desired)
    actual.role_ref.name = "writer"
    assert diff_role_binding(desired, actual) == UPDATE


def test_routing() -> None:
    desired = {
        "kind": "DevWorkspaceRouting",
        "metadata": {"name": "routing", "labels": {"id": "1"}},
        "spec": {"routingClass": "basic", "endpoints": {"tools": []}},
    }
    actual = copy.deepcopy(desired)
    actual["status"] = {"phase": "Ready"}
    assert diff_routing(desired, actual) == IN_SYNC

    actual["spec"]["endpoints"] = {"tools": [{"name": "http"}]}
    assert diff_routing(desired, actual) == UPDATE
    actual = copy.deepcopy(desired)
    actual["metadata"]["labels"] = {}
    assert diff_routing(desired, actual) == UPDATE
    actual["spec"]["routingClass"] = "cluster"
    assert diff_routing(desired, actual) == DELETE


def test_secret() -> None:
    desired = V1Secret(metadata=_meta(), data={"k": "dg=="})
    actual = copy.deepcopy(desired)
    actual.type = "Opaque"
    assert diff_secret(desired, actual) == IN_SYNC

    desired.type = "kubernetes.io/ssh-auth"
    assert diff_secret(desired, actual) == UPDATE
    desired.type = "Opaque"
    desired.data = {"k": "dw=="}
    assert diff_secret(desired, actual) == UPDATE


def test_service() -> None:
    desired = V1Service(
        metadata=_meta(),
        spec=V1ServiceSpec(
            selector={"app": "x"},
            ports=[V1ServicePort(name="ssh", port=2222, protocol="TCP")],
        ),
    )
    actual = copy.deepcopy(desired)
    actual.spec.type = "ClusterIP"
    actual.spec.cluster_ip = "10.0.0.12"
    actual.spec.ports[0].target_port = 2222
    assert diff_service(desired, actual) == IN_SYNC

    desired.spec.ports[0].port = 2223
    assert diff_service(desired, actual) == UPDATE
    desired.spec.ports[0].port = 2222
    desired.spec.type = "NodePort"
    assert diff_service(desired, actual) == UPDATE
    desired.spec.type = None
    desired.spec.selector = {"app": "y"}
    assert diff_service(desired, actual) == UPDATE


def test_service_account() -> None:
    desired = V1ServiceAccount(metadata=_meta(annotations={"a": "b"}))
    actual = copy.deepcopy(desired)
    actual.secrets = []
    assert diff_service_account(desired, actual) == IN_SYNC
    actual.metadata.annotations = None
    assert diff_service_account(desired, actual) == UPDATE


def test_diff_functions() -> None:
    assert ObjectKind.PERSISTENT_VOLUME_CLAIM not in DIFF_FUNCTIONS
    assert DIFF_FUNCTIONS[ObjectKind.JOB] is diff_job


def test_changed_fields() -> None:
    desired = V1ConfigMap(metadata=_meta(labels={"a": "b"}), data={"k": "v"})
    actual = copy.deepcopy(desired)
    actual.metadata.resource_version = "2"
    assert changed_fields(desired, actual) == []

    actual.data = {"k": "w"}
    actual.metadata.labels = {}
    assert changed_fields(desired, actual) == ["data", "metadata"]

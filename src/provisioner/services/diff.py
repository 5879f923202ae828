"""Per-kind comparison of desired and cluster objects.

Each diff function takes the desired object and the object read from the
cluster and returns a `Diff`. Objects are compared in their dict form with
`None` treated the same as an absent field. Most structures are compared as
a subset: a field the desired object leaves unset is defaulted by the API
server and is never drift. Data maps are compared exactly, so a removed key
is noticed.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from ..models.domain.kubernetes import (
    ClusterObject,
    ObjectKind,
    object_annotations,
    object_labels,
)

__all__ = [
    "DIFF_FUNCTIONS",
    "Diff",
    "changed_fields",
]

_NAMED_LISTS = frozenset(
    {"containers", "init_containers", "volumes", "volume_mounts"}
)
"""List fields whose cluster ordering may differ from the desired order."""

_IGNORED_POD_FIELDS = ("dns_policy", "scheduler_name", "service_account")
_IGNORED_CONTAINER_FIELDS = (
    "termination_message_path",
    "termination_message_policy",
    "image_pull_policy",
)
_IGNORED_DEPLOYMENT_FIELDS = (
    "revision_history_limit",
    "progress_deadline_seconds",
)
_SERVICE_PORT_FIELDS = ("name", "port", "target_port", "protocol")

_SERVER_MANAGED_FIELDS = frozenset(
    {"status", "api_version", "kind", "metadata"}
)


@dataclass(frozen=True)
class Diff:
    """Result of comparing a desired object against the cluster."""

    should_delete: bool = False
    """An immutable field changed and the object must be recreated."""

    should_update: bool = False
    """A mutable field changed and the object should be replaced."""


_IN_SYNC = Diff()
_DELETE = Diff(should_delete=True)
_UPDATE = Diff(should_update=True)


def _as_dict(obj: ClusterObject) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _prune(value: Any) -> Any:
    """Drop `None` values and empty containers, recursively."""
    if isinstance(value, dict):
        pruned = {k: _prune(v) for k, v in value.items()}
        return {k: v for k, v in pruned.items() if v not in (None, {}, [])}
    if isinstance(value, list):
        return [_prune(v) for v in value]
    return value


def _sort_named(value: Any) -> Any:
    """Sort containers, volumes and mounts by name, recursively."""
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            item = _sort_named(item)
            if key in _NAMED_LISTS and isinstance(item, list):
                item = sorted(item, key=lambda e: str(e.get("name", "")))
            result[key] = item
        return result
    if isinstance(value, list):
        return [_sort_named(v) for v in value]
    return value


def _normalize(value: Any) -> Any:
    return _sort_named(_prune(value))


def _matches(desired: Any, actual: Any) -> bool:
    """Whether every field set in ``desired`` has the same value in
    ``actual``.
    """
    if isinstance(desired, dict):
        if not isinstance(actual, dict):
            return False
        return all(_matches(v, actual.get(k)) for k, v in desired.items())
    if isinstance(desired, list):
        if not isinstance(actual, list) or len(desired) != len(actual):
            return False
        pairs = zip(desired, actual, strict=True)
        return all(_matches(d, a) for d, a in pairs)
    return desired == actual


def _without(value: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    return {k: v for k, v in value.items() if k not in fields}


def _metadata_matches(desired: ClusterObject, actual: ClusterObject) -> bool:
    """Whether the cluster object carries all desired labels and
    annotations.
    """
    labels = object_labels(actual)
    annotations = object_annotations(actual)
    return all(
        labels.get(k) == v for k, v in object_labels(desired).items()
    ) and all(
        annotations.get(k) == v
        for k, v in object_annotations(desired).items()
    )


def _strip_pod_spec(pod_spec: dict[str, Any]) -> dict[str, Any]:
    """Remove the pod and container fields excluded from comparison."""
    result = _without(pod_spec, _IGNORED_POD_FIELDS)
    for key in ("containers", "init_containers"):
        if key in result:
            result[key] = [
                _without(c, _IGNORED_CONTAINER_FIELDS) for c in result[key]
            ]
    return result


def _strip_template(template: dict[str, Any]) -> dict[str, Any]:
    if "spec" not in template:
        return template
    return {**template, "spec": _strip_pod_spec(template["spec"])}


def _spec(obj: ClusterObject) -> dict[str, Any]:
    return _normalize(_as_dict(obj).get("spec") or {})


def diff_config_map(desired: ClusterObject, actual: ClusterObject) -> Diff:
    """Compare ConfigMaps by metadata, then by their data."""
    if not _metadata_matches(desired, actual):
        return _UPDATE
    want = _prune(_as_dict(desired))
    have = _prune(_as_dict(actual))
    for field in ("data", "binary_data"):
        if want.get(field) != have.get(field):
            return _UPDATE
    return _IN_SYNC


def diff_deployment(desired: ClusterObject, actual: ClusterObject) -> Diff:
    """Compare Deployments, recreating them if the selector changed."""
    want = _spec(desired)
    have = _spec(actual)
    if want.get("selector") != have.get("selector"):
        return _DELETE
    want = _without(want, _IGNORED_DEPLOYMENT_FIELDS)
    if "template" in want:
        want["template"] = _strip_template(want["template"])
    if not _matches(want, have):
        return _UPDATE
    return _IN_SYNC


def diff_job(desired: ClusterObject, actual: ClusterObject) -> Diff:
    """Compare Jobs, recreating them if the pod template changed.

    The pod template of a Job cannot be changed after creation.
    """
    want = _strip_template(_spec(desired).get("template") or {})
    have = _spec(actual).get("template") or {}
    if not _matches(want.get("spec") or {}, have.get("spec") or {}):
        return _DELETE
    if not _metadata_matches(desired, actual):
        return _UPDATE
    return _IN_SYNC


def diff_role(desired: ClusterObject, actual: ClusterObject) -> Diff:
    """Compare Roles by their rules."""
    want = _prune(_as_dict(desired)).get("rules") or []
    have = _prune(_as_dict(actual)).get("rules") or []
    return _IN_SYNC if _matches(want, have) else _UPDATE


def diff_role_binding(desired: ClusterObject, actual: ClusterObject) -> Diff:
    """Compare RoleBindings by role reference and subjects."""
    want = _prune(_as_dict(desired))
    have = _prune(_as_dict(actual))
    want_ref = _without(want.get("role_ref") or {}, ("api_group",))
    have_ref = _without(have.get("role_ref") or {}, ("api_group",))
    if want_ref != have_ref:
        return _UPDATE
    want_subjects = [
        _without(s, ("api_group",)) for s in want.get("subjects") or []
    ]
    have_subjects = [
        _without(s, ("api_group",)) for s in have.get("subjects") or []
    ]
    if want_subjects != have_subjects:
        return _UPDATE
    return _IN_SYNC


def diff_routing(desired: ClusterObject, actual: ClusterObject) -> Diff:
    """Compare routing custom objects, recreating on a new routing class."""
    want = _prune(_as_dict(desired).get("spec") or {})
    have = _prune(_as_dict(actual).get("spec") or {})
    if want.get("routingClass") != have.get("routingClass"):
        return _DELETE
    if not _metadata_matches(desired, actual):
        return _UPDATE
    return _IN_SYNC if want == have else _UPDATE


def diff_secret(desired: ClusterObject, actual: ClusterObject) -> Diff:
    """Compare Secrets by metadata, then by type and data."""
    if not _metadata_matches(desired, actual):
        return _UPDATE
    want = _prune(_as_dict(desired))
    have = _prune(_as_dict(actual))
    if want.get("type") and want.get("type") != have.get("type"):
        return _UPDATE
    if want.get("data") != have.get("data"):
        return _UPDATE
    return _IN_SYNC


def diff_service(desired: ClusterObject, actual: ClusterObject) -> Diff:
    """Compare Services by metadata, selector, type and ports."""
    if not _metadata_matches(desired, actual):
        return _UPDATE
    want = _spec(desired)
    have = _spec(actual)
    if want.get("selector") != have.get("selector"):
        return _UPDATE
    if want.get("type") and want.get("type") != have.get("type"):
        return _UPDATE
    want_ports = [
        {k: v for k, v in p.items() if k in _SERVICE_PORT_FIELDS}
        for p in want.get("ports") or []
    ]
    if not _matches(want_ports, have.get("ports") or []):
        return _UPDATE
    return _IN_SYNC


def diff_service_account(
    desired: ClusterObject, actual: ClusterObject
) -> Diff:
    """Compare ServiceAccounts by their labels and annotations."""
    return _IN_SYNC if _metadata_matches(desired, actual) else _UPDATE


DIFF_FUNCTIONS: dict[ObjectKind, Callable[[Any, Any], Diff]] = {
    ObjectKind.CONFIG_MAP: diff_config_map,
    ObjectKind.DEPLOYMENT: diff_deployment,
    ObjectKind.JOB: diff_job,
    ObjectKind.ROLE: diff_role,
    ObjectKind.ROLE_BINDING: diff_role_binding,
    ObjectKind.ROUTING: diff_routing,
    ObjectKind.SECRET: diff_secret,
    ObjectKind.SERVICE: diff_service,
    ObjectKind.SERVICE_ACCOUNT: diff_service_account,
}
"""Comparison policy for each kind the sync engine can update."""


def changed_fields(desired: ClusterObject, actual: ClusterObject) -> list[str]:
    """List the top-level fields that differ between two objects.

    Used only for logging, so the comparison is exact rather than following
    the per-kind policy.

    Parameters
    ----------
    desired
        Desired object.
    actual
        Object as read from the cluster.

    Returns
    -------
    list of str
        Sorted names of the differing fields, with ``metadata`` included if
        the labels or annotations differ.
    """
    want = _normalize(_as_dict(desired))
    have = _normalize(_as_dict(actual))
    fields = {
        k
        for k in set(want) | set(have)
        if k not in _SERVER_MANAGED_FIELDS and want.get(k) != have.get(k)
    }
    if not _metadata_matches(desired, actual):
        fields.add("metadata")
    return sorted(fields)

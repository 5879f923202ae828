"""Tests for provisioning exceptions."""

from __future__ import annotations

from datetime import timedelta

from anys import AnyContains
from kubernetes_asyncio.client import ApiException

from provisioner.exceptions import (
    FailError,
    KubernetesError,
    NotInSyncError,
    RetryError,
    SyncReason,
    UnrecoverableSyncError,
    UnsupportedStorageStrategyError,
    WarningError,
    wrap_sync_error,
)


def test_wrap_sync_error() -> None:
    exc = NotInSyncError("ConfigMap", "foo", SyncReason.CREATED)
    wrapped = wrap_sync_error(exc)
    assert isinstance(wrapped, RetryError)
    assert wrapped.requeue_after == timedelta(0)
    assert str(wrapped) == "ConfigMap foo is not ready: created"

    cause = UnrecoverableSyncError("object is invalid")
    wrapped = wrap_sync_error(cause)
    assert isinstance(wrapped, FailError)
    assert wrapped.cause is cause
    assert str(wrapped) == "Failed to sync object: object is invalid"

    other = ValueError("something else")
    assert wrap_sync_error(other) is other


def test_unsupported_strategy() -> None:
    exc = UnsupportedStorageStrategyError("magic")
    assert isinstance(exc, FailError)
    assert exc.strategy == "magic"
    assert str(exc) == "Configured storage type not supported: magic"


def test_warning_error() -> None:
    exc = WarningError("ignored unsupported volume option")
    assert not isinstance(exc, RetryError | FailError)
    assert str(exc) == "ignored unsupported volume option"


def test_kubernetes_error() -> None:
    api_exc = ApiException(status=409, reason="Conflict")
    exc = KubernetesError.from_exception(
        "Error creating object",
        api_exc,
        kind="Secret",
        namespace="user-ns",
        name="foo",
    )
    assert exc.conflict
    assert not exc.not_found
    assert not exc.invalid
    assert str(exc) == (
        "Error creating object (Secret user-ns/foo, status 409): Conflict"
    )

    exc = KubernetesError("Error listing objects", kind="Pod", status=422)
    assert exc.invalid
    assert str(exc) == "Error listing objects (Pod, status 422)"

    slack = exc.to_slack()
    assert slack.message == "Error listing objects (Pod, status 422)"
    assert slack.fields[-1].text == "422"

    exc = KubernetesError(
        "Error listing objects", kind="Job", namespace="user-ns"
    )
    assert exc.target == "Job in namespace user-ns"
    assert str(exc) == "Error listing objects (Job in namespace user-ns)"
    assert KubernetesError("Error reading object").target is None


def test_kubernetes_error_slack() -> None:
    error = KubernetesError(
        "Error replacing object",
        kind="ConfigMap",
        namespace="user-ns",
        name="async-storage-config",
        status=409,
        body="Operation cannot be fulfilled",
    )

    slack = error.to_slack().to_slack()
    assert slack == {
        "blocks": [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        "Error replacing object (ConfigMap"
                        " user-ns/async-storage-config, status 409)"
                    ),
                    "verbatim": True,
                },
            },
            {
                "type": "section",
                "fields": [
                    {
                        "type": "mrkdwn",
                        "text": "*Exception type*\nKubernetesError",
                        "verbatim": True,
                    },
                    {
                        "type": "mrkdwn",
                        "text": AnyContains("*Failed at*"),
                        "verbatim": True,
                    },
                    {
                        "type": "mrkdwn",
                        "text": "*Status*\n409",
                        "verbatim": True,
                    },
                ],
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": "*Object*\nConfigMap user-ns/async-storage-config",
                    "verbatim": True,
                },
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": "*Error*\n```\nOperation cannot be fulfilled\n```",
                    "verbatim": True,
                },
            },
            {"type": "divider"},
        ]
    }

"""Exceptions for the workspace provisioner.

Provisioning outcomes are reported with three exceptions that callers above
this package inspect to decide what to do next: `RetryError` (requeue the
workspace, optionally after a delay), `FailError` (mark the workspace
failed), and `WarningError` (report without blocking). Any other exception,
such as `KubernetesError`, is a generic failure that callers treat as
retryable.
"""

from __future__ import annotations

from datetime import timedelta
from http import HTTPStatus
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.slack.blockkit import (
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)

__all__ = [
    "DuplicateObjectError",
    "FailError",
    "KubernetesError",
    "NotInSyncError",
    "ProvisioningError",
    "RetryError",
    "SyncReason",
    "UnrecoverableSyncError",
    "UnsupportedStorageStrategyError",
    "WarningError",
    "wrap_sync_error",
]


class ProvisioningError(Exception):
    """Base class for provisioning outcomes other than success.

    Parameters
    ----------
    message
        User-facing explanation of the problem.
    cause
        Underlying exception, if any.
    """

    def __init__(
        self, message: str, *, cause: BaseException | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    @override
    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause!s}"
        return self.message


class RetryError(ProvisioningError):
    """The operation should be retried.

    Raised when the cluster has not yet converged, such as right after an
    object was created or while a deployment is starting. A zero delay asks
    for an immediate retry.

    Parameters
    ----------
    message
        Explanation of what is pending.
    cause
        Underlying exception, if any.
    requeue_after
        How long the caller should wait before retrying.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        requeue_after: timedelta = timedelta(0),
    ) -> None:
        super().__init__(message, cause=cause)
        self.requeue_after = requeue_after


class FailError(ProvisioningError):
    """The operation cannot succeed without a change to its inputs.

    The workspace should be marked as failed and the message shown to the
    user.
    """


class UnsupportedStorageStrategyError(FailError):
    """The workspace requested a storage strategy that does not exist.

    Parameters
    ----------
    strategy
        Requested strategy.
    """

    def __init__(self, strategy: str) -> None:
        msg = f"Configured storage type not supported: {strategy}"
        super().__init__(msg)
        self.strategy = strategy


class WarningError(ProvisioningError):
    """A non-fatal problem that should be reported to the user."""


class SyncReason:
    """Reasons why an object is not yet in sync with the cluster."""

    CREATED = "created"
    """The object was just created."""

    UPDATED = "updated"
    """The object was just updated."""

    DELETED = "deleted"
    """The object was deleted so that it can be recreated."""

    NEED_RETRY = "need-retry"
    """A concurrent change got in the way and the sync must be repeated."""


class NotInSyncError(Exception):
    """The sync engine changed an object and the caller should check again.

    Parameters
    ----------
    kind
        Kind of the object.
    name
        Name of the object.
    reason
        What the sync engine did, one of the `SyncReason` values.
    """

    def __init__(self, kind: str, name: str, reason: str) -> None:
        super().__init__(f"{kind} {name} is not ready: {reason}")
        self.kind = kind
        self.name = name
        self.reason = reason


class UnrecoverableSyncError(Exception):
    """The desired object can never be synced to the cluster.

    Usually this means the API server rejected the object as invalid.

    Parameters
    ----------
    cause
        Underlying error.
    """

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(str(cause))
        self.cause = cause


def wrap_sync_error(exc: Exception) -> Exception:
    """Translate a sync engine exception into a provisioning outcome.

    Parameters
    ----------
    exc
        Exception raised by the sync engine.

    Returns
    -------
    Exception
        `RetryError` for `NotInSyncError`, `FailError` for
        `UnrecoverableSyncError`, and the original exception otherwise.
    """
    match exc:
        case NotInSyncError():
            return RetryError(str(exc))
        case UnrecoverableSyncError():
            return FailError("Failed to sync object", cause=exc)
        case _:
            return exc


class DuplicateObjectError(ValueError):
    """Two objects in a collection that must be unique share a name.

    Parameters
    ----------
    kind
        Kind of the duplicated object.
    name
        Duplicated name.
    """

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"Duplicate {kind} name {name}")
        self.kind = kind
        self.name = name


class KubernetesError(SlackException):
    """The Kubernetes API server returned an error the store did not handle.

    The HTTP status is kept so that callers can tell a missing object, a
    write conflict, and a rejected object apart. Any other status is a
    generic failure that the caller retries.

    Parameters
    ----------
    message
        What the store was doing, such as ``Error creating object``.
    kind
        Kind of the object, if known.
    namespace
        Namespace of the object, if it is namespaced.
    name
        Name of the object, unset for calls that list objects.
    status
        HTTP status from the API server.
    body
        Error text from the API server.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Wrap an exception raised by ``kubernetes_asyncio``.

        The response body is used as the error text, falling back on the
        HTTP reason phrase when the body is empty.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body or exc.reason,
        )

    @property
    def conflict(self) -> bool:
        """Whether the object already exists or changed since it was read."""
        return self.status == HTTPStatus.CONFLICT

    @property
    def invalid(self) -> bool:
        """Whether the API server rejected the object as invalid."""
        return self.status == HTTPStatus.UNPROCESSABLE_ENTITY

    @property
    def not_found(self) -> bool:
        """Whether the object does not exist."""
        return self.status == HTTPStatus.NOT_FOUND

    @property
    def target(self) -> str | None:
        """Object or set of objects the failed call was about."""
        if not self.name:
            if self.kind and self.namespace:
                return f"{self.kind} in namespace {self.namespace}"
            return self.kind
        path = f"{self.namespace}/{self.name}" if self.namespace else self.name
        return f"{self.kind} {path}" if self.kind else path

    @override
    def __str__(self) -> str:
        if self.body:
            return f"{self._summary()}: {self.body}"
        return self._summary()

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            status = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(status)
        if target := self.target:
            block = SlackTextBlock(heading="Object", text=target)
            message.blocks.append(block)
        if self.body:
            body = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(body)
        return message

    def _summary(self) -> str:
        details = [self.target] if self.target else []
        if self.status:
            details.append(f"status {self.status}")
        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"

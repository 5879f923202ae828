"""Detect pods that will never start successfully."""

from __future__ import annotations

from collections.abc import Iterable

from kubernetes_asyncio.client import CoreV1Event, V1ContainerStatus, V1Pod
from structlog.stdlib import BoundLogger

from ..models.domain.kubernetes import ObjectKind
from ..storage.kubernetes.cluster import ClusterObjectStore
from ..timeout import Timeout

__all__ = [
    "UNRECOVERABLE_CONTAINER_REASONS",
    "UNRECOVERABLE_EVENTS",
    "PodInspector",
]

UNRECOVERABLE_CONTAINER_REASONS = frozenset(
    {
        "CrashLoopBackOff",
        "ImagePullBackOff",
        "CreateContainerError",
        "RunContainerError",
    }
)
"""Container waiting or terminated reasons that will not clear on their own."""

UNRECOVERABLE_EVENTS = {
    "FailedPostStartHook": 1,
    "FailedMount": 3,
    "FailedScheduling": 1,
    "FailedCreate": 1,
    "ReplicaSetCreateError": 1,
}
"""Event reasons treated as fatal, with the count at which they become so."""


class PodInspector:
    """Look for signs that the pods of a workload are stuck.

    Parameters
    ----------
    store
        Cluster object store.
    ignored_reasons
        Container state and event reasons that are never treated as fatal.
    logger
        Logger to use.
    """

    def __init__(
        self,
        store: ClusterObjectStore,
        *,
        ignored_reasons: Iterable[str] = (),
        logger: BoundLogger,
    ) -> None:
        self._store = store
        self._ignored = frozenset(ignored_reasons)
        self._logger = logger

    async def check_pods(
        self, namespace: str, label_selector: str, timeout: Timeout
    ) -> str | None:
        """Check every pod matching a selector for unrecoverable problems.

        Parameters
        ----------
        namespace
            Namespace of the pods.
        label_selector
            Label selector matching the pods to check.
        timeout
            Timeout on the Kubernetes calls.

        Returns
        -------
        str or None
            Message describing the first problem found, or `None` if the
            pods look healthy so far.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        pods = await self._store.list(
            ObjectKind.POD, namespace, timeout, label_selector=label_selector
        )
        for pod in pods:
            if msg := self.check_container_statuses(pod):
                return msg
            if msg := await self._check_events(pod, timeout):
                return msg
        return None

    def check_container_statuses(self, pod: V1Pod) -> str | None:
        """Check the containers of a pod for unrecoverable states.

        Parameters
        ----------
        pod
            Pod to check.

        Returns
        -------
        str or None
            Message describing the problem, or `None` if none was found.
        """
        if not pod.status:
            return None
        groups = (
            ("Container", pod.status.container_statuses),
            ("Init Container", pod.status.init_container_statuses),
        )
        for label, statuses in groups:
            for status in statuses or []:
                reason = self._container_reason(status)
                if reason:
                    return f"{label} {status.name} has state {reason}"
        return None

    def check_event(self, event: CoreV1Event) -> str | None:
        """Check whether an event indicates an unrecoverable problem.

        Parameters
        ----------
        event
            Event for a pod.

        Returns
        -------
        str or None
            Message describing the problem, or `None` if the event is not
            fatal.
        """
        reason = event.reason
        if reason not in UNRECOVERABLE_EVENTS or reason in self._ignored:
            return None
        count = event.count or 1
        if count < UNRECOVERABLE_EVENTS[reason]:
            return None
        if count > 1:
            return (
                f"Detected unrecoverable event {reason} {count} times:"
                f" {event.message}."
            )
        return f"Detected unrecoverable event {reason}: {event.message}."

    async def _check_events(self, pod: V1Pod, timeout: Timeout) -> str | None:
        selector = f"involvedObject.name={pod.metadata.name}"
        events = await self._store.list(
            ObjectKind.EVENT,
            pod.metadata.namespace,
            timeout,
            field_selector=selector,
        )
        for event in events:
            if msg := self.check_event(event):
                self._logger.debug(
                    "Found unrecoverable pod event",
                    pod=pod.metadata.name,
                    reason=event.reason,
                )
                return msg
        return None

    def _container_reason(self, status: V1ContainerStatus) -> str | None:
        state = status.state
        if not state:
            return None
        for detail in (state.waiting, state.terminated):
            if not detail:
                continue
            reason = detail.reason
            if (
                reason in UNRECOVERABLE_CONTAINER_REASONS
                and reason not in self._ignored
            ):
                return reason
        return None

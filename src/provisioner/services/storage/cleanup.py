"""Remove the files of one workspace from a shared PVC."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1Container,
    V1Job,
    V1JobSpec,
    V1ObjectMeta,
    V1PersistentVolumeClaimVolumeSource,
    V1PodSpec,
    V1PodTemplateSpec,
    V1ResourceRequirements,
    V1Volume,
    V1VolumeMount,
)
from structlog.stdlib import BoundLogger

from ...constants import (
    CLEANUP_JOB_MOUNT_PATH,
    CLEANUP_JOB_POLL_INTERVAL,
    WORKSPACE_ID_LABEL,
)
from ...exceptions import FailError, RetryError
from ...models.domain.workspace import Workspace
from ...timeout import Timeout
from ..namespace import NamespacedConfig
from ..podstatus import PodInspector
from ..sync import SyncEngine

__all__ = ["CleanupJobRunner"]

_CLEANUP_VOLUME_NAME = "claim-devworkspace"
_CLEANUP_RESOURCES = V1ResourceRequirements(
    requests={"memory": "32Mi", "cpu": "5m"},
    limits={"memory": "100Mi", "cpu": "50m"},
)


class CleanupJobRunner:
    """Run and monitor the Job that deletes a workspace's files.

    The Job is created on the first call and checked on every later one.
    Each call returns only once the Job has completed, raising `RetryError`
    while it is still running.

    Parameters
    ----------
    sync
        Sync engine.
    inspector
        Pod inspector used to detect Job pods that are stuck.
    image
        Image to run, which must provide ``/bin/sh`` and ``rm``.
    logger
        Logger to use.
    """

    def __init__(
        self,
        sync: SyncEngine,
        inspector: PodInspector,
        *,
        image: str,
        logger: BoundLogger,
    ) -> None:
        self._sync = sync
        self._inspector = inspector
        self._image = image
        self._logger = logger

    async def run(
        self,
        workspace: Workspace,
        pvc_name: str,
        namespace_config: NamespacedConfig,
        timeout: Timeout,
    ) -> None:
        """Make sure the cleanup Job for a workspace has completed.

        Parameters
        ----------
        workspace
            Workspace whose files should be removed.
        pvc_name
            Name of the shared PVC.
        namespace_config
            Overrides for the namespace, for tolerations and node selector.
        timeout
            Timeout on the Kubernetes calls.

        Raises
        ------
        FailError
            Raised if the Job failed or its pods cannot run.
        RetryError
            Raised if the Job was just created or is still running, or if
            the workspace has not yet been assigned an ID.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        # Without an ID the Job would delete the whole shared volume.
        if not workspace.workspace_id:
            raise RetryError(
                f"Workspace {workspace.name} has no ID yet",
                requeue_after=CLEANUP_JOB_POLL_INTERVAL,
            )
        job = self.build_job(workspace, pvc_name, namespace_config)
        cluster_job = await self._sync.ensure(job, timeout)
        name = job.metadata.name
        status = cluster_job.status
        for condition in (status.conditions if status else None) or []:
            if condition.status != "True":
                continue
            if condition.type == "Complete":
                self._logger.info(
                    "Cleanup job completed",
                    name=name,
                    namespace=workspace.namespace,
                    workspace=workspace.name,
                )
                return
            if condition.type == "Failed":
                msg = (
                    "DevWorkspace PVC cleanup job failed: see logs for job"
                    f' "{name}" for details'
                )
                raise FailError(msg)
        selector = f"job-name={name}"
        problem = await self._inspector.check_pods(
            workspace.namespace, selector, timeout
        )
        if problem:
            raise FailError(problem)
        raise RetryError(
            "Cleanup job is not complete",
            requeue_after=CLEANUP_JOB_POLL_INTERVAL,
        )

    def build_job(
        self,
        workspace: Workspace,
        pvc_name: str,
        namespace_config: NamespacedConfig,
    ) -> V1Job:
        """Construct the cleanup Job for a workspace.

        Parameters
        ----------
        workspace
            Workspace whose files should be removed.
        pvc_name
            Name of the shared PVC.
        namespace_config
            Overrides for the namespace.

        Returns
        -------
        kubernetes_asyncio.client.V1Job
            Job to sync.
        """
        workspace_id = workspace.workspace_id
        labels = {WORKSPACE_ID_LABEL: workspace_id}
        target = f"{CLEANUP_JOB_MOUNT_PATH}{workspace_id}"
        container = V1Container(
            name="cleanup",
            image=self._image,
            command=["/bin/sh"],
            args=["-c", f"rm -rf {target}"],
            resources=_CLEANUP_RESOURCES,
            volume_mounts=[
                V1VolumeMount(
                    name=_CLEANUP_VOLUME_NAME,
                    mount_path=CLEANUP_JOB_MOUNT_PATH,
                )
            ],
        )
        volume = V1Volume(
            name=_CLEANUP_VOLUME_NAME,
            persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                claim_name=pvc_name
            ),
        )
        return V1Job(
            api_version="batch/v1",
            kind="Job",
            metadata=V1ObjectMeta(
                name=f"cleanup-{workspace_id}",
                namespace=workspace.namespace,
                labels=labels,
                owner_references=[workspace.owner_reference()],
            ),
            spec=V1JobSpec(
                completions=1,
                backoff_limit=3,
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=labels),
                    spec=V1PodSpec(
                        restart_policy="Never",
                        containers=[container],
                        volumes=[volume],
                        tolerations=namespace_config.to_tolerations(),
                        node_selector=namespace_config.node_selector or None,
                    ),
                ),
            ),
        )

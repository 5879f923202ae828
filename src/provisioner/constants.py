"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "ASYNC_AUTHORIZED_KEYS_CONFIGMAP",
    "ASYNC_AUTHORIZED_KEYS_KEY",
    "ASYNC_DEPLOYMENT_NAME",
    "ASYNC_RETRY_INTERVAL",
    "ASYNC_SERVER_CONTAINER_NAME",
    "ASYNC_SERVER_MOUNT_PATH",
    "ASYNC_SERVER_PORT",
    "ASYNC_SERVICE_NAME",
    "ASYNC_SIDECAR_CONTAINER_NAME",
    "ASYNC_SIDECAR_MEMORY_LIMIT",
    "ASYNC_SIDECAR_MEMORY_REQUEST",
    "ASYNC_SIDECAR_PORT",
    "ASYNC_SSH_KEY_NAME",
    "ASYNC_SSH_MOUNT_PATH",
    "AUTOMOUNT_LABEL",
    "AUTOMOUNT_PREFIX",
    "CLEANUP_JOB_MOUNT_PATH",
    "CLEANUP_JOB_POLL_INTERVAL",
    "COMMON_PVC_TERMINATING_INTERVAL",
    "COMPONENT_LABEL",
    "CONFIGURATION_PATH",
    "DEFAULT_ACCESS_MODE",
    "GIT_CREDENTIALS_KEY",
    "GIT_CREDENTIALS_SECRET_NAME",
    "GIT_CREDENTIAL_LABEL",
    "GIT_TLS_LABEL",
    "GITCONFIG_CONFIGMAP_NAME",
    "GITCONFIG_KEY",
    "GITCONFIG_MOUNT_PATH",
    "KUBERNETES_NAME_LIMIT",
    "MOUNT_ACCESS_MODE_ANNOTATION",
    "MOUNT_AS_ANNOTATION",
    "MOUNT_PATH_ANNOTATION",
    "NAMESPACED_CONFIG_LABEL",
    "NODE_SELECTOR_ANNOTATION",
    "PART_OF_LABEL",
    "PART_OF_VALUE",
    "POD_TOLERATIONS_ANNOTATION",
    "PROJECTS_VOLUME_NAME",
    "READ_ONLY_ANNOTATION",
    "RESERVED_MOUNT_PATHS",
    "STORAGE_TYPE_ATTRIBUTE",
    "WATCH_CONFIGMAP_LABEL",
    "WATCH_SECRET_LABEL",
    "WORKSPACE_ID_LABEL",
]

CONFIGURATION_PATH = Path("/etc/provisioner/config.yaml")
"""Default path to provisioner configuration."""

KUBERNETES_NAME_LIMIT = 63
"""Maximum length of a Kubernetes label value or DNS-1123 label."""

# Labels and annotations.

AUTOMOUNT_LABEL = "controller.devfile.io/mount-to-devworkspace"
"""Label marking a ConfigMap, Secret, or PVC for mounting into workspaces."""

MOUNT_AS_ANNOTATION = "controller.devfile.io/mount-as"
"""Annotation selecting how an automounted object is mounted."""

MOUNT_PATH_ANNOTATION = "controller.devfile.io/mount-path"
"""Annotation overriding the default mount path of an automounted object."""

MOUNT_ACCESS_MODE_ANNOTATION = "controller.devfile.io/mount-access-mode"
"""Annotation setting the file mode of an automounted ConfigMap or Secret."""

READ_ONLY_ANNOTATION = "controller.devfile.io/read-only"
"""Annotation requesting a read-only mount of an automounted PVC."""

GIT_CREDENTIAL_LABEL = "controller.devfile.io/git-credential"
"""Label marking a Secret holding git credentials."""

GIT_TLS_LABEL = "controller.devfile.io/git-tls-credential"
"""Label marking a ConfigMap holding a git server TLS certificate."""

NAMESPACED_CONFIG_LABEL = "controller.devfile.io/namespaced-config"
"""Label marking the per-namespace configuration ConfigMap."""

POD_TOLERATIONS_ANNOTATION = "controller.devfile.io/pod-tolerations"
"""Namespace annotation holding JSON tolerations for created pods."""

NODE_SELECTOR_ANNOTATION = "controller.devfile.io/node-selector"
"""Namespace annotation holding a JSON node selector for created pods."""

WORKSPACE_ID_LABEL = "controller.devfile.io/devworkspace_id"
"""Label recording the workspace that owns an object."""

COMPONENT_LABEL = "controller.devfile.io/component"
"""Label used to select pods of the async storage relay."""

WATCH_CONFIGMAP_LABEL = "controller.devfile.io/watch-configmap"
"""Label telling the wider controller to watch a generated ConfigMap."""

WATCH_SECRET_LABEL = "controller.devfile.io/watch-secret"
"""Label telling the wider controller to watch a generated Secret."""

PART_OF_LABEL = "app.kubernetes.io/part-of"
"""Standard label naming the application an object belongs to."""

PART_OF_VALUE = "devworkspace-operator"
"""Value of `PART_OF_LABEL` on objects this package generates."""

STORAGE_TYPE_ATTRIBUTE = "controller.devfile.io/storage-type"
"""Workspace template attribute selecting the storage strategy."""

# Automount.

AUTOMOUNT_PREFIX = "automount"
"""Prefix of every volume name produced by the automount merger.

Storage volumes never start with this prefix, so the two provisioning steps
can write to the same pod without coordinating names.
"""

DEFAULT_ACCESS_MODE = 0o640
"""File mode used for automounted files when none is annotated."""

RESERVED_MOUNT_PATHS = ("/etc/", "/usr/", "/lib/", "/tmp/")
"""System directories that a whole-volume automount may not be mounted over.

Mounting a volume directly at one of these paths would hide the files the
image ships there. Objects can still be mounted into them with ``subpath``.
"""

GIT_CREDENTIALS_SECRET_NAME = "devworkspace-merged-git-credentials"
"""Name of the generated Secret holding all git credentials."""

GIT_CREDENTIALS_KEY = "credentials"
"""Key in git credential Secrets holding ``git-credential-store`` lines."""

GITCONFIG_CONFIGMAP_NAME = "devworkspace-gitconfig"
"""Name of the generated ConfigMap holding the workspace gitconfig."""

GITCONFIG_KEY = "gitconfig"
"""Key in the generated ConfigMap holding the gitconfig text."""

GITCONFIG_MOUNT_PATH = "/etc/gitconfig"
"""Path at which the generated gitconfig is mounted."""

# Storage.

PROJECTS_VOLUME_NAME = "projects"
"""Name of the volume holding project sources."""

COMMON_PVC_TERMINATING_INTERVAL = timedelta(seconds=2)
"""How long to wait before rechecking a common PVC that is being deleted."""

CLEANUP_JOB_MOUNT_PATH = "/tmp/devworkspaces/"
"""Path at which the cleanup job mounts the shared PVC."""

CLEANUP_JOB_POLL_INTERVAL = timedelta(seconds=10)
"""How often to recheck a cleanup job that has not finished."""

ASYNC_RETRY_INTERVAL = timedelta(seconds=1)
"""How long to wait between steps of the async storage handshake."""

ASYNC_SSH_KEY_NAME = "rsync-via-ssh"
"""Key in the per-workspace Secret holding the SSH private key."""

ASYNC_SSH_MOUNT_PATH = "/etc/ssh/private"
"""Path at which the sidecar mounts the SSH private key."""

ASYNC_AUTHORIZED_KEYS_CONFIGMAP = "async-storage-config"
"""Name of the ConfigMap holding authorized keys for the relay."""

ASYNC_AUTHORIZED_KEYS_KEY = "authorized_keys"
"""Key in `ASYNC_AUTHORIZED_KEYS_CONFIGMAP` holding the keys."""

ASYNC_DEPLOYMENT_NAME = "async-storage"
"""Name of the async storage relay deployment."""

ASYNC_SERVICE_NAME = "async-storage"
"""Name of the service in front of the async storage relay."""

ASYNC_SERVER_CONTAINER_NAME = "async-storage-server"
"""Name of the relay container."""

ASYNC_SERVER_MOUNT_PATH = "/async-storage"
"""Path at which the relay mounts the shared PVC."""

ASYNC_SERVER_PORT = 2222
"""Port on which the relay accepts rsync over SSH."""

ASYNC_SIDECAR_CONTAINER_NAME = "async-storage-sidecar"
"""Name of the sidecar container added to async workspaces."""

ASYNC_SIDECAR_PORT = 4445
"""Port exposed by the sidecar container."""

ASYNC_SIDECAR_MEMORY_LIMIT = "512Mi"
"""Memory limit of the async storage sidecar."""

ASYNC_SIDECAR_MEMORY_REQUEST = "64Mi"
"""Memory request of the async storage sidecar."""

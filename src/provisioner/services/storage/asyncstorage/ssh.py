"""SSH keys used by the async storage sidecar to reach the relay."""

from __future__ import annotations

import base64

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from kubernetes_asyncio.client import V1ObjectMeta, V1Secret

from ....constants import ASYNC_SSH_KEY_NAME
from ....exceptions import FailError
from ....models.domain.workspace import Workspace

__all__ = [
    "build_ssh_secret",
    "generate_private_key",
    "public_key_from_secret",
    "ssh_secret_name",
]


def generate_private_key() -> bytes:
    """Generate a new RSA private key.

    Returns
    -------
    bytes
        2048-bit RSA key in PKCS#1 PEM form, as expected by OpenSSH.
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def ssh_secret_name(workspace: Workspace) -> str:
    """Name of the Secret holding the private key of a workspace."""
    return f"{workspace.workspace_id}-asyncsshkey"


def build_ssh_secret(workspace: Workspace, private_key: bytes) -> V1Secret:
    """Construct the Secret holding the private key of a workspace.

    Parameters
    ----------
    workspace
        Workspace that will use the key.
    private_key
        Private key in PEM form.

    Returns
    -------
    kubernetes_asyncio.client.V1Secret
        Secret to create, owned by the workspace.
    """
    return V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=V1ObjectMeta(
            name=ssh_secret_name(workspace),
            namespace=workspace.namespace,
            owner_references=[workspace.owner_reference()],
        ),
        data={ASYNC_SSH_KEY_NAME: base64.b64encode(private_key).decode()},
    )


def public_key_from_secret(secret: V1Secret) -> str:
    """Derive the authorized keys line for a private key Secret.

    Parameters
    ----------
    secret
        Secret holding the private key.

    Returns
    -------
    str
        Public key in OpenSSH ``authorized_keys`` form.

    Raises
    ------
    FailError
        Raised if the Secret does not hold a readable RSA private key.
    """
    encoded = (secret.data or {}).get(ASYNC_SSH_KEY_NAME)
    name = secret.metadata.name
    if not encoded:
        raise FailError(f"Secret {name} does not contain an SSH key")
    try:
        key = serialization.load_pem_private_key(
            base64.b64decode(encoded), password=None
        )
    except (TypeError, ValueError) as e:
        msg = f"Secret {name} has an invalid SSH key"
        raise FailError(msg, cause=e) from e
    public = key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )
    return public.decode()

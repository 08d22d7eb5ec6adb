"""SSH trust provisioning between source and destination replicator pods."""

import asyncio
import os
import shlex
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog

from ...constants import (
    KEYS_EXIST,
    KEYS_MISSING,
    SSH_AUTHORIZED_KEYS,
    SSH_DIR,
    SSH_PRIVATE_KEY,
    SSH_PUBLIC_KEY,
    SSH_ROOT_PRIVATE_KEY,
    SSH_ROOT_PUBLIC_KEY,
)
from ..config import MigrationConfig
from ..exceptions import ClusterError, MigratorError, SSHProvisioningError
from ..kubernetes import ClusterClient
from ..retry import retry_with_backoff
from ..settings import SECRET_VERIFY_ATTEMPTS, SECRET_VERIFY_DELAY

logger = structlog.get_logger()


def _write_private(path: Path, content: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content if content.endswith("\n") else content + "\n")


class SSHProvisioner:
    """Generates the source replicator keypair and distributes it.

    The private key reaches the replication jobs through a secret on the
    source cluster; the public key becomes the destination pod's only
    authorized key.
    """

    def __init__(
        self,
        config: MigrationConfig,
        src_client: ClusterClient,
        dst_client: ClusterClient,
        *,
        verify_attempts: int = SECRET_VERIFY_ATTEMPTS,
        verify_delay: float = SECRET_VERIFY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.src_client = src_client
        self.dst_client = dst_client
        self.verify_attempts = verify_attempts
        self.verify_delay = verify_delay
        self._sleep = sleep
        self.logger = logger.bind(component="ssh_provisioner", vm=config.vm_name)

    async def _src_exec(self, command: str) -> str:
        return await self.src_client.exec_in_pod(
            self.config.src_replicator, self.config.namespace, command
        )

    async def keys_exist(self) -> bool:
        """Check for a complete keypair in the source replicator.

        A failed lookup counts as missing keys.
        """
        lookup = (
            f"if [ -f {SSH_PRIVATE_KEY} ] && [ -f {SSH_PUBLIC_KEY} ]; "
            f"then echo '{KEYS_EXIST}'; else echo '{KEYS_MISSING}'; fi"
        )
        try:
            output = await self._src_exec(lookup)
        except ClusterError as e:
            self.logger.warning("Failed to check for existing SSH keys, will create new ones", error=str(e))
            return False
        return output.strip() == KEYS_EXIST

    async def generate_keys(self) -> None:
        """Ensure a keypair exists in the source pod and publish it as a secret.

        Raises:
            SSHProvisioningError: If keys cannot be generated, read or applied
        """
        pod = self.config.src_replicator
        if await self.keys_exist():
            self.logger.info("SSH keys already exist in the pod, skipping generation", pod=pod)
        else:
            self.logger.info("Generating new SSH keys", pod=pod)
            try:
                await self._src_exec(f"rm -f {SSH_PRIVATE_KEY} {SSH_PUBLIC_KEY}")
            except ClusterError as e:
                self.logger.warning("Failed to clean existing SSH keys, continuing", error=str(e))
            try:
                await self._src_exec(
                    f"mkdir -p {SSH_DIR} && ssh-keygen -t rsa -b 4096 -N '' -f {SSH_PRIVATE_KEY}"
                )
            except ClusterError as e:
                raise SSHProvisioningError(f"failed to generate SSH keys in {pod}: {e}") from e

        try:
            private_key = await self._src_exec(f"cat {SSH_ROOT_PRIVATE_KEY}")
            public_key = await self._src_exec(f"cat {SSH_ROOT_PUBLIC_KEY}")
        except ClusterError as e:
            raise SSHProvisioningError(f"failed to read SSH keys from {pod}: {e}") from e

        with tempfile.TemporaryDirectory(prefix="kubevirt-migrator-ssh-") as tmp:
            private_path = Path(tmp) / "id_rsa"
            public_path = Path(tmp) / "id_rsa.pub"
            _write_private(private_path, private_key)
            _write_private(public_path, public_key)
            await self._publish_secret({"id_rsa": str(private_path), "id_rsa.pub": str(public_path)}, tmp)

        await self.verify_secret()

    async def _publish_secret(self, files: dict[str, str], workdir: str) -> None:
        name = self.config.ssh_secret
        namespace = self.config.namespace
        try:
            if await self.src_client.resource_exists("secret", name, namespace):
                self.logger.info("Secret already exists, deleting it for recreation", secret=name)
                try:
                    await self.src_client.delete_resource("secret", name, namespace)
                except MigratorError as e:
                    self.logger.warning("Failed to delete existing secret, will replace it", error=str(e))

            manifest = await self.src_client.render_secret(name, namespace, files)
            manifest_path = Path(workdir) / "secret.yaml"
            _write_private(manifest_path, manifest)
            await self.src_client.apply_file(str(manifest_path), namespace)
        except MigratorError as e:
            raise SSHProvisioningError(f"failed to create secret {name}: {e}") from e

    async def verify_secret(self) -> bool:
        """Confirm the secret is visible, retrying with doubling delays.

        Returns False after the attempt budget is spent; never raises.
        """
        name = self.config.ssh_secret

        async def _visible() -> bool:
            return await self.src_client.resource_exists("secret", name, self.config.namespace)

        result = await retry_with_backoff(
            _visible,
            attempts=self.verify_attempts,
            base_delay=self.verify_delay,
            factor=2.0,
            operation="verify_ssh_secret",
            sleep=self._sleep,
        )
        if result.success:
            self.logger.info("Secret verified", secret=name, attempts=result.attempts)
        else:
            self.logger.warning(
                "Failed to verify secret after multiple attempts",
                secret=name,
                attempts=result.attempts,
                error=str(result.last_error) if result.last_error else None,
            )
        return result.success

    async def setup_destination_auth(self) -> None:
        """Overwrite the destination pod's authorized_keys with the source public key.

        Raises:
            SSHProvisioningError: If the key cannot be read or installed
        """
        try:
            public_key = (await self._src_exec(f"cat {SSH_ROOT_PUBLIC_KEY}")).strip()
        except ClusterError as e:
            raise SSHProvisioningError(f"failed to get public key: {e}") from e
        if not public_key:
            raise SSHProvisioningError("source public key is empty")

        command = (
            f"mkdir -p {SSH_DIR} && echo {shlex.quote(public_key)} > {SSH_AUTHORIZED_KEYS} "
            f"&& chmod 600 {SSH_AUTHORIZED_KEYS}"
        )
        try:
            await self.dst_client.exec_in_pod(self.config.dst_replicator, self.config.namespace, command)
        except ClusterError as e:
            raise SSHProvisioningError(f"failed to set up SSH auth on destination: {e}") from e
        self.logger.info("Destination SSH auth configured", pod=self.config.dst_replicator)

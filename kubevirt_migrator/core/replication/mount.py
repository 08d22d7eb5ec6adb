"""Remote mount and connectivity tests run inside the source replicator."""

from abc import ABC, abstractmethod

import structlog

from ...constants import (
    DEST_MOUNT_DIR,
    SOURCE_IMAGE_DIR,
    SSHFS_MISSING_MARKER,
    SSHFS_MOUNT_TYPE,
    SSHFS_NOT_FOUND_OUTPUT,
    TCP_FAILURE_MARKER,
    TCP_SUCCESS_MARKER,
    WRITE_PERMISSION_FAILURE_MARKER,
)
from ..config import MigrationConfig
from ..exceptions import ClusterError, ConnectivityCheckError, MountError
from ..kubernetes import ClusterClient

logger = structlog.get_logger()

TCP_TIMEOUT_SECONDS = 5
WRITE_TEST_FILE = f"{SOURCE_IMAGE_DIR}/test_write_perm"


class MountProvider(ABC):
    """Abstract base class for mounting the destination export in the source pod."""

    def __init__(self, config: MigrationConfig, src_client: ClusterClient):
        self.config = config
        self.src_client = src_client
        self.logger = logger.bind(component=self.__class__.__name__.lower(), vm=config.vm_name)

    async def _exec(self, command: str) -> str:
        return await self.src_client.exec_in_pod(
            self.config.src_replicator, self.config.namespace, command
        )

    @abstractmethod
    async def check_connectivity(self, host_ip: str, port: int) -> None:
        """Raise ConnectivityCheckError naming every failed prerequisite."""

    @abstractmethod
    async def mount(self, host_ip: str, port: int) -> None:
        """Mount the destination export at the local mount point."""

    @abstractmethod
    async def verify_mount(self) -> None:
        """Raise MountError unless the mount is observably present."""

    @abstractmethod
    async def unmount(self) -> None:
        """Unmount the destination export."""


class SSHFSMountProvider(MountProvider):
    """Mounts the destination pod's image directory over SSHFS."""

    async def _check_tcp(self, host_ip: str, port: int) -> str | None:
        command = (
            f"timeout {TCP_TIMEOUT_SECONDS} bash -c '</dev/tcp/{host_ip}/{port}' "
            f"&& echo '{TCP_SUCCESS_MARKER}'"
        )
        try:
            output = await self._exec(command)
        except ClusterError as e:
            return f"{TCP_FAILURE_MARKER}: cannot connect to {host_ip}:{port}: {e}"
        if TCP_SUCCESS_MARKER not in output:
            return f"{TCP_FAILURE_MARKER}: cannot connect to {host_ip}:{port}"
        return None

    async def _check_write_permission(self) -> str | None:
        command = f"mkdir -p {SOURCE_IMAGE_DIR} && touch {WRITE_TEST_FILE} && rm {WRITE_TEST_FILE}"
        try:
            await self._exec(command)
        except ClusterError as e:
            return f"{WRITE_PERMISSION_FAILURE_MARKER} check failed: {e}"
        return None

    async def _check_sshfs(self) -> str | None:
        try:
            output = await self._exec(f"which sshfs || echo '{SSHFS_NOT_FOUND_OUTPUT}'")
        except ClusterError as e:
            return f"{SSHFS_MISSING_MARKER} in the replicator pod: {e}"
        if SSHFS_NOT_FOUND_OUTPUT in output or not output.strip():
            return f"{SSHFS_MISSING_MARKER} in the replicator pod"
        return None

    async def check_connectivity(self, host_ip: str, port: int) -> None:
        """Check TCP reachability, source write access and sshfs presence.

        All three checks run; the raised error lists each failure with its
        marker phrase so callers can attribute them.
        """
        failures = [
            failure
            for failure in (
                await self._check_tcp(host_ip, port),
                await self._check_write_permission(),
                await self._check_sshfs(),
            )
            if failure
        ]
        if failures:
            raise ConnectivityCheckError("; ".join(failures))
        self.logger.info("Connectivity checks passed", host_ip=host_ip, port=port)

    async def mount(self, host_ip: str, port: int) -> None:
        command = (
            f"mountpoint -q {DEST_MOUNT_DIR} || "
            f"(mkdir -p {DEST_MOUNT_DIR} && sshfs -o StrictHostKeyChecking=no -o port={port} "
            f"{host_ip}:{SOURCE_IMAGE_DIR} {DEST_MOUNT_DIR})"
        )
        try:
            await self._exec(command)
        except ClusterError as e:
            raise MountError(f"failed to mount {host_ip}:{port} at {DEST_MOUNT_DIR}: {e}") from e
        self.logger.info("Destination mounted", host_ip=host_ip, port=port, mount_point=DEST_MOUNT_DIR)

    async def verify_mount(self) -> None:
        try:
            output = await self._exec(f"grep ' {DEST_MOUNT_DIR} ' /proc/mounts || true")
        except ClusterError as e:
            raise MountError(f"failed to verify mount at {DEST_MOUNT_DIR}: {e}") from e
        if SSHFS_MOUNT_TYPE not in output:
            raise MountError(f"{DEST_MOUNT_DIR} is not an sshfs mount")

    async def unmount(self) -> None:
        try:
            await self._exec(f"umount {DEST_MOUNT_DIR}")
        except ClusterError as e:
            raise MountError(f"failed to unmount {DEST_MOUNT_DIR}: {e}") from e
        self.logger.info("Destination unmounted", mount_point=DEST_MOUNT_DIR)

"""Initial block copy of the VM disk image."""

import structlog

from ...constants import DEST_MOUNT_DIR, DISK_IMAGE_NAME, SOURCE_IMAGE_DIR
from ..config import MigrationConfig
from ..exceptions import ClusterError, ReplicationError
from ..kubernetes import ClusterClient
from ..settings import INITIAL_COPY_TIMEOUT

logger = structlog.get_logger()


class BlockCopyProvider:
    """Copies the sparse disk image onto the mounted destination export."""

    def __init__(
        self,
        config: MigrationConfig,
        src_client: ClusterClient,
        timeout: float = INITIAL_COPY_TIMEOUT,
    ):
        self.config = config
        self.src_client = src_client
        self.timeout = timeout
        self.logger = logger.bind(component="block_copy", vm=config.vm_name)

    def build_command(self) -> str:
        return f"cp -p --sparse=always {SOURCE_IMAGE_DIR}/{DISK_IMAGE_NAME} {DEST_MOUNT_DIR}/"

    async def copy(self) -> None:
        """Run the copy in the source replicator; the destination must be mounted."""
        command = self.build_command()
        self.logger.info("Starting initial disk copy", command=command)
        try:
            await self.src_client.exec_in_pod(
                self.config.src_replicator, self.config.namespace, command, timeout=self.timeout
            )
        except ClusterError as e:
            raise ReplicationError(f"initial disk copy failed: {e}") from e
        self.logger.info("Initial disk copy completed")

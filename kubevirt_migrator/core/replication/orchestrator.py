"""Initial copy, replication command generation and replication job scheduling."""

import base64

import structlog

from ...constants import DEST_MOUNT_DIR, DISK_IMAGE_NAME, SOURCE_IMAGE_DIR
from ...models.enums import TemplateKind
from ...models.resources import ResourceProfile
from ..config import MigrationConfig
from ..exceptions import ClusterError, MigratorError, ReplicationError
from ..kubernetes import ClusterClient
from ..resources import calculate_resources, default_resources, resources_from_pvc_size
from ..settings import UNBOUNDED_TIMEOUT
from ..templates import TemplateRenderer
from .copy import BlockCopyProvider
from .mount import MountProvider, SSHFSMountProvider
from .sync_tools import SyncBackend, get_sync_backend

logger = structlog.get_logger()

# Seconds the replication job lingers so the sync output can be collected
JOB_LINGER_SECONDS = 20

SYNC_SCRIPT = """\
mkdir -p {dest_mount}
sshfs -o StrictHostKeyChecking=no -o port={node_port} {host_ip}:{source_dir} {dest_mount}
DISK_IMG="{source_dir}/{disk}"

# Partitions known to libguestfs
VIRT_FS_OUTPUT=$(virt-filesystems --partitions --format=raw -a "$DISK_IMG")

# Partition numbers of "Linux filesystem" entries
PART_NUMS=()
for partition in $(fdisk -l "$DISK_IMG" | grep "Linux filesystem" | awk '{{print $1}}'); do
    PART_NUMS+=("${{partition##*img}}")
done

DEVICES=()
for dev in $VIRT_FS_OUTPUT; do
    for num in "${{PART_NUMS[@]}}"; do
        if [[ $dev == */[a-z]*$num ]]; then
            DEVICES+=("$dev")
        fi
    done
done

for device in "${{DEVICES[@]}}"; do
    device_name=$(basename "$device")
    mkdir -p /data/sfs_${{device_name}} /data/dfs_${{device_name}}
    guestmount -a {source_dir}/{disk} -m ${{device}} --ro /data/sfs_${{device_name}}
    guestmount -a {dest_mount}/{disk} -m ${{device}} --rw /data/dfs_${{device_name}}
    {sync_command}
done

sleep {linger}
"""


class SyncOrchestrator:
    """Drives data replication from the source replicator to the destination.

    The initial copy runs synchronously in the source pod. Incremental
    replication is only generated here and executed later by the CronJob
    and the final Job inside the source cluster.
    """

    def __init__(
        self,
        config: MigrationConfig,
        src_client: ClusterClient,
        dst_client: ClusterClient,
        renderer: TemplateRenderer,
        *,
        mount_provider: MountProvider | None = None,
        copy_provider: BlockCopyProvider | None = None,
        sync_backend: SyncBackend | None = None,
    ):
        self.config = config
        self.src_client = src_client
        self.dst_client = dst_client
        self.renderer = renderer
        self.mount_provider = mount_provider or SSHFSMountProvider(config, src_client)
        self.copy_provider = copy_provider or BlockCopyProvider(config, src_client)
        self.sync_backend = sync_backend or get_sync_backend(config.sync_tool)
        self.logger = logger.bind(component="sync_orchestrator", vm=config.vm_name)

    async def get_destination_info(self) -> tuple[int, str]:
        """Look up the destination NodePort and replicator host IP."""
        try:
            node_port = await self.dst_client.get_node_port(self.config.dst_service, self.config.namespace)
            host_ip = await self.dst_client.get_pod_host_ip(self.config.dst_replicator, self.config.namespace)
        except ClusterError as e:
            raise ReplicationError(f"failed to get destination coordinates: {e}") from e
        return node_port, host_ip

    async def perform_initial_sync(self) -> None:
        """Mount the destination export and copy the full disk image.

        Raises:
            ReplicationError: If connectivity, mount, verification or copy fails
        """
        node_port, host_ip = await self.get_destination_info()
        self.logger.info(
            "Starting initial volume replication",
            host_ip=host_ip,
            node_port=node_port,
            sync_tool=self.sync_backend.get_tool_name().value,
        )
        try:
            await self.mount_provider.check_connectivity(host_ip, node_port)
            await self.mount_provider.mount(host_ip, node_port)
            await self.mount_provider.verify_mount()
        except MigratorError as e:
            raise ReplicationError(f"destination mount not ready: {e}") from e

        await self.copy_provider.copy()

    def create_sync_command(self, node_port: int, host_ip: str) -> str:
        """Return the bash script run by every replication job."""
        sync_command = self.sync_backend.render(
            "/data/sfs_${device_name}", "/data/dfs_${device_name}", {"checkers": "8"}
        )
        return SYNC_SCRIPT.format(
            dest_mount=DEST_MOUNT_DIR,
            source_dir=SOURCE_IMAGE_DIR,
            disk=DISK_IMAGE_NAME,
            node_port=node_port,
            host_ip=host_ip,
            sync_command=sync_command,
            linger=JOB_LINGER_SECONDS,
        )

    async def resolve_resource_profile(self) -> ResourceProfile:
        """Size the replication job from disk usage, then PVC size, then defaults."""
        vm, namespace = self.config.vm_name, self.config.namespace
        try:
            used_bytes = await self.src_client.get_disk_usage(vm, namespace)
        except MigratorError as e:
            self.logger.warning("Failed to measure disk usage, falling back to PVC size", error=str(e))
        else:
            profile = calculate_resources(used_bytes)
            self.logger.info("Resources sized from disk usage", used_bytes=used_bytes, **profile.model_dump())
            return profile

        try:
            pvc_size = await self.src_client.get_pvc_size(self.config.pvc_name, namespace)
            profile = resources_from_pvc_size(pvc_size)
        except (MigratorError, ValueError) as e:
            self.logger.warning("Failed to size from PVC, using default resources", error=str(e))
            return default_resources()
        self.logger.info("Resources sized from PVC capacity", pvc_size=pvc_size, **profile.model_dump())
        return profile

    async def setup_cronjob(self) -> None:
        """Install (or update) the periodic replication CronJob."""
        node_port, host_ip = await self.get_destination_info()
        command = self.create_sync_command(node_port, host_ip)
        payload = base64.b64encode(command.encode()).decode()
        profile = await self.resolve_resource_profile()

        variables = {
            "VM_NAME": self.config.vm_name,
            "NAMESPACE": self.config.namespace,
            "SCHEDULE": self.config.replication_schedule,
            "REPLICATION_COMMAND": payload,
            "SYNC_TOOL": self.sync_backend.get_tool_name().value,
            **profile.as_template_variables(),
        }
        await self.renderer.render_and_apply(
            TemplateKind.REPLICATION_JOB, variables, self.config.src_kubeconfig
        )
        self.logger.info(
            "Replication cronjob installed",
            cronjob=self.config.cronjob,
            schedule=self.config.replication_schedule,
        )

    async def perform_final_sync(self) -> None:
        """Run one last replication job from the CronJob and wait for it without a deadline."""
        job, namespace = self.config.final_job, self.config.namespace
        try:
            if await self.src_client.resource_exists("job", job, namespace):
                self.logger.info("Final sync job already exists, waiting for it", job=job)
            else:
                await self.src_client.create_job_from_cronjob(self.config.cronjob, job, namespace)
                self.logger.info("Final sync job created", job=job)
            await self.src_client.wait_for_job(job, namespace, timeout=UNBOUNDED_TIMEOUT)
        except MigratorError as e:
            raise ReplicationError(f"final sync failed: {e}") from e
        self.logger.info("Final sync completed", job=job)

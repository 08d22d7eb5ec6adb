"""Idempotent workflow steps shared by init and the feasibility check."""

import structlog

from ...models.enums import TemplateKind
from ..config import MigrationConfig
from ..exceptions import ClusterError, MigrationError, MigratorError, ResourceNotFoundError
from ..kubernetes import CleanupReport, ClusterClient
from ..settings import POD_NETWORK_PREFIX
from ..templates import TemplateRenderer
from .vm_definition import prepare_for_import

logger = structlog.get_logger()

POD_RUNNING = "Running"


async def destination_vm_status(config: MigrationConfig, dst_client: ClusterClient) -> str | None:
    """Return the destination VM status, or None when it does not exist.

    Raises:
        MigrationError: If the cluster cannot be queried for another reason
    """
    try:
        return await dst_client.get_vm_status(config.vm_name, config.namespace)
    except ResourceNotFoundError:
        return None
    except ClusterError as e:
        raise MigrationError(f"failed to query destination VM {config.vm_name}: {e}") from e


async def create_halted_destination_vm(
    config: MigrationConfig, src_client: ClusterClient, dst_client: ClusterClient
) -> None:
    """Copy the source VM definition to the destination in halted form."""
    log = logger.bind(vm=config.vm_name, namespace=config.namespace)
    try:
        exported = await src_client.export_vm(config.vm_name, config.namespace)
    except ClusterError as e:
        raise MigrationError(f"failed to export VM from source cluster: {e}") from e

    ip_address = mac_address = None
    if config.preserve_pod_ip:
        try:
            interface = await src_client.get_vmi_interface(config.vm_name, config.namespace)
        except ClusterError as e:
            raise MigrationError(f"failed to read source VM network for IP preservation: {e}") from e
        ip_address = f"{interface.ip_address}/{POD_NETWORK_PREFIX}"
        mac_address = interface.mac_address
        log.info("Preserving pod network", ip_address=ip_address, mac_address=mac_address)

    definition = prepare_for_import(exported, ip_address=ip_address, mac_address=mac_address)
    try:
        await dst_client.import_vm(definition, config.namespace)
    except ClusterError as e:
        raise MigrationError(f"failed to import VM to destination cluster: {e}") from e
    log.info("VM imported to destination cluster in halted state")


async def create_replicator(
    config: MigrationConfig,
    client: ClusterClient,
    renderer: TemplateRenderer,
    *,
    destination: bool,
    timeout: float,
) -> None:
    """Create a replicator pod unless it already runs, then wait for readiness.

    The destination side also gets its NodePort service applied.
    """
    pod = config.dst_replicator if destination else config.src_replicator
    kind = TemplateKind.DEST_REPLICATOR if destination else TemplateKind.SOURCE_REPLICATOR
    kubeconfig = config.dst_kubeconfig if destination else config.src_kubeconfig
    log = logger.bind(pod=pod, namespace=config.namespace)

    try:
        status = await client.get_pod_status(pod, config.namespace)
    except ResourceNotFoundError:
        status = None

    if status == POD_RUNNING:
        log.info("Replicator pod already running")
    else:
        if status is None:
            await renderer.render_and_apply(
                kind,
                {
                    "VM_NAME": config.vm_name,
                    "NAMESPACE": config.namespace,
                    "TARGET_PORT": config.ssh_port,
                    "SYNC_TOOL": config.sync_tool.value,
                },
                kubeconfig,
            )
            log.info("Replicator pod created")
        else:
            log.info("Replicator pod exists but is not running", status=status)
        await client.wait_for_pod(pod, config.namespace, "ready", timeout)
        log.info("Replicator pod ready")

    if destination:
        await renderer.render_and_apply(
            TemplateKind.DEST_SERVICE,
            {
                "VM_NAME": config.vm_name,
                "NAMESPACE": config.namespace,
                "PORT": config.ssh_port,
                "TARGET_PORT": config.ssh_port,
            },
            kubeconfig,
        )


async def cleanup_replication_resources(
    config: MigrationConfig, src_client: ClusterClient, dst_client: ClusterClient
) -> list[CleanupReport]:
    """Best-effort removal of every ephemeral resource on both clusters."""
    reports = []
    for client, destination in ((src_client, False), (dst_client, True)):
        try:
            reports.append(
                await client.cleanup_migration_resources(config.vm_name, config.namespace, destination)
            )
        except MigratorError as e:
            report = CleanupReport(cluster="destination" if destination else "source")
            report.errors.append(("*", config.vm_name, str(e)))
            reports.append(report)
            logger.warning("Cleanup pass failed", cluster=report.cluster, error=str(e))
    return reports

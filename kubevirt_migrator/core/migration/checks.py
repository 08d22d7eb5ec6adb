"""Pre-flight feasibility check with per-step tri-state results."""

from collections.abc import Iterable

import structlog

from ...constants import (
    SSHFS_MISSING_MARKER,
    TCP_FAILURE_MARKER,
    WRITE_PERMISSION_FAILURE_MARKER,
)
from ...models.enums import CheckStatus, VMStatus
from ..config import MigrationConfig
from ..exceptions import FeasibilityCheckError, MigratorError
from ..kubernetes import ClusterClient
from ..replication import MountProvider, SSHFSMountProvider, SSHProvisioner
from ..settings import CHECK_POD_READY_TIMEOUT, CHECK_VM_STATUS_TIMEOUT
from ..templates import TemplateRenderer
from .steps import (
    create_halted_destination_vm,
    create_replicator,
    destination_vm_status,
)

logger = structlog.get_logger()

SOURCE_VM = "Source VM"
DESTINATION_VM = "Destination VM"
SOURCE_POD = "Source Pod"
DESTINATION_POD = "Destination Pod"
SSH_SERVICE = "SSH Service"
SSH_KEYS = "SSH Keys"
SSH_AUTH = "SSH Auth"
NODE_PORT = "NodePort"
HOST_IP = "Host IP"
TCP_CONNECTION = "TCP Connection"
WRITE_PERMISSIONS = "Write Permissions"
SSHFS_AVAILABLE = "SSHFS Available"
MOUNT = "Mount"
MOUNT_VERIFICATION = "Mount Verification"
UNMOUNT = "Unmount"

CHECK_NAMES = (
    SOURCE_VM,
    DESTINATION_VM,
    SOURCE_POD,
    DESTINATION_POD,
    SSH_SERVICE,
    SSH_KEYS,
    SSH_AUTH,
    NODE_PORT,
    HOST_IP,
    TCP_CONNECTION,
    WRITE_PERMISSIONS,
    SSHFS_AVAILABLE,
    MOUNT,
    MOUNT_VERIFICATION,
    UNMOUNT,
)

# Connectivity sub-check -> marker phrase present in its failure message
CONNECTIVITY_MARKERS = {
    TCP_CONNECTION: TCP_FAILURE_MARKER,
    WRITE_PERMISSIONS: WRITE_PERMISSION_FAILURE_MARKER,
    SSHFS_AVAILABLE: SSHFS_MISSING_MARKER,
}

RULE_WIDTH = 60


class CheckResults:
    """Ordered step name -> CheckStatus mapping for one check run."""

    def __init__(self, names: Iterable[str] = CHECK_NAMES):
        self.names = tuple(names)
        self._results: dict[str, CheckStatus] = {}

    def record(self, name: str, success: bool) -> None:
        if name not in self.names:
            raise KeyError(f"undeclared check: {name}")
        self._results[name] = CheckStatus.SUCCESS if success else CheckStatus.FAILED

    def mark_remaining_not_tested(self) -> None:
        for name in self.names:
            self._results.setdefault(name, CheckStatus.NOT_TESTED)

    def get(self, name: str) -> CheckStatus | None:
        return self._results.get(name)

    def items(self) -> list[tuple[str, CheckStatus]]:
        return [(name, self._results[name]) for name in self.names if name in self._results]

    def as_dict(self) -> dict[str, CheckStatus]:
        return dict(self.items())

    @property
    def complete(self) -> bool:
        return all(name in self._results for name in self.names)

    @property
    def passed(self) -> bool:
        return self.complete and all(
            status is CheckStatus.SUCCESS for status in self._results.values()
        )


def infer_connectivity_failures(error_text: str) -> dict[str, bool]:
    """Map each connectivity sub-check to success, judged by its marker in ``error_text``."""
    return {name: marker not in error_text for name, marker in CONNECTIVITY_MARKERS.items()}


def format_check_results(results: CheckResults, error: Exception | None = None) -> str:
    """Render the summary table printed by the ``check`` command."""
    lines = [
        "=" * RULE_WIDTH,
        "CONNECTIVITY CHECK RESULTS SUMMARY",
        "=" * RULE_WIDTH,
    ]
    for name, status in results.items():
        lines.append(f"{name:<30} {status.label}")
    lines.append("=" * RULE_WIDTH)
    if error is not None:
        lines.append(f"Error details: {error}")
    else:
        lines.append("All checks passed")
    return "\n".join(lines)


class FeasibilityChecker:
    """Runs the pre-flight step sequence against both clusters.

    Steps run in declared order and stop at the first fatal failure. Every
    step that did not run is reported as NOT_TESTED. Replicators, service and
    secret created by the run are removed however it ends; ones left by a
    previous init stay in place.
    """

    def __init__(
        self,
        config: MigrationConfig,
        src_client: ClusterClient,
        dst_client: ClusterClient,
        renderer: TemplateRenderer,
        *,
        ssh: SSHProvisioner | None = None,
        mount_provider: MountProvider | None = None,
        vm_status_timeout: float = CHECK_VM_STATUS_TIMEOUT,
        pod_ready_timeout: float = CHECK_POD_READY_TIMEOUT,
    ):
        self.config = config
        self.src_client = src_client
        self.dst_client = dst_client
        self.renderer = renderer
        self.ssh = ssh or SSHProvisioner(config, src_client, dst_client)
        self.mount_provider = mount_provider or SSHFSMountProvider(config, src_client)
        self.vm_status_timeout = vm_status_timeout
        self.pod_ready_timeout = pod_ready_timeout
        self.results = CheckResults()
        self._created: dict[str, list[tuple[str, str]]] = {}
        self.logger = logger.bind(component="feasibility_checker", vm=config.vm_name)

    async def run(self) -> CheckResults:
        """Run every step and return the fully populated results.

        Raises:
            FeasibilityCheckError: On the first fatal failure, carrying the results
        """
        self.results = CheckResults()
        self._created = {}
        try:
            await self._check_vms()
            await self._setup_replicators()
            try:
                await self._check_replication_path()
            finally:
                await self._cleanup()
        except FeasibilityCheckError:
            raise
        except MigratorError as e:
            raise FeasibilityCheckError(str(e), self.results) from e
        finally:
            self.results.mark_remaining_not_tested()

        if self.results.passed:
            self.logger.info("All connectivity checks completed successfully")
        else:
            failed = [name for name, status in self.results.items() if status is not CheckStatus.SUCCESS]
            self.logger.warning("Connectivity checks completed with non-fatal failures", failed=failed)
        return self.results

    def _fail(self, message: str, cause: Exception) -> FeasibilityCheckError:
        self.logger.error(message, error=str(cause))
        return FeasibilityCheckError(f"{message}: {cause}", self.results)

    async def _check_vms(self) -> None:
        cfg = self.config
        try:
            status = await self.src_client.get_vm_status(cfg.vm_name, cfg.namespace)
        except MigratorError as e:
            self.results.record(SOURCE_VM, False)
            raise self._fail(f"VM {cfg.vm_name} not found in namespace {cfg.namespace}", e) from e
        self.results.record(SOURCE_VM, True)
        self.logger.info("Found VM in source cluster", status=status)

        try:
            dst_status = await destination_vm_status(cfg, self.dst_client)
            if dst_status is None:
                self.logger.info("VM not found in destination cluster, creating it halted")
                await create_halted_destination_vm(cfg, self.src_client, self.dst_client)
            elif dst_status != VMStatus.STOPPED.value:
                self.logger.info("Stopping destination VM", status=dst_status)
                await self.dst_client.stop_vm(cfg.vm_name, cfg.namespace)
            await self.dst_client.wait_for_vm_status(
                cfg.vm_name, cfg.namespace, VMStatus.STOPPED.value, self.vm_status_timeout
            )
        except MigratorError as e:
            self.results.record(DESTINATION_VM, False)
            raise self._fail("destination VM is not in a halted state", e) from e
        self.results.record(DESTINATION_VM, True)

    async def _setup_replicators(self) -> None:
        cfg = self.config
        try:
            source = self._created.setdefault("source", [])
            if not await self.src_client.resource_exists("pod", cfg.src_replicator, cfg.namespace):
                source.append(("pod", cfg.src_replicator))
            if not await self.src_client.resource_exists("secret", cfg.ssh_secret, cfg.namespace):
                source.append(("secret", cfg.ssh_secret))
            await create_replicator(
                cfg, self.src_client, self.renderer,
                destination=False, timeout=self.pod_ready_timeout,
            )
            if not await self.dst_client.resource_exists("pod", cfg.dst_replicator, cfg.namespace):
                self._created["destination"] = [("pod", cfg.dst_replicator), ("svc", cfg.dst_service)]
            await create_replicator(
                cfg, self.dst_client, self.renderer,
                destination=True, timeout=self.pod_ready_timeout,
            )
        except MigratorError as e:
            for name in (SOURCE_POD, DESTINATION_POD, SSH_SERVICE):
                self.results.record(name, False)
            # Partially created replicators still need removing
            await self._cleanup()
            raise self._fail("failed to set up test replicators", e) from e
        for name in (SOURCE_POD, DESTINATION_POD, SSH_SERVICE):
            self.results.record(name, True)

    async def _step(self, name: str, coro, message: str):
        try:
            value = await coro
        except MigratorError as e:
            self.results.record(name, False)
            raise self._fail(message, e) from e
        self.results.record(name, True)
        return value

    async def _check_replication_path(self) -> None:
        cfg = self.config
        await self._step(SSH_KEYS, self.ssh.generate_keys(), "failed to generate SSH keys")
        await self._step(SSH_AUTH, self.ssh.setup_destination_auth(), "failed to set up destination auth")
        node_port = await self._step(
            NODE_PORT,
            self.dst_client.get_node_port(cfg.dst_service, cfg.namespace),
            "failed to get destination NodePort",
        )
        host_ip = await self._step(
            HOST_IP,
            self.dst_client.get_pod_host_ip(cfg.dst_replicator, cfg.namespace),
            "failed to get destination pod host IP",
        )

        self.logger.info("Testing network connectivity", host_ip=host_ip, node_port=node_port)
        try:
            await self.mount_provider.check_connectivity(host_ip, node_port)
        except MigratorError as e:
            for name, ok in infer_connectivity_failures(str(e)).items():
                self.results.record(name, ok)
            raise self._fail("connectivity check failed", e) from e
        for name in CONNECTIVITY_MARKERS:
            self.results.record(name, True)

        await self._step(MOUNT, self.mount_provider.mount(host_ip, node_port), "mount test failed")

        try:
            await self.mount_provider.verify_mount()
        except MigratorError as e:
            self.results.record(MOUNT_VERIFICATION, False)
            try:
                await self.mount_provider.unmount()
            except MigratorError as unmount_error:
                self.logger.warning("Failed to unmount after verification failure", error=str(unmount_error))
            raise self._fail("mount verification failed", e) from e
        self.results.record(MOUNT_VERIFICATION, True)

        try:
            await self.mount_provider.unmount()
        except MigratorError as e:
            self.results.record(UNMOUNT, False)
            self.logger.warning("Failed to unmount after test", error=str(e))
        else:
            self.results.record(UNMOUNT, True)

    async def _cleanup(self) -> None:
        """Remove only the replicators this run created; pre-existing ones belong to init."""
        self.logger.info("Cleaning up test artifacts", created=self._created)
        for client, cluster in ((self.src_client, "source"), (self.dst_client, "destination")):
            resources = self._created.get(cluster)
            if not resources:
                continue
            report = await client.delete_resources(resources, self.config.namespace, cluster)
            if not report.success:
                self.logger.error(
                    "Failed to clean up test replicators", cluster=report.cluster, errors=report.errors
                )

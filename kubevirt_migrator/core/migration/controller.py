"""Two-phase (init / migrate) migration workflow."""

from typing import Any

import structlog

from ...models.enums import VMStatus
from ..config import MigrationConfig
from ..exceptions import ClusterError, MigrationError, MigratorError
from ..kubernetes import ClusterClient, create_cluster_client
from ..replication import SSHProvisioner, SyncOrchestrator
from ..settings import POD_READY_TIMEOUT, VM_STATUS_TIMEOUT
from ..subprocess_manager import CommandRunner
from ..templates import TemplateRenderer
from .checks import CheckResults, FeasibilityChecker
from .steps import (
    cleanup_replication_resources,
    create_halted_destination_vm,
    create_replicator,
    destination_vm_status,
)

logger = structlog.get_logger()


class MigrationController:
    """Sequences idempotent steps to migrate one VM between clusters.

    Each step inspects live cluster state first and only acts when its
    outcome is missing, so an interrupted run can simply be repeated.
    """

    def __init__(
        self,
        config: MigrationConfig,
        src_client: ClusterClient,
        dst_client: ClusterClient,
        renderer: TemplateRenderer,
        *,
        ssh: SSHProvisioner | None = None,
        sync: SyncOrchestrator | None = None,
        vm_status_timeout: float = VM_STATUS_TIMEOUT,
        pod_ready_timeout: float = POD_READY_TIMEOUT,
    ):
        self.config = config
        self.src_client = src_client
        self.dst_client = dst_client
        self.renderer = renderer
        self.ssh = ssh or SSHProvisioner(config, src_client, dst_client)
        self.sync = sync or SyncOrchestrator(config, src_client, dst_client, renderer)
        self.vm_status_timeout = vm_status_timeout
        self.pod_ready_timeout = pod_ready_timeout
        self.logger = logger.bind(component="migration_controller", vm=config.vm_name)

    @classmethod
    def from_config(cls, config: MigrationConfig, runner: CommandRunner | None = None) -> "MigrationController":
        """Wire clients and collaborators for ``config``."""
        runner = runner or CommandRunner()
        src_client = create_cluster_client(config.src_cluster, runner)
        dst_client = create_cluster_client(config.dst_cluster, runner)
        renderer = TemplateRenderer(runner, config.kubecli)
        return cls(config, src_client, dst_client, renderer)

    # Init phase

    async def init(self) -> dict[str, Any]:
        """Prepare both clusters and start periodic replication.

        Returns:
            Summary of which steps acted and which were already satisfied
        """
        cfg = self.config
        steps: dict[str, str] = {}
        self.logger.info("Starting migration init", dry_run=cfg.dry_run)

        try:
            status = await self.src_client.get_vm_status(cfg.vm_name, cfg.namespace)
        except ClusterError as e:
            raise MigrationError(f"VM {cfg.vm_name} not found in namespace {cfg.namespace}: {e}") from e
        self.logger.info("Found VM in source cluster", status=status)

        steps["destination_vm"] = await self._ensure_destination_vm()

        await create_replicator(
            cfg, self.src_client, self.renderer, destination=False, timeout=self.pod_ready_timeout
        )
        steps["source_replicator"] = "ready"

        await self.ssh.generate_keys()
        steps["ssh_keys"] = "distributed"

        await create_replicator(
            cfg, self.dst_client, self.renderer, destination=True, timeout=self.pod_ready_timeout
        )
        steps["destination_replicator"] = "ready"

        await self.ssh.setup_destination_auth()
        steps["ssh_auth"] = "configured"

        if cfg.dry_run:
            self.logger.info("Dry run, skipping initial copy and replication job")
            steps["initial_sync"] = steps["replication_job"] = "skipped (dry run)"
            return steps

        if await self._cronjob_exists():
            self.logger.info("Replication job already installed, skipping initial copy")
            steps["initial_sync"] = "skipped (already replicated)"
        else:
            await self.sync.perform_initial_sync()
            steps["initial_sync"] = "completed"

        await self.sync.setup_cronjob()
        steps["replication_job"] = "installed"

        self.logger.info("Migration init completed", steps=steps)
        return steps

    async def _ensure_destination_vm(self) -> str:
        cfg = self.config
        status = await destination_vm_status(cfg, self.dst_client)
        if status is not None:
            self.logger.info("VM already exists in destination cluster", status=status)
            return "exists"

        await create_halted_destination_vm(cfg, self.src_client, self.dst_client)
        await self._wait_vm(self.dst_client, VMStatus.STOPPED, "destination")
        return "created"

    async def _cronjob_exists(self) -> bool:
        try:
            return await self.src_client.resource_exists("cronjob", self.config.cronjob, self.config.namespace)
        except MigratorError as e:
            raise MigrationError(f"failed to look up replication cronjob: {e}") from e

    async def _wait_vm(self, client: ClusterClient, status: VMStatus, side: str) -> None:
        try:
            await client.wait_for_vm_status(
                self.config.vm_name, self.config.namespace, status.value, self.vm_status_timeout
            )
        except ClusterError as e:
            raise MigrationError(f"{side} VM did not reach {status.value}: {e}") from e

    # Migrate phase

    async def migrate(self) -> dict[str, Any]:
        """Cut over: stop the source, replicate the delta, start the destination.

        Returns:
            Summary including cleanup outcome per cluster
        """
        cfg = self.config
        self.logger.info("Starting migration cutover")

        try:
            src_status = await self.src_client.get_vm_status(cfg.vm_name, cfg.namespace)
            dst_status = await self.dst_client.get_vm_status(cfg.vm_name, cfg.namespace)
        except ClusterError as e:
            raise MigrationError(f"VM {cfg.vm_name} must exist on both clusters before migrate: {e}") from e
        self.logger.info("VM status before cutover", source=src_status, destination=dst_status)

        try:
            await self.src_client.suspend_cronjob(cfg.cronjob, cfg.namespace)
            self.logger.info("Replication cronjob suspended", cronjob=cfg.cronjob)
        except ClusterError as e:
            self.logger.warning("Failed to suspend replication cronjob", error=str(e))

        if src_status == VMStatus.STOPPED.value:
            self.logger.info("Source VM already stopped")
        else:
            try:
                await self.src_client.stop_vm(cfg.vm_name, cfg.namespace)
            except ClusterError as e:
                raise MigrationError(f"failed to stop source VM: {e}") from e
            await self._wait_vm(self.src_client, VMStatus.STOPPED, "source")

        if dst_status == VMStatus.RUNNING.value:
            self.logger.warning("Destination VM already running, skipping final sync")
        else:
            try:
                await self.sync.perform_final_sync()
            except MigratorError as e:
                raise MigrationError(str(e)) from e

            try:
                await self.dst_client.start_vm(cfg.vm_name, cfg.namespace)
            except ClusterError as e:
                raise MigrationError(f"failed to start destination VM: {e}") from e
            await self._wait_vm(self.dst_client, VMStatus.RUNNING, "destination")

        reports = await cleanup_replication_resources(cfg, self.src_client, self.dst_client)
        cleanup = {report.cluster: report.success for report in reports}
        if not all(cleanup.values()):
            self.logger.warning("Cleanup finished with errors", cleanup=cleanup)

        self.logger.info("Migration completed")
        return {"source_status": VMStatus.STOPPED.value, "destination_status": VMStatus.RUNNING.value, "cleanup": cleanup}

    # Check

    async def check(self) -> CheckResults:
        """Run the pre-flight feasibility check."""
        checker = FeasibilityChecker(
            self.config, self.src_client, self.dst_client, self.renderer, ssh=self.ssh
        )
        return await checker.run()

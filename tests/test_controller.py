"""Tests for the init/migrate workflow."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from kubevirt_migrator.core.config import MigrationConfig
from kubevirt_migrator.core.exceptions import MigrationError, ReplicationError
from kubevirt_migrator.core.kubernetes import OcClient
from kubevirt_migrator.core.migration import MigrationController
from kubevirt_migrator.models.enums import TemplateKind

from .conftest import command_failed, not_found

EXPORTED_VM = "apiVersion: kubevirt.io/v1\nkind: VirtualMachine\nmetadata:\n  name: vm1\nspec:\n  runStrategy: Always\n"


@pytest.fixture
def ssh():
    provisioner = MagicMock()
    provisioner.generate_keys = AsyncMock()
    provisioner.setup_destination_auth = AsyncMock()
    return provisioner


@pytest.fixture
def sync():
    orchestrator = MagicMock()
    orchestrator.perform_initial_sync = AsyncMock()
    orchestrator.setup_cronjob = AsyncMock()
    orchestrator.perform_final_sync = AsyncMock()
    return orchestrator


def make_controller(config, src_client, dst_client, renderer, ssh, sync):
    renderer.render_and_apply = AsyncMock()
    return MigrationController(
        config, src_client, dst_client, renderer,
        ssh=ssh, sync=sync, vm_status_timeout=1, pod_ready_timeout=1,
    )


@pytest.fixture
def controller(config, src_client, dst_client, renderer, ssh, sync):
    return make_controller(config, src_client, dst_client, renderer, ssh, sync)


@pytest.fixture
def fresh_clusters(src_runner, dst_runner):
    """Source VM running; nothing created on the destination yet."""
    src_runner.on("printableStatus", "Running")
    src_runner.on("-o yaml", EXPORTED_VM)
    src_runner.on("get pod vm1-src-replicator", [not_found("pods"), "vm1-src-replicator 1/1 Running 0 1s"])
    dst_runner.on("printableStatus", [not_found(), "Stopped"])
    dst_runner.on("get pod vm1-dst-replicator", [not_found("pods"), "vm1-dst-replicator 1/1 Running 0 1s"])
    return src_runner, dst_runner


@pytest.mark.asyncio
class TestInit:
    """Test the init phase."""

    async def test_init_from_scratch(self, controller, fresh_clusters, ssh, sync, renderer):
        src_runner, dst_runner = fresh_clusters
        steps = await controller.init()

        assert steps == {
            "destination_vm": "created",
            "source_replicator": "ready",
            "ssh_keys": "distributed",
            "destination_replicator": "ready",
            "ssh_auth": "configured",
            "initial_sync": "completed",
            "replication_job": "installed",
        }
        assert "runStrategy: Halted" in dst_runner.stdins[dst_runner.index("apply -n ns -f -")]
        kinds = [call.args[0] for call in renderer.render_and_apply.await_args_list]
        assert kinds == [TemplateKind.SOURCE_REPLICATOR, TemplateKind.DEST_REPLICATOR, TemplateKind.DEST_SERVICE]
        ssh.generate_keys.assert_awaited_once()
        sync.perform_initial_sync.assert_awaited_once()
        sync.setup_cronjob.assert_awaited_once()

    async def test_init_is_idempotent(self, controller, src_runner, dst_runner, renderer, sync):
        src_runner.on("printableStatus", "Running")
        src_runner.on("get pod", "vm1-src-replicator 1/1 Running 0 1h")
        src_runner.on("get cronjob vm1-repl-cronjob", "vm1-repl-cronjob   */15 * * * *   False")
        dst_runner.on("printableStatus", "Stopped")
        dst_runner.on("get pod", "vm1-dst-replicator 1/1 Running 0 1h")

        steps = await controller.init()

        assert steps["destination_vm"] == "exists"
        assert steps["initial_sync"] == "skipped (already replicated)"
        assert not dst_runner.called("apply -n ns -f -")
        assert not src_runner.called("wait pod")
        sync.perform_initial_sync.assert_not_awaited()
        sync.setup_cronjob.assert_awaited_once()
        kinds = [call.args[0] for call in renderer.render_and_apply.await_args_list]
        assert kinds == [TemplateKind.DEST_SERVICE]

    async def test_dry_run(self, src_client, dst_client, renderer, ssh, sync, fresh_clusters):
        config = MigrationConfig(
            vm_name="vm1", namespace="ns", src_kubeconfig="/kube/src", dst_kubeconfig="/kube/dst",
            dry_run=True, _env_file=None,
        )
        controller = make_controller(config, src_client, dst_client, renderer, ssh, sync)
        steps = await controller.init()
        assert steps["initial_sync"] == "skipped (dry run)"
        assert steps["replication_job"] == "skipped (dry run)"
        ssh.setup_destination_auth.assert_awaited_once()
        sync.perform_initial_sync.assert_not_awaited()
        sync.setup_cronjob.assert_not_awaited()

    async def test_source_vm_missing(self, controller, src_runner, renderer):
        src_runner.on("printableStatus", not_found())
        with pytest.raises(MigrationError, match="not found in namespace ns"):
            await controller.init()
        renderer.render_and_apply.assert_not_awaited()

    async def test_initial_sync_failure_propagates(self, controller, fresh_clusters, sync):
        sync.perform_initial_sync.side_effect = ReplicationError("destination mount not ready")
        with pytest.raises(ReplicationError):
            await controller.init()
        sync.setup_cronjob.assert_not_awaited()


@pytest.mark.asyncio
class TestMigrate:
    """Test the cutover phase."""

    async def test_migrate(self, controller, src_runner, dst_runner, sync):
        src_runner.on("printableStatus", ["Running", "Stopping", "Stopped"])
        src_runner.on("runStrategy", "Always")
        dst_runner.on("printableStatus", ["Stopped", "Starting", "Running"])
        dst_runner.on("runStrategy", "Halted")

        result = await controller.migrate()

        assert result["source_status"] == "Stopped"
        assert result["destination_status"] == "Running"
        assert result["cleanup"] == {"source": True, "destination": True}
        assert src_runner.index("patch cronjob vm1-repl-cronjob") < src_runner.index("patch vm vm1")
        assert '{"spec": {"runStrategy": "Halted"}}' in src_runner.commands()[src_runner.index("patch vm vm1")]
        assert '{"spec": {"runStrategy": "Always"}}' in dst_runner.commands()[dst_runner.index("patch vm vm1")]
        sync.perform_final_sync.assert_awaited_once()

    async def test_migrate_repeated_after_cutover(self, controller, src_runner, dst_runner, sync):
        src_runner.on("printableStatus", "Stopped")
        dst_runner.on("printableStatus", "Running")
        src_runner.on("patch cronjob", not_found("cronjobs", "vm1-repl-cronjob"))

        result = await controller.migrate()

        assert result["destination_status"] == "Running"
        assert not src_runner.called("patch vm")
        assert not dst_runner.called("patch vm")
        sync.perform_final_sync.assert_not_awaited()

    async def test_running_destination_is_never_synced_into(self, controller, src_runner, dst_runner, sync):
        src_runner.on("printableStatus", ["Running", "Stopped"])
        src_runner.on("runStrategy", "Always")
        dst_runner.on("printableStatus", "Running")

        await controller.migrate()

        assert src_runner.called("patch vm vm1")
        sync.perform_final_sync.assert_not_awaited()

    async def test_destination_vm_required(self, controller, src_runner, dst_runner, sync):
        src_runner.on("printableStatus", "Running")
        dst_runner.on("printableStatus", not_found())
        with pytest.raises(MigrationError, match="must exist on both clusters"):
            await controller.migrate()
        assert not src_runner.called("patch")
        sync.perform_final_sync.assert_not_awaited()

    async def test_final_sync_failure_leaves_destination_stopped(self, controller, src_runner, dst_runner, sync):
        src_runner.on("printableStatus", "Stopped")
        dst_runner.on("printableStatus", "Stopped")
        sync.perform_final_sync.side_effect = ReplicationError("final sync failed: job failed")
        with pytest.raises(MigrationError, match="final sync failed"):
            await controller.migrate()
        assert not dst_runner.called("patch vm")

    async def test_cleanup_failures_are_reported(self, controller, src_runner, dst_runner):
        src_runner.on("printableStatus", "Stopped")
        dst_runner.on("printableStatus", "Running")
        dst_runner.on("get svc", "vm1-dst-svc")
        dst_runner.on("delete svc", command_failed("forbidden"))

        result = await controller.migrate()
        assert result["cleanup"] == {"source": True, "destination": False}


class TestFromConfig:
    def test_wires_clients(self, config):
        controller = MigrationController.from_config(config, runner=MagicMock())
        assert isinstance(controller.src_client, OcClient)
        assert controller.src_client.kubeconfig == "/kube/src"
        assert controller.dst_client.kubeconfig == "/kube/dst"

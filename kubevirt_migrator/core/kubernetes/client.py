"""Cluster client driving ``oc``/``kubectl`` through the command runner."""

import asyncio
import json
import time
from dataclasses import dataclass, field

import structlog

from ...constants import (
    CRONJOB_SUFFIX,
    DISK_NOT_FOUND,
    DST_REPLICATOR_SUFFIX,
    DST_SERVICE_SUFFIX,
    FINAL_JOB_SUFFIX,
    SRC_REPLICATOR_SUFFIX,
    SSH_SECRET_SUFFIX,
    VIRT_LAUNCHER_PREFIX,
    VMI_ROOTDISK_PATHS,
)
from ...models.enums import KubeCLI
from ..exceptions import (
    ClusterError,
    CommandExecutionError,
    MigratorError,
    ResourceNotFoundError,
    WaitTimeoutError,
)
from ..resources import RAW_BLOCK_UTILIZATION, parse_human_size
from ..settings import POLL_INTERVAL, UNBOUNDED_TIMEOUT
from ..subprocess_manager import CommandRunner

logger = structlog.get_logger()

NOT_FOUND_MARKERS = ("NotFound", "not found")
# Extra runner time on top of a server-side ``wait --timeout``
WAIT_GRACE_SECONDS = 30


@dataclass
class CleanupReport:
    """Outcome of a best-effort cleanup pass."""

    cluster: str
    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[tuple[str, str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class VMInterface:
    """Primary network interface of a running VM instance."""

    ip_address: str
    mac_address: str


def _strip_jsonpath(output: str) -> str:
    return output.strip().strip("'").strip()


def _is_not_found(error: CommandExecutionError) -> bool:
    text = error.stderr or str(error)
    return any(marker in text for marker in NOT_FOUND_MARKERS)


class ClusterClient:
    """Common cluster operations for a single kubeconfig.

    Subclasses only pick the CLI binary; argument grammar is shared by
    ``oc`` and ``kubectl``.
    """

    command: KubeCLI = KubeCLI.KUBECTL

    def __init__(
        self,
        kubeconfig: str,
        runner: CommandRunner,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.kubeconfig = kubeconfig
        self.runner = runner
        self.poll_interval = poll_interval
        self.logger = logger.bind(component=self.__class__.__name__.lower(), kubeconfig=kubeconfig)

    async def _run(
        self,
        *args: str,
        stdin: str | None = None,
        timeout: float | None = None,
    ) -> str:
        return await self.runner.execute(
            self.command.value, *args, "--kubeconfig", self.kubeconfig, stdin=stdin, timeout=timeout
        )

    async def _get_field(self, kind: str, name: str, namespace: str, jsonpath: str) -> str:
        try:
            output = await self._run("get", kind, name, "-n", namespace, "-o", f"jsonpath={jsonpath}")
        except CommandExecutionError as e:
            if _is_not_found(e):
                raise ResourceNotFoundError(f"{kind} {namespace}/{name} not found") from e
            raise ClusterError(f"failed to get {kind} {namespace}/{name}: {e}") from e
        return _strip_jsonpath(output)

    # VM management

    async def get_vm_status(self, vm_name: str, namespace: str) -> str:
        """Return the VM's printable status.

        Raises:
            ResourceNotFoundError: If the VM does not exist
            ClusterError: If the status cannot be read or is empty
        """
        status = await self._get_field("vm", vm_name, namespace, "{.status.printableStatus}")
        if not status:
            raise ClusterError(f"VM {namespace}/{vm_name} status is empty")
        return status

    async def _uses_run_strategy(self, vm_name: str, namespace: str) -> bool:
        try:
            value = await self._get_field("vm", vm_name, namespace, "{.spec.runStrategy}")
        except ClusterError:
            return False
        return value not in ("", "null")

    async def _set_running(self, vm_name: str, namespace: str, running: bool) -> None:
        if await self._uses_run_strategy(vm_name, namespace):
            patch = {"spec": {"runStrategy": "Always" if running else "Halted"}}
        else:
            patch = {"spec": {"running": running}}
        self.logger.info(
            "Patching VM run state", vm=vm_name, namespace=namespace, patch=json.dumps(patch)
        )
        try:
            await self._run(
                "patch", "vm", vm_name, "-n", namespace, "--type", "merge", "-p", json.dumps(patch)
            )
        except CommandExecutionError as e:
            action = "start" if running else "stop"
            raise ClusterError(f"failed to {action} VM {namespace}/{vm_name}: {e}") from e

    async def start_vm(self, vm_name: str, namespace: str) -> None:
        await self._set_running(vm_name, namespace, True)

    async def stop_vm(self, vm_name: str, namespace: str) -> None:
        await self._set_running(vm_name, namespace, False)

    async def export_vm(self, vm_name: str, namespace: str) -> str:
        """Return the VM definition as YAML."""
        try:
            return await self._run("get", "vm", vm_name, "-n", namespace, "-o", "yaml")
        except CommandExecutionError as e:
            if _is_not_found(e):
                raise ResourceNotFoundError(f"vm {namespace}/{vm_name} not found") from e
            raise ClusterError(f"failed to export VM {namespace}/{vm_name}: {e}") from e

    async def import_vm(self, definition: str, namespace: str) -> None:
        """Apply a VM definition read from stdin."""
        await self.apply_manifest(definition, namespace)

    async def wait_for_vm_status(
        self,
        vm_name: str,
        namespace: str,
        expected_status: str,
        timeout: float,
    ) -> None:
        """Poll the VM status on a fixed interval until it matches or the deadline passes.

        Errors reading the status are logged and polling continues.

        Raises:
            WaitTimeoutError: If the deadline passes first
        """
        self.logger.info(
            "Waiting for VM status",
            vm=vm_name,
            namespace=namespace,
            expected_status=expected_status,
            timeout=timeout,
        )
        deadline = time.monotonic() + timeout
        while True:
            if time.monotonic() > deadline:
                raise WaitTimeoutError(
                    f"timeout waiting for VM {namespace}/{vm_name} to reach status "
                    f"{expected_status} after {timeout}s"
                )
            try:
                status = await self.get_vm_status(vm_name, namespace)
            except ClusterError as e:
                self.logger.warning("Error getting VM status", vm=vm_name, error=str(e))
            else:
                if status == expected_status:
                    self.logger.info("VM reached expected status", vm=vm_name, status=status)
                    return
                self.logger.info(
                    "VM status check", vm=vm_name, current_status=status, expected_status=expected_status
                )
            await asyncio.sleep(self.poll_interval)

    async def get_vmi_interface(self, vm_name: str, namespace: str) -> VMInterface:
        """Return IP and MAC of the running VM instance's first interface."""
        ip_address = await self._get_field("vmi", vm_name, namespace, "{.status.interfaces[0].ipAddress}")
        mac_address = await self._get_field("vmi", vm_name, namespace, "{.status.interfaces[0].mac}")
        if not ip_address or not mac_address:
            raise ClusterError(f"VMI {namespace}/{vm_name} has no reported interface address")
        return VMInterface(ip_address=ip_address, mac_address=mac_address)

    # Pod management

    async def get_pod_status(self, pod_name: str, namespace: str) -> str:
        """Return the STATUS column of ``get pod --no-headers``."""
        try:
            output = await self._run("get", "pod", pod_name, "-n", namespace, "--no-headers")
        except CommandExecutionError as e:
            if _is_not_found(e):
                raise ResourceNotFoundError(f"pod {namespace}/{pod_name} not found") from e
            raise ClusterError(f"failed to get pod status: {e}") from e

        parts = output.split()
        if len(parts) < 3:
            raise ClusterError(f"unexpected pod status output: {output.strip()!r}")
        return parts[2]

    async def wait_for_pod(
        self, pod_name: str, namespace: str, condition: str, timeout: float
    ) -> None:
        try:
            await self._run(
                "wait", "pod", pod_name, "-n", namespace,
                "--for", f"condition={condition}",
                "--timeout", f"{int(timeout)}s",
                timeout=timeout + WAIT_GRACE_SECONDS,
            )
        except CommandExecutionError as e:
            raise WaitTimeoutError(
                f"pod {namespace}/{pod_name} did not reach condition {condition}: {e}"
            ) from e

    async def exec_in_pod(
        self, pod_name: str, namespace: str, command: str, timeout: float | None = None
    ) -> str:
        """Run ``sh -c command`` inside the pod and return its stdout."""
        try:
            return await self.runner.execute(
                self.command.value,
                "exec", pod_name, "-n", namespace, "--kubeconfig", self.kubeconfig,
                "--", "sh", "-c", command,
                timeout=timeout,
            )
        except CommandExecutionError as e:
            raise ClusterError(f"command failed in pod {namespace}/{pod_name}: {e}") from e

    async def get_pod_host_ip(self, pod_name: str, namespace: str) -> str:
        host_ip = await self._get_field("pod", pod_name, namespace, "{.status.hostIP}")
        if not host_ip:
            raise ClusterError(f"pod {namespace}/{pod_name} has no host IP yet")
        return host_ip

    # Services, jobs, cronjobs

    async def get_node_port(self, service_name: str, namespace: str) -> int:
        value = await self._get_field("svc", service_name, namespace, "{.spec.ports[0].nodePort}")
        try:
            return int(value)
        except ValueError as e:
            raise ClusterError(f"failed to parse node port {value!r} of {service_name}") from e

    async def create_job_from_cronjob(self, cronjob_name: str, job_name: str, namespace: str) -> None:
        try:
            await self._run("create", "job", f"--from=cronjob/{cronjob_name}", job_name, "-n", namespace)
        except CommandExecutionError as e:
            raise ClusterError(f"failed to create job {job_name} from {cronjob_name}: {e}") from e

    async def wait_for_job(self, job_name: str, namespace: str, timeout: float = UNBOUNDED_TIMEOUT) -> None:
        """Wait for ``condition=complete``; a negative timeout waits forever."""
        if timeout < 0:
            server_timeout, runner_timeout = "-1s", UNBOUNDED_TIMEOUT
        else:
            server_timeout, runner_timeout = f"{int(timeout)}s", timeout + WAIT_GRACE_SECONDS
        self.logger.info("Waiting for job completion", job=job_name, timeout=server_timeout)
        try:
            await self._run(
                "wait", "job", job_name, "-n", namespace,
                "--for=condition=complete", f"--timeout={server_timeout}",
                timeout=runner_timeout,
            )
        except CommandExecutionError as e:
            raise WaitTimeoutError(f"job {namespace}/{job_name} did not complete: {e}") from e

    async def suspend_cronjob(self, cronjob_name: str, namespace: str) -> None:
        try:
            await self._run(
                "patch", "cronjob", cronjob_name, "-n", namespace,
                "--type", "merge", "-p", json.dumps({"spec": {"suspend": True}}),
            )
        except CommandExecutionError as e:
            raise ClusterError(f"failed to suspend cronjob {cronjob_name}: {e}") from e

    # Generic resources and secrets

    async def resource_exists(self, kind: str, name: str, namespace: str) -> bool:
        output = await self._run("get", kind, name, "-n", namespace, "--no-headers", "--ignore-not-found")
        return bool(output.strip())

    async def delete_resource(self, kind: str, name: str, namespace: str) -> None:
        await self._run("delete", kind, name, "-n", namespace, "--wait", "--ignore-not-found")

    async def apply_manifest(self, manifest: str, namespace: str) -> None:
        try:
            await self._run("apply", "-n", namespace, "-f", "-", stdin=manifest)
        except CommandExecutionError as e:
            raise ClusterError(f"failed to apply manifest in {namespace}: {e}") from e

    async def apply_file(self, path: str, namespace: str) -> None:
        try:
            await self._run("apply", "-n", namespace, "-f", path)
        except CommandExecutionError as e:
            raise ClusterError(f"failed to apply {path} in {namespace}: {e}") from e

    async def render_secret(self, name: str, namespace: str, files: dict[str, str]) -> str:
        """Build a generic secret manifest from files with a client-side dry run."""
        args = ["create", "secret", "generic", name]
        args.extend(f"--from-file={key}={path}" for key, path in files.items())
        args.extend(["-n", namespace, "--save-config", "--dry-run=client", "-o", "yaml"])
        try:
            return await self._run(*args)
        except CommandExecutionError as e:
            raise ClusterError(f"failed to render secret {name}: {e}") from e

    async def get_pvc_size(self, pvc_name: str, namespace: str) -> str:
        size = await self._get_field("pvc", pvc_name, namespace, "{.spec.resources.requests.storage}")
        if not size:
            raise ClusterError(f"PVC {namespace}/{pvc_name} has no storage request")
        return size

    async def get_disk_usage(self, vm_name: str, namespace: str) -> int:
        """Measure bytes used by the VM root disk inside its virt-launcher pod.

        Falls back to the raw block size scaled by the utilization factor
        when ``du -sh`` output cannot be parsed.

        Raises:
            ClusterError: If no launcher pod runs or the disk cannot be measured
        """
        try:
            output = await self._run(
                "get", "pods", "-n", namespace, "--field-selector=status.phase=Running", "-o", "name"
            )
        except CommandExecutionError as e:
            raise ClusterError(f"failed to list pods: {e}") from e

        prefix = VIRT_LAUNCHER_PREFIX + vm_name
        pod = next(
            (line.strip().removeprefix("pod/") for line in output.splitlines()
             if line.strip().removeprefix("pod/").startswith(prefix)),
            None,
        )
        if pod is None:
            raise ClusterError(f"no running virt-launcher pod found for VM {vm_name}")

        usage_cmd = " || ".join(f"du -sh {path} 2>/dev/null" for path in VMI_ROOTDISK_PATHS)
        usage = await self.exec_in_pod(pod, namespace, f"{usage_cmd} || echo '{DISK_NOT_FOUND}'")
        if DISK_NOT_FOUND in usage or not usage.split():
            raise ClusterError(f"root disk not found in pod {pod}")

        size = usage.split()[0]
        try:
            used = parse_human_size(size)
        except ValueError:
            self.logger.warning("Failed to parse human readable size, trying block size", size=size)
            block_cmd = " || ".join(f"du -sb {path} 2>/dev/null" for path in VMI_ROOTDISK_PATHS)
            block = await self.exec_in_pod(pod, namespace, block_cmd)
            try:
                used = int(int(block.split()[0]) * RAW_BLOCK_UTILIZATION)
            except (IndexError, ValueError) as e:
                raise ClusterError(f"unexpected block size output: {block.strip()!r}") from e

        self.logger.info("Actual disk usage retrieved", vm=vm_name, pod=pod, bytes=used)
        return used

    # Cleanup

    async def cleanup_migration_resources(
        self, vm_name: str, namespace: str, destination: bool
    ) -> CleanupReport:
        """Delete every ephemeral migration resource on this cluster.

        Never raises for individual failures; they are collected in the report.
        """
        if destination:
            resources = [
                ("pod", vm_name + DST_REPLICATOR_SUFFIX),
                ("svc", vm_name + DST_SERVICE_SUFFIX),
            ]
        else:
            resources = [
                ("job", vm_name + FINAL_JOB_SUFFIX),
                ("cronjob", vm_name + CRONJOB_SUFFIX),
                ("pod", vm_name + SRC_REPLICATOR_SUFFIX),
                ("secret", vm_name + SSH_SECRET_SUFFIX),
            ]

        cluster = "destination" if destination else "source"
        self.logger.info("Cleaning up migration resources", vm=vm_name, cluster=cluster)
        return await self.delete_resources(resources, namespace, cluster)

    async def delete_resources(
        self, resources: list[tuple[str, str]], namespace: str, cluster: str
    ) -> CleanupReport:
        """Delete each (kind, name) that exists, collecting failures in the report."""
        report = CleanupReport(cluster=cluster)
        for kind, name in resources:
            try:
                if not await self.resource_exists(kind, name, namespace):
                    self.logger.info("Resource not found, skipping delete", kind=kind, name=name)
                    report.skipped.append(f"{kind}/{name}")
                    continue
                await self.delete_resource(kind, name, namespace)
                report.deleted.append(f"{kind}/{name}")
            except MigratorError as e:
                self.logger.warning("Failed to delete resource", kind=kind, name=name, error=str(e))
                report.errors.append((kind, name, str(e)))

        if report.success:
            self.logger.info("Migration resources cleaned up", cluster=report.cluster)
        else:
            self.logger.warning(
                "One or more cleanup operations failed", cluster=report.cluster, failed=len(report.errors)
            )
        return report

"""
kubevirt-migrator command line interface

Migrates a KubeVirt VM between clusters in two phases:
``init`` prepares both sides and starts periodic replication, ``migrate``
performs the cutover. ``check`` validates that a migration is feasible.
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Any

import structlog
from dotenv import load_dotenv

from .constants import ENV_PREFIX
from .core.config import DEFAULT_SCHEDULE, MigrationConfig, load_migration_config
from .core.exceptions import FeasibilityCheckError, MigratorError
from .core.logging_config import LOG_LEVELS, bind_run_context, setup_logging
from .core.migration import CheckResults, MigrationController, format_check_results
from .core.subprocess_manager import CommandRunner
from .models.enums import KubeCLI, SyncToolName
from .version import get_build_info

logger = structlog.get_logger()


def _env_help(flag: str) -> str:
    return f"env: {ENV_PREFIX}{flag.upper().replace('-', '_')}"


def _add_migration_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--vm-name", help=f"Name of the VM to migrate ({_env_help('vm-name')})")
    parser.add_argument("--namespace", help=f"Namespace of the VM ({_env_help('namespace')})")
    parser.add_argument(
        "--src-kubeconfig", help=f"Kubeconfig for the source cluster ({_env_help('src-kubeconfig')})"
    )
    parser.add_argument(
        "--dst-kubeconfig", help=f"Kubeconfig for the destination cluster ({_env_help('dst-kubeconfig')})"
    )
    parser.add_argument("--ssh-port", type=int, help="SSH port of the destination replicator (default 22)")
    parser.add_argument(
        "--kubecli",
        choices=[cli.value for cli in KubeCLI],
        help="Kubernetes CLI to use (default oc)",
    )
    parser.add_argument(
        "--sync-tool",
        choices=[tool.value for tool in SyncToolName],
        help="Sync tool for incremental replication (default rclone)",
    )
    parser.add_argument(
        "--preserve-pod-ip",
        action="store_true",
        default=None,
        help="Keep the VM pod IP and MAC address on the destination",
    )
    parser.add_argument(
        "--replication-schedule",
        help=f"Cron schedule for incremental replication (default '{DEFAULT_SCHEDULE}')",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Prepare resources without copying data or scheduling replication",
    )


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.lower,
        default=argparse.SUPPRESS,
        help=f"Log level (default info, {_env_help('log-level')})",
    )

    parser = argparse.ArgumentParser(
        prog="kubevirt-migrator",
        description="Migrate KubeVirt virtual machines between clusters",
        parents=[common],
    )
    subparsers = parser.add_subparsers(dest="command", metavar="{init,migrate,check,version}")
    subparsers.required = True

    for name, help_text in (
        ("init", "Create replicators, copy the disk and schedule incremental replication"),
        ("migrate", "Stop the source VM, run a final sync and start the destination VM"),
        ("check", "Verify that a migration between the clusters is feasible"),
    ):
        sub = subparsers.add_parser(name, help=help_text, parents=[common])
        _add_migration_flags(sub)

    version = subparsers.add_parser("version", help="Print version information", parents=[common])
    version.add_argument("--json", action="store_true", help="Print build info as JSON")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments after loading ``.env``."""
    load_dotenv()
    return build_parser().parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> MigrationConfig:
    return load_migration_config(
        vm_name=args.vm_name,
        namespace=args.namespace,
        src_kubeconfig=args.src_kubeconfig,
        dst_kubeconfig=args.dst_kubeconfig,
        ssh_port=args.ssh_port,
        kubecli=args.kubecli,
        sync_tool=args.sync_tool,
        preserve_pod_ip=args.preserve_pod_ip,
        replication_schedule=args.replication_schedule,
        dry_run=args.dry_run,
        log_level=getattr(args, "log_level", None),
    )


async def _run_check(controller: MigrationController) -> None:
    try:
        results = await controller.check()
    except FeasibilityCheckError as e:
        if isinstance(e.results, CheckResults):
            print(format_check_results(e.results, e))
        raise
    print(format_check_results(results))


async def run_command(command: str, config: MigrationConfig) -> Any:
    """Run one workflow command against the configured clusters.

    Child processes still running when the command ends or is cancelled
    (Ctrl-C) are terminated.
    """
    runner = CommandRunner()
    controller = MigrationController.from_config(config, runner)
    try:
        if command == "init":
            return await controller.init()
        if command == "migrate":
            return await controller.migrate()
        if command == "check":
            return await _run_check(controller)
        raise ValueError(f"unknown command: {command}")
    finally:
        await runner.cleanup_all()


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "version":
        info = get_build_info()
        print(json.dumps(info.as_dict(), indent=2) if args.json else info)
        return

    setup_logging(
        log_level=getattr(args, "log_level", None) or os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "info"),
        log_file=os.getenv(f"{ENV_PREFIX}LOG_FILE"),
    )

    try:
        config = _config_from_args(args)
        bind_run_context(command=args.command, vm=config.vm_name, namespace=config.namespace)
        asyncio.run(run_command(args.command, config))
    except MigratorError as e:
        logger.debug("Command failed", command=args.command, error=str(e))
        print(f"Error: {args.command} failed: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("Error: interrupted; cluster resources are left in place", file=sys.stderr)
        sys.exit(1)

    logger.info("Command completed", command=args.command)


if __name__ == "__main__":
    main()

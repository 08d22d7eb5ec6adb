"""Operational timeout and tuning settings for migrator runs.

Provides centralized configuration using Pydantic BaseSettings with
environment variable support for operational tuning.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MigratorSettings(BaseSettings):
    """Timeouts, retry budgets and images used by the migration workflow."""

    poll_interval: float = Field(
        5.0, alias="KUBEVIRT_MIGRATOR_POLL_INTERVAL", description="Status polling interval in seconds"
    )

    vm_status_timeout: int = Field(
        300,
        alias="KUBEVIRT_MIGRATOR_VM_STATUS_TIMEOUT",
        description="Deadline for a VM to reach a status during init/migrate, in seconds",
    )

    check_vm_status_timeout: int = Field(
        60,
        alias="KUBEVIRT_MIGRATOR_CHECK_VM_STATUS_TIMEOUT",
        description="Deadline for a VM to reach a status during the feasibility check",
    )

    pod_ready_timeout: int = Field(
        300,
        alias="KUBEVIRT_MIGRATOR_POD_READY_TIMEOUT",
        description="Replicator pod readiness deadline during init, in seconds",
    )

    check_pod_ready_timeout: int = Field(
        60,
        alias="KUBEVIRT_MIGRATOR_CHECK_POD_READY_TIMEOUT",
        description="Replicator pod readiness deadline during the feasibility check",
    )

    command_timeout: int = Field(
        120,
        alias="KUBEVIRT_MIGRATOR_COMMAND_TIMEOUT",
        description="Default timeout for a single external command, in seconds",
    )

    initial_copy_timeout: int = Field(
        21600,
        alias="KUBEVIRT_MIGRATOR_INITIAL_COPY_TIMEOUT",
        description="Timeout for the initial disk image copy, in seconds",
    )

    secret_verify_attempts: int = Field(
        3, alias="KUBEVIRT_MIGRATOR_SECRET_VERIFY_ATTEMPTS", description="SSH secret verification attempts"
    )

    secret_verify_delay: float = Field(
        5.0,
        alias="KUBEVIRT_MIGRATOR_SECRET_VERIFY_DELAY",
        description="Initial delay between SSH secret verification attempts, doubled each attempt",
    )

    replicator_image: str = Field(
        "kloiadocker/kubevirt-migrator:0.0.2",
        alias="KUBEVIRT_MIGRATOR_REPLICATOR_IMAGE",
        description="Container image used by replicator pods and replication jobs",
    )

    pod_network_prefix: int = Field(
        23,
        alias="KUBEVIRT_MIGRATOR_POD_NETWORK_PREFIX",
        description="Prefix length appended to a preserved pod IP address",
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
migrator_settings = MigratorSettings()

# Constants for easy import
POLL_INTERVAL: float = migrator_settings.poll_interval
VM_STATUS_TIMEOUT: int = migrator_settings.vm_status_timeout
CHECK_VM_STATUS_TIMEOUT: int = migrator_settings.check_vm_status_timeout
POD_READY_TIMEOUT: int = migrator_settings.pod_ready_timeout
CHECK_POD_READY_TIMEOUT: int = migrator_settings.check_pod_ready_timeout
COMMAND_TIMEOUT: int = migrator_settings.command_timeout
INITIAL_COPY_TIMEOUT: int = migrator_settings.initial_copy_timeout
SECRET_VERIFY_ATTEMPTS: int = migrator_settings.secret_verify_attempts
SECRET_VERIFY_DELAY: float = migrator_settings.secret_verify_delay
REPLICATOR_IMAGE: str = migrator_settings.replicator_image
POD_NETWORK_PREFIX: int = migrator_settings.pod_network_prefix

# Sentinel for waits that never time out (final replication job)
UNBOUNDED_TIMEOUT: int = -1

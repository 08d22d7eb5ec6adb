"""Per-run migration configuration."""

import re
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..constants import (
    CRONJOB_SUFFIX,
    DST_REPLICATOR_SUFFIX,
    DST_SERVICE_SUFFIX,
    ENV_PREFIX,
    FINAL_JOB_SUFFIX,
    SRC_REPLICATOR_SUFFIX,
    SSH_SECRET_SUFFIX,
    SSH_SERVICE_PORT,
)
from ..models.enums import KubeCLI, SyncToolName
from .exceptions import ConfigurationError
from .logging_config import LOG_LEVELS

logger = structlog.get_logger()

CRON_PATTERN = re.compile(r"^(\S+\s+){4}\S+$")
DEFAULT_SCHEDULE = "*/15 * * * *"
REQUIRED_FIELDS = ("vm_name", "namespace", "src_kubeconfig", "dst_kubeconfig")


class ClusterHandle(BaseModel):
    """CLI flavor plus kubeconfig path for one cluster."""

    kubecli: KubeCLI = KubeCLI.OC
    kubeconfig: str

    model_config = {"frozen": True}


class MigrationConfig(BaseSettings):
    """Immutable configuration for migrating a single VM.

    Every field can be provided as a keyword argument (CLI flags) or through
    a ``KUBEVIRT_MIGRATOR_<FIELD>`` environment variable; keyword arguments win.
    """

    vm_name: str = ""
    namespace: str = ""
    src_kubeconfig: str = ""
    dst_kubeconfig: str = ""
    ssh_port: int = Field(SSH_SERVICE_PORT, ge=1, le=65535)
    kubecli: KubeCLI = KubeCLI.OC
    sync_tool: SyncToolName = SyncToolName.RCLONE
    replication_schedule: str = DEFAULT_SCHEDULE
    preserve_pod_ip: bool = False
    dry_run: bool = False
    log_level: str = "info"

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    @field_validator("vm_name", "namespace", "src_kubeconfig", "dst_kubeconfig", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("replication_schedule")
    @classmethod
    def _validate_schedule(cls, value: str) -> str:
        value = value.strip()
        if not CRON_PATTERN.match(value):
            raise ValueError(f"invalid cron schedule format: {value!r}")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in LOG_LEVELS:
            raise ValueError(f"invalid log level: {value!r}")
        return value

    def validate_required(self) -> None:
        """Raise ConfigurationError unless every required field is set."""
        missing = [name for name in REQUIRED_FIELDS if not getattr(self, name)]
        if missing:
            flags = ", ".join("--" + name.replace("_", "-") for name in missing)
            raise ConfigurationError(f"required flags not set: {flags}")

    @property
    def src_cluster(self) -> ClusterHandle:
        return ClusterHandle(kubecli=self.kubecli, kubeconfig=self.src_kubeconfig)

    @property
    def dst_cluster(self) -> ClusterHandle:
        return ClusterHandle(kubecli=self.kubecli, kubeconfig=self.dst_kubeconfig)

    # Derived resource names

    @property
    def src_replicator(self) -> str:
        return self.vm_name + SRC_REPLICATOR_SUFFIX

    @property
    def dst_replicator(self) -> str:
        return self.vm_name + DST_REPLICATOR_SUFFIX

    @property
    def dst_service(self) -> str:
        return self.vm_name + DST_SERVICE_SUFFIX

    @property
    def ssh_secret(self) -> str:
        return self.vm_name + SSH_SECRET_SUFFIX

    @property
    def cronjob(self) -> str:
        return self.vm_name + CRONJOB_SUFFIX

    @property
    def final_job(self) -> str:
        return self.vm_name + FINAL_JOB_SUFFIX

    @property
    def pvc_name(self) -> str:
        return self.vm_name


def load_migration_config(**overrides: Any) -> MigrationConfig:
    """Build and validate the run configuration.

    ``None`` overrides are dropped so environment variables and defaults apply.

    Raises:
        ConfigurationError: If any value is invalid or a required field is missing
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        config = MigrationConfig(**values)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"invalid configuration: {details}") from e

    config.validate_required()
    logger.debug(
        "Migration configuration loaded",
        vm=config.vm_name,
        namespace=config.namespace,
        kubecli=config.kubecli.value,
        sync_tool=config.sync_tool.value,
        schedule=config.replication_schedule,
    )
    return config

"""Core exceptions for KubeVirt migration operations."""


class MigratorError(Exception):
    """Base exception for migrator operations."""


class ConfigurationError(MigratorError):
    """Configuration validation or loading failed."""


class CommandExecutionError(MigratorError):
    """External command execution failed."""

    def __init__(self, message: str, *, cmd: list[str] | None = None, stderr: str = ""):
        super().__init__(message)
        self.cmd = cmd or []
        self.stderr = stderr


class ClusterError(MigratorError):
    """Cluster operation failed."""


class ResourceNotFoundError(ClusterError):
    """Requested cluster resource does not exist."""


class WaitTimeoutError(ClusterError):
    """Resource did not reach the expected state before the deadline."""


class TemplateError(MigratorError):
    """Manifest template rendering or apply failed."""


class SSHProvisioningError(MigratorError):
    """SSH key generation or distribution failed."""


class ConnectivityCheckError(MigratorError):
    """Connectivity between replicator pods could not be established."""


class MountError(MigratorError):
    """Remote mount, verification or unmount failed."""


class ReplicationError(MigratorError):
    """Initial copy or replication job setup failed."""


class MigrationError(MigratorError):
    """Migration phase failed."""


class FeasibilityCheckError(MigrationError):
    """Pre-flight feasibility check failed."""

    def __init__(self, message: str, results=None):
        super().__init__(message)
        self.results = results

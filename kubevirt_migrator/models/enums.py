"""Enum definitions for the migrator."""

from enum import Enum


class KubeCLI(str, Enum):
    """Supported Kubernetes command line flavors."""

    OC = "oc"
    KUBECTL = "kubectl"


class SyncToolName(str, Enum):
    """Supported file sync backends for incremental replication."""

    RCLONE = "rclone"
    RSYNC = "rsync"


class VMStatus(str, Enum):
    """Printable VM statuses the workflow waits on."""

    RUNNING = "Running"
    STOPPED = "Stopped"


class TemplateKind(str, Enum):
    """Manifest templates shipped with the migrator."""

    SOURCE_REPLICATOR = "src-repl"
    DEST_REPLICATOR = "dst-repl"
    DEST_SERVICE = "dst-repl-svc"
    REPLICATION_JOB = "src-cronjob"


class CheckStatus(Enum):
    """Tri-state result of a single feasibility check."""

    SUCCESS = "success"
    FAILED = "failed"
    NOT_TESTED = "not_tested"

    @property
    def label(self) -> str:
        return {
            CheckStatus.SUCCESS: "✓ SUCCESS",
            CheckStatus.FAILED: "✗ FAILED",
            CheckStatus.NOT_TESTED: "? NOT TESTED",
        }[self]

"""Data replication between source and destination replicator pods."""

from .copy import BlockCopyProvider  # noqa: F401
from .mount import MountProvider, SSHFSMountProvider  # noqa: F401
from .orchestrator import SyncOrchestrator  # noqa: F401
from .ssh import SSHProvisioner  # noqa: F401
from .sync_tools import RcloneSync, RsyncSync, SyncBackend, build_sync_command, get_sync_backend  # noqa: F401

__all__ = [
    "BlockCopyProvider",
    "MountProvider",
    "RcloneSync",
    "RsyncSync",
    "SSHFSMountProvider",
    "SSHProvisioner",
    "SyncBackend",
    "SyncOrchestrator",
    "build_sync_command",
    "get_sync_backend",
]

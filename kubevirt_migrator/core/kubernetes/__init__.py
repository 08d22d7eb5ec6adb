"""Cluster access through oc/kubectl."""

from .client import CleanupReport, ClusterClient, VMInterface  # noqa: F401
from .clients import KubectlClient, OcClient  # noqa: F401
from .factory import create_cluster_client  # noqa: F401

__all__ = [
    "CleanupReport",
    "ClusterClient",
    "KubectlClient",
    "OcClient",
    "VMInterface",
    "create_cluster_client",
]

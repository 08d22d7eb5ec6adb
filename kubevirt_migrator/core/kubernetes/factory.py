"""Cluster client factory."""

from ...models.enums import KubeCLI
from ..exceptions import ConfigurationError
from ..subprocess_manager import CommandRunner
from .client import ClusterClient
from .clients import KubectlClient, OcClient

_CLIENTS: dict[KubeCLI, type[ClusterClient]] = {
    KubeCLI.OC: OcClient,
    KubeCLI.KUBECTL: KubectlClient,
}


def create_cluster_client(handle, runner: CommandRunner) -> ClusterClient:
    """Create the client matching a ClusterHandle's CLI flavor."""
    try:
        client_class = _CLIENTS[KubeCLI(handle.kubecli)]
    except ValueError as e:
        raise ConfigurationError(f"unsupported client type: {handle.kubecli}") from e
    return client_class(handle.kubeconfig, runner)

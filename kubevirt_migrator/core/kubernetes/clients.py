"""Concrete cluster clients for each supported CLI flavor."""

from ...models.enums import KubeCLI
from .client import ClusterClient


class OcClient(ClusterClient):
    """Cluster client using the OpenShift ``oc`` CLI."""

    command = KubeCLI.OC


class KubectlClient(ClusterClient):
    """Cluster client using the upstream ``kubectl`` CLI."""

    command = KubeCLI.KUBECTL

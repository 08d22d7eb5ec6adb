"""KubeVirt VM migration orchestrator."""

__version__ = "0.1.0"

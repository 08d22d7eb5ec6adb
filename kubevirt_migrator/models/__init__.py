"""Data models for the migrator."""

from .enums import CheckStatus, KubeCLI, SyncToolName, TemplateKind, VMStatus  # noqa: F401
from .resources import ResourceProfile  # noqa: F401

__all__ = [
    "CheckStatus",
    "KubeCLI",
    "ResourceProfile",
    "SyncToolName",
    "TemplateKind",
    "VMStatus",
]

"""Rewrite exported VM definitions before importing them on the destination."""

import json
from typing import Any

import yaml

from ...constants import POD_NETWORKS_ANNOTATION
from ..exceptions import MigrationError

# Metadata the API server owns; a definition carrying it cannot be applied elsewhere
SERVER_MANAGED_METADATA = (
    "uid",
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "managedFields",
    "selfLink",
    "finalizers",
    "ownerReferences",
)
LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"


def load_vm_definition(text: str) -> dict[str, Any]:
    try:
        definition = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MigrationError(f"exported VM definition is not valid YAML: {e}") from e
    if not isinstance(definition, dict) or definition.get("kind") != "VirtualMachine":
        raise MigrationError("exported definition is not a VirtualMachine")
    return definition


def dump_vm_definition(definition: dict[str, Any]) -> str:
    return yaml.safe_dump(definition, default_flow_style=False, sort_keys=False)


def strip_server_fields(definition: dict[str, Any]) -> dict[str, Any]:
    """Drop status and server-managed metadata in place."""
    definition.pop("status", None)
    metadata = definition.setdefault("metadata", {})
    for key in SERVER_MANAGED_METADATA:
        metadata.pop(key, None)
    annotations = metadata.get("annotations") or {}
    annotations.pop(LAST_APPLIED_ANNOTATION, None)
    if not annotations:
        metadata.pop("annotations", None)
    return definition


def force_halted(definition: dict[str, Any]) -> dict[str, Any]:
    """Declare the VM halted using whichever run field the definition exposes."""
    spec = definition.setdefault("spec", {})
    if spec.get("runStrategy"):
        spec["runStrategy"] = "Halted"
        spec.pop("running", None)
    else:
        spec["running"] = False
    return definition


def set_pod_network(definition: dict[str, Any], ip_address: str, mac_address: str) -> dict[str, Any]:
    """Pin the VM pod's default network to a fixed IP (with prefix) and MAC."""
    template = definition.setdefault("spec", {}).setdefault("template", {})
    metadata = template.get("metadata") or {}
    template["metadata"] = metadata
    annotations = metadata.get("annotations") or {}
    metadata["annotations"] = annotations
    annotations[POD_NETWORKS_ANNOTATION] = json.dumps(
        {"default": {"ip_address": ip_address, "mac_address": mac_address}}
    )
    return definition


def prepare_for_import(
    exported: str,
    *,
    ip_address: str | None = None,
    mac_address: str | None = None,
) -> str:
    """Turn an exported source VM into a halted definition for the destination.

    ``ip_address`` must already carry its prefix length (``10.128.0.7/23``).
    """
    definition = force_halted(strip_server_fields(load_vm_definition(exported)))
    if ip_address and mac_address:
        set_pod_network(definition, ip_address, mac_address)
    return dump_vm_definition(definition)

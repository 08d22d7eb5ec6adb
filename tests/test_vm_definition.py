"""Tests for exported VM definition rewriting."""

import json

import pytest
import yaml

from kubevirt_migrator.core.exceptions import MigrationError
from kubevirt_migrator.core.migration.vm_definition import (
    force_halted,
    load_vm_definition,
    prepare_for_import,
    strip_server_fields,
)

EXPORTED = """\
apiVersion: kubevirt.io/v1
kind: VirtualMachine
metadata:
  name: vm1
  namespace: ns
  uid: 1234
  resourceVersion: "99"
  generation: 3
  creationTimestamp: "2024-01-01T00:00:00Z"
  annotations:
    kubectl.kubernetes.io/last-applied-configuration: "{}"
spec:
  runStrategy: Always
  template:
    spec:
      domain:
        devices: {}
status:
  printableStatus: Running
"""


class TestVMDefinition:
    """Test halting, stripping and network pinning."""

    def test_prepare_for_import(self):
        definition = yaml.safe_load(prepare_for_import(EXPORTED))
        assert definition["spec"]["runStrategy"] == "Halted"
        assert "running" not in definition["spec"]
        assert "status" not in definition
        assert definition["metadata"] == {"name": "vm1", "namespace": "ns"}
        assert definition["spec"]["template"]["spec"]["domain"] == {"devices": {}}

    def test_running_flag_is_cleared(self):
        definition = force_halted({"kind": "VirtualMachine", "spec": {"running": True}})
        assert definition["spec"] == {"running": False}

    def test_other_annotations_are_kept(self):
        definition = strip_server_fields(
            {"metadata": {"annotations": {"team": "infra", "kubectl.kubernetes.io/last-applied-configuration": "{}"}}}
        )
        assert definition["metadata"]["annotations"] == {"team": "infra"}

    def test_preserve_pod_network(self):
        rendered = prepare_for_import(EXPORTED, ip_address="10.128.0.5/23", mac_address="02:00:00:00:00:01")
        annotations = yaml.safe_load(rendered)["spec"]["template"]["metadata"]["annotations"]
        assert json.loads(annotations["k8s.ovn.org/pod-networks"]) == {
            "default": {"ip_address": "10.128.0.5/23", "mac_address": "02:00:00:00:00:01"}
        }

    @pytest.mark.parametrize("text", ["kind: Pod\n", "[1, 2]", "key: [unclosed"])
    def test_invalid_definitions(self, text):
        with pytest.raises(MigrationError):
            load_vm_definition(text)

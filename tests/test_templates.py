"""Tests for manifest template rendering and apply."""

import os

import pytest
import yaml

from kubevirt_migrator.core.exceptions import TemplateError
from kubevirt_migrator.core.settings import REPLICATOR_IMAGE
from kubevirt_migrator.models.enums import TemplateKind

from .conftest import command_failed


class TestRender:
    """Test placeholder substitution."""

    def test_render_service(self, renderer):
        rendered = renderer.render(
            TemplateKind.DEST_SERVICE,
            {"VM_NAME": "vm1", "NAMESPACE": "ns", "PORT": 2222, "TARGET_PORT": 2222},
        )
        manifest = yaml.safe_load(rendered)
        assert manifest["kind"] == "Service"
        assert manifest["metadata"]["name"] == "vm1-dst-svc"
        assert manifest["spec"]["type"] == "NodePort"
        assert manifest["spec"]["selector"] == {"app": "vm1-dst-replicator"}
        assert manifest["spec"]["ports"][0]["port"] == 2222
        assert "${" not in rendered

    def test_render_cronjob(self, renderer):
        rendered = renderer.render(
            "src-cronjob",
            {
                "VM_NAME": "vm1",
                "NAMESPACE": "ns",
                "SCHEDULE": "*/15 * * * *",
                "REPLICATION_COMMAND": "ZWNobyBoaQ==",
                "SYNC_TOOL": "rclone",
                "CPU_LIMIT": "1.0",
                "CPU_REQUEST": "0.7",
                "MEMORY_LIMIT": "2Gi",
                "MEMORY_REQUEST": "2Gi",
            },
        )
        manifest = yaml.safe_load(rendered)
        spec = manifest["spec"]
        container = spec["jobTemplate"]["spec"]["template"]["spec"]["containers"][0]
        assert spec["schedule"] == "*/15 * * * *"
        assert spec["concurrencyPolicy"] == "Forbid"
        assert container["image"] == REPLICATOR_IMAGE
        assert container["env"][0]["value"] == "ZWNobyBoaQ=="
        assert container["resources"]["limits"] == {"cpu": "1.0", "memory": "2Gi"}

    def test_destination_sshd_listens_on_target_port(self, renderer):
        rendered = renderer.render(
            TemplateKind.DEST_REPLICATOR, {"VM_NAME": "vm1", "NAMESPACE": "ns", "TARGET_PORT": 2222}
        )
        container = yaml.safe_load(rendered)["spec"]["containers"][0]
        assert container["command"][-1].endswith("/usr/sbin/sshd -D -e -p 2222")
        assert container["ports"][0]["containerPort"] == 2222

    def test_explicit_image_overrides_default(self, renderer):
        rendered = renderer.render("src-repl", {"VM_NAME": "vm1", "NAMESPACE": "ns", "IMAGE": "repo/img:1"})
        assert "repo/img:1" in rendered
        assert REPLICATOR_IMAGE not in rendered

    @pytest.mark.parametrize("kind", ["../etc/passwd", "unknown", "src-repl/x"])
    def test_invalid_kind(self, renderer, kind):
        with pytest.raises(TemplateError, match="invalid template kind"):
            renderer.render(kind, {})


@pytest.mark.asyncio
class TestRenderAndApply:
    """Test applying rendered templates."""

    async def test_apply_command(self, renderer, template_runner):
        seen = {}

        def capture(cmd):
            path = cmd[cmd.index("-f") + 1]
            with open(path, encoding="utf-8") as handle:
                seen["content"] = handle.read()
            seen["path"] = path
            return "pod/vm1-src-replicator created"

        template_runner.on("apply", capture)
        await renderer.render_and_apply("src-repl", {"VM_NAME": "vm1", "NAMESPACE": "ns"}, "/kube/src")

        cmd = template_runner.calls[0]
        assert cmd[:2] == ["oc", "apply"]
        assert cmd[-4:] == ["-n", "ns", "--kubeconfig", "/kube/src"]
        assert "vm1-src-replicator" in seen["content"]
        assert not os.path.exists(seen["path"])

    async def test_temp_file_removed_on_failure(self, renderer, template_runner):
        paths = []

        def fail(cmd):
            paths.append(cmd[cmd.index("-f") + 1])
            return command_failed("forbidden")

        template_runner.on("apply", fail)
        with pytest.raises(TemplateError, match="forbidden"):
            await renderer.render_and_apply("dst-repl", {"VM_NAME": "vm1", "NAMESPACE": "ns"}, "/kube/dst")
        assert paths and not os.path.exists(paths[0])

    async def test_namespace_required(self, renderer, template_runner):
        with pytest.raises(TemplateError, match="NAMESPACE"):
            await renderer.render_and_apply("src-repl", {"VM_NAME": "vm1"}, "/kube/src")
        assert template_runner.calls == []

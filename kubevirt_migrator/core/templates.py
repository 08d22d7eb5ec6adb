"""Render shipped manifest templates and apply them to a cluster."""

import os
import tempfile
from importlib import resources
from typing import Any

import structlog

from ..models.enums import KubeCLI, TemplateKind
from .exceptions import MigratorError, TemplateError
from .settings import REPLICATOR_IMAGE
from .subprocess_manager import CommandRunner

logger = structlog.get_logger()

TEMPLATE_PACKAGE = "kubevirt_migrator.templates"

PLACEHOLDERS = (
    "VM_NAME",
    "NAMESPACE",
    "PORT",
    "TARGET_PORT",
    "SCHEDULE",
    "REPLICATION_COMMAND",
    "SYNC_TOOL",
    "CPU_LIMIT",
    "CPU_REQUEST",
    "MEMORY_LIMIT",
    "MEMORY_REQUEST",
    "IMAGE",
)


class TemplateRenderer:
    """Renders ``${PLACEHOLDER}`` manifests from the templates package and applies them."""

    def __init__(self, runner: CommandRunner, kubecli: KubeCLI | str = KubeCLI.OC):
        self.runner = runner
        self.kubecli = KubeCLI(kubecli).value
        self.logger = logger.bind(component="template_renderer")

    def render(self, kind: TemplateKind | str, variables: dict[str, Any]) -> str:
        """Return the manifest text for ``kind`` with placeholders substituted.

        Raises:
            TemplateError: If the kind is not an allowed template or cannot be read
        """
        try:
            kind = TemplateKind(kind)
        except ValueError as e:
            raise TemplateError(f"invalid template kind: {kind}") from e

        filename = f"{kind.value}.yaml"
        if "/" in filename or "\\" in filename or ".." in filename:
            raise TemplateError(f"invalid template filename: {filename}")

        try:
            content = resources.files(TEMPLATE_PACKAGE).joinpath(filename).read_text(encoding="utf-8")
        except OSError as e:
            raise TemplateError(f"failed to read template {kind.value}: {e}") from e

        values = {"IMAGE": REPLICATOR_IMAGE}
        values.update({key: str(value) for key, value in variables.items() if value is not None})
        for name in PLACEHOLDERS:
            if name in values:
                content = content.replace("${" + name + "}", values[name])
        return content

    async def render_and_apply(
        self,
        kind: TemplateKind | str,
        variables: dict[str, Any],
        kubeconfig: str,
    ) -> None:
        """Render ``kind`` and ``apply -f`` it to the cluster behind ``kubeconfig``.

        ``variables`` must contain ``NAMESPACE``. The rendered manifest lives
        in a private temporary file only for the duration of the apply.

        Raises:
            TemplateError: If rendering or applying fails
        """
        rendered = self.render(kind, variables)
        namespace = str(variables.get("NAMESPACE", ""))
        if not namespace:
            raise TemplateError("template variables must include NAMESPACE")

        fd, path = tempfile.mkstemp(prefix="kubevirt-migrator-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(rendered)
            await self.runner.execute(
                self.kubecli, "apply", "-f", path, "-n", namespace, "--kubeconfig", kubeconfig
            )
        except MigratorError as e:
            raise TemplateError(f"failed to apply template {TemplateKind(kind).value}: {e}") from e
        finally:
            try:
                os.remove(path)
            except OSError as e:
                self.logger.warning("Failed to remove temp file", file=path, error=str(e))

        self.logger.info("Template applied", kind=TemplateKind(kind).value, namespace=namespace)

"""Shared pytest fixtures for migrator tests."""

import os
from typing import Any

import pytest

from kubevirt_migrator.core.config import MigrationConfig
from kubevirt_migrator.core.exceptions import CommandExecutionError
from kubevirt_migrator.core.kubernetes import OcClient
from kubevirt_migrator.core.templates import TemplateRenderer


def not_found(kind: str = "virtualmachines", name: str = "vm1") -> CommandExecutionError:
    message = f'Error from server (NotFound): {kind} "{name}" not found'
    return CommandExecutionError(message, stderr=message)


def command_failed(message: str = "boom") -> CommandExecutionError:
    return CommandExecutionError(f"Command failed with exit code 1: {message}", stderr=message)


class FakeCommandRunner:
    """Records commands and answers them from substring rules.

    The most recently added matching rule wins. A rule's response can be a
    string, an exception to raise, a callable taking the command list, or a
    list of those consumed in order (the last one repeats).
    """

    def __init__(self):
        self.calls: list[list[str]] = []
        self.stdins: list[str | None] = []
        self._rules: list[tuple[str, Any]] = []

    def on(self, pattern: str, response: Any) -> "FakeCommandRunner":
        if isinstance(response, list):
            response = list(response)
        self._rules.insert(0, (pattern, response))
        return self

    def _respond(self, cmd: list[str]) -> Any:
        text = " ".join(cmd)
        for pattern, response in self._rules:
            if pattern in text:
                if isinstance(response, list):
                    response = response.pop(0) if len(response) > 1 else response[0]
                if callable(response):
                    response = response(cmd)
                return response
        return ""

    async def execute(self, name: str, *args: str, stdin=None, env=None, timeout=None) -> str:
        cmd = [name, *args]
        self.calls.append(cmd)
        self.stdins.append(stdin)
        response = self._respond(cmd)
        if isinstance(response, Exception):
            raise response
        return response

    def commands(self) -> list[str]:
        return [" ".join(cmd) for cmd in self.calls]

    def called(self, pattern: str) -> bool:
        return any(pattern in command for command in self.commands())

    def count(self, pattern: str) -> int:
        return sum(pattern in command for command in self.commands())

    def index(self, pattern: str) -> int:
        for position, command in enumerate(self.commands()):
            if pattern in command:
                return position
        raise AssertionError(f"no command matching {pattern!r}")


@pytest.fixture
def config(monkeypatch) -> MigrationConfig:
    """Migration config for VM ``vm1`` in namespace ``ns``."""
    for key in list(os.environ):
        if key.startswith("KUBEVIRT_MIGRATOR_"):
            monkeypatch.delenv(key, raising=False)
    return MigrationConfig(
        vm_name="vm1",
        namespace="ns",
        src_kubeconfig="/kube/src",
        dst_kubeconfig="/kube/dst",
        _env_file=None,
    )


@pytest.fixture
def src_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def dst_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def template_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def src_client(src_runner) -> OcClient:
    return OcClient("/kube/src", src_runner, poll_interval=0)


@pytest.fixture
def dst_client(dst_runner) -> OcClient:
    return OcClient("/kube/dst", dst_runner, poll_interval=0)


@pytest.fixture
def renderer(template_runner) -> TemplateRenderer:
    return TemplateRenderer(template_runner, "oc")

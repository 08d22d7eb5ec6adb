"""Tests for external command execution."""

import asyncio
import os

import pytest
import pytest_asyncio

from kubevirt_migrator.core.exceptions import CommandExecutionError
from kubevirt_migrator.core.subprocess_manager import CommandRunner, SubprocessResult


@pytest_asyncio.fixture
async def runner():
    """Create a command runner for testing."""
    runner = CommandRunner(default_timeout=10)
    yield runner
    await runner.cleanup_all()


@pytest.mark.asyncio
class TestCommandRunner:
    """Test command runner functionality."""

    async def test_run_simple_command(self, runner):
        result = await runner.run_command(["echo", "hello"])
        assert result.success
        assert result.stdout.strip() == "hello"
        assert result.stderr == ""
        assert result.returncode == 0

    async def test_run_command_with_error(self, runner):
        with pytest.raises(CommandExecutionError) as exc_info:
            await runner.run_command(["sh", "-c", "echo nope >&2; exit 3"])
        assert "exit code 3" in str(exc_info.value)
        assert exc_info.value.stderr.strip() == "nope"
        assert exc_info.value.cmd[0] == "sh"

    async def test_run_command_no_check(self, runner):
        result = await runner.run_command(["sh", "-c", "exit 1"], check=False)
        assert not result.success
        assert result.returncode == 1

    async def test_command_timeout(self, runner):
        with pytest.raises(CommandExecutionError, match="timed out after 0.1 seconds"):
            await runner.run_command(["sleep", "10"], timeout=0.1)

    async def test_negative_timeout_waits_without_deadline(self, runner):
        result = await runner.run_command(["sh", "-c", "sleep 0.2; echo done"], timeout=-1)
        assert result.stdout.strip() == "done"

    async def test_command_with_stdin(self, runner):
        result = await runner.run_command(["cat"], stdin="test input", timeout=1)
        assert result.stdout == "test input"

    async def test_environment_is_merged(self, runner):
        result = await runner.run_command(["sh", "-c", "echo $MIGRATOR_TEST_VAR:$PATH"], env={"MIGRATOR_TEST_VAR": "x"})
        value, path = result.stdout.strip().split(":", 1)
        assert value == "x"
        assert path == os.environ.get("PATH", "")

    async def test_missing_binary(self, runner):
        with pytest.raises(CommandExecutionError, match="Failed to start command"):
            await runner.run_command(["definitely-not-a-real-binary-xyz"])

    async def test_execute_returns_stdout(self, runner):
        output = await runner.execute("printf", "%s-%s", "a", "b")
        assert output == "a-b"

    async def test_execute_with_stdin(self, runner):
        output = await runner.execute("cat", stdin="apiVersion: v1\n")
        assert output == "apiVersion: v1\n"

    async def test_cleanup_all_terminates_running_commands(self, runner):
        task = asyncio.create_task(runner.run_command(["sleep", "10"], timeout=30))
        await asyncio.sleep(0.2)
        await runner.cleanup_all()
        with pytest.raises(CommandExecutionError, match="exit code"):
            await asyncio.wait_for(task, timeout=5)


class TestSubprocessResult:
    """Test SubprocessResult helpers."""

    def test_check_returncode_success(self):
        SubprocessResult(returncode=0, stdout="ok", stderr="", cmd=["true"]).check_returncode()

    def test_check_returncode_failure_prefers_stderr(self):
        result = SubprocessResult(returncode=2, stdout="out", stderr="err", cmd=["oc", "get", "vm"])
        with pytest.raises(CommandExecutionError, match="exit code 2: err"):
            result.check_returncode()

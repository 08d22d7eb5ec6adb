"""Tests for the SSHFS mount provider and the initial block copy."""

import pytest

from kubevirt_migrator.core.exceptions import ConnectivityCheckError, MountError, ReplicationError
from kubevirt_migrator.core.replication import BlockCopyProvider, SSHFSMountProvider

from .conftest import command_failed


@pytest.fixture
def provider(config, src_client):
    return SSHFSMountProvider(config, src_client)


@pytest.fixture
def healthy_pod(src_runner):
    src_runner.on("/dev/tcp/", "Connection successful")
    src_runner.on("which sshfs", "/usr/bin/sshfs")
    return src_runner


@pytest.mark.asyncio
class TestConnectivity:
    """Test connectivity prerequisites."""

    async def test_all_checks_pass(self, provider, healthy_pod):
        await provider.check_connectivity("10.0.0.7", 31022)
        assert healthy_pod.called("timeout 5 bash -c '</dev/tcp/10.0.0.7/31022'")
        assert healthy_pod.called("touch /data/simg/test_write_perm")

    async def test_tcp_failure(self, provider, healthy_pod):
        healthy_pod.on("/dev/tcp/", command_failed("exit 124"))
        with pytest.raises(ConnectivityCheckError) as exc_info:
            await provider.check_connectivity("10.0.0.7", 31022)
        message = str(exc_info.value)
        assert "TCP connectivity test failed" in message
        assert "SSHFS command not available" not in message

    async def test_sshfs_missing(self, provider, healthy_pod):
        healthy_pod.on("which sshfs", "sshfs not found")
        with pytest.raises(ConnectivityCheckError, match="SSHFS command not available"):
            await provider.check_connectivity("10.0.0.7", 31022)

    async def test_every_failure_is_reported(self, provider, src_runner):
        src_runner.on("/dev/tcp/", "")
        src_runner.on("touch", command_failed("read-only"))
        src_runner.on("which sshfs", "sshfs not found")
        with pytest.raises(ConnectivityCheckError) as exc_info:
            await provider.check_connectivity("10.0.0.7", 31022)
        message = str(exc_info.value)
        assert "TCP connectivity test failed" in message
        assert "Source directory write permission" in message
        assert "SSHFS command not available" in message


@pytest.mark.asyncio
class TestMount:
    """Test mount, verification and unmount."""

    async def test_mount_is_idempotent(self, provider, src_runner):
        await provider.mount("10.0.0.7", 31022)
        script = src_runner.calls[0][-1]
        assert script.startswith("mountpoint -q /data/dimg || ")
        assert "-o port=31022 10.0.0.7:/data/simg /data/dimg" in script

    async def test_mount_failure(self, provider, src_runner):
        src_runner.on("sshfs", command_failed("permission denied (publickey)"))
        with pytest.raises(MountError, match="publickey"):
            await provider.mount("10.0.0.7", 31022)

    async def test_verify_mount(self, provider, src_runner):
        src_runner.on("/proc/mounts", "10.0.0.7:/data/simg /data/dimg fuse.sshfs rw,nosuid 0 0\n")
        await provider.verify_mount()

    async def test_verify_mount_missing(self, provider, src_runner):
        src_runner.on("/proc/mounts", "")
        with pytest.raises(MountError, match="not an sshfs mount"):
            await provider.verify_mount()

    async def test_unmount(self, provider, src_runner):
        await provider.unmount()
        assert src_runner.calls[0][-1] == "umount /data/dimg"
        src_runner.on("umount", command_failed("target is busy"))
        with pytest.raises(MountError, match="busy"):
            await provider.unmount()


@pytest.mark.asyncio
class TestBlockCopy:
    """Test the initial sparse copy."""

    async def test_copy_command(self, config, src_client, src_runner):
        copier = BlockCopyProvider(config, src_client)
        await copier.copy()
        assert src_runner.calls[0][-1] == "cp -p --sparse=always /data/simg/disk.img /data/dimg/"
        assert src_runner.calls[0][2] == "vm1-src-replicator"

    async def test_copy_failure(self, config, src_client, src_runner):
        src_runner.on("cp -p", command_failed("No space left on device"))
        with pytest.raises(ReplicationError, match="No space left"):
            await BlockCopyProvider(config, src_client).copy()

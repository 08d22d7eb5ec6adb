"""File sync backends used by the replication jobs."""

from abc import ABC, abstractmethod

from ...models.enums import SyncToolName
from ..exceptions import ConfigurationError


class SyncBackend(ABC):
    """Abstract base class for file sync tools."""

    @abstractmethod
    def build_command(
        self,
        source: str,
        dest: str,
        options: dict[str, str] | None = None,
    ) -> tuple[str, list[str]]:
        """Build the sync invocation.

        Args:
            source: Source directory; empty to leave paths out
            dest: Destination directory; empty to leave paths out
            options: Tool options such as ``checksum`` or ``checkers``

        Returns:
            Tuple of (binary name, argument list)
        """

    @abstractmethod
    def get_tool_name(self) -> SyncToolName:
        """Get the name of this sync backend."""

    def render(self, source: str, dest: str, options: dict[str, str] | None = None) -> str:
        """Return the invocation as one shell line."""
        binary, args = self.build_command(source, dest, options)
        return " ".join([binary, *args])


class RcloneSync(SyncBackend):
    """rclone sync with conservative timeouts and retries."""

    def build_command(self, source, dest, options=None):
        options = options or {}
        args = ["sync", "--progress"]
        if source and dest:
            args.extend([f"{source}/", f"{dest}/"])
        if options.get("checksum") == "true":
            args.append("--checksum")
        args.extend(
            [
                "--skip-links",
                "--checkers", options.get("checkers", "8"),
                "--contimeout", "100s",
                "--timeout", "300s",
                "--retries", "3",
                "--low-level-retries", "10",
                "--drive-acknowledge-abuse",
                "--stats", "1s",
                "--cutoff-mode=soft",
            ]
        )
        return "rclone", args

    def get_tool_name(self):
        return SyncToolName.RCLONE


class RsyncSync(SyncBackend):
    """rsync in archive mode with progress."""

    def build_command(self, source, dest, options=None):
        options = options or {}
        args = ["-avzP"]
        if source and dest:
            args.extend([f"{source}/", f"{dest}/"])
        if options.get("checksum") == "true":
            args.append("-c")
        if "delete" in options:
            args.append("--delete")
        args.extend(["--timeout=300", "--contimeout=100"])
        return "rsync", args

    def get_tool_name(self):
        return SyncToolName.RSYNC


_BACKENDS: dict[SyncToolName, type[SyncBackend]] = {
    SyncToolName.RCLONE: RcloneSync,
    SyncToolName.RSYNC: RsyncSync,
}


def get_sync_backend(name: SyncToolName | str) -> SyncBackend:
    """Select the sync backend for a tool name."""
    try:
        return _BACKENDS[SyncToolName(name)]()
    except ValueError as e:
        raise ConfigurationError(f"unsupported sync tool: {name}") from e


def build_sync_command(
    name: SyncToolName | str,
    source: str = "",
    dest: str = "",
    options: dict[str, str] | None = None,
) -> tuple[str, list[str]]:
    """Return (binary, args) for the named backend."""
    return get_sync_backend(name).build_command(source, dest, options)

"""Remote execution/file channel protocol.

The channel is the primitive capability an agent session acts through:
command execution plus a handful of file operations on the remote host.
Implementations:
- LocalChannel: the local filesystem and asyncio subprocesses
- anything SSH/SFTP-backed supplied by the embedding application
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class ExecResult:
    """Result of a remote command.

    Attributes:
        exit_code: Process exit code (124 when the timeout fired).
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_ms: Wall time in milliseconds.
        timed_out: True if the command was killed by the timeout.
    """

    exit_code: int
    stdout: str
    stderr: str
    duration_ms: float
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True, slots=True)
class RemoteStat:
    size: int
    is_dir: bool


@dataclass(frozen=True, slots=True)
class RemoteEntry:
    """One directory entry from readdir()."""

    name: str
    is_dir: bool
    size: int


class RemoteChannel(Protocol):
    """Command execution and file primitives on one remote host.

    All paths are absolute POSIX paths on the remote side. File operations
    raise OSError (FileNotFoundError, PermissionError, ...) on failure,
    except stat(), which reports a missing path as None.
    """

    async def exec(self, command: str, timeout: float, elevated: bool = False) -> ExecResult:
        """Run a shell command, killing it after ``timeout`` seconds."""
        ...

    async def stat(self, path: str) -> RemoteStat | None:
        """Return file metadata, or None if the path does not exist."""
        ...

    async def read_file(self, path: str) -> bytes:
        ...

    async def write_file(self, path: str, data: bytes) -> None:
        ...

    async def rename(self, old_path: str, new_path: str) -> None:
        ...

    async def unlink(self, path: str) -> None:
        ...

    async def mkdir(self, path: str) -> None:
        """Create a directory, including missing parents."""
        ...

    async def rmdir(self, path: str) -> None:
        """Remove an empty directory."""
        ...

    async def readdir(self, path: str) -> list[RemoteEntry]:
        ...


class ChannelResolver(Protocol):
    """Looks up the channel of a remote session. A plain dict qualifies."""

    def get(self, remote_ref: str) -> RemoteChannel | None:
        ...

"""Channel implementation over the local machine.

Runs commands with asyncio subprocesses and file operations with pathlib.
Useful for development, tests and the command-line runner, where the
"remote" host is the machine vmagent itself runs on.
"""

from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path

from vmagent.logging import get_logger
from vmagent.remote.protocol import ExecResult, RemoteEntry, RemoteStat

log = get_logger("remote.local")

# Exit code reported for commands killed by the timeout (matches coreutils timeout)
TIMEOUT_EXIT_CODE = 124


class LocalChannel:
    """Execute commands and file operations on the local machine."""

    def __init__(self, env: dict[str, str] | None = None) -> None:
        """Initialize the channel.

        Args:
            env: Additional environment variables for every command.
        """
        self._env = env or {}

    async def exec(self, command: str, timeout: float, elevated: bool = False) -> ExecResult:
        """Run ``command`` through the shell with a timeout.

        ``elevated`` is accepted for protocol compatibility; local commands
        always run as the current user.
        """
        start_time = time.perf_counter()

        process_env = os.environ.copy()
        process_env.update(self._env)

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=process_env,
            )
        except OSError as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            return ExecResult(exit_code=126, stdout="", stderr=f"OS error: {e}", duration_ms=duration_ms)

        try:
            stdout_data, stderr_data = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            duration_ms = (time.perf_counter() - start_time) * 1000
            try:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass  # Process already gone
            log.debug("Command timed out after %ss: %s", timeout, command)
            return ExecResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
                duration_ms=duration_ms,
                timed_out=True,
            )

        duration_ms = (time.perf_counter() - start_time) * 1000
        return ExecResult(
            exit_code=process.returncode if process.returncode is not None else 1,
            stdout=stdout_data.decode("utf-8", errors="replace"),
            stderr=stderr_data.decode("utf-8", errors="replace"),
            duration_ms=duration_ms,
        )

    async def stat(self, path: str) -> RemoteStat | None:
        p = Path(path)
        if not p.exists():
            return None
        st = p.stat()
        return RemoteStat(size=st.st_size, is_dir=p.is_dir())

    async def read_file(self, path: str) -> bytes:
        return Path(path).read_bytes()

    async def write_file(self, path: str, data: bytes) -> None:
        Path(path).write_bytes(data)

    async def rename(self, old_path: str, new_path: str) -> None:
        os.replace(old_path, new_path)

    async def unlink(self, path: str) -> None:
        Path(path).unlink()

    async def mkdir(self, path: str) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    async def rmdir(self, path: str) -> None:
        Path(path).rmdir()

    async def readdir(self, path: str) -> list[RemoteEntry]:
        entries: list[RemoteEntry] = []
        for child in Path(path).iterdir():
            is_dir = child.is_dir()
            size = 0 if is_dir else child.stat().st_size
            entries.append(RemoteEntry(name=child.name, is_dir=is_dir, size=size))
        return entries

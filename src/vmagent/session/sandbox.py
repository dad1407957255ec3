"""Per-session sandbox: the tool operations an agent can perform.

Every operation validates its paths (and command) first, then acts through
the session's remote channel. Mutations are recorded as FileChanges and
the first mutation of each existing path is snapshotted, so rollback_all()
can undo the whole session.

A Sandbox is used by exactly one task (its session's loop) and does no
locking of its own.
"""

from __future__ import annotations

import dataclasses
import posixpath
import shlex
import time
from dataclasses import dataclass

from vmagent.config.schema import SandboxConfig
from vmagent.errors import RemoteSessionNotFoundError, SandboxError, ValidationError
from vmagent.logging import get_logger
from vmagent.remote.backup import Snapshot, SnapshotStore
from vmagent.remote.protocol import ChannelResolver, ExecResult, RemoteChannel, RemoteEntry
from vmagent.session.models import FileAction, FileChange
from vmagent.session.validator import (
    has_shell_metacharacters,
    validate_command,
    validate_path,
)

log = get_logger("session.sandbox")

TEMP_PREFIX = ".vmagent-tmp."


@dataclass(frozen=True, slots=True)
class FileContent:
    content: str
    size: int


@dataclass(frozen=True, slots=True)
class WriteResult:
    path: str
    size: int
    created: bool


class Sandbox:
    """Tool operations bound to one workspace on one remote host.

    Args:
        remote_ref: Id of the owning remote session, resolved per call.
        workspace_root: Absolute path unelevated operations are confined to.
        channels: Resolves ``remote_ref`` to a RemoteChannel.
        snapshots: Snapshot store used before the first mutation of a path.
        config: Size, count and timeout limits.
        changes: The list FileChanges are appended to (normally the
            session's ``file_changes``).
        allow_system_access: Validate every operation as elevated.
    """

    def __init__(
        self,
        remote_ref: str,
        workspace_root: str,
        channels: ChannelResolver,
        snapshots: SnapshotStore,
        config: SandboxConfig | None = None,
        *,
        changes: list[FileChange] | None = None,
        allow_system_access: bool = False,
    ) -> None:
        self.remote_ref = remote_ref
        self.workspace_root = workspace_root
        self.allow_system_access = allow_system_access
        self._channels = channels
        self._snapshots = snapshots
        self._config = config or SandboxConfig()
        self._changes: list[FileChange] = changes if changes is not None else []
        self._snapshotted: set[str] = set()
        self._changed_paths: set[str] = set()
        self._created: set[str] = set()
        self._created_dirs: list[str] = []

    @property
    def file_changes(self) -> list[FileChange]:
        return list(self._changes)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _channel(self) -> RemoteChannel:
        channel = self._channels.get(self.remote_ref)
        if channel is None:
            raise RemoteSessionNotFoundError(self.remote_ref)
        return channel

    def _check_path(self, path: str, elevated: bool) -> None:
        violation = validate_path(path, self.workspace_root, elevated or self.allow_system_access)
        if violation is not None:
            raise ValidationError(violation)

    def _check_change_budget(self, *paths: str) -> None:
        new_paths = [p for p in paths if p not in self._changed_paths]
        limit = self._config.max_files_per_session
        if new_paths and len(self._changed_paths) + len(new_paths) > limit:
            raise SandboxError(f"Max file changes per session exceeded ({limit})")

    def _record(self, change: FileChange) -> None:
        self._changes.append(change)
        self._changed_paths.add(change.path)
        if change.new_path:
            self._changed_paths.add(change.new_path)

    async def _snapshot_once(self, path: str) -> Snapshot | None:
        """Snapshot ``path`` unless already done this session.

        A failed snapshot is logged and the mutation goes ahead without one.
        """
        if path in self._snapshotted:
            return None
        try:
            snapshot = await self._snapshots.create_backup(self.remote_ref, path)
        except OSError as e:
            log.warning("Snapshot failed for %s: %s", path, e)
            return None
        self._snapshotted.add(path)
        return snapshot

    # -------------------------------------------------------------------------
    # Tool operations
    # -------------------------------------------------------------------------

    async def list_dir(self, path: str, *, elevated: bool = False) -> list[RemoteEntry]:
        """Visible entries of a directory, directories first, then by name."""
        self._check_path(path, elevated)
        channel = self._channel()

        stat = await channel.stat(path)
        if stat is None:
            raise SandboxError(f"Directory not found: {path}")
        if not stat.is_dir:
            raise SandboxError(f"Not a directory: {path}")

        entries = [e for e in await channel.readdir(path) if not e.name.startswith(".")]
        entries.sort(key=lambda e: (not e.is_dir, e.name))
        return entries

    async def read_file(self, path: str, *, elevated: bool = False) -> FileContent:
        self._check_path(path, elevated)
        channel = self._channel()

        stat = await channel.stat(path)
        if stat is None:
            raise SandboxError(f"File not found: {path}")
        if stat.is_dir:
            raise SandboxError(f"Is a directory: {path}")
        limit = self._config.max_file_size
        if stat.size > limit:
            raise SandboxError(f"File too large ({stat.size} bytes, max {limit})")

        data = await channel.read_file(path)
        return FileContent(content=data.decode("utf-8", errors="replace"), size=stat.size)

    async def write_file(self, path: str, content: str, *, elevated: bool = False) -> WriteResult:
        """Create or overwrite a file through a temporary file and a rename."""
        self._check_path(path, elevated)
        self._check_change_budget(path)

        data = content.encode("utf-8")
        limit = self._config.max_file_size
        if len(data) > limit:
            raise SandboxError(f"Content too large ({len(data)} bytes, max {limit})")

        channel = self._channel()
        stat = await channel.stat(path)
        if stat is not None and stat.is_dir:
            raise SandboxError(f"Is a directory: {path}")
        existed = stat is not None

        snapshot = await self._snapshot_once(path) if existed else None

        tmp_path = posixpath.join(posixpath.dirname(path), f"{TEMP_PREFIX}{time.time_ns()}")
        await channel.write_file(tmp_path, data)
        try:
            await channel.rename(tmp_path, path)
        except OSError:
            if await channel.stat(tmp_path) is not None:
                await channel.unlink(tmp_path)
            raise

        # A path deleted earlier in the session already has its snapshot
        created = not existed and (path not in self._snapshotted or path in self._created)
        if created:
            # Prior state is "absent"; rollback deletes rather than restores
            self._snapshotted.add(path)
            self._created.add(path)

        self._record(
            FileChange(
                path=path,
                action=FileAction.CREATED if created else FileAction.MODIFIED,
                snapshot=snapshot,
            )
        )
        log.debug("Wrote %s (%d bytes)", path, len(data))
        return WriteResult(path=path, size=len(data), created=not existed)

    async def create_file(self, path: str, content: str, *, elevated: bool = False) -> WriteResult:
        """Create a new file, making its parent directory if needed."""
        self._check_path(path, elevated)
        channel = self._channel()

        if await channel.stat(path) is not None:
            raise SandboxError(f"File already exists: {path}")

        missing: list[str] = []
        parent = posixpath.dirname(path)
        while parent != posixpath.dirname(parent) and await channel.stat(parent) is None:
            missing.append(parent)
            parent = posixpath.dirname(parent)
        if missing:
            await channel.mkdir(missing[0])
            self._created_dirs.extend(missing)

        return await self.write_file(path, content, elevated=elevated)

    async def delete_file(self, path: str, *, elevated: bool = False) -> None:
        self._check_path(path, elevated)
        self._check_change_budget(path)
        channel = self._channel()

        stat = await channel.stat(path)
        if stat is None:
            raise SandboxError(f"File not found: {path}")
        if stat.is_dir:
            raise SandboxError(f"Is a directory: {path}")

        snapshot = await self._snapshot_once(path)
        await channel.unlink(path)
        self._record(FileChange(path=path, action=FileAction.DELETED, snapshot=snapshot))

    async def rename_file(self, old_path: str, new_path: str, *, elevated: bool = False) -> None:
        """Move ``old_path`` to ``new_path``.

        An existing destination is snapshotted too, and recorded as
        modified, so rollback can bring back both files. A destination
        that did not exist before the session is recorded as created.
        """
        self._check_path(old_path, elevated)
        self._check_path(new_path, elevated)
        self._check_change_budget(old_path, new_path)
        channel = self._channel()

        if await channel.stat(old_path) is None:
            raise SandboxError(f"File not found: {old_path}")
        dest = await channel.stat(new_path)
        if dest is not None and dest.is_dir:
            raise SandboxError(f"Is a directory: {new_path}")

        snapshot = await self._snapshot_once(old_path)
        dest_snapshot = await self._snapshot_once(new_path) if dest is not None else None

        await channel.rename(old_path, new_path)

        self._record(
            FileChange(path=old_path, action=FileAction.RENAMED, snapshot=snapshot, new_path=new_path)
        )
        if dest is not None:
            self._record(FileChange(path=new_path, action=FileAction.MODIFIED, snapshot=dest_snapshot))
        elif new_path not in self._snapshotted or new_path in self._created:
            self._snapshotted.add(new_path)
            self._created.add(new_path)
            self._record(FileChange(path=new_path, action=FileAction.CREATED))

    async def search_files(self, query: str, path: str | None = None, *, elevated: bool = False) -> list[str]:
        """Paths of files under ``path`` containing ``query``."""
        target = path or self.workspace_root
        self._check_path(target, elevated)

        if not query:
            raise SandboxError("Search query is required")
        if has_shell_metacharacters(query):
            raise SandboxError("Search query contains disallowed characters")

        limit = self._config.max_search_results
        command = (
            f"grep -rIl -- {shlex.quote(query)} {shlex.quote(target)} 2>/dev/null | head -{limit}"
        )
        result = await self._channel().exec(command, timeout=self._config.search_timeout)
        return [line for line in result.stdout.splitlines() if line.strip()][:limit]

    async def run_command(self, command: str, cwd: str | None = None, *, elevated: bool = False) -> ExecResult:
        """Run a command in ``cwd`` (default: the workspace root).

        Output is truncated to the configured stdout/stderr caps.
        """
        violation = validate_command(
            command,
            elevated or self.allow_system_access,
            max_length=self._config.max_command_length,
        )
        if violation is not None:
            raise ValidationError(violation)

        workdir = cwd or self.workspace_root
        self._check_path(workdir, elevated)

        full_command = f"cd {shlex.quote(workdir)} && {command}"
        result = await self._channel().exec(
            full_command,
            timeout=self._config.command_timeout,
            elevated=elevated or self.allow_system_access,
        )
        return dataclasses.replace(
            result,
            stdout=result.stdout[: self._config.stdout_limit],
            stderr=result.stderr[: self._config.stderr_limit],
        )

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    async def rollback_all(self) -> list[str]:
        """Undo every recorded change, oldest first.

        Directories made by create_file are removed afterwards if they are
        empty again. Failures on one entry are logged and skipped. Returns
        the paths that were restored; the change log is cleared afterwards.
        """
        restored: list[str] = []

        for change in self._changes:
            try:
                if change.action is FileAction.CREATED:
                    channel = self._channel()
                    if await channel.stat(change.path) is not None:
                        await channel.unlink(change.path)
                    restored.append(change.path)
                    continue

                if change.snapshot is None:
                    continue

                await self._snapshots.restore_backup(
                    self.remote_ref, change.snapshot.path, change.path
                )
                restored.append(change.path)
            except (OSError, RemoteSessionNotFoundError) as e:
                log.error("Rollback failed for %s: %s", change.path, e)

        for directory in sorted(set(self._created_dirs), key=lambda d: d.count("/"), reverse=True):
            try:
                channel = self._channel()
                if await channel.stat(directory) is None:
                    continue
                if not await channel.readdir(directory):
                    await channel.rmdir(directory)
            except (OSError, RemoteSessionNotFoundError) as e:
                log.error("Rollback failed for directory %s: %s", directory, e)

        self._changes.clear()
        self._snapshotted.clear()
        self._changed_paths.clear()
        self._created.clear()
        self._created_dirs.clear()
        return restored

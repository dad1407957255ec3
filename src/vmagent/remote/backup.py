"""Snapshot store: point-in-time copies of remote files.

A snapshot of ``/srv/app/config.json`` lives next to it:

    /srv/app/.vmagent-backups/config.json.<timestamp_ns>.bak

Only the newest ``max_backups`` snapshots of each file are kept.
"""

from __future__ import annotations

import posixpath
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from vmagent.errors import RemoteSessionNotFoundError
from vmagent.logging import get_logger
from vmagent.remote.protocol import ChannelResolver, RemoteChannel

log = get_logger("remote.backup")

BACKUP_DIR_NAME = ".vmagent-backups"
DEFAULT_MAX_BACKUPS = 5


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Descriptor of one stored snapshot."""

    path: str  # Where the copy lives
    original_path: str
    timestamp: int  # Nanoseconds since the epoch
    size: int


class SnapshotStore(Protocol):
    """Copies a file aside and puts it back by reference."""

    async def create_backup(self, remote_ref: str, path: str) -> Snapshot | None:
        """Snapshot ``path``; None if the path does not exist."""
        ...

    async def restore_backup(self, remote_ref: str, snapshot_path: str, target_path: str) -> None:
        ...


class BackupManager:
    """SnapshotStore implemented with the remote channel's file primitives."""

    def __init__(
        self,
        channels: ChannelResolver,
        *,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self._channels = channels
        self._max_backups = max_backups
        self._clock = clock

    def _channel(self, remote_ref: str) -> RemoteChannel:
        channel = self._channels.get(remote_ref)
        if channel is None:
            raise RemoteSessionNotFoundError(remote_ref)
        return channel

    async def create_backup(self, remote_ref: str, path: str) -> Snapshot | None:
        channel = self._channel(remote_ref)

        stat = await channel.stat(path)
        if stat is None or stat.is_dir:
            return None

        backup_dir = posixpath.join(posixpath.dirname(path), BACKUP_DIR_NAME)
        timestamp = self._clock()
        backup_path = posixpath.join(backup_dir, f"{posixpath.basename(path)}.{timestamp}.bak")

        if await channel.stat(backup_dir) is None:
            await channel.mkdir(backup_dir)

        data = await channel.read_file(path)
        await channel.write_file(backup_path, data)
        log.debug("Snapshot %s -> %s", path, backup_path)

        await self.prune_backups(remote_ref, path)

        return Snapshot(path=backup_path, original_path=path, timestamp=timestamp, size=len(data))

    async def list_backups(self, remote_ref: str, path: str) -> list[Snapshot]:
        """All snapshots of ``path``, newest first."""
        channel = self._channel(remote_ref)

        backup_dir = posixpath.join(posixpath.dirname(path), BACKUP_DIR_NAME)
        if await channel.stat(backup_dir) is None:
            return []

        prefix = f"{posixpath.basename(path)}."
        suffix = ".bak"
        snapshots: list[Snapshot] = []
        for entry in await channel.readdir(backup_dir):
            if not (entry.name.startswith(prefix) and entry.name.endswith(suffix)):
                continue
            stamp = entry.name[len(prefix):-len(suffix)]
            if not stamp.isdigit():
                continue
            snapshots.append(
                Snapshot(
                    path=posixpath.join(backup_dir, entry.name),
                    original_path=path,
                    timestamp=int(stamp),
                    size=entry.size,
                )
            )

        snapshots.sort(key=lambda s: s.timestamp, reverse=True)
        return snapshots

    async def restore_backup(self, remote_ref: str, snapshot_path: str, target_path: str) -> None:
        """Copy a snapshot back over ``target_path``.

        The current target is snapshotted first, so a restore can itself be
        undone. The snapshot is copied, not moved.
        """
        channel = self._channel(remote_ref)

        if await channel.stat(snapshot_path) is None:
            raise FileNotFoundError(snapshot_path)

        # Read before backing up the target: pruning may remove the snapshot
        data = await channel.read_file(snapshot_path)
        await self.create_backup(remote_ref, target_path)
        await channel.write_file(target_path, data)
        log.debug("Restored %s from %s", target_path, snapshot_path)

    async def prune_backups(self, remote_ref: str, path: str) -> None:
        """Delete snapshots of ``path`` beyond the newest ``max_backups``."""
        channel = self._channel(remote_ref)
        for snapshot in (await self.list_backups(remote_ref, path))[self._max_backups:]:
            try:
                await channel.unlink(snapshot.path)
            except OSError as e:
                log.debug("Could not prune %s: %s", snapshot.path, e)

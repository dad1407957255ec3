"""Tests for the snapshot store."""

from __future__ import annotations

import itertools

import pytest

from tests.utils import MemoryChannel
from vmagent.errors import RemoteSessionNotFoundError
from vmagent.remote.backup import BACKUP_DIR_NAME, BackupManager

REMOTE = "vm-1"
PATH = "/srv/app/config.json"


def make_manager(channel: MemoryChannel, max_backups: int = 5) -> BackupManager:
    ticks = itertools.count(1000)
    return BackupManager({REMOTE: channel}, max_backups=max_backups, clock=lambda: next(ticks))


class TestBackupManager:
    """Test creating, listing, restoring and pruning snapshots."""

    @pytest.mark.asyncio
    async def test_create_backup(self, channel: MemoryChannel) -> None:
        """Test that a snapshot is a copy next to the file."""
        manager = make_manager(channel)
        snapshot = await manager.create_backup(REMOTE, PATH)

        assert snapshot is not None
        assert snapshot.path == f"/srv/app/{BACKUP_DIR_NAME}/config.json.1000.bak"
        assert snapshot.original_path == PATH
        assert snapshot.size == len(channel.files[PATH])
        assert channel.files[snapshot.path] == channel.files[PATH]

    @pytest.mark.asyncio
    async def test_missing_file_has_no_backup(self, channel: MemoryChannel) -> None:
        """Test that snapshotting a missing path returns None."""
        manager = make_manager(channel)
        assert await manager.create_backup(REMOTE, "/srv/app/missing.txt") is None

    @pytest.mark.asyncio
    async def test_list_newest_first(self, channel: MemoryChannel) -> None:
        """Test snapshot ordering."""
        manager = make_manager(channel)
        await manager.create_backup(REMOTE, PATH)
        await manager.create_backup(REMOTE, PATH)
        await manager.create_backup(REMOTE, "/srv/app/README.md")

        snapshots = await manager.list_backups(REMOTE, PATH)
        assert [s.timestamp for s in snapshots] == [1001, 1000]

    @pytest.mark.asyncio
    async def test_prune_keeps_newest(self, channel: MemoryChannel) -> None:
        """Test that only max_backups snapshots survive."""
        manager = make_manager(channel, max_backups=2)
        for _ in range(4):
            await manager.create_backup(REMOTE, PATH)

        snapshots = await manager.list_backups(REMOTE, PATH)
        assert [s.timestamp for s in snapshots] == [1003, 1002]

    @pytest.mark.asyncio
    async def test_restore_backup(self, channel: MemoryChannel) -> None:
        """Test that restore copies the snapshot back and keeps it."""
        manager = make_manager(channel)
        snapshot = await manager.create_backup(REMOTE, PATH)
        assert snapshot is not None
        channel.files[PATH] = b"broken"

        await manager.restore_backup(REMOTE, snapshot.path, PATH)

        assert channel.text(PATH) == '{"debug": false}\n'
        assert snapshot.path in channel.files
        # The overwritten content was snapshotted too
        newest = (await manager.list_backups(REMOTE, PATH))[0]
        assert channel.files[newest.path] == b"broken"

    @pytest.mark.asyncio
    async def test_restore_survives_pruning(self, channel: MemoryChannel) -> None:
        """Test restoring the oldest snapshot when the restore prunes it."""
        manager = make_manager(channel, max_backups=1)
        snapshot = await manager.create_backup(REMOTE, PATH)
        assert snapshot is not None
        channel.files[PATH] = b"broken"

        await manager.restore_backup(REMOTE, snapshot.path, PATH)
        assert channel.text(PATH) == '{"debug": false}\n'

    @pytest.mark.asyncio
    async def test_restore_missing_snapshot(self, channel: MemoryChannel) -> None:
        """Test that a missing snapshot raises FileNotFoundError."""
        manager = make_manager(channel)
        with pytest.raises(FileNotFoundError):
            await manager.restore_backup(REMOTE, "/srv/app/.vmagent-backups/x.1.bak", PATH)

    @pytest.mark.asyncio
    async def test_unknown_remote(self, channel: MemoryChannel) -> None:
        """Test that an unknown remote reference raises."""
        manager = make_manager(channel)
        with pytest.raises(RemoteSessionNotFoundError):
            await manager.create_backup("vm-404", PATH)

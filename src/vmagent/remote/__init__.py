"""Remote host collaborators: the execution/file channel and snapshot store."""

from vmagent.remote.backup import BackupManager, Snapshot, SnapshotStore
from vmagent.remote.local import LocalChannel
from vmagent.remote.protocol import (
    ChannelResolver,
    ExecResult,
    RemoteChannel,
    RemoteEntry,
    RemoteStat,
)

__all__ = [
    "BackupManager",
    "ChannelResolver",
    "ExecResult",
    "LocalChannel",
    "RemoteChannel",
    "RemoteEntry",
    "RemoteStat",
    "Snapshot",
    "SnapshotStore",
]

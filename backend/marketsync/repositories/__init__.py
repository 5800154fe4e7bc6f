"""Storage backends for durable client-side snapshots."""

from .snapshot_repository import MemorySnapshotStorage, SnapshotStorage, SqlSnapshotStorage

__all__ = [
    "MemorySnapshotStorage",
    "SnapshotStorage",
    "SqlSnapshotStorage",
]

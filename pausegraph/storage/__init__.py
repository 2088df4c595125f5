"""Snapshot storage backends."""

from pausegraph.storage.base import SnapshotHistory, SnapshotStore
from pausegraph.storage.file_store import FileSnapshotStore
from pausegraph.storage.in_memory import InMemorySnapshotStore
from pausegraph.storage.retention import KEEP_ALL, RetentionPolicy

__all__ = [
    "SnapshotStore",
    "SnapshotHistory",
    "InMemorySnapshotStore",
    "FileSnapshotStore",
    "RetentionPolicy",
    "KEEP_ALL",
]

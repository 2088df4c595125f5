"""Persisted and serialized data models."""

from pausegraph.schemas.snapshot import (
    InterruptPhase,
    InterruptRecord,
    RunStatus,
    Snapshot,
    SnapshotSource,
    ThreadState,
)

__all__ = [
    "InterruptPhase",
    "InterruptRecord",
    "RunStatus",
    "Snapshot",
    "SnapshotSource",
    "ThreadState",
]

"""
Snapshot Store - Append-only log of versioned snapshots per thread.

Stores expose three core operations:
- append(thread_id, snapshot): optimistic-concurrency append
- latest(thread_id): most recent snapshot, or ThreadNotFoundError
- history(thread_id): lazy, forward, restartable iteration

There is no update or delete; corrections are appended as new snapshots.
Only a store's retention policy removes old entries.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable

from pausegraph.errors import ConcurrentWriteConflictError, ThreadNotFoundError
from pausegraph.schemas.snapshot import Snapshot
from pausegraph.storage.retention import KEEP_ALL, RetentionPolicy


class SnapshotHistory:
    """
    Restartable async view over a thread's snapshots, oldest first.

    Each `async for` over the same object starts again from the first
    retained snapshot. Nothing is loaded until iteration begins.
    """

    def __init__(self, factory: Callable[[], AsyncIterator[Snapshot]]):
        self._factory = factory

    def __aiter__(self) -> AsyncIterator[Snapshot]:
        return self._factory()

    async def to_list(self) -> list[Snapshot]:
        """Materialize the whole history."""
        return [snapshot async for snapshot in self]


class SnapshotStore(ABC):
    """
    Abstract snapshot store.

    Subclasses implement the primitive reads and the atomic
    check-and-append; the sequence-number contract lives here.
    """

    def __init__(self, retention: RetentionPolicy | None = None):
        self.retention = retention or KEEP_ALL

    @abstractmethod
    async def append(self, thread_id: str, snapshot: Snapshot) -> int:
        """
        Append a snapshot to a thread.

        The snapshot's sequence_number must be exactly one past the thread's
        current latest (1 for a new thread). Anything else means another
        writer got there first.

        Returns:
            The stored sequence number

        Raises:
            ConcurrentWriteConflictError: If the assumed prior sequence is stale
        """

    @abstractmethod
    async def latest(self, thread_id: str) -> Snapshot:
        """
        Get the most recent snapshot of a thread.

        Raises:
            ThreadNotFoundError: If the thread has no snapshots
        """

    @abstractmethod
    async def get(self, thread_id: str, sequence_number: int) -> Snapshot | None:
        """Get a specific retained snapshot, or None."""

    @abstractmethod
    async def list_threads(self) -> list[str]:
        """List ids of all threads with at least one snapshot."""

    @abstractmethod
    def _iter_history(self, thread_id: str) -> AsyncIterator[Snapshot]:
        """Yield retained snapshots of a thread, oldest first."""

    def history(self, thread_id: str) -> SnapshotHistory:
        """
        Lazy, restartable forward history of a thread.

        An unknown thread yields nothing.
        """
        return SnapshotHistory(lambda: self._iter_history(thread_id))

    async def exists(self, thread_id: str) -> bool:
        """Check whether a thread has any snapshots."""
        try:
            await self.latest(thread_id)
        except ThreadNotFoundError:
            return False
        return True

    @staticmethod
    def _check_sequence(thread_id: str, snapshot: Snapshot, current: int) -> None:
        """Raise a conflict unless `snapshot` directly follows `current`."""
        if snapshot.thread_id != thread_id:
            raise ValueError(
                f"Snapshot belongs to thread '{snapshot.thread_id}', not '{thread_id}'"
            )
        expected_prior = snapshot.sequence_number - 1
        if expected_prior != current:
            raise ConcurrentWriteConflictError(thread_id, expected=expected_prior, actual=current)

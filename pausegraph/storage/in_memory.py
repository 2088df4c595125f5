"""
In-memory snapshot store (testing/dev).
"""

import logging
import threading
from collections.abc import AsyncIterator

from pausegraph.errors import ThreadNotFoundError
from pausegraph.schemas.snapshot import Snapshot
from pausegraph.storage.base import SnapshotStore
from pausegraph.storage.retention import RetentionPolicy

logger = logging.getLogger(__name__)


class InMemorySnapshotStore(SnapshotStore):
    """
    Keeps every thread's history in a dict of lists.

    A single lock makes check-and-append atomic, so racing writers on the
    same thread (from coroutines or OS threads) serialize correctly.
    """

    def __init__(self, retention: RetentionPolicy | None = None):
        super().__init__(retention)
        self._threads: dict[str, list[Snapshot]] = {}
        # Highest sequence ever written per thread; survives retention pruning
        self._heads: dict[str, int] = {}
        self._lock = threading.Lock()

    async def append(self, thread_id: str, snapshot: Snapshot) -> int:
        with self._lock:
            current = self._heads.get(thread_id, 0)
            self._check_sequence(thread_id, snapshot, current)

            snapshots = self._threads.setdefault(thread_id, [])
            snapshots.append(snapshot)
            self._heads[thread_id] = snapshot.sequence_number

            expired = self.retention.expired(snapshots)
            if expired:
                dropped = set(expired)
                self._threads[thread_id] = [
                    s for s in snapshots if s.sequence_number not in dropped
                ]
                logger.debug(f"Pruned {len(expired)} snapshots from thread {thread_id}")

        return snapshot.sequence_number

    async def latest(self, thread_id: str) -> Snapshot:
        with self._lock:
            snapshots = self._threads.get(thread_id)
            if not snapshots:
                raise ThreadNotFoundError(thread_id)
            return snapshots[-1]

    async def get(self, thread_id: str, sequence_number: int) -> Snapshot | None:
        with self._lock:
            for snapshot in self._threads.get(thread_id, []):
                if snapshot.sequence_number == sequence_number:
                    return snapshot
        return None

    async def list_threads(self) -> list[str]:
        with self._lock:
            return sorted(self._threads)

    async def _iter_history(self, thread_id: str) -> AsyncIterator[Snapshot]:
        with self._lock:
            snapshots = list(self._threads.get(thread_id, []))
        for snapshot in snapshots:
            yield snapshot

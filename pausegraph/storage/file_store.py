"""
File Snapshot Store - One JSON file per snapshot with exclusive writes.

Directory structure:
    {base_path}/
      threads/
        {thread_id}/
          snapshots/
            0000000001.json
            0000000002.json
            ...

Snapshots are written to a temp file and hard-linked into place, so a
file is either absent or complete. Two writers racing for the same
sequence number cannot both succeed: the second link fails and surfaces as
ConcurrentWriteConflictError.
"""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from pathlib import Path

from pausegraph.errors import ConcurrentWriteConflictError, ThreadNotFoundError
from pausegraph.schemas.snapshot import Snapshot
from pausegraph.storage.base import SnapshotStore
from pausegraph.storage.retention import RetentionPolicy
from pausegraph.utils.io import exclusive_write

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class FileSnapshotStore(SnapshotStore):
    """
    File-backed snapshot store.

    Blocking file I/O runs in a worker thread via asyncio.to_thread. A
    process-local lock serializes check-and-append; the exclusive link
    catches writers in other processes.
    """

    def __init__(self, base_path: str | Path, retention: RetentionPolicy | None = None):
        """
        Initialize file store.

        Args:
            base_path: Root directory (e.g., ~/.pausegraph/storage)
            retention: Optional history bound applied after each append
        """
        super().__init__(retention)
        self.base_path = Path(base_path)
        self.threads_dir = self.base_path / "threads"
        self._write_lock = threading.Lock()

    def _validate_thread_id(self, thread_id: str) -> None:
        """
        Validate a thread id before using it as a directory name.

        Raises:
            ValueError: If the id is empty or could escape the store directory
        """
        if not thread_id or thread_id.strip() == "":
            raise ValueError("Thread id cannot be empty")

        if "/" in thread_id or "\\" in thread_id:
            raise ValueError(f"Invalid thread id: path separators not allowed in '{thread_id}'")

        if ".." in thread_id or thread_id.startswith("."):
            raise ValueError(f"Invalid thread id: path traversal detected in '{thread_id}'")

        if "\x00" in thread_id:
            raise ValueError("Invalid thread id: null bytes not allowed")

        dangerous_chars = {"<", ">", "|", "&", "$", "`", "'", '"'}
        if any(char in thread_id for char in dangerous_chars):
            raise ValueError(f"Invalid thread id: contains dangerous characters in '{thread_id}'")

    def get_snapshots_dir(self, thread_id: str) -> Path:
        self._validate_thread_id(thread_id)
        return self.threads_dir / thread_id / "snapshots"

    def get_snapshot_path(self, thread_id: str, sequence_number: int) -> Path:
        return self.get_snapshots_dir(thread_id) / f"{sequence_number:010d}{_SUFFIX}"

    def _sequence_numbers(self, thread_id: str) -> list[int]:
        """Sorted sequence numbers present on disk for a thread."""
        snapshots_dir = self.get_snapshots_dir(thread_id)
        if not snapshots_dir.exists():
            return []
        numbers = []
        for path in snapshots_dir.iterdir():
            if path.suffix != _SUFFIX or path.name.startswith("."):
                continue
            try:
                numbers.append(int(path.stem))
            except ValueError:
                logger.warning(f"Ignoring unexpected file in snapshot store: {path}")
        return sorted(numbers)

    def _read(self, thread_id: str, sequence_number: int) -> Snapshot | None:
        path = self.get_snapshot_path(thread_id, sequence_number)
        if not path.exists():
            return None
        return Snapshot.model_validate_json(path.read_text(encoding="utf-8"))

    async def append(self, thread_id: str, snapshot: Snapshot) -> int:
        def _write() -> int:
            with self._write_lock:
                numbers = self._sequence_numbers(thread_id)
                current = numbers[-1] if numbers else 0
                self._check_sequence(thread_id, snapshot, current)

                path = self.get_snapshot_path(thread_id, snapshot.sequence_number)
                try:
                    exclusive_write(path, snapshot.model_dump_json(indent=2))
                except FileExistsError:
                    # Another process claimed this sequence number first
                    raise ConcurrentWriteConflictError(
                        thread_id,
                        expected=snapshot.sequence_number - 1,
                        actual=snapshot.sequence_number,
                    ) from None

                logger.debug(f"Saved snapshot {thread_id}#{snapshot.sequence_number}")
                self._apply_retention(thread_id)
                return snapshot.sequence_number

        return await asyncio.to_thread(_write)

    def _apply_retention(self, thread_id: str) -> None:
        """Drop snapshots the retention policy no longer keeps."""
        if not self.retention.enabled:
            return

        snapshots = [
            s for s in (self._read(thread_id, n) for n in self._sequence_numbers(thread_id)) if s
        ]
        expired = self.retention.expired(snapshots)
        for sequence_number in expired:
            try:
                self.get_snapshot_path(thread_id, sequence_number).unlink()
            except FileNotFoundError:
                continue
        if expired:
            logger.info(f"Pruned {len(expired)} snapshots from thread {thread_id}")

    async def latest(self, thread_id: str) -> Snapshot:
        def _latest() -> Snapshot:
            numbers = self._sequence_numbers(thread_id)
            # Retention may remove an older file between listing and reading;
            # the newest one is never removed.
            for sequence_number in reversed(numbers):
                snapshot = self._read(thread_id, sequence_number)
                if snapshot is not None:
                    return snapshot
            raise ThreadNotFoundError(thread_id)

        return await asyncio.to_thread(_latest)

    async def get(self, thread_id: str, sequence_number: int) -> Snapshot | None:
        return await asyncio.to_thread(self._read, thread_id, sequence_number)

    async def list_threads(self) -> list[str]:
        def _scan() -> list[str]:
            if not self.threads_dir.exists():
                return []
            return sorted(
                d.name
                for d in self.threads_dir.iterdir()
                if d.is_dir() and (d / "snapshots").exists()
            )

        return await asyncio.to_thread(_scan)

    async def _iter_history(self, thread_id: str) -> AsyncIterator[Snapshot]:
        numbers = await asyncio.to_thread(self._sequence_numbers, thread_id)
        for sequence_number in numbers:
            snapshot = await asyncio.to_thread(self._read, thread_id, sequence_number)
            if snapshot is not None:
                yield snapshot

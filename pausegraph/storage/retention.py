"""
Retention Policy - Controls which old snapshots a store may drop.

The engine only ever reads the latest snapshot; older ones are kept for
audit and rewind. A retention policy bounds that history. It never removes
a thread's latest snapshot.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from pausegraph.schemas.snapshot import Snapshot


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Limits on per-thread snapshot history.

    Both limits are optional; the default keeps everything.
    """

    # Keep at most this many snapshots per thread (latest always kept)
    keep_last: int | None = None

    # Drop snapshots older than this many days (latest always kept)
    max_age_days: int | None = None

    @property
    def enabled(self) -> bool:
        return self.keep_last is not None or self.max_age_days is not None

    def expired(self, snapshots: list[Snapshot], now: datetime | None = None) -> list[int]:
        """
        Select snapshots this policy allows dropping.

        Args:
            snapshots: A thread's retained snapshots, oldest first
            now: Reference time for age checks (defaults to now)

        Returns:
            Sequence numbers to remove, oldest first
        """
        if not self.enabled or len(snapshots) <= 1:
            return []

        candidates = snapshots[:-1]
        drop: set[int] = set()

        if self.keep_last is not None:
            overflow = len(snapshots) - max(self.keep_last, 1)
            for snapshot in candidates[: max(overflow, 0)]:
                drop.add(snapshot.sequence_number)

        if self.max_age_days is not None:
            cutoff = _as_utc(now or datetime.now(UTC)) - timedelta(days=self.max_age_days)
            for snapshot in candidates:
                try:
                    created = _as_utc(datetime.fromisoformat(snapshot.created_at))
                except ValueError:
                    continue
                if created < cutoff:
                    drop.add(snapshot.sequence_number)

        return sorted(drop)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


KEEP_ALL = RetentionPolicy()

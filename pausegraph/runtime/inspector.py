"""
Thread State Inspector - Read and edit a thread's state between runs.

This is the human-in-the-loop surface: look at a suspended thread, correct
its state, then resume it with the executor. Edits are appended as new
snapshots; nothing in the history is rewritten.
"""

import logging
from typing import Any

from pausegraph.graph.edge import END, GraphSpec
from pausegraph.runtime.event_bus import EventBus
from pausegraph.schemas.snapshot import Snapshot, SnapshotSource, ThreadState
from pausegraph.storage.base import SnapshotHistory, SnapshotStore

logger = logging.getLogger(__name__)


class ThreadStateInspector:
    """
    Reads and patches thread state outside of an engine run.

    Example:
        inspector = ThreadStateInspector(store, graph)

        view = await inspector.get_state("thread-1")
        if view.interrupts:
            await inspector.update_state("thread-1", {"risk": 0.1})
    """

    def __init__(self, store: SnapshotStore, graph: GraphSpec, event_bus: EventBus | None = None):
        self.store = store
        self.graph = graph
        self._event_bus = event_bus

    async def get_state(self, thread_id: str) -> ThreadState:
        """
        Pure read of the latest snapshot.

        Raises:
            ThreadNotFoundError: If the thread has no snapshots
        """
        snapshot = await self.store.latest(thread_id)
        return ThreadState.from_snapshot(snapshot)

    async def update_state(
        self,
        thread_id: str,
        patch: dict[str, Any],
        *,
        as_step: str | None = None,
    ) -> int:
        """
        Merge `patch` over the latest state and append it as a new snapshot.

        By default `pending` and `interrupts` are carried over unchanged: an
        edit never clears a pause by itself, the next run re-evaluates it.

        With `as_step`, the patch is recorded as if that step had just
        completed: pending is re-routed from it and interrupts are cleared.
        This is how a caller skips past a declared pause point.

        Args:
            thread_id: Thread to edit
            patch: Field values to overwrite
            as_step: Optional step to attribute the edit to

        Returns:
            The new snapshot's sequence number

        Raises:
            ThreadNotFoundError: If the thread has no snapshots
            SchemaViolationError: If the patch names undeclared fields or
                fails schema validation (nothing is written)
            ValueError: If `as_step` is not a step of the graph
            ConcurrentWriteConflictError: If a run advanced the thread meanwhile
        """
        latest = await self.store.latest(thread_id)
        new_state, writes = self.graph.merge_state(latest.state, patch)

        pending = list(latest.pending)
        interrupts = list(latest.interrupts)
        last_completed = latest.last_completed_step

        if as_step is not None:
            if self.graph.get_step(as_step) is None:
                raise ValueError(f"as_step names undeclared step '{as_step}'")
            successors = await self.graph.route(as_step, new_state)
            remaining = [s for s in pending if s != as_step]
            pending = [s for s in dict.fromkeys(remaining + successors) if s != END]
            interrupts = []
            last_completed = as_step

        snapshot = Snapshot(
            thread_id=thread_id,
            sequence_number=latest.sequence_number + 1,
            state=new_state,
            pending=pending,
            interrupts=interrupts,
            source=SnapshotSource.UPDATE,
            step=as_step,
            last_completed_step=last_completed,
            writes=writes,
        )
        sequence = await self.store.append(thread_id, snapshot)

        logger.info(
            f"✎ Thread '{thread_id}' updated {sorted(writes)} (snapshot #{sequence})",
            extra={"sequence_number": sequence},
        )
        if self._event_bus:
            await self._event_bus.emit_state_updated(snapshot, dict(patch))
        return sequence

    def history(self, thread_id: str) -> SnapshotHistory:
        """Lazy, restartable forward history of the thread."""
        return self.store.history(thread_id)

    async def replay_state(self, thread_id: str, upto: int | None = None) -> dict[str, Any]:
        """
        Rebuild state by folding each snapshot's writes over the history.

        With the full history retained this equals the latest snapshot's
        state. After retention has pruned the head of the log the fold
        starts from the oldest retained snapshot's full state.

        Args:
            thread_id: Thread to replay
            upto: Stop after this sequence number (inclusive)
        """
        state: dict[str, Any] = {}
        first = True
        async for snapshot in self.store.history(thread_id):
            if upto is not None and snapshot.sequence_number > upto:
                break
            if first and snapshot.sequence_number > 1:
                state = dict(snapshot.state)
            else:
                state.update(snapshot.writes)
            first = False
        return state

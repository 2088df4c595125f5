"""
Snapshot Schema - Versioned state records for durable threads.

Every step the engine completes, every pause it records and every external
state edit produces exactly one Snapshot, appended to the thread's history.
Snapshots are immutable; corrections are new snapshots.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InterruptPhase(StrEnum):
    """When, relative to a step's invocation, execution was suspended."""

    BEFORE = "before"  # Declared pause point, step never started
    DURING = "during"  # Step's own logic asked to pause


class SnapshotSource(StrEnum):
    """What produced a snapshot."""

    INPUT = "input"  # Fresh input merged by the engine
    STEP = "step"  # A step completed and its patch was merged
    INTERRUPT = "interrupt"  # Execution suspended before or during a step
    UPDATE = "update"  # External patch via update_state


class RunStatus(StrEnum):
    """Terminal status of a single engine invocation (not of the thread)."""

    COMPLETED = "completed"  # Routing reached the end marker
    SUSPENDED = "suspended"  # Paused at a declared pause point or by a step
    FAILED = "failed"  # A step raised a fault; last good snapshot kept
    CANCELLED = "cancelled"  # Cancellation signal observed between steps


class InterruptRecord(BaseModel):
    """Why a thread is suspended at a given step."""

    step_name: str
    reason: str
    phase: InterruptPhase

    model_config = ConfigDict(frozen=True)


class Snapshot(BaseModel):
    """
    Immutable, versioned record of a thread's state.

    `pending` lists the steps that have not yet completed successfully, in
    the order they will run. `interrupts` explains why the thread stopped
    when it is suspended, and is empty otherwise.

    `writes` is the patch this snapshot applied over its predecessor, so the
    latest `state` can be rebuilt by folding `writes` over the history.
    """

    # Identity
    thread_id: str
    sequence_number: int = Field(ge=1)

    # State
    state: dict[str, Any] = Field(default_factory=dict)
    pending: list[str] = Field(default_factory=list)
    interrupts: list[InterruptRecord] = Field(default_factory=list)

    # Provenance
    source: SnapshotSource
    step: str | None = None
    last_completed_step: str | None = None
    writes: dict[str, Any] = Field(default_factory=dict)
    run_id: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    model_config = ConfigDict(frozen=True)

    @property
    def is_suspended(self) -> bool:
        """True if the thread is waiting at a pause."""
        return bool(self.interrupts)

    @property
    def next_step(self) -> str | None:
        """The step a resume would run first, if one is pending."""
        return self.pending[0] if self.pending else None

    def to_dict(self) -> dict[str, Any]:
        """Wire form: thread id, sequence number, state, pending, interrupts."""
        return {
            "thread_id": self.thread_id,
            "sequence_number": self.sequence_number,
            "state": dict(self.state),
            "pending": list(self.pending),
            "interrupts": [
                {"step_name": i.step_name, "reason": i.reason, "phase": i.phase.value}
                for i in self.interrupts
            ],
        }


class ThreadState(BaseModel):
    """Read view of a thread's latest snapshot: what is pending and why."""

    thread_id: str
    sequence_number: int
    state: dict[str, Any]
    pending: list[str]
    interrupts: list[InterruptRecord]

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "ThreadState":
        return cls(
            thread_id=snapshot.thread_id,
            sequence_number=snapshot.sequence_number,
            state=dict(snapshot.state),
            pending=list(snapshot.pending),
            interrupts=list(snapshot.interrupts),
        )

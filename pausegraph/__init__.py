"""
pausegraph - Durable step graphs with human-in-the-loop pauses.

Build a graph of named steps over a pydantic state schema, run it on a
thread, and every step leaves a versioned snapshot behind. Threads stop at
declared pause points or when a step calls interrupt(), and pick up again
from the exact pending step on the next run, after any state edits.
"""

from pausegraph.config import EngineConfig
from pausegraph.errors import (
    ConcurrentWriteConflictError,
    GraphValidationError,
    NoStateToResumeError,
    PausegraphError,
    RoutingError,
    SchemaViolationError,
    StepLimitExceededError,
    StepTimeoutError,
    ThreadNotFoundError,
)
from pausegraph.graph import (
    END,
    START,
    Completed,
    ConditionalEdgeSpec,
    EdgeSpec,
    ExecutionResult,
    GraphExecutor,
    GraphSpec,
    Paused,
    StepInterrupt,
    StepSpec,
    interrupt,
)
from pausegraph.runtime import EventBus, EventType, GraphEvent, GraphRuntime, ThreadStateInspector
from pausegraph.schemas import (
    InterruptPhase,
    InterruptRecord,
    RunStatus,
    Snapshot,
    SnapshotSource,
    ThreadState,
)
from pausegraph.storage import (
    FileSnapshotStore,
    InMemorySnapshotStore,
    RetentionPolicy,
    SnapshotStore,
)

__all__ = [
    # Graph
    "START",
    "END",
    "GraphSpec",
    "EdgeSpec",
    "ConditionalEdgeSpec",
    "StepSpec",
    "Completed",
    "Paused",
    "StepInterrupt",
    "interrupt",
    # Execution
    "GraphExecutor",
    "ExecutionResult",
    "GraphRuntime",
    "ThreadStateInspector",
    "EngineConfig",
    # Snapshots
    "Snapshot",
    "SnapshotSource",
    "ThreadState",
    "InterruptRecord",
    "InterruptPhase",
    "RunStatus",
    # Storage
    "SnapshotStore",
    "InMemorySnapshotStore",
    "FileSnapshotStore",
    "RetentionPolicy",
    # Events
    "EventBus",
    "EventType",
    "GraphEvent",
    # Errors
    "PausegraphError",
    "GraphValidationError",
    "ThreadNotFoundError",
    "NoStateToResumeError",
    "SchemaViolationError",
    "ConcurrentWriteConflictError",
    "RoutingError",
    "StepTimeoutError",
    "StepLimitExceededError",
]

"""Graph structures: steps, edges, routing and the execution engine."""

from pausegraph.graph.edge import (
    END,
    START,
    STATIC_PAUSE_REASON,
    ConditionalEdgeSpec,
    EdgeSpec,
    GraphSpec,
)
from pausegraph.graph.executor import ExecutionResult, GraphExecutor
from pausegraph.graph.step import (
    Completed,
    Paused,
    StepInterrupt,
    StepOutcome,
    StepSpec,
    interrupt,
)

__all__ = [
    # Structure
    "START",
    "END",
    "STATIC_PAUSE_REASON",
    "EdgeSpec",
    "ConditionalEdgeSpec",
    "GraphSpec",
    # Steps
    "StepSpec",
    "StepOutcome",
    "Completed",
    "Paused",
    "StepInterrupt",
    "interrupt",
    # Execution
    "GraphExecutor",
    "ExecutionResult",
]

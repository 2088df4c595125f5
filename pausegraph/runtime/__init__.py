"""Runtime surface: event bus, state inspector and the GraphRuntime facade."""

from pausegraph.runtime.event_bus import EventBus, EventType, GraphEvent
from pausegraph.runtime.graph_runtime import GraphRuntime
from pausegraph.runtime.inspector import ThreadStateInspector

__all__ = [
    "EventBus",
    "EventType",
    "GraphEvent",
    "GraphRuntime",
    "ThreadStateInspector",
]

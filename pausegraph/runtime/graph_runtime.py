"""
Graph Runtime - One object bundling a graph with its store, engine and inspector.

    runtime = GraphRuntime(graph)

    result = await runtime.invoke("thread-1", {"draft": "hello"})
    if result.is_suspended:
        await runtime.update_state("thread-1", {"approved": True})
        result = await runtime.invoke("thread-1")
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from pausegraph.config import EngineConfig
from pausegraph.graph.edge import GraphSpec
from pausegraph.graph.executor import ExecutionResult, GraphExecutor
from pausegraph.runtime.event_bus import EventBus
from pausegraph.runtime.inspector import ThreadStateInspector
from pausegraph.schemas.snapshot import Snapshot, ThreadState
from pausegraph.storage.base import SnapshotHistory, SnapshotStore
from pausegraph.storage.file_store import FileSnapshotStore
from pausegraph.storage.in_memory import InMemorySnapshotStore

logger = logging.getLogger(__name__)


class GraphRuntime:
    """Boundary operations for one graph: run, inspect and edit threads."""

    def __init__(
        self,
        graph: GraphSpec,
        store: SnapshotStore | None = None,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        """
        Args:
            graph: A validated graph (see GraphSpec.build)
            store: Snapshot store; defaults to a FileSnapshotStore at
                config.storage_path when one is configured, else in-memory
            config: Engine configuration; read from file and env if omitted
            event_bus: Optional event bus shared by engine and inspector
        """
        self.graph = graph
        self.config = config or EngineConfig()
        self.event_bus = event_bus

        if store is None:
            if self.config.storage_path is not None:
                store = FileSnapshotStore(self.config.storage_path, retention=self.config.retention)
                logger.info(f"Using file snapshot store at {self.config.storage_path}")
            else:
                store = InMemorySnapshotStore(retention=self.config.retention)
        self.store = store

        self.executor = GraphExecutor(self.store, config=self.config, event_bus=event_bus)
        self.inspector = ThreadStateInspector(self.store, graph, event_bus=event_bus)

    def run(
        self,
        thread_id: str,
        input: dict[str, Any] | None = None,
        *,
        release_pause: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[Snapshot]:
        """Stream snapshots of one invocation. `input=None` resumes."""
        return self.executor.stream(
            self.graph,
            thread_id,
            input,
            release_pause=release_pause,
            cancel_event=cancel_event,
        )

    async def invoke(
        self,
        thread_id: str,
        input: dict[str, Any] | None = None,
        *,
        release_pause: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Run one invocation to its stopping point and summarize it."""
        return await self.executor.invoke(
            self.graph,
            thread_id,
            input,
            release_pause=release_pause,
            cancel_event=cancel_event,
        )

    async def get_state(self, thread_id: str) -> ThreadState:
        return await self.inspector.get_state(thread_id)

    async def update_state(
        self, thread_id: str, patch: dict[str, Any], *, as_step: str | None = None
    ) -> int:
        return await self.inspector.update_state(thread_id, patch, as_step=as_step)

    def history(self, thread_id: str) -> SnapshotHistory:
        return self.inspector.history(thread_id)

    async def replay_state(self, thread_id: str, upto: int | None = None) -> dict[str, Any]:
        return await self.inspector.replay_state(thread_id, upto=upto)

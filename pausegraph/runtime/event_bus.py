"""
Event Bus - Pub/sub fan-out of engine events to external observers.

The per-invocation snapshot stream (GraphExecutor.stream) serves the
caller that started a run. The event bus serves everyone else: dashboards,
audit sinks, operators waiting for a thread to need input.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pausegraph.schemas.snapshot import Snapshot

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Invocation lifecycle
    RUN_STARTED = "run_started"
    RUN_SUSPENDED = "run_suspended"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_CANCELLED = "run_cancelled"

    # Snapshots
    SNAPSHOT_PERSISTED = "snapshot_persisted"
    STATE_UPDATED = "state_updated"


@dataclass
class GraphEvent:
    """An event emitted by the engine or the inspector."""

    type: EventType
    thread_id: str
    run_id: str | None = None
    step: str | None = None
    sequence_number: int | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "thread_id": self.thread_id,
            "run_id": self.run_id,
            "step": self.step,
            "sequence_number": self.sequence_number,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Type for event handlers
EventHandler = Callable[[GraphEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_thread: str | None = None  # Only receive events for this thread
    filter_run: str | None = None  # Only receive events from this invocation


class EventBus:
    """
    Pub/sub event bus for engine events.

    Features:
    - Async event handling
    - Type-based subscriptions
    - Thread/run filtering
    - Event history for debugging

    Example:
        bus = EventBus()

        async def on_suspended(event: GraphEvent):
            notify_reviewer(event.thread_id, event.data["interrupts"])

        bus.subscribe(event_types=[EventType.RUN_SUSPENDED], handler=on_suspended)

        executor = GraphExecutor(store=store, event_bus=bus)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[GraphEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_thread: str | None = None,
        filter_run: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            event_types: Types of events to receive
            handler: Async function to call when event occurs
            filter_thread: Only receive events for this thread
            filter_run: Only receive events from this invocation

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_thread=filter_thread,
            filter_run=filter_run,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")

        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Unsubscribe from events.

        Returns:
            True if subscription was found and removed
        """
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: GraphEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            s.handler for s in list(self._subscriptions.values()) if self._matches(s, event)
        ]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: GraphEvent) -> bool:
        """Check if a subscription matches an event."""
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_thread and subscription.filter_thread != event.thread_id:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        return True

    async def _execute_handlers(self, event: GraphEvent, handlers: list[EventHandler]) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_run_started(
        self, thread_id: str, run_id: str, resumed: bool, graph_id: str
    ) -> None:
        """Emit run started event."""
        await self.publish(
            GraphEvent(
                type=EventType.RUN_STARTED,
                thread_id=thread_id,
                run_id=run_id,
                data={"resumed": resumed, "graph_id": graph_id},
            )
        )

    async def emit_snapshot_persisted(self, snapshot: Snapshot) -> None:
        """Emit snapshot persisted event."""
        await self.publish(
            GraphEvent(
                type=EventType.SNAPSHOT_PERSISTED,
                thread_id=snapshot.thread_id,
                run_id=snapshot.run_id,
                step=snapshot.step,
                sequence_number=snapshot.sequence_number,
                data={"source": snapshot.source.value, "snapshot": snapshot.to_dict()},
            )
        )

    async def emit_run_suspended(self, snapshot: Snapshot) -> None:
        """Emit run suspended event."""
        await self.publish(
            GraphEvent(
                type=EventType.RUN_SUSPENDED,
                thread_id=snapshot.thread_id,
                run_id=snapshot.run_id,
                step=snapshot.next_step,
                sequence_number=snapshot.sequence_number,
                data={"interrupts": [i.model_dump(mode="json") for i in snapshot.interrupts]},
            )
        )

    async def emit_run_completed(
        self, thread_id: str, run_id: str, sequence_number: int, steps_executed: int
    ) -> None:
        """Emit run completed event."""
        await self.publish(
            GraphEvent(
                type=EventType.RUN_COMPLETED,
                thread_id=thread_id,
                run_id=run_id,
                sequence_number=sequence_number,
                data={"steps_executed": steps_executed},
            )
        )

    async def emit_run_failed(
        self, thread_id: str, run_id: str, step: str | None, error: BaseException
    ) -> None:
        """Emit run failed event."""
        await self.publish(
            GraphEvent(
                type=EventType.RUN_FAILED,
                thread_id=thread_id,
                run_id=run_id,
                step=step,
                data={"error": str(error), "error_type": type(error).__name__},
            )
        )

    async def emit_run_cancelled(self, thread_id: str, run_id: str, step: str | None) -> None:
        """Emit run cancelled event."""
        await self.publish(
            GraphEvent(
                type=EventType.RUN_CANCELLED,
                thread_id=thread_id,
                run_id=run_id,
                step=step,
            )
        )

    async def emit_state_updated(self, snapshot: Snapshot, patch: dict[str, Any]) -> None:
        """Emit state updated event (external patch)."""
        await self.publish(
            GraphEvent(
                type=EventType.STATE_UPDATED,
                thread_id=snapshot.thread_id,
                step=snapshot.step,
                sequence_number=snapshot.sequence_number,
                data={"fields": sorted(patch)},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        thread_id: str | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[GraphEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]

        if event_type:
            events = [e for e in events if e.type == event_type]
        if thread_id:
            events = [e for e in events if e.thread_id == thread_id]
        if run_id:
            events = [e for e in events if e.run_id == run_id]

        return events[:limit]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        thread_id: str | None = None,
        run_id: str | None = None,
        timeout: float | None = None,
    ) -> GraphEvent | None:
        """
        Wait for a specific event to occur.

        Args:
            event_type: Type of event to wait for
            thread_id: Filter by thread
            run_id: Filter by invocation
            timeout: Maximum time to wait (seconds)

        Returns:
            The event if received, None if timeout
        """
        result: GraphEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: GraphEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_thread=thread_id,
            filter_run=run_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()

            return result
        finally:
            self.unsubscribe(sub_id)

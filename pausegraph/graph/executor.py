"""
Graph Executor - Runs step graphs with durable snapshots.

The executor:
1. Loads the thread's latest snapshot (or starts a new thread from input)
2. Merges fresh input, if any, into the state
3. Runs pending steps one at a time, routing after each
4. Persists and emits a snapshot after every step
5. Stops at the end of the graph, at a declared pause point, or when a
   step asks to pause

Per invocation: LOADING -> RUNNING -> {SUSPENDED, COMPLETED, FAILED}
(plus CANCELLED when the cancellation signal is seen between steps).
The thread outlives every invocation; a later run() resumes it.
"""

import asyncio
import copy
import inspect
import logging
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pausegraph.config import EngineConfig
from pausegraph.errors import (
    ConcurrentWriteConflictError,
    NoStateToResumeError,
    StepLimitExceededError,
    StepTimeoutError,
    ThreadNotFoundError,
)
from pausegraph.graph.edge import END, STATIC_PAUSE_REASON, GraphSpec
from pausegraph.graph.step import (
    Completed,
    Paused,
    StepInterrupt,
    StepOutcome,
    StepSpec,
    to_outcome,
)
from pausegraph.observability import set_trace_context
from pausegraph.schemas.snapshot import (
    InterruptPhase,
    InterruptRecord,
    RunStatus,
    Snapshot,
    SnapshotSource,
)
from pausegraph.storage.base import SnapshotStore

if TYPE_CHECKING:
    from pausegraph.runtime.event_bus import EventBus


@dataclass
class ExecutionResult:
    """Result of a single engine invocation."""

    status: RunStatus
    run_id: str
    snapshot: Snapshot | None = None  # Latest snapshot seen by the invocation
    error: BaseException | None = None  # Original fault when status is FAILED
    steps_executed: int = 0
    path: list[str] = field(default_factory=list)  # Steps completed, in order

    @property
    def interrupts(self) -> list[InterruptRecord]:
        return list(self.snapshot.interrupts) if self.snapshot else []

    @property
    def state(self) -> dict[str, Any]:
        return dict(self.snapshot.state) if self.snapshot else {}

    @property
    def pending(self) -> list[str]:
        return list(self.snapshot.pending) if self.snapshot else []

    @property
    def is_suspended(self) -> bool:
        return self.status == RunStatus.SUSPENDED

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == RunStatus.FAILED


@dataclass
class _RunRecord:
    """Mutable bookkeeping for one invocation, read by invoke()."""

    run_id: str
    status: RunStatus | None = None
    snapshot: Snapshot | None = None
    error: BaseException | None = None
    running: bool = False  # Past LOADING; faults from here on are step faults
    persisted: int = 0
    steps_executed: int = 0
    current_step: str | None = None
    path: list[str] = field(default_factory=list)

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(
            status=self.status or RunStatus.FAILED,
            run_id=self.run_id,
            snapshot=self.snapshot,
            error=self.error,
            steps_executed=self.steps_executed,
            path=list(self.path),
        )


class GraphExecutor:
    """
    Executes step graphs against a snapshot store.

    The graph is passed into every call, so one executor can serve any
    number of graphs and concurrent invocations.

    Example:
        executor = GraphExecutor(store=InMemorySnapshotStore())

        async for snapshot in executor.stream(graph, "thread-1", {"input": "hello"}):
            print(snapshot.sequence_number, snapshot.pending)

        result = await executor.invoke(graph, "thread-1")  # resume
        if result.is_suspended:
            print(result.interrupts)
    """

    def __init__(
        self,
        store: SnapshotStore,
        config: EngineConfig | None = None,
        event_bus: "EventBus | None" = None,
    ):
        """
        Initialize the executor.

        Args:
            store: Snapshot store holding every thread's history
            config: Engine configuration (timeouts, step limit, conflict retries)
            event_bus: Optional event bus for lifecycle and snapshot events
        """
        self.store = store
        self.config = config or EngineConfig()
        self._event_bus = event_bus
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def stream(
        self,
        graph: GraphSpec,
        thread_id: str,
        input: dict[str, Any] | None = None,
        *,
        release_pause: bool = False,
        cancel_event: asyncio.Event | None = None,
        run_id: str | None = None,
    ) -> AsyncIterator[Snapshot]:
        """
        Run (or resume) a thread, yielding each snapshot as it is persisted.

        Args:
            graph: The graph to execute
            thread_id: Thread to run; created on first input
            input: Fresh input to merge into state, or None to resume
            release_pause: Let the step at the head of `pending` run even if
                it is a declared pause point (this invocation only)
            cancel_event: Set it to stop the run at the next step boundary
            run_id: Invocation id (generated if omitted)

        Raises (from iteration):
            NoStateToResumeError: No input and no snapshot to resume from
            SchemaViolationError: Input or a step's patch breaks the schema
            ConcurrentWriteConflictError: Another writer advanced the thread
            Exception: Any fault raised by a step, unchanged
        """
        record = _RunRecord(run_id=run_id or uuid.uuid4().hex)
        return self._execute(graph, thread_id, input, release_pause, cancel_event, record)

    async def invoke(
        self,
        graph: GraphSpec,
        thread_id: str,
        input: dict[str, Any] | None = None,
        *,
        release_pause: bool = False,
        cancel_event: asyncio.Event | None = None,
        run_id: str | None = None,
    ) -> ExecutionResult:
        """
        Run (or resume) a thread to its next stopping point.

        Step faults are returned as a FAILED result carrying the original
        exception. Write conflicts are retried from the reloaded snapshot up
        to `config.max_conflict_retries` times.

        Raises:
            NoStateToResumeError: No input and no snapshot to resume from
            SchemaViolationError: The input breaks the schema
        """
        run_id = run_id or uuid.uuid4().hex
        attempts = 0
        landed = False

        while True:
            record = _RunRecord(run_id=run_id)
            try:
                async for _ in self._execute(
                    graph,
                    thread_id,
                    None if landed else input,
                    release_pause and not landed,
                    cancel_event,
                    record,
                ):
                    pass
                return record.to_result()

            except ConcurrentWriteConflictError as e:
                landed = landed or record.persisted > 0
                if attempts < self.config.max_conflict_retries:
                    attempts += 1
                    self.logger.warning(
                        f"⟳ Write conflict on thread '{thread_id}', reloading "
                        f"(attempt {attempts}/{self.config.max_conflict_retries})"
                    )
                    continue
                record.status = RunStatus.FAILED
                record.error = e
                return record.to_result()

            except Exception as e:
                if not record.running:
                    raise
                record.status = RunStatus.FAILED
                record.error = e
                return record.to_result()

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    async def _execute(
        self,
        graph: GraphSpec,
        thread_id: str,
        input_data: dict[str, Any] | None,
        release_pause: bool,
        cancel_event: asyncio.Event | None,
        record: _RunRecord,
    ) -> AsyncIterator[Snapshot]:
        set_trace_context(
            run_id=record.run_id, thread_id=thread_id, graph_id=graph.id, step=None
        )

        # LOADING
        latest = await self._load(thread_id)
        if latest is None and input_data is None:
            raise NoStateToResumeError(thread_id)
        record.snapshot = latest

        sequence = latest.sequence_number if latest else 0
        state: dict[str, Any] = dict(latest.state) if latest else {}
        pending: list[str] = list(latest.pending) if latest else []
        interrupts: list[InterruptRecord] = list(latest.interrupts) if latest else []
        last_completed = latest.last_completed_step if latest else None

        def make_snapshot(source: SnapshotSource, step: str | None, writes: dict) -> Snapshot:
            return Snapshot(
                thread_id=thread_id,
                sequence_number=sequence + 1,
                state=state,
                pending=list(pending),
                interrupts=list(interrupts),
                source=source,
                step=step,
                last_completed_step=last_completed,
                writes=writes,
                run_id=record.run_id,
            )

        if input_data is not None:
            # Validate before anything is written
            state, writes = graph.merge_state(state, input_data)
            if latest is None:
                writes = dict(state)
            if pending:
                self.logger.info(
                    f"📥 Input merged; retrying pending step '{pending[0]}' with updated state"
                )
            else:
                pending = self._dedupe(await graph.entry_steps(state))
                interrupts = []
                self.logger.info(f"🚀 Starting pass on thread '{thread_id}' at {pending}")

            snapshot = make_snapshot(SnapshotSource.INPUT, None, writes)
            await self._persist(snapshot, record)
            sequence = snapshot.sequence_number
            yield snapshot
        else:
            if not pending and last_completed is not None:
                # Route lazily so external edits can change what runs next
                pending = self._dedupe(await graph.route(last_completed, state))
                if pending:
                    interrupts = []
            if pending:
                self.logger.info(f"🔄 Resuming thread '{thread_id}' at '{pending[0]}'")

        # RUNNING
        record.running = True
        if self._event_bus:
            await self._event_bus.emit_run_started(
                thread_id, record.run_id, resumed=input_data is None, graph_id=graph.id
            )

        released_step = pending[0] if (release_pause and pending) else None

        try:
            while pending:
                step_id = pending[0]
                record.current_step = step_id
                set_trace_context(step=step_id)

                if cancel_event is not None and cancel_event.is_set():
                    self.logger.info("⏸ Cancellation requested - stopping at step boundary")
                    record.status = RunStatus.CANCELLED
                    if self._event_bus:
                        await self._event_bus.emit_run_cancelled(
                            thread_id, record.run_id, step_id
                        )
                    break

                if graph.is_pause_point(step_id):
                    if step_id == released_step:
                        released_step = None
                        self.logger.info(f"▶ Pause point '{step_id}' released for this run")
                    else:
                        self.logger.info(f"⏸ Static pause before '{step_id}'")
                        interrupts = [
                            InterruptRecord(
                                step_name=step_id,
                                reason=STATIC_PAUSE_REASON,
                                phase=InterruptPhase.BEFORE,
                            )
                        ]
                        snapshot = make_snapshot(SnapshotSource.INTERRUPT, step_id, {})
                        await self._persist(snapshot, record)
                        await self._suspend(record, snapshot)
                        yield snapshot
                        return
                else:
                    released_step = None

                record.steps_executed += 1
                if record.steps_executed > self.config.max_steps:
                    raise StepLimitExceededError(self.config.max_steps)

                step_spec = graph.get_step(step_id)
                if step_spec is None:
                    raise RuntimeError(f"Step not found: {step_id}")

                self.logger.info(f"▶ Step {record.steps_executed}: {step_id}")
                outcome = await self._run_step(step_spec, state)

                if isinstance(outcome, Paused):
                    self.logger.info(f"⏸ Step '{step_id}' paused: {outcome.reason}")
                    interrupts = [
                        InterruptRecord(
                            step_name=step_id,
                            reason=outcome.reason,
                            phase=InterruptPhase.DURING,
                        )
                    ]
                    snapshot = make_snapshot(SnapshotSource.INTERRUPT, step_id, {})
                    await self._persist(snapshot, record)
                    await self._suspend(record, snapshot)
                    yield snapshot
                    return

                new_state, writes = graph.merge_state(state, outcome.patch)
                successors = await graph.route(step_id, new_state)

                state = new_state
                pending = self._dedupe(pending[1:] + successors)
                interrupts = []
                last_completed = step_id
                record.path.append(step_id)

                snapshot = make_snapshot(SnapshotSource.STEP, step_id, writes)
                await self._persist(snapshot, record)
                sequence = snapshot.sequence_number
                self.logger.info(
                    f"   ✓ {step_id} -> {pending or END} (snapshot #{sequence})"
                )
                yield snapshot

        except Exception as e:
            record.status = RunStatus.FAILED
            record.error = e
            self.logger.error(
                f"✗ Run failed at step '{record.current_step}': {type(e).__name__}: {e}"
            )
            if self._event_bus:
                await self._event_bus.emit_run_failed(
                    thread_id, record.run_id, record.current_step, e
                )
            raise

        if record.status is None:
            record.status = RunStatus.COMPLETED
            self.logger.info(
                f"✓ Thread '{thread_id}' completed "
                f"({record.steps_executed} steps, path: {' → '.join(record.path) or '-'})"
            )
            if self._event_bus:
                await self._event_bus.emit_run_completed(
                    thread_id, record.run_id, sequence, record.steps_executed
                )

        if record.persisted == 0:
            # Nothing written this run; still show the caller where the thread stands
            final = await self.store.latest(thread_id)
            record.snapshot = final
            yield final

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, thread_id: str) -> Snapshot | None:
        try:
            return await self.store.latest(thread_id)
        except ThreadNotFoundError:
            return None

    async def _persist(self, snapshot: Snapshot, record: _RunRecord) -> None:
        await self.store.append(snapshot.thread_id, snapshot)
        record.persisted += 1
        record.snapshot = snapshot
        self.logger.debug(
            f"💾 Persisted snapshot #{snapshot.sequence_number} ({snapshot.source.value})",
            extra={"sequence_number": snapshot.sequence_number, "step": snapshot.step},
        )
        if self._event_bus:
            await self._event_bus.emit_snapshot_persisted(snapshot)

    async def _suspend(self, record: _RunRecord, snapshot: Snapshot) -> None:
        record.status = RunStatus.SUSPENDED
        if self._event_bus:
            await self._event_bus.emit_run_suspended(snapshot)

    async def _run_step(self, step: StepSpec, state: dict[str, Any]) -> StepOutcome:
        """
        Invoke a step function and normalize its outcome.

        Sync functions run in a worker thread so a timeout can still fire.
        Steps get a deep copy of the state; only their returned patch counts.

        Raises:
            StepTimeoutError: If the step exceeds its timeout
            Exception: Any fault raised by the step
        """
        timeout = step.timeout_seconds or self.config.step_timeout_seconds
        step_state = copy.deepcopy(state)

        if _is_async_callable(step.func):
            coro = step.func(step_state)
        else:
            coro = asyncio.to_thread(step.func, step_state)

        start = time.perf_counter()
        task = asyncio.ensure_future(coro)
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if task not in done:
                task.cancel()
                raise StepTimeoutError(step.id, timeout)
            value = task.result()
        except StepInterrupt as e:
            return Paused(e.reason)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            latency_ms = int((time.perf_counter() - start) * 1000)
            self.logger.debug(
                f"   {step.id} ran for {latency_ms}ms", extra={"latency_ms": latency_ms}
            )

        outcome = to_outcome(step.id, value)
        if isinstance(outcome, Completed):
            self.logger.debug(f"   {step.id} wrote {sorted(outcome.patch)}")
        return outcome

    @staticmethod
    def _dedupe(steps: list[str]) -> list[str]:
        """Drop END markers and repeats, keeping first-seen order."""
        return [s for s in dict.fromkeys(steps) if s != END]


def _is_async_callable(func: Any) -> bool:
    if inspect.iscoroutinefunction(func):
        return True
    call = getattr(func, "__call__", None)  # noqa: B004
    return inspect.iscoroutinefunction(call)

"""Tests for ThreadStateInspector - reading and editing thread state between runs."""

import pytest
from conftest import ReviewState

from pausegraph.errors import (
    ConcurrentWriteConflictError,
    SchemaViolationError,
    ThreadNotFoundError,
)
from pausegraph.graph.edge import END, START, ConditionalEdgeSpec, GraphSpec
from pausegraph.graph.executor import ExecutionResult, GraphExecutor
from pausegraph.graph.step import interrupt
from pausegraph.runtime.inspector import ThreadStateInspector
from pausegraph.schemas.snapshot import RunStatus, Snapshot, SnapshotSource


def review(state):
    if state["risk"] > 0.8 and not state["approved"]:
        interrupt(f"risk {state['risk']} needs sign-off")
    return {"log": state["log"] + ["reviewed"]}


def publish(state):
    return {"log": state["log"] + ["published"]}


@pytest.fixture
def review_graph() -> GraphSpec:
    return GraphSpec.build(
        id="review",
        state_schema=ReviewState,
        steps={"review": review, "publish": publish, "archive": lambda s: None},
        edges=[(START, "review"), ("publish", END), ("archive", END)],
        conditional_edges=[
            ConditionalEdgeSpec(
                source="review",
                router=lambda s: "publish" if s["approved"] or s["risk"] < 0.5 else "archive",
                destinations=["publish", "archive"],
            )
        ],
    )


@pytest.fixture
def inspector(store, review_graph) -> ThreadStateInspector:
    return ThreadStateInspector(store, review_graph)


async def suspend(executor: GraphExecutor, graph: GraphSpec) -> ExecutionResult:
    """Leave thread t1 suspended inside `review`."""
    result = await executor.invoke(graph, "t1", {"draft": "post", "risk": 0.9})
    assert result.status == RunStatus.SUSPENDED
    return result


class TestGetState:
    @pytest.mark.asyncio
    async def test_reflects_latest_snapshot(self, inspector, executor, review_graph):
        suspended = await suspend(executor, review_graph)

        view = await inspector.get_state("t1")

        assert view.sequence_number == suspended.snapshot.sequence_number
        assert view.pending == ["review"]
        assert view.state["risk"] == 0.9
        assert view.interrupts[0].reason == "risk 0.9 needs sign-off"

    @pytest.mark.asyncio
    async def test_unknown_thread(self, inspector):
        with pytest.raises(ThreadNotFoundError):
            await inspector.get_state("nobody")

    @pytest.mark.asyncio
    async def test_reads_do_not_write(self, inspector, executor, store, review_graph):
        await suspend(executor, review_graph)
        before = (await store.latest("t1")).sequence_number

        await inspector.get_state("t1")
        await inspector.get_state("t1")

        assert (await store.latest("t1")).sequence_number == before


class TestUpdateState:
    @pytest.mark.asyncio
    async def test_update_keeps_pending_and_interrupts(
        self, inspector, executor, store, review_graph
    ):
        suspended = await suspend(executor, review_graph)

        sequence = await inspector.update_state("t1", {"approved": True})

        latest = await store.latest("t1")
        assert sequence == suspended.snapshot.sequence_number + 1
        assert latest.sequence_number == sequence
        assert latest.source == SnapshotSource.UPDATE
        assert latest.writes == {"approved": True}
        assert latest.pending == ["review"]
        assert latest.interrupts == suspended.snapshot.interrupts

    @pytest.mark.asyncio
    async def test_update_changes_the_resumed_outcome(self, inspector, executor, review_graph):
        await suspend(executor, review_graph)
        await inspector.update_state("t1", {"approved": True})

        result = await executor.invoke(review_graph, "t1")

        assert result.status == RunStatus.COMPLETED
        assert result.path == ["review", "publish"]
        assert result.state["log"] == ["reviewed", "published"]

    @pytest.mark.asyncio
    async def test_update_that_keeps_condition_still_pauses(
        self, inspector, executor, review_graph
    ):
        await suspend(executor, review_graph)
        await inspector.update_state("t1", {"risk": 0.95})

        result = await executor.invoke(review_graph, "t1")

        assert result.status == RunStatus.SUSPENDED
        assert result.interrupts[0].reason == "risk 0.95 needs sign-off"

    @pytest.mark.asyncio
    async def test_undeclared_field_rejected_without_write(
        self, inspector, executor, store, review_graph
    ):
        await suspend(executor, review_graph)
        before = await store.latest("t1")

        with pytest.raises(SchemaViolationError) as exc_info:
            await inspector.update_state("t1", {"approver": "sam"})

        assert exc_info.value.fields == ["approver"]
        assert (await store.latest("t1")).sequence_number == before.sequence_number

    @pytest.mark.asyncio
    async def test_unknown_thread(self, inspector):
        with pytest.raises(ThreadNotFoundError):
            await inspector.update_state("nobody", {"approved": True})

    @pytest.mark.asyncio
    async def test_as_step_reroutes_and_clears_interrupts(
        self, inspector, executor, store, review_graph
    ):
        await suspend(executor, review_graph)

        await inspector.update_state("t1", {"log": ["manual review"]}, as_step="review")

        latest = await store.latest("t1")
        assert latest.interrupts == []
        assert latest.pending == ["archive"]
        assert latest.last_completed_step == "review"
        assert latest.step == "review"

        result = await executor.invoke(review_graph, "t1")
        assert result.path == ["archive"]

    @pytest.mark.asyncio
    async def test_as_step_must_be_declared(self, inspector, executor, review_graph):
        await suspend(executor, review_graph)

        with pytest.raises(ValueError):
            await inspector.update_state("t1", {}, as_step="ghost")

    @pytest.mark.asyncio
    async def test_update_loses_race_against_a_writer(
        self, inspector, executor, store, review_graph
    ):
        await suspend(executor, review_graph)
        read_before_race = await store.latest("t1")
        await store.append(
            "t1",
            Snapshot(
                thread_id="t1",
                sequence_number=read_before_race.sequence_number + 1,
                state=read_before_race.state,
                pending=read_before_race.pending,
                source=SnapshotSource.STEP,
            ),
        )

        class StaleStore:
            """Serves the snapshot read before the other writer landed."""

            async def latest(self, thread_id):
                return read_before_race

            async def append(self, thread_id, snapshot):
                return await store.append(thread_id, snapshot)

        stale = ThreadStateInspector(StaleStore(), review_graph)
        with pytest.raises(ConcurrentWriteConflictError):
            await stale.update_state("t1", {"approved": True})


class TestHistoryAndReplay:
    @pytest.mark.asyncio
    async def test_replay_matches_latest_state(self, inspector, executor, store, review_graph):
        await suspend(executor, review_graph)
        await inspector.update_state("t1", {"approved": True})
        await executor.invoke(review_graph, "t1")

        replayed = await inspector.replay_state("t1")

        assert replayed == (await store.latest("t1")).state

    @pytest.mark.asyncio
    async def test_replay_up_to_a_sequence(self, inspector, executor, review_graph):
        await suspend(executor, review_graph)
        await inspector.update_state("t1", {"draft": "edited"})

        replayed = await inspector.replay_state("t1", upto=1)

        assert replayed["draft"] == "post"

    @pytest.mark.asyncio
    async def test_history_lists_every_snapshot(self, inspector, executor, review_graph):
        await suspend(executor, review_graph)
        await inspector.update_state("t1", {"approved": True})

        sources = [s.source async for s in inspector.history("t1")]

        assert sources == [SnapshotSource.INPUT, SnapshotSource.INTERRUPT, SnapshotSource.UPDATE]

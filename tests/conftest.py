"""Shared fixtures: a small moderation-style graph and both store backends."""

from pathlib import Path

import pytest
from pydantic import BaseModel

from pausegraph.config import EngineConfig
from pausegraph.graph.edge import END, START, GraphSpec
from pausegraph.graph.executor import GraphExecutor
from pausegraph.graph.step import StepSpec, interrupt
from pausegraph.observability import clear_trace_context
from pausegraph.storage import FileSnapshotStore, InMemorySnapshotStore, RetentionPolicy


class TextState(BaseModel):
    input: str = ""


class ReviewState(BaseModel):
    draft: str = ""
    risk: float = 0.0
    approved: bool = False
    log: list[str] = []


class StepCalls:
    """Records which steps ran, in order."""

    def __init__(self):
        self.calls: list[str] = []

    def count(self, step: str) -> int:
        return self.calls.count(step)


def make_config(**overrides) -> EngineConfig:
    """An EngineConfig that ignores the user's config file and env."""
    values = {
        "storage_path": None,
        "step_timeout_seconds": None,
        "max_steps": 100,
        "max_conflict_retries": 0,
        "retention": RetentionPolicy(),
    }
    values.update(overrides)
    return EngineConfig(**values)


def build_length_graph(calls: StepCalls, pause_before: tuple[str, ...] = ()) -> GraphSpec:
    """step1 -> step2 -> step3, where step2 pauses on inputs longer than 5 chars."""

    def step1(state):
        calls.calls.append("step1")
        return None

    def step2(state):
        calls.calls.append("step2")
        if len(state["input"]) > 5:
            interrupt(f"Received input longer than 5 characters: {state['input']}")
        return {}

    def step3(state):
        calls.calls.append("step3")
        return None

    return GraphSpec.build(
        id="length-check",
        state_schema=TextState,
        steps=[
            StepSpec(id="step1", func=step1),
            StepSpec(id="step2", func=step2),
            StepSpec(id="step3", func=step3),
        ],
        edges=[(START, "step1"), ("step1", "step2"), ("step2", "step3"), ("step3", END)],
        pause_before=pause_before,
    )


@pytest.fixture(autouse=True)
def _reset_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()


@pytest.fixture
def calls() -> StepCalls:
    return StepCalls()


@pytest.fixture
def length_graph(calls: StepCalls) -> GraphSpec:
    return build_length_graph(calls)


@pytest.fixture
def store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def executor(store: InMemorySnapshotStore) -> GraphExecutor:
    return GraphExecutor(store, config=make_config())


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path: Path):
    """Each store backend in turn."""
    if request.param == "memory":
        return InMemorySnapshotStore()
    return FileSnapshotStore(tmp_path / "storage")

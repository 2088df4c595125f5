"""Tests for GraphSpec.build validation, routing and state merging."""

import pytest
from conftest import ReviewState, TextState
from pydantic import BaseModel, ConfigDict, ValidationError

from pausegraph.errors import GraphValidationError, RoutingError, SchemaViolationError
from pausegraph.graph.edge import END, START, ConditionalEdgeSpec, EdgeSpec, GraphSpec
from pausegraph.graph.step import StepSpec


def noop(state):
    return None


def build_error(**kwargs) -> list[str]:
    """Build a graph expected to be invalid and return its problems."""
    kwargs.setdefault("state_schema", TextState)
    with pytest.raises(GraphValidationError) as exc_info:
        GraphSpec.build(**kwargs)
    return exc_info.value.errors


class TestBuildValidation:
    def test_minimal_graph_builds(self):
        graph = GraphSpec.build(
            id="tiny",
            state_schema=TextState,
            steps=[StepSpec(id="only", func=noop)],
            edges=[EdgeSpec(source=START, target="only"), EdgeSpec(source="only", target=END)],
        )

        assert graph.id == "tiny"
        assert graph.step_ids == ["only"]
        assert graph.state_fields == ["input"]
        assert graph.get_step("only").func is noop
        assert graph.get_step("missing") is None

    @pytest.mark.asyncio
    async def test_several_static_edges_build_as_fan_out(self):
        graph = GraphSpec.build(
            state_schema=TextState,
            steps={"a": noop, "b": noop, "c": noop},
            edges=[(START, "a"), (START, "b"), ("a", "b"), ("a", "c"), ("b", END), ("c", END)],
        )

        assert await graph.entry_steps({}) == ["a", "b"]
        assert await graph.route("a", {}) == ["b", "c"]

    def test_edge_to_undeclared_step(self):
        errors = build_error(steps={"a": noop}, edges=[(START, "a"), ("a", "ghost")])

        assert any("undeclared target 'ghost'" in e for e in errors)

    def test_edge_from_undeclared_step(self):
        errors = build_error(
            steps={"a": noop}, edges=[(START, "a"), ("a", END), ("ghost", "a")]
        )

        assert any("undeclared source 'ghost'" in e for e in errors)

    def test_missing_entry(self):
        errors = build_error(steps={"a": noop}, edges=[("a", END)])

        assert any("No edge from START" in e for e in errors)

    def test_end_unreachable(self):
        errors = build_error(
            steps={"a": noop, "b": noop},
            edges=[(START, "a"), ("a", "b"), ("b", "a")],
        )

        assert "No path from START to END" in errors

    def test_duplicate_and_reserved_step_ids(self):
        errors = build_error(
            steps=[
                StepSpec(id="a", func=noop),
                StepSpec(id="a", func=noop),
                StepSpec(id=END, func=noop),
            ],
            edges=[(START, "a"), ("a", END)],
        )

        assert "Duplicate step id: 'a'" in errors
        assert f"Step id '{END}' is reserved" in errors

    def test_pause_before_undeclared_step(self):
        errors = build_error(
            steps={"a": noop}, edges=[(START, "a"), ("a", END)], pause_before=["ghost"]
        )

        assert "pause_before references undeclared step 'ghost'" in errors

    def test_router_with_invalid_destination(self):
        errors = build_error(
            steps={"a": noop},
            edges=[(START, "a")],
            conditional_edges=[
                ConditionalEdgeSpec(source="a", router=noop, destinations=[END, "ghost"])
            ],
        )

        assert "Router for 'a' declares invalid destination 'ghost'" in errors

    def test_mixed_direct_and_conditional_edges(self):
        errors = build_error(
            steps={"a": noop, "b": noop},
            edges=[(START, "a"), ("a", "b"), ("b", END)],
            conditional_edges=[ConditionalEdgeSpec(source="a", router=noop, destinations=["b"])],
        )

        assert any("both direct and conditional" in e for e in errors)

    def test_schema_allowing_extra_fields_is_rejected(self):
        class LooseState(BaseModel):
            model_config = ConfigDict(extra="allow")
            value: int = 0

        errors = build_error(
            state_schema=LooseState, steps={"a": noop}, edges=[(START, "a"), ("a", END)]
        )

        assert any("allows extra fields" in e for e in errors)

    def test_non_model_schema_is_rejected(self):
        with pytest.raises(GraphValidationError):
            GraphSpec.build(state_schema=dict, steps={"a": noop}, edges=[(START, "a")])

    def test_all_problems_reported_together(self):
        errors = build_error(
            steps={"a": noop},
            edges=[("a", "ghost")],
            pause_before=["nope"],
        )

        assert len(errors) >= 3

    def test_dead_end_step_finishes_the_graph(self):
        graph = GraphSpec.build(
            state_schema=TextState,
            steps={"a": noop},
            edges=[(START, "a")],
        )

        assert graph.step_ids == ["a"]

    def test_built_graph_is_immutable(self):
        graph = GraphSpec.build(state_schema=TextState, steps={"a": noop}, edges=[(START, "a")])

        with pytest.raises(ValidationError):
            graph.id = "changed"


class TestRouting:
    @pytest.mark.asyncio
    async def test_direct_edges_route_in_declaration_order(self):
        graph = GraphSpec.build(
            state_schema=TextState,
            steps={"a": noop, "b": noop, "c": noop},
            edges=[(START, "a"), ("a", "c"), ("a", "b"), ("b", END), ("c", END)],
        )

        assert await graph.entry_steps({}) == ["a"]
        assert await graph.route("a", {}) == ["c", "b"]
        assert await graph.route("b", {}) == [END]

    @pytest.mark.asyncio
    async def test_router_may_return_several_steps(self):
        graph = GraphSpec.build(
            state_schema=TextState,
            steps={"a": noop, "b": noop, "c": noop},
            edges=[(START, "a"), ("b", END), ("c", END)],
            conditional_edges=[
                ConditionalEdgeSpec(
                    source="a", router=lambda s: ["b", "c"], destinations=["b", "c"]
                )
            ],
        )

        assert await graph.route("a", {}) == ["b", "c"]

    @pytest.mark.asyncio
    async def test_empty_router_result_means_end(self):
        edge = ConditionalEdgeSpec(source="a", router=lambda s: [], destinations=["b"])

        assert await edge.resolve({}) == [END]

    @pytest.mark.asyncio
    async def test_router_returning_garbage(self):
        edge = ConditionalEdgeSpec(source="a", router=lambda s: 3, destinations=["b"])

        with pytest.raises(RoutingError):
            await edge.resolve({})

    @pytest.mark.asyncio
    async def test_path_map_rejects_unknown_key(self):
        edge = ConditionalEdgeSpec(
            source="a", router=lambda s: "maybe", destinations={"yes": "b", "no": END}
        )

        with pytest.raises(RoutingError, match="undeclared key"):
            await edge.resolve({})

    @pytest.mark.asyncio
    async def test_start_may_be_conditional(self):
        graph = GraphSpec.build(
            state_schema=ReviewState,
            steps={"fast": noop, "slow": noop},
            edges=[("fast", END), ("slow", END)],
            conditional_edges=[
                ConditionalEdgeSpec(
                    source=START,
                    router=lambda s: "fast" if s["risk"] < 0.5 else "slow",
                    destinations=["fast", "slow"],
                )
            ],
        )

        assert await graph.entry_steps({"risk": 0.9}) == ["slow"]


class TestMergeState:
    def setup_method(self):
        self.graph = GraphSpec.build(
            state_schema=ReviewState, steps={"a": noop}, edges=[(START, "a"), ("a", END)]
        )

    def test_fieldwise_overwrite(self):
        state, _ = self.graph.merge_state({}, {"draft": "x"})
        merged, writes = self.graph.merge_state(state, {"risk": 0.5})

        assert merged["draft"] == "x"
        assert merged["risk"] == 0.5
        assert writes == {"risk": 0.5}

    def test_values_are_coerced_by_the_schema(self):
        merged, writes = self.graph.merge_state({}, {"risk": "0.25"})

        assert merged["risk"] == 0.25
        assert writes == {"risk": 0.25}

    def test_unknown_fields_rejected(self):
        with pytest.raises(SchemaViolationError) as exc_info:
            self.graph.merge_state({}, {"colour": "red", "draft": "x"})

        assert exc_info.value.fields == ["colour"]

    def test_non_mapping_patch_rejected(self):
        with pytest.raises(SchemaViolationError):
            self.graph.merge_state({}, ["draft"])

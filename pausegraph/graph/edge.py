"""
Edge Protocol - How steps connect in a graph.

Edges define:
1. Source and target steps
2. Routing decisions for conditional edges
3. The fixed state schema every write is checked against

Edge Types:
- direct: Always traverse from source to target after source completes
- conditional: A router inspects the state and picks the next step(s)
  from a declared set of destinations

Graphs are validated once by GraphSpec.build() and are immutable
afterwards, so a single GraphSpec can be shared by any number of
concurrent invocations.
"""

import inspect
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from pausegraph.errors import GraphValidationError, RoutingError, SchemaViolationError
from pausegraph.graph.step import StepSpec

logger = logging.getLogger(__name__)

START = "__start__"
END = "__end__"

STATIC_PAUSE_REASON = "static pause"

Router = Callable[[dict[str, Any]], Any]


class EdgeSpec(BaseModel):
    """
    A direct edge between two steps.

    Examples:
        EdgeSpec(source=START, target="moderate")
        EdgeSpec(source="moderate", target="publish")
        EdgeSpec(source="publish", target=END)
    """

    source: str = Field(description="Source step ID (or START)")
    target: str = Field(description="Target step ID (or END)")

    model_config = ConfigDict(frozen=True)


class ConditionalEdgeSpec(BaseModel):
    """
    A routing decision made from the state after `source` completes.

    `router` is any callable `(state) -> name | list[name]`: a function, a
    closure, a coroutine function or an object with `__call__`. Every name
    it may return must be declared up front in `destinations`, either as a
    list of step names or as a path map from router return values to step
    names.

    Examples:
        ConditionalEdgeSpec(
            source="score",
            router=lambda state: "review" if state["risk"] > 0.8 else "publish",
            destinations=["review", "publish"],
        )

        ConditionalEdgeSpec(
            source="score",
            router=classify,
            destinations={"high": "review", "low": "publish", "drop": END},
        )
    """

    source: str
    router: Router
    destinations: list[str] | dict[str, str]
    description: str = ""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def possible_targets(self) -> list[str]:
        """Every step name this edge can route to."""
        if isinstance(self.destinations, dict):
            return list(dict.fromkeys(self.destinations.values()))
        return list(dict.fromkeys(self.destinations))

    async def resolve(self, state: dict[str, Any]) -> list[str]:
        """
        Invoke the router and map its answer to declared step names.

        Raises:
            RoutingError: If the router returns something undeclared
        """
        result = self.router(state)
        if inspect.isawaitable(result):
            result = await result

        if result is None:
            raw = []
        elif isinstance(result, str):
            raw = [result]
        elif isinstance(result, Iterable):
            raw = list(result)
        else:
            raise RoutingError(
                f"Router for '{self.source}' returned {type(result).__name__}; "
                "expected a step name or a list of step names"
            )

        targets: list[str] = []
        for value in raw:
            if isinstance(self.destinations, dict):
                if value not in self.destinations:
                    raise RoutingError(
                        f"Router for '{self.source}' returned undeclared key {value!r}; "
                        f"declared: {sorted(self.destinations)}"
                    )
                targets.append(self.destinations[value])
            else:
                if value not in self.destinations:
                    raise RoutingError(
                        f"Router for '{self.source}' returned undeclared step {value!r}; "
                        f"declared: {self.destinations}"
                    )
                targets.append(value)

        return targets or [END]


class GraphSpec(BaseModel):
    """
    Complete, validated specification of a step graph.

    Build with GraphSpec.build(), which validates the definition and
    raises GraphValidationError listing every problem found:

        graph = GraphSpec.build(
            id="moderation",
            state_schema=ModerationState,
            steps=[
                StepSpec(id="step1", func=normalize),
                StepSpec(id="step2", func=check_length),
                StepSpec(id="step3", func=publish),
            ],
            edges=[
                EdgeSpec(source=START, target="step1"),
                EdgeSpec(source="step1", target="step2"),
                EdgeSpec(source="step2", target="step3"),
                EdgeSpec(source="step3", target=END),
            ],
            pause_before=["step3"],
        )
    """

    id: str = "graph"
    state_schema: type[BaseModel]
    steps: tuple[StepSpec, ...] = ()
    edges: tuple[EdgeSpec, ...] = ()
    conditional_edges: tuple[ConditionalEdgeSpec, ...] = ()
    pause_before: frozenset[str] = frozenset()
    description: str = ""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @classmethod
    def build(
        cls,
        *,
        state_schema: type[BaseModel],
        steps: Iterable[StepSpec] | Mapping[str, Callable[..., Any]],
        edges: Iterable[EdgeSpec | tuple[str, str]] = (),
        conditional_edges: Iterable[ConditionalEdgeSpec] = (),
        pause_before: Iterable[str] = (),
        id: str = "graph",
        description: str = "",
    ) -> "GraphSpec":
        """
        Build and validate a graph.

        Args:
            state_schema: Pydantic model declaring the state fields
            steps: StepSpecs, or a mapping of step id to callable
            edges: Direct edges, as EdgeSpec or (source, target) tuples
            conditional_edges: Router-driven edges
            pause_before: Steps that always suspend right before they run
            id: Graph identifier (for logs and events)
            description: Free text

        Raises:
            GraphValidationError: If the definition is invalid
        """
        if isinstance(steps, Mapping):
            step_specs = tuple(StepSpec(id=name, func=func) for name, func in steps.items())
        else:
            step_specs = tuple(steps)

        edge_specs = tuple(
            e if isinstance(e, EdgeSpec) else EdgeSpec(source=e[0], target=e[1]) for e in edges
        )

        if not (isinstance(state_schema, type) and issubclass(state_schema, BaseModel)):
            raise GraphValidationError(["state_schema must be a pydantic BaseModel subclass"])

        graph = cls(
            id=id,
            state_schema=state_schema,
            steps=step_specs,
            edges=edge_specs,
            conditional_edges=tuple(conditional_edges),
            pause_before=frozenset(pause_before),
            description=description,
        )

        errors = graph.validate_structure()
        if errors:
            raise GraphValidationError(errors)

        logger.debug(
            f"Built graph '{graph.id}': {len(step_specs)} steps, "
            f"{len(edge_specs)} edges, {len(graph.conditional_edges)} conditional edges"
        )
        return graph

    # --- Lookups ---

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]

    @property
    def state_fields(self) -> list[str]:
        return list(self.state_schema.model_fields)

    def get_step(self, step_id: str) -> StepSpec | None:
        """Get a step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def get_outgoing_edges(self, step_id: str) -> list[EdgeSpec]:
        """Get all direct edges leaving a step, in declaration order."""
        return [e for e in self.edges if e.source == step_id]

    def get_conditional_edge(self, step_id: str) -> ConditionalEdgeSpec | None:
        """Get the conditional edge leaving a step, if any."""
        for edge in self.conditional_edges:
            if edge.source == step_id:
                return edge
        return None

    def is_pause_point(self, step_id: str) -> bool:
        return step_id in self.pause_before

    # --- Routing ---

    async def route(self, step_id: str, state: dict[str, Any]) -> list[str]:
        """
        Determine the step(s) that follow `step_id` given `state`.

        The conditional router wins if there is one; otherwise every direct
        edge is followed (more than one means fan-out). A step with no
        outgoing edge routes to END.

        Raises:
            RoutingError: If a router returns an undeclared destination
        """
        conditional = self.get_conditional_edge(step_id)
        if conditional is not None:
            return await conditional.resolve(state)

        edges = self.get_outgoing_edges(step_id)
        if not edges:
            return [END]
        return [e.target for e in edges]

    async def entry_steps(self, state: dict[str, Any]) -> list[str]:
        """Steps a fresh pass starts with (targets of START)."""
        return await self.route(START, state)

    # --- State schema ---

    def merge_state(
        self, state: dict[str, Any], patch: Mapping[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Validate `patch` against the schema and merge it over `state`.

        Field-wise overwrite; fields not in the patch keep their values.

        Returns:
            (new_state, writes) where writes holds the validated values of
            the patched fields

        Raises:
            SchemaViolationError: If the patch names undeclared fields or
                the merged state fails schema validation
        """
        if not isinstance(patch, Mapping):
            raise SchemaViolationError(
                f"State patch must be a mapping, got {type(patch).__name__}"
            )

        fields = self.state_schema.model_fields
        unknown = sorted(k for k in patch if k not in fields)
        if unknown:
            raise SchemaViolationError(
                f"Fields not declared in {self.state_schema.__name__}: {unknown}",
                fields=unknown,
            )

        try:
            model = self.state_schema.model_validate({**state, **patch})
        except PydanticValidationError as e:
            bad = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise SchemaViolationError(
                f"State patch rejected by {self.state_schema.__name__}: {e}",
                fields=bad,
            ) from e

        new_state = model.model_dump()
        writes = {k: new_state[k] for k in patch}
        return new_state, writes

    # --- Validation ---

    def validate_structure(self) -> list[str]:
        """Validate the graph structure. Returns a list of problems (empty if valid)."""
        errors: list[str] = []

        schema_extra = self.state_schema.model_config.get("extra")
        if schema_extra == "allow":
            errors.append(
                f"State schema {self.state_schema.__name__} allows extra fields; "
                "the field set must be fixed"
            )

        # Step ids
        seen: set[str] = set()
        for step in self.steps:
            if step.id in (START, END):
                errors.append(f"Step id '{step.id}' is reserved")
            if step.id in seen:
                errors.append(f"Duplicate step id: '{step.id}'")
            seen.add(step.id)

        def _valid_source(name: str) -> bool:
            return name == START or name in seen

        def _valid_target(name: str) -> bool:
            return name == END or name in seen

        # Direct edges
        for edge in self.edges:
            if not _valid_source(edge.source):
                errors.append(
                    f"Edge {edge.source} -> {edge.target} references undeclared "
                    f"source '{edge.source}'"
                )
            if not _valid_target(edge.target):
                errors.append(
                    f"Edge {edge.source} -> {edge.target} references undeclared "
                    f"target '{edge.target}'"
                )
            if edge.source == END:
                errors.append("END cannot have outgoing edges")
            if edge.target == START:
                errors.append("START cannot be an edge target")

        # Conditional edges
        conditional_sources: set[str] = set()
        for cond in self.conditional_edges:
            if not _valid_source(cond.source):
                errors.append(f"Conditional edge references undeclared source '{cond.source}'")
            if cond.source in conditional_sources:
                errors.append(f"Step '{cond.source}' has more than one conditional edge")
            conditional_sources.add(cond.source)
            if not callable(cond.router):
                errors.append(f"Router for '{cond.source}' is not callable")
            targets = cond.possible_targets()
            if not targets:
                errors.append(f"Conditional edge from '{cond.source}' declares no destinations")
            for target in targets:
                if not _valid_target(target):
                    errors.append(
                        f"Router for '{cond.source}' declares invalid destination '{target}'"
                    )
            if self.get_outgoing_edges(cond.source):
                errors.append(
                    f"Step '{cond.source}' has both direct and conditional outgoing edges"
                )

        # Entry
        if not self.get_outgoing_edges(START) and START not in conditional_sources:
            errors.append("No edge from START: the graph has no entry step")

        # Pause declaration
        for name in sorted(self.pause_before):
            if name not in seen:
                errors.append(f"pause_before references undeclared step '{name}'")

        # Reachability: START must reach END
        reachable: set[str] = set()
        to_visit = [START]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            if current == END:
                continue
            cond = self.get_conditional_edge(current)
            if cond is not None:
                to_visit.extend(cond.possible_targets())
            outgoing = self.get_outgoing_edges(current)
            to_visit.extend(e.target for e in outgoing)
            # A declared step without outgoing edges finishes the graph
            if current != START and cond is None and not outgoing and current in seen:
                to_visit.append(END)

        if END not in reachable:
            errors.append("No path from START to END")

        for step in self.steps:
            if step.id not in reachable:
                logger.warning(f"Step '{step.id}' is unreachable from START in graph '{self.id}'")

        return errors

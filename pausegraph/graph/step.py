"""
Step Protocol - Named units of work and how they report back.

A step is any callable `(state) -> patch`, sync or async. It reports its
outcome in one of these ways:

    return {"summary": "..."}          # completed, merge this patch
    return None                         # completed, nothing to merge
    return Completed({"summary": ...})  # completed, explicit
    return Paused("needs review")       # pause here, discard the result
    raise StepInterrupt("needs review") # same as Paused, from deep inside
    interrupt("needs review")           # shorthand for the raise

A pause is not an error. The engine records it on the thread and stops
without advancing; any other exception is a fault.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, NoReturn

from pydantic import BaseModel, ConfigDict, Field

StepFunction = Callable[[dict[str, Any]], Any | Awaitable[Any]]


class StepInterrupt(Exception):  # noqa: N818 - a signal, not an error
    """
    Raised by step code to suspend the thread at the current step.

    The engine catches it, records `reason` on the thread and leaves the
    step pending. It never reaches the caller.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def interrupt(reason: str) -> NoReturn:
    """Suspend the running step with `reason`. Never returns."""
    raise StepInterrupt(reason)


@dataclass(frozen=True)
class Completed:
    """The step finished; merge `patch` into state."""

    patch: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Paused:
    """The step asks to suspend here; its result is discarded."""

    reason: str


StepOutcome = Completed | Paused


def to_outcome(step_id: str, value: Any) -> StepOutcome:
    """
    Normalize whatever a step returned into a tagged outcome.

    Raises:
        TypeError: If the step returned something that is neither a
            mapping, None, Completed nor Paused
    """
    if isinstance(value, Completed | Paused):
        return value
    if value is None:
        return Completed()
    if isinstance(value, BaseModel):
        return Completed(value.model_dump(exclude_unset=True))
    if isinstance(value, Mapping):
        return Completed(dict(value))
    raise TypeError(
        f"Step '{step_id}' returned {type(value).__name__}; "
        "expected a dict patch, None, Completed or Paused"
    )


class StepSpec(BaseModel):
    """
    Specification for a step in the graph.

    Examples:
        StepSpec(id="moderate", func=moderate_text)

        StepSpec(
            id="score",
            func=score_risk,
            description="Compute a risk score for the draft",
            timeout_seconds=10.0,
        )
    """

    id: str
    func: Callable[..., Any] = Field(description="Callable taking the state dict")
    description: str = ""
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Per-step timeout; overrides EngineConfig.step_timeout_seconds",
    )

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

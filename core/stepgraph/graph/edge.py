"""
Edge Protocol - How nodes connect in a graph.

Two kinds of edge may leave a node, and a node has at most one:
- EdgeSpec: always go to ``target`` once ``source`` finishes
- ConditionalEdgeSpec: call ``decide(snapshot)``, which returns an outcome
  name, and go to ``outcomes[outcome]``

The outcomes a decision can produce are known up front. They come from an
explicit ``declared_outcomes`` list, from a ``Literal[...]`` return
annotation on ``decide``, or failing both from the keys of ``outcomes``.
Validation checks that every declared outcome has a target, so a routing
gap is caught when the graph is built rather than mid-run.

Examples:
    # Unconditional
    EdgeSpec(source="refine_slides", target=END)

    # Route failures to a handler
    def check_error(snapshot) -> Literal["error", "success"]:
        return "error" if snapshot["error"] else "success"

    ConditionalEdgeSpec(
        source="research_market",
        decide=check_error,
        outcomes={"error": "error_handler", "success": "create_outline"},
    )
"""

import logging
import typing
from collections.abc import Callable, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stepgraph.errors import UnmappedOutcomeError

logger = logging.getLogger(__name__)

START = "__start__"
END = "__end__"

DecisionFunction = Callable[[Mapping[str, Any]], str]


def outcomes_from_annotation(decide: Callable[..., Any]) -> list[str] | None:
    """Read the outcome names out of a ``-> Literal[...]`` return annotation."""
    try:
        hints = typing.get_type_hints(decide)
    except Exception:
        return None
    returns = hints.get("return")
    if typing.get_origin(returns) is Literal:
        return [str(arg) for arg in typing.get_args(returns)]
    return None


class EdgeSpec(BaseModel):
    """Unconditional transition from ``source`` to ``target``."""

    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID or END")
    description: str = ""

    model_config = ConfigDict(frozen=True)

    @property
    def targets(self) -> list[str]:
        return [self.target]


class ConditionalEdgeSpec(BaseModel):
    """Transition chosen at run time by a decision function."""

    source: str = Field(description="Source node ID")
    decide: DecisionFunction = Field(description="Maps the snapshot to an outcome name")
    outcomes: dict[str, str] = Field(description="Outcome name -> target node ID (or END)")
    declared_outcomes: list[str] = Field(
        default_factory=list,
        description="Every outcome decide() can return; inferred when not given",
    )
    description: str = ""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="before")
    @classmethod
    def _infer_declared_outcomes(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("declared_outcomes"):
            inferred = None
            if callable(data.get("decide")):
                inferred = outcomes_from_annotation(data["decide"])
            if inferred is None:
                inferred = list(data.get("outcomes") or {})
            data = {**data, "declared_outcomes": inferred}
        return data

    @property
    def targets(self) -> list[str]:
        return list(dict.fromkeys(self.outcomes.values()))

    def unmapped_outcomes(self) -> list[str]:
        """Declared outcomes that have no target."""
        return [o for o in self.declared_outcomes if o not in self.outcomes]

    def resolve(self, snapshot: Mapping[str, Any]) -> tuple[str, str]:
        """
        Evaluate the decision and return (outcome, target).

        Raises:
            UnmappedOutcomeError: if decide() returned an outcome with no target
        """
        outcome = self.decide(snapshot)
        target = self.outcomes.get(outcome) if isinstance(outcome, str) else None
        if target is None:
            raise UnmappedOutcomeError(self.source, outcome, sorted(self.outcomes))
        logger.debug(f"Decision at '{self.source}': {outcome} -> {target}")
        return outcome, target

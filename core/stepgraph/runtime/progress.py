"""Progress as a percentage of a canonical step order."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from stepgraph.errors import UnknownStepError

DEFAULT_WORKFLOW_STEPS: tuple[str, ...] = (
    "initial",
    "research",
    "outline",
    "content-generation",
    "refinement",
    "complete",
)


def calculate_progress(steps: Sequence[str], current: str) -> float:
    """
    Percentage complete once ``current`` has been reached.

    ``(index_of(current) + 1) / len(steps) * 100``, so the last step is
    always 100.0.

    Raises:
        UnknownStepError: if ``current`` is not one of ``steps``
    """
    try:
        index = list(steps).index(current)
    except ValueError:
        raise UnknownStepError(current, list(steps)) from None
    return (index + 1) / len(steps) * 100


@dataclass(frozen=True)
class ProgressTracker:
    """Resolves the current step of a run and turns it into a percentage."""

    steps: tuple[str, ...]
    step_channel: str | None = None

    def current_step(self, snapshot: Mapping[str, Any], node_id: str) -> str:
        if self.step_channel is None:
            return node_id
        return snapshot.get(self.step_channel)

    def progress(self, snapshot: Mapping[str, Any], node_id: str) -> float:
        return calculate_progress(self.steps, self.current_step(snapshot, node_id))

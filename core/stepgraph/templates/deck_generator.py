"""
Deck Generator - A six-node pitch-deck workflow.

    START -> research_market -?-> create_outline -?-> generate_content
                  |                    |                   |
                  +------ error -------+------- error -----+--> error_handler -> END
                                                           |
               needs_refinement -> human_feedback -> refine_slides -> END
               complete ----------------------------> refine_slides

The content work (market research, outlining, slide writing, refinement) is
delegated to a DeckServices object, typically backed by an LLM. The graph
only decides what runs when. Every node reports its position in
DEFAULT_WORKFLOW_STEPS through the ``current_step`` channel, which drives
the progress percentage of each ``step_updated`` event.

Example:
    graph = build_deck_graph(MyServices())
    runtime = WorkflowRuntime()
    final = await runtime.start(
        graph, deck_initial_state({"company": "Acme"}, "s-1"), "s-1"
    )
"""

from collections.abc import Callable, Mapping
from typing import Any, Literal, Protocol

from stepgraph.graph.builder import CompiledGraph, GraphBuilder
from stepgraph.graph.channels import ChannelSchema
from stepgraph.graph.edge import END, START
from stepgraph.graph.node import NodeContext
from stepgraph.runtime.progress import DEFAULT_WORKFLOW_STEPS

GRAPH_ID = "deck-generator"

ReviewRequestHook = Callable[[str, list[Any]], None]
ErrorHook = Callable[[str, Any], None]


class DeckServices(Protocol):
    """The content work behind each deck node."""

    async def research(self, snapshot: Mapping[str, Any]) -> Any: ...

    async def outline(self, snapshot: Mapping[str, Any]) -> Any: ...

    async def slides(self, snapshot: Mapping[str, Any]) -> list[Any]: ...

    async def refine(self, refinements: list[Any], session_id: str) -> list[Any]: ...


def deck_schema() -> ChannelSchema:
    """The ten channels of a deck session."""
    return (
        ChannelSchema()
        .define("user_input", default_factory=dict)
        .define("research")
        .define("outline")
        .define("slides", default_factory=list)
        .define("refinements", default_factory=list)
        .define("current_step", default_factory=lambda: "initial")
        .define("messages", default_factory=list)
        .define("error")
        .define("session_id", default_factory=str)
        .define("deck_id")
    )


def deck_initial_state(
    user_input: Mapping[str, Any], session_id: str, **channels: Any
) -> dict[str, Any]:
    """Initial values for a new deck session."""
    return {"user_input": dict(user_input), "session_id": session_id, **channels}


# === DECISIONS ===


def check_error(snapshot: Mapping[str, Any]) -> Literal["error", "success"]:
    return "error" if snapshot.get("error") else "success"


def make_refinement_check(
    require_human_review: bool,
) -> Callable[[Mapping[str, Any]], str]:
    """
    Routing after content generation.

    With ``require_human_review`` every deck goes through human_feedback;
    otherwise only decks that already carry refinement requests do.
    """

    def check_for_refinement(
        snapshot: Mapping[str, Any],
    ) -> Literal["error", "needs_refinement", "complete"]:
        if snapshot.get("error"):
            return "error"
        if require_human_review or snapshot.get("refinements"):
            return "needs_refinement"
        return "complete"

    return check_for_refinement


def _slide_id(slide: Any) -> Any:
    if isinstance(slide, Mapping):
        return slide.get("id")
    return getattr(slide, "id", None)


def merge_refined_slides(slides: list[Any], refined: list[Any]) -> list[Any]:
    """Replace slides by id with their refined versions, keeping order."""
    by_id = {_slide_id(s): s for s in refined if _slide_id(s) is not None}
    return [by_id.get(_slide_id(slide), slide) for slide in slides]


# === GRAPH ===


def build_deck_graph(
    services: DeckServices,
    require_human_review: bool = True,
    on_review_request: ReviewRequestHook | None = None,
    on_error: ErrorHook | None = None,
    max_steps: int | None = None,
) -> CompiledGraph:
    """
    Compile the deck generator graph around ``services``.

    Args:
        services: Research, outline, slide and refinement implementations
        require_human_review: Always route generated decks through
            human_feedback, even with no refinement requests
        on_review_request: Called with (session_id, slides) when a deck
            is handed over for review
        on_error: Called with (session_id, error value) when a run reaches
            error_handler, so observers hear about a failure that does not
            abort the run
        max_steps: Per-run step limit (default: runtime config)
    """

    async def research_market(snapshot):
        """Research the market for the requested deck."""
        research = await services.research(snapshot)
        return {"research": research, "current_step": "research"}

    async def create_outline(snapshot):
        """Outline the deck from the research."""
        outline = await services.outline(snapshot)
        return {"outline": outline, "current_step": "outline"}

    async def generate_content(snapshot):
        """Write every slide in the outline."""
        slides = await services.slides(snapshot)
        return {"slides": list(slides), "current_step": "content-generation"}

    async def human_feedback(snapshot, context: NodeContext):
        """Hand the generated slides over for review."""
        slides = list(snapshot["slides"])
        context.logger.info(f"Requesting review of {len(slides)} slides")
        if on_review_request is not None:
            on_review_request(context.session_id, slides)
        return {"current_step": "refinement"}

    async def refine_slides(snapshot, context: NodeContext):
        """Apply pending refinement requests to the slides."""
        refinements = snapshot["refinements"]
        if not refinements:
            return {"current_step": "complete"}
        session_id = snapshot["session_id"] or context.session_id
        refined = await services.refine(list(refinements), session_id)
        return {
            "slides": merge_refined_slides(list(snapshot["slides"]), list(refined)),
            "current_step": "complete",
        }

    def error_handler(snapshot, context: NodeContext):
        """Record the failure and finish the run."""
        error = snapshot["error"]
        origin = getattr(error, "origin_node", None)
        context.logger.error(
            f"Workflow error from '{origin}': {getattr(error, 'message', error)}; "
            "manual intervention required"
        )
        if on_error is not None:
            on_error(context.session_id, error)
        return {"current_step": "complete"}

    builder = GraphBuilder(
        deck_schema(),
        graph_id=GRAPH_ID,
        description="Research, outline, write and refine a pitch deck",
    )
    builder.add_node("research_market", research_market)
    builder.add_node("create_outline", create_outline)
    builder.add_node("generate_content", generate_content)
    builder.add_node("refine_slides", refine_slides)
    builder.add_node("human_feedback", human_feedback)
    builder.add_node("error_handler", error_handler)

    builder.add_edge(START, "research_market")
    builder.add_conditional_edge(
        "research_market",
        check_error,
        {"error": "error_handler", "success": "create_outline"},
    )
    builder.add_conditional_edge(
        "create_outline",
        check_error,
        {"error": "error_handler", "success": "generate_content"},
    )
    builder.add_conditional_edge(
        "generate_content",
        make_refinement_check(require_human_review),
        {
            "needs_refinement": "human_feedback",
            "complete": "refine_slides",
            "error": "error_handler",
        },
    )
    builder.add_edge("human_feedback", "refine_slides")
    builder.add_edge("refine_slides", END)
    builder.add_edge("error_handler", END)

    builder.set_progress(DEFAULT_WORKFLOW_STEPS, step_channel="current_step")
    return builder.compile(max_steps=max_steps)

"""
Tests for graph definition: registration, validation and compilation.
"""

from typing import Literal

import pytest

from stepgraph.errors import (
    ConflictingEdgeError,
    DanglingOutcomeError,
    DuplicateNodeError,
    GraphDefinitionError,
    UnknownChannelError,
    UnknownNodeError,
    UnreachableNodeError,
    UntrackedStepError,
)
from stepgraph.graph.builder import GraphBuilder, build_graph
from stepgraph.graph.channels import ChannelSchema
from stepgraph.graph.edge import END, START, ConditionalEdgeSpec


def make_schema() -> ChannelSchema:
    return ChannelSchema().define("value", default_factory=int).define("error")


def noop(snapshot):
    return None


def check_error(snapshot) -> Literal["error", "success"]:
    return "error" if snapshot["error"] else "success"


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------
class TestRegistration:
    def test_duplicate_node_rejected(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop)
        with pytest.raises(DuplicateNodeError):
            builder.add_node("a", noop)

    @pytest.mark.parametrize("reserved", [START, END])
    def test_reserved_ids_rejected(self, reserved):
        with pytest.raises(DuplicateNodeError, match="reserved"):
            GraphBuilder(make_schema()).add_node(reserved, noop)

    def test_non_callable_rejected(self):
        with pytest.raises(TypeError):
            GraphBuilder(make_schema()).add_node("a", "not a function")

    def test_edge_to_unknown_node_rejected(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop)
        with pytest.raises(UnknownNodeError):
            builder.add_edge("a", "b")

    def test_edge_from_unknown_node_rejected(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop)
        with pytest.raises(UnknownNodeError):
            builder.add_edge("b", "a")

    def test_conditional_target_must_exist(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop)
        with pytest.raises(UnknownNodeError):
            builder.add_conditional_edge("a", check_error, {"error": "handler", "success": END})

    def test_second_outgoing_edge_rejected(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop).add_node("b", noop)
        builder.add_edge("a", "b")
        with pytest.raises(ConflictingEdgeError):
            builder.add_conditional_edge("a", check_error, {"error": END, "success": "b"})

    def test_start_edge_sets_entry(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop)
        builder.add_edge(START, "a")
        assert builder.entry_node == "a"

    def test_second_start_edge_rejected(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop).add_node("b", noop)
        builder.add_edge(START, "a")
        with pytest.raises(ConflictingEdgeError) as exc_info:
            builder.add_edge(START, "b")
        assert exc_info.value.source == START
        assert builder.entry_node == "a"

    def test_entry_cannot_be_end(self):
        with pytest.raises(UnknownNodeError):
            GraphBuilder(make_schema()).set_entry(END)

    def test_description_defaults_to_docstring(self):
        def research(snapshot):
            """Look things up.

            More detail here.
            """

        graph = GraphBuilder(make_schema()).add_node("r", research).set_entry("r").compile()
        assert graph.get_node("r").description == "Look things up."


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
class TestValidation:
    def test_missing_entry(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop)
        with pytest.raises(UnknownNodeError, match="entry"):
            builder.validate()

    def test_unreachable_node(self):
        builder = GraphBuilder(make_schema())
        builder.add_node("a", noop).add_node("orphan", noop)
        builder.add_edge(START, "a")
        builder.add_edge("a", END)
        with pytest.raises(UnreachableNodeError) as exc_info:
            builder.validate()
        assert exc_info.value.node_ids == ["orphan"]

    def test_dangling_declared_outcome(self):
        builder = GraphBuilder(make_schema())
        builder.add_node("a", noop).add_node("b", noop)
        builder.add_edge(START, "a")
        # check_error can return "error", which has no target here
        builder.add_conditional_edge("a", check_error, {"success": "b"})
        with pytest.raises(DanglingOutcomeError) as exc_info:
            builder.validate()
        assert exc_info.value.outcomes == ["error"]

    def test_explicit_declared_outcomes(self):
        builder = GraphBuilder(make_schema())
        builder.add_node("a", noop)
        builder.add_edge(START, "a")
        builder.add_conditional_edge(
            "a", lambda s: "done", {"done": END}, declared_outcomes=["done", "retry"]
        )
        with pytest.raises(DanglingOutcomeError):
            builder.validate()

    def test_unannotated_decision_uses_map_keys(self):
        builder = GraphBuilder(make_schema())
        builder.add_node("a", noop)
        builder.add_edge(START, "a")
        builder.add_conditional_edge("a", lambda s: "done", {"done": END})
        builder.validate()

    def test_missing_error_channel(self):
        schema = ChannelSchema().define("value")
        builder = GraphBuilder(schema).add_node("a", noop).set_entry("a")
        with pytest.raises(UnknownChannelError, match="error channel"):
            builder.validate()

    def test_missing_step_channel(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop).set_entry("a")
        builder.set_progress(["a"], step_channel="current_step")
        with pytest.raises(UnknownChannelError, match="step channel"):
            builder.validate()

    def test_node_missing_from_progress_steps(self):
        builder = GraphBuilder(make_schema())
        builder.add_node("a", noop).add_node("handler", noop)
        builder.add_edge(START, "a")
        builder.add_conditional_edge("a", check_error, {"error": "handler", "success": END})
        builder.set_progress(["a"])
        with pytest.raises(UntrackedStepError) as exc_info:
            builder.compile()
        assert exc_info.value.node_ids == ["handler"]

    def test_step_channel_skips_node_id_check(self):
        schema = make_schema().define("current_step")
        builder = GraphBuilder(schema).add_node("a", noop).set_entry("a")
        builder.set_progress(["initial", "done"], step_channel="current_step")
        builder.validate()

    def test_definition_errors_share_a_base(self):
        builder = GraphBuilder(make_schema()).add_node("a", noop)
        with pytest.raises(GraphDefinitionError):
            builder.add_node("a", noop)

    def test_cycles_are_allowed(self):
        builder = GraphBuilder(make_schema())
        builder.add_node("work", noop).add_node("retry", noop)
        builder.add_edge(START, "work")
        builder.add_conditional_edge("work", check_error, {"error": "retry", "success": END})
        builder.add_edge("retry", "work")
        builder.validate()


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------
class TestCompile:
    def test_compiled_graph_shape(self):
        builder = GraphBuilder(make_schema(), graph_id="g")
        builder.add_node("a", noop).add_node("handler", noop).add_node("b", noop)
        builder.add_edge(START, "a")
        builder.add_conditional_edge("a", check_error, {"error": "handler", "success": "b"})
        builder.add_edge("handler", END)
        graph = builder.compile(max_steps=10)

        assert graph.id == "g"
        assert graph.entry_node == "a"
        assert graph.max_steps == 10
        assert set(graph.nodes) == {"a", "handler", "b"}
        assert isinstance(graph.get_outgoing_edge("a"), ConditionalEdgeSpec)
        assert graph.get_outgoing_edge("b") is None
        assert graph.successors("a") == ["handler", "b"]
        assert graph.successors("b") == [END]

    def test_compiled_graph_is_frozen(self):
        graph = GraphBuilder(make_schema()).add_node("a", noop).set_entry("a").compile()
        with pytest.raises(Exception):
            graph.entry_node = "b"

    def test_describe_lists_routes(self):
        builder = GraphBuilder(make_schema(), graph_id="g")
        builder.add_node("a", noop).add_node("handler", noop)
        builder.add_edge(START, "a")
        builder.add_conditional_edge("a", check_error, {"error": "handler", "success": END})
        text = builder.compile().describe()
        assert "Graph 'g'" in text
        assert "error -> handler" in text
        assert "handler -> __end__" in text

    def test_build_graph_from_mappings(self):
        graph = build_graph(
            make_schema(),
            nodes={"a": noop, "handler": noop},
            edges={
                "a": (check_error, {"error": "handler", "success": END}),
                "handler": END,
            },
            entry_node="a",
            graph_id="mapped",
        )
        assert graph.id == "mapped"
        assert graph.get_outgoing_edge("handler").target == END

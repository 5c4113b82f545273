"""Tests for node invocation, context injection and conditional edge resolution."""

import logging
from typing import Literal

import pytest

from stepgraph.errors import UnmappedOutcomeError
from stepgraph.graph.channels import Snapshot
from stepgraph.graph.edge import END, ConditionalEdgeSpec, EdgeSpec, outcomes_from_annotation
from stepgraph.graph.node import ErrorValue, NodeContext, NodeSpec


def make_context(**overrides) -> NodeContext:
    values = dict(
        session_id="s-1",
        node_id="n",
        graph_id="g",
        step=1,
        logger=logging.getLogger("test"),
    )
    values.update(overrides)
    return NodeContext(**values)


# ---------------------------------------------------------------------------
# NodeSpec
# ---------------------------------------------------------------------------
class TestNodeSpec:
    def test_single_parameter_gets_no_context(self):
        spec = NodeSpec.create("n", lambda snapshot: None)
        assert spec.accepts_context is False

    def test_context_parameter_detected(self):
        def node(snapshot, context):
            return None

        assert NodeSpec.create("n", node).accepts_context is True

    def test_defaulted_second_parameter_is_not_context(self):
        def node(snapshot, retries=3):
            return None

        assert NodeSpec.create("n", node).accepts_context is False

    def test_var_args_get_context(self):
        def node(*args):
            return None

        assert NodeSpec.create("n", node).accepts_context is True

    @pytest.mark.asyncio
    async def test_invoke_sync_and_async(self):
        def sync_node(snapshot):
            return {"a": snapshot["a"] + 1}

        async def async_node(snapshot, context):
            return {"session": context.session_id}

        snapshot = Snapshot({"a": 1})
        assert await NodeSpec.create("s", sync_node).invoke(snapshot, make_context()) == {"a": 2}
        assert await NodeSpec.create("a", async_node).invoke(snapshot, make_context()) == {
            "session": "s-1"
        }

    def test_context_cancel_flag(self):
        flag = {"cancelled": False}
        ctx = make_context(_is_cancelled=lambda: flag["cancelled"])
        assert ctx.cancel_requested is False
        flag["cancelled"] = True
        assert ctx.cancel_requested is True


# ---------------------------------------------------------------------------
# ErrorValue
# ---------------------------------------------------------------------------
def test_error_value_from_exception():
    try:
        raise KeyError("missing")
    except KeyError as e:
        error = ErrorValue.from_exception(e, origin_node="n")

    assert error.origin_node == "n"
    assert error.error_type == "KeyError"
    assert "missing" in error.message
    assert "Traceback" in error.details
    assert error.timestamp.tzinfo is not None


def test_error_value_message_falls_back_to_type():
    error = ErrorValue.from_exception(RuntimeError(), origin_node="n")
    assert error.message == "RuntimeError"


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------
def test_outcomes_from_literal_annotation():
    def decide(snapshot) -> Literal["x", "y"]:
        return "x"

    assert outcomes_from_annotation(decide) == ["x", "y"]
    assert outcomes_from_annotation(lambda s: "x") is None


def test_static_edge_targets():
    assert EdgeSpec(source="a", target=END).targets == [END]


class TestConditionalEdge:
    def test_resolve(self):
        edge = ConditionalEdgeSpec(
            source="a",
            decide=lambda s: "ok" if s["v"] else "retry",
            outcomes={"ok": END, "retry": "a"},
        )
        assert edge.resolve({"v": 1}) == ("ok", END)
        assert edge.resolve({"v": 0}) == ("retry", "a")
        assert edge.declared_outcomes == ["ok", "retry"]

    def test_unmapped_outcome(self):
        edge = ConditionalEdgeSpec(source="a", decide=lambda s: "other", outcomes={"ok": END})
        with pytest.raises(UnmappedOutcomeError) as exc_info:
            edge.resolve({})
        assert exc_info.value.source == "a"

    def test_non_string_outcome_is_unmapped(self):
        edge = ConditionalEdgeSpec(source="a", decide=lambda s: None, outcomes={"ok": END})
        with pytest.raises(UnmappedOutcomeError):
            edge.resolve({})

    def test_unmapped_outcomes_listed(self):
        def decide(snapshot) -> Literal["ok", "bad"]:
            return "ok"

        edge = ConditionalEdgeSpec(source="a", decide=decide, outcomes={"ok": END})
        assert edge.unmapped_outcomes() == ["bad"]

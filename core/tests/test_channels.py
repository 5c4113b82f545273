"""Tests for the channel schema: definition, defaults and merging."""

import pytest

from stepgraph.errors import DuplicateChannelError, InvalidUpdateError
from stepgraph.graph.channels import CLEAR, Channel, ChannelSchema, Snapshot, append, merge_dict


def make_schema() -> ChannelSchema:
    return (
        ChannelSchema()
        .define("topic", default_factory=str)
        .define("slides", default_factory=list)
        .define("messages", default_factory=list, reducer=append)
        .define("meta", default_factory=dict, reducer=merge_dict)
        .define("error")
    )


# ---------------------------------------------------------------------------
# Definition
# ---------------------------------------------------------------------------
class TestDefine:
    def test_define_is_chainable(self):
        schema = make_schema()
        assert schema.channel_names == ["topic", "slides", "messages", "meta", "error"]

    def test_duplicate_channel_rejected(self):
        schema = ChannelSchema().define("topic")
        with pytest.raises(DuplicateChannelError) as exc_info:
            schema.define("topic")
        assert exc_info.value.name == "topic"

    def test_duplicate_in_constructor_rejected(self):
        with pytest.raises(DuplicateChannelError):
            ChannelSchema([Channel("a"), Channel("a")])

    def test_contains_and_get(self):
        schema = make_schema()
        assert "slides" in schema
        assert "missing" not in schema
        assert schema.get("slides").name == "slides"
        assert schema.get("missing") is None


# ---------------------------------------------------------------------------
# Initial state
# ---------------------------------------------------------------------------
class TestInitialState:
    def test_every_channel_at_default(self):
        state = make_schema().initial_state()
        assert state == {
            "topic": "",
            "slides": [],
            "messages": [],
            "meta": {},
            "error": None,
        }

    def test_default_factory_called_per_state(self):
        schema = make_schema()
        first = schema.initial_state()
        second = schema.initial_state()
        assert first["slides"] is not second["slides"]

    def test_snapshot_is_read_only(self):
        state = make_schema().initial_state()
        with pytest.raises(TypeError):
            state["topic"] = "x"
        with pytest.raises(TypeError):
            state.topic = "x"


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------
class TestMerge:
    def test_empty_update_is_noop(self):
        schema = make_schema()
        state = schema.merge(schema.initial_state(), {"topic": "solar"})
        assert schema.merge(state, {}) == state

    def test_none_update_is_noop(self):
        schema = make_schema()
        state = schema.initial_state()
        assert schema.merge(state, None) == state

    def test_only_present_keys_change(self):
        schema = make_schema()
        state = schema.merge(schema.initial_state(), {"topic": "solar", "slides": [1]})
        state = schema.merge(state, {"slides": [2]})
        assert state["topic"] == "solar"
        assert state["slides"] == [2]

    def test_none_value_keeps_previous(self):
        schema = make_schema()
        state = schema.merge(schema.initial_state(), {"topic": "solar"})
        state = schema.merge(state, {"topic": None})
        assert state["topic"] == "solar"

    def test_inputs_not_mutated(self):
        schema = make_schema()
        state = schema.initial_state()
        update = {"slides": [1, 2]}
        merged = schema.merge(state, update)
        assert state["slides"] == []
        assert update == {"slides": [1, 2]}
        assert merged is not state
        assert isinstance(merged, Snapshot)

    def test_append_reducer(self):
        schema = make_schema()
        state = schema.merge(schema.initial_state(), {"messages": ["hi"]})
        state = schema.merge(state, {"messages": ["there", "you"]})
        state = schema.merge(state, {"messages": "!"})
        assert state["messages"] == ["hi", "there", "you", "!"]

    def test_merge_dict_reducer(self):
        schema = make_schema()
        state = schema.merge(schema.initial_state(), {"meta": {"a": 1, "b": 1}})
        state = schema.merge(state, {"meta": {"b": 2}})
        assert state["meta"] == {"a": 1, "b": 2}

    def test_unknown_channel_rejected(self):
        schema = make_schema()
        with pytest.raises(InvalidUpdateError, match="undefined channels"):
            schema.merge(schema.initial_state(), {"nope": 1})

    def test_non_mapping_rejected(self):
        schema = make_schema()
        with pytest.raises(InvalidUpdateError, match="must be a mapping"):
            schema.merge(schema.initial_state(), ["topic"])

    def test_merge_from_plain_dict(self):
        schema = make_schema()
        merged = schema.merge({"topic": "a"}, {"slides": [1]})
        assert merged["topic"] == "a"
        assert merged["slides"] == [1]

    def test_clear_resets_to_default(self):
        schema = make_schema()
        state = schema.merge(
            schema.initial_state(),
            {"topic": "solar", "messages": ["hi"], "error": "boom"},
        )
        state = schema.merge(state, {"topic": CLEAR, "messages": CLEAR, "error": CLEAR})
        assert state["topic"] == ""
        assert state["messages"] == []
        assert state["error"] is None

    def test_clear_leaves_other_channels(self):
        schema = make_schema()
        state = schema.merge(schema.initial_state(), {"topic": "solar", "error": "boom"})
        state = schema.merge(state, {"error": CLEAR})
        assert state["topic"] == "solar"

    def test_to_dict_is_a_copy(self):
        schema = make_schema()
        state = schema.initial_state()
        copy = state.to_dict()
        copy["topic"] = "changed"
        assert state["topic"] == ""

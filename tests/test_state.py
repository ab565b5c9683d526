"""Tests for maker.state — initial state and step merging."""

from __future__ import annotations

from maker.state import HISTORY_LIMIT, initial_state, merge_step


class TestInitialState:
    def test_fields(self):
        assert initial_state("Add 10 then double") == {
            "original_task": "Add 10 then double",
            "history": [],
        }


class TestMergeStep:
    def test_scalar_goes_to_current_value(self):
        state = merge_step(initial_state("t"), 10)
        assert state["current_value"] == 10
        assert state["history"] == [10]

    def test_list_goes_to_current_value(self):
        state = merge_step(initial_state("t"), [1, 2])
        assert state["current_value"] == [1, 2]

    def test_mapping_fields_are_merged(self):
        state = merge_step(initial_state("t"), {"rate": 0.92})
        state = merge_step(state, {"rate": 0.93, "currency": "EUR"})
        assert state["rate"] == 0.93
        assert state["currency"] == "EUR"
        assert "current_value" not in state

    def test_mapping_keeps_previous_current_value(self):
        state = merge_step(initial_state("t"), 10)
        state = merge_step(state, {"label": "ten"})
        assert state["current_value"] == 10
        assert state["label"] == "ten"

    def test_original_task_never_overwritten(self):
        state = merge_step(
            initial_state("real task"),
            {"original_task": "hijacked", "history": "gone"},
        )
        assert state["original_task"] == "real task"
        assert state["history"] == [{"original_task": "hijacked", "history": "gone"}]

    def test_history_keeps_last_five(self):
        state = initial_state("t")
        for value in range(8):
            state = merge_step(state, value)
        assert HISTORY_LIMIT == 5
        assert state["history"] == [3, 4, 5, 6, 7]
        assert state["current_value"] == 7

    def test_previous_state_untouched(self):
        before = initial_state("t")
        after = merge_step(before, {"x": 1})
        assert before == {"original_task": "t", "history": []}
        assert after is not before

    def test_value_is_copied(self):
        value = {"items": [1]}
        state = merge_step(initial_state("t"), value)
        value["items"].append(2)
        assert state["items"] == [1]
        assert state["history"] == [{"items": [1]}]

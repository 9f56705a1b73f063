"""Tests for issueres/engine/types.py - state reducer and conversion."""

from datetime import datetime

import pytest

from issueres.engine.types import (
    PauseContext,
    WorkflowState,
    append_log,
    merge_state,
    state_from_dict,
    state_to_dict,
)
from issueres.enums import TurnRole, WorkflowStatus
from issueres.models.domain import (
    ActionCall,
    PatchCandidate,
    Plan,
    RelevantFile,
    ResearchTurn,
)


class TestMergeState:
    """Tests for the last-write-wins reducer."""

    def test_replaces_only_given_fields(self):
        """Should keep fields the update does not mention."""
        state = WorkflowState(logs=["a"], research_loop_count=2)

        merged = merge_state(state, {"status": WorkflowStatus.PLANNING.value})

        assert merged.status == WorkflowStatus.PLANNING
        assert merged.logs == ["a"]
        assert merged.research_loop_count == 2

    def test_sequences_are_replaced_not_concatenated(self):
        """Should take the update's list as the new value."""
        state = WorkflowState(logs=["a", "b"])

        merged = merge_state(state, {"logs": ["c"]})

        assert merged.logs == ["c"]

    def test_does_not_mutate_input(self):
        """Should return a new state and leave the input untouched."""
        state = WorkflowState()

        merged = merge_state(state, {"error": "boom"})

        assert merged is not state
        assert state.error is None

    def test_explicit_none_clears_field(self):
        """Should apply None values present in the update."""
        state = WorkflowState(
            pause_reason="QUOTA_EXHAUSTED",
            pause_context=PauseContext("PLANNING", 1, "quota", "2024-01-15T10:30:00"),
        )

        merged = merge_state(state, {"pause_reason": None, "pause_context": None})

        assert merged.pause_reason is None
        assert merged.pause_context is None

    def test_empty_update_is_identity(self):
        """Should produce an equal state for an empty update."""
        state = WorkflowState(logs=["x"])

        assert merge_state(state, {}) == state

    def test_unknown_field_rejected(self):
        """Should refuse fields the state does not have."""
        with pytest.raises(KeyError, match="bogus"):
            merge_state(WorkflowState(), {"bogus": 1})  # type: ignore[typeddict-unknown-key]


class TestAppendLog:
    """Tests for append_log."""

    def test_returns_new_list(self):
        """Should append without touching the state's log."""
        state = WorkflowState(logs=["a"])

        logs = append_log(state, "b", "c")

        assert logs == ["a", "b", "c"]
        assert state.logs == ["a"]


class TestStateConversion:
    """Tests for state_to_dict and state_from_dict."""

    def test_full_state_survives_conversion(self, sample_issue):
        """Should rebuild an equal state from its dict form."""
        state = WorkflowState(
            status=WorkflowStatus.PAUSED_QUOTA.value,
            issue=sample_issue,
            logs=["one", "two"],
            relevant_files=[RelevantFile(path="a.py", reason="Read by research agent", content="A")],
            plan=Plan(analysis="why", steps=["s1"]),
            patches=[PatchCandidate(file="a.py", original_content="A", new_content="B", explanation="e")],
            research_history=[
                ResearchTurn(role=TurnRole.USER, text="go"),
                ResearchTurn(
                    role=TurnRole.MODEL,
                    action_calls=[ActionCall(name="read_file", arguments={"path": "a.py"}, id="c1")],
                ),
                ResearchTurn(role=TurnRole.TOOL, call_id="c1", action_name="read_file", result="A"),
            ],
            research_loop_count=1,
            last_completed_checkpoint=WorkflowStatus.RESEARCH_TOOL.value,
            pause_reason="QUOTA_EXHAUSTED",
            pause_context=PauseContext("RESEARCH_DECISION", 2, "quota", "2024-01-15T10:30:00"),
            interactive=False,
        )

        assert state_from_dict(state_to_dict(state)) == state

    def test_dict_uses_plain_values(self, sample_issue):
        """Should emit strings for enums and datetimes."""
        data = state_to_dict(WorkflowState(issue=sample_issue))

        assert data["status"] == "IDLE"
        assert data["issue"]["state"] == "open"
        assert data["issue"]["created_at"] == datetime(2024, 1, 15, 10, 30).isoformat()
        assert data["plan"] is None
        assert data["pause_context"] is None

    def test_missing_fields_take_defaults(self):
        """Should tolerate documents written with fewer fields."""
        state = state_from_dict({"status": "PLANNING"})

        assert state.status == WorkflowStatus.PLANNING
        assert state.logs == []
        assert state.interactive is True
        assert state.issue is None
        assert state.research_loop_count == 0

"""Tests for issueres/engine/graph.py - the graph executor."""

import httpx
import pytest

from issueres.engine.graph import END, StateGraph
from issueres.engine.types import PauseContext, WorkflowState
from issueres.enums import PauseReason, WorkflowStatus
from issueres.exceptions import ExternalServiceError, GraphError, RateLimitError


def logging_node(name: str):
    """Node that appends its own name to the log."""

    async def node(state: WorkflowState):
        return {"logs": [*state.logs, name]}

    return node


def failing_node(error: Exception):
    async def node(state: WorkflowState):
        raise error

    return node


def linear_graph(*names: str, interrupt_before: tuple[str, ...] = ()) -> StateGraph:
    graph = StateGraph()
    for name in names:
        graph.add_node(name, logging_node(name))
    for source, target in zip(names, names[1:]):
        graph.add_edge(source, target)
    graph.set_entry_point(names[0])
    graph.set_interrupt_before(interrupt_before)
    return graph


class Recorder:
    """Listener that keeps every emitted state."""

    def __init__(self) -> None:
        self.states: list[WorkflowState] = []

    def __call__(self, state: WorkflowState) -> None:
        self.states.append(state)

    @property
    def statuses(self) -> list[str]:
        return [str(s.status) for s in self.states]


class TestStateGraphBuilder:
    """Tests for graph construction."""

    def test_compile_without_entry_point_fails(self):
        """Should refuse to compile a graph with no entry point."""
        graph = StateGraph().add_node("A", logging_node("A"))

        with pytest.raises(GraphError):
            graph.compile()

    def test_compile_does_not_validate_edges(self):
        """Should accept edges to unknown nodes until run time."""
        graph = StateGraph().add_node("A", logging_node("A")).add_edge("A", "MISSING")
        graph.set_entry_point("A")

        compiled = graph.compile()

        assert compiled.edges["A"] == "MISSING"

    def test_enum_names_are_normalized(self):
        """Should key nodes by the status value."""
        graph = StateGraph().add_node(WorkflowStatus.PLANNING, logging_node("p"))
        graph.set_entry_point(WorkflowStatus.PLANNING)

        compiled = graph.compile()

        assert "PLANNING" in compiled.nodes
        assert compiled.entry_point == "PLANNING"


class TestInvokeHappyPath:
    """Tests for runs that complete."""

    @pytest.mark.asyncio
    async def test_runs_nodes_in_order_and_completes(self):
        """Should run every node and end COMPLETED."""
        recorder = Recorder()
        final = await linear_graph("A", "B", "C").compile().invoke(WorkflowState(), recorder)

        assert final.logs == ["A", "B", "C"]
        assert final.status == WorkflowStatus.COMPLETED
        assert final.last_completed_checkpoint == "C"
        assert recorder.states[-1] is final

    @pytest.mark.asyncio
    async def test_entering_emission_precedes_completion_emission(self):
        """Should announce each node before its update is visible."""
        recorder = Recorder()
        await linear_graph("A", "B").compile().invoke(WorkflowState(), recorder)

        assert recorder.statuses == ["A", "A", "B", "B", "COMPLETED"]
        entering_a, completed_a = recorder.states[0], recorder.states[1]
        assert entering_a.logs == []
        assert entering_a.last_completed_checkpoint is None
        assert completed_a.logs == ["A"]
        assert completed_a.last_completed_checkpoint == "A"

    @pytest.mark.asyncio
    async def test_emitted_states_are_distinct_snapshots(self):
        """Should never mutate a state that was already emitted."""
        recorder = Recorder()
        await linear_graph("A", "B").compile().invoke(WorkflowState(), recorder)

        assert recorder.states[0].status == "A"
        assert len({id(s) for s in recorder.states}) == len(recorder.states)

    @pytest.mark.asyncio
    async def test_conditional_edge_uses_post_update_state(self):
        """Should call the decision function with the merged state."""
        seen: list[list[str]] = []

        def decide(state: WorkflowState) -> str:
            seen.append(list(state.logs))
            return "B" if len(state.logs) < 3 else END

        graph = StateGraph()
        graph.add_node("A", logging_node("A")).add_node("B", logging_node("B"))
        graph.add_edge("A", decide).add_edge("B", "A").set_entry_point("A")

        final = await graph.compile().invoke(WorkflowState(), lambda s: None)

        assert final.logs == ["A", "B", "A"]
        assert seen == [["A"], ["A", "B", "A"]]
        assert final.status == WorkflowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_node_returning_none_changes_nothing(self):
        """Should treat a None update as an empty one."""

        async def quiet(state: WorkflowState):
            return None

        graph = StateGraph().add_node("A", quiet).set_entry_point("A")
        final = await graph.compile().invoke(WorkflowState(logs=["x"]), lambda s: None)

        assert final.logs == ["x"]
        assert final.status == WorkflowStatus.COMPLETED


class TestInterrupts:
    """Tests for interrupt-before points."""

    @pytest.mark.asyncio
    async def test_stops_before_interrupt_node_on_first_arrival(self):
        """Should set status to the interrupt node and return without running it."""
        recorder = Recorder()
        graph = linear_graph("A", "REVIEW", "C", interrupt_before=("REVIEW",)).compile()

        final = await graph.invoke(WorkflowState(), recorder)

        assert final.status == "REVIEW"
        assert final.logs == ["A"]
        assert final.last_completed_checkpoint == "A"
        assert recorder.statuses[-1] == "REVIEW"

    @pytest.mark.asyncio
    async def test_reentry_with_matching_status_passes_interrupt(self):
        """Should run the interrupt node when status already names it."""
        graph = linear_graph("A", "REVIEW", "C", interrupt_before=("REVIEW",)).compile()
        paused = await graph.invoke(WorkflowState(), lambda s: None)

        final = await graph.invoke(paused, lambda s: None)

        assert final.logs == ["A", "REVIEW", "C"]
        assert final.status == WorkflowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_start_at_jumps_to_node(self):
        """Should run only from the given node onwards."""
        graph = linear_graph("A", "B", "C").compile()

        final = await graph.invoke(WorkflowState(), lambda s: None, start_at="C")

        assert final.logs == ["C"]
        assert final.status == WorkflowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_start_at_clears_pause_fields(self):
        """Should drop a stale pause before running the jumped-to node."""
        graph = linear_graph("A", "B").compile()
        paused = WorkflowState(
            status=WorkflowStatus.PAUSED_QUOTA.value,
            pause_reason=PauseReason.QUOTA_EXHAUSTED.value,
            pause_context=PauseContext(
                step_name="A", attempt_count=2, last_error="quota", timestamp="t"
            ),
        )
        recorder = Recorder()

        final = await graph.invoke(paused, recorder, start_at="B")

        assert final.status == WorkflowStatus.COMPLETED
        assert final.logs == ["B"]
        assert final.pause_reason is None
        assert final.pause_context is None
        assert recorder.states[0].pause_context is None
        assert recorder.statuses[0] == WorkflowStatus.PAUSED_QUOTA

    @pytest.mark.asyncio
    async def test_start_at_failure_after_pause_has_no_pause_fields(self):
        """Should fail a jumped-to node without carrying the earlier pause."""
        graph = StateGraph()
        graph.add_node("A", logging_node("A")).add_node("B", failing_node(ValueError("boom")))
        graph.set_entry_point("A")
        paused = WorkflowState(
            status=WorkflowStatus.PAUSED_QUOTA.value,
            pause_reason=PauseReason.QUOTA_EXHAUSTED.value,
            pause_context=PauseContext(
                step_name="B", attempt_count=1, last_error="quota", timestamp="t"
            ),
        )

        final = await graph.compile().invoke(paused, lambda s: None, start_at="B")

        assert final.status == WorkflowStatus.FAILED
        assert final.pause_reason is None
        assert final.pause_context is None


class TestFailures:
    """Tests for node failures."""

    @pytest.mark.asyncio
    async def test_generic_error_fails_run(self):
        """Should record the message and mark the run FAILED."""
        graph = StateGraph()
        graph.add_node("A", logging_node("A")).add_node("B", failing_node(ValueError("boom")))
        graph.add_edge("A", "B").set_entry_point("A")
        recorder = Recorder()

        final = await graph.compile().invoke(WorkflowState(), recorder)

        assert final.status == WorkflowStatus.FAILED
        assert final.error == "boom"
        assert final.last_completed_checkpoint == "A"
        assert final.pause_context is None
        assert recorder.statuses == ["A", "A", "B", "FAILED"]

    @pytest.mark.asyncio
    async def test_unknown_node_fails_at_run_time(self):
        """Should fail with a clear message when an edge names a missing node."""
        graph = StateGraph().add_node("A", logging_node("A")).add_edge("A", "GHOST")
        graph.set_entry_point("A")

        final = await graph.compile().invoke(WorkflowState(), lambda s: None)

        assert final.status == WorkflowStatus.FAILED
        assert "GHOST" in final.error

    @pytest.mark.asyncio
    async def test_rate_limit_error_pauses_run(self):
        """Should pause with QUOTA_EXHAUSTED instead of failing."""
        graph = StateGraph().add_node("A", failing_node(RateLimitError("slow down")))
        graph.set_entry_point("A")

        final = await graph.compile().invoke(WorkflowState(), lambda s: None)

        assert final.status == WorkflowStatus.PAUSED_QUOTA
        assert final.pause_reason == PauseReason.QUOTA_EXHAUSTED
        assert final.pause_context.step_name == "A"
        assert final.pause_context.attempt_count == 1
        assert "slow down" in final.pause_context.last_error
        assert final.error is None

    @pytest.mark.asyncio
    async def test_http_429_pauses_run(self):
        """Should classify an httpx 429 as a quota pause."""
        request = httpx.Request("POST", "http://model.test/v1/chat/completions")
        response = httpx.Response(429, request=request)
        error = httpx.HTTPStatusError("Too Many Requests", request=request, response=response)
        graph = StateGraph().add_node("A", failing_node(error)).set_entry_point("A")

        final = await graph.compile().invoke(WorkflowState(), lambda s: None)

        assert final.status == WorkflowStatus.PAUSED_QUOTA

    @pytest.mark.asyncio
    async def test_decision_error_fails_run(self):
        """Should treat a failing decision function like a failing node."""

        def broken(state: WorkflowState) -> str:
            raise ExternalServiceError("decision exploded")

        graph = StateGraph().add_node("A", logging_node("A")).add_edge("A", broken)
        graph.set_entry_point("A")

        final = await graph.compile().invoke(WorkflowState(), lambda s: None)

        assert final.status == WorkflowStatus.FAILED
        assert final.error == "decision exploded"


class TestResumePositioning:
    """Tests for re-entering a graph from a stored state."""

    @pytest.mark.asyncio
    async def test_paused_step_is_retried(self):
        """Should resume at the paused step and clear the pause."""
        state = WorkflowState(
            status=WorkflowStatus.PAUSED_QUOTA.value,
            last_completed_checkpoint="A",
            pause_reason=PauseReason.QUOTA_EXHAUSTED.value,
            pause_context=PauseContext("B", 1, "quota", "2024-01-15T10:30:00+00:00"),
        )
        recorder = Recorder()

        final = await linear_graph("A", "B", "C").compile().invoke(state, recorder)

        assert final.logs == ["B", "C"]
        assert recorder.states[0].pause_context is None
        assert recorder.states[0].pause_reason is None
        assert final.pause_context is None

    @pytest.mark.asyncio
    async def test_checkpoint_resumes_at_fixed_successor(self):
        """Should continue after the last completed step."""
        state = WorkflowState(last_completed_checkpoint="A")

        final = await linear_graph("A", "B", "C").compile().invoke(state, lambda s: None)

        assert final.logs == ["B", "C"]

    @pytest.mark.asyncio
    async def test_checkpoint_on_decision_edge_is_reevaluated(self):
        """Should ask the decision function where to go after the checkpoint."""
        graph = StateGraph()
        graph.add_node("A", logging_node("A")).add_node("B", logging_node("B"))
        graph.add_node("C", logging_node("C"))
        graph.add_edge("A", lambda s: "C").set_entry_point("A")

        final = await graph.compile().invoke(
            WorkflowState(last_completed_checkpoint="A"), lambda s: None
        )

        assert final.logs == ["C"]

    @pytest.mark.asyncio
    async def test_checkpoint_without_edge_completes(self):
        """Should complete immediately when the checkpoint was the last step."""
        state = WorkflowState(last_completed_checkpoint="C", logs=["done"])

        final = await linear_graph("A", "B", "C").compile().invoke(state, lambda s: None)

        assert final.logs == ["done"]
        assert final.status == WorkflowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_paused_step_falls_back_to_checkpoint(self):
        """Should ignore a pause context that names no node."""
        state = WorkflowState(
            last_completed_checkpoint="A",
            pause_context=PauseContext("GONE", 1, "quota", "2024-01-15T10:30:00+00:00"),
        )

        final = await linear_graph("A", "B").compile().invoke(state, lambda s: None)

        assert final.logs == ["B"]

    @pytest.mark.asyncio
    async def test_repeated_pause_at_same_step_counts_attempts(self):
        """Should increment the attempt count for consecutive pauses on one step."""
        graph = StateGraph().add_node("A", failing_node(RateLimitError("quota")))
        graph.set_entry_point("A")
        compiled = graph.compile()

        first = await compiled.invoke(WorkflowState(), lambda s: None)
        second = await compiled.invoke(first, lambda s: None)
        third = await compiled.invoke(second, lambda s: None)

        assert first.pause_context.attempt_count == 1
        assert second.pause_context.attempt_count == 2
        assert third.pause_context.attempt_count == 3

    @pytest.mark.asyncio
    async def test_pause_after_progress_restarts_attempt_count(self):
        """Should reset the attempt count once the paused step succeeds."""
        calls = {"B": 0}

        async def flaky(state: WorkflowState):
            calls["B"] += 1
            if calls["B"] == 2:
                return {"logs": [*state.logs, "B"]}
            raise RateLimitError("quota")

        graph = StateGraph()
        graph.add_node("A", logging_node("A")).add_node("B", flaky).add_node("C", flaky)
        graph.add_edge("A", "B").add_edge("B", "C").set_entry_point("A")
        compiled = graph.compile()

        first = await compiled.invoke(WorkflowState(), lambda s: None)
        second = await compiled.invoke(first, lambda s: None)

        assert first.pause_context.step_name == "B"
        assert second.pause_context.step_name == "C"
        assert second.pause_context.attempt_count == 1

"""
Issue-resolution workflow.

This module wires the node bodies of ``issueres.engine.nodes`` into a graph
and exposes the lifecycle API a host uses to drive one issue:

- ``start``: run a fresh workflow from the research loop
- ``resume``: continue a run paused on a rate limit
- ``submit_decision``: approve the generated patches or request changes
- ``subscribe``: observe every intermediate state

Graph:
    RESEARCH_DECISION -> RESEARCH_TOOL | PLANNING | RESEARCH_DECISION
    RESEARCH_TOOL     -> RESEARCH_DECISION
    PLANNING          -> GENERATING_FIX
    GENERATING_FIX    -> AWAITING_HUMAN   (interrupt point when interactive)
    AWAITING_HUMAN    -> CREATING_PR
    CREATING_PR       -> end

Lifecycle methods never raise for node failures; callers inspect
``state.status`` and ``state.error``.

Example:
    >>> workflow = IssueWorkflow(repository, model)
    >>> unsubscribe = workflow.subscribe(lambda s: print(s.status))
    >>> state = await workflow.start(issue)
    >>> if state.status == WorkflowStatus.AWAITING_HUMAN:
    ...     state = await workflow.submit_decision(approved=True)
"""

from collections.abc import Callable

import structlog

from issueres.engine.graph import CompiledGraph, StateGraph, StateListener
from issueres.engine.nodes import (
    DEFAULT_RESEARCH_LOOP_LIMIT,
    DEFAULT_RESEARCH_TURN_LIMIT,
    WorkflowNodes,
)
from issueres.engine.types import WorkflowState, append_log, merge_state
from issueres.enums import WorkflowStatus
from issueres.models.domain import Issue
from issueres.providers.base import ModelProvider, RepositoryProvider

log = structlog.get_logger(__name__)


class IssueWorkflow:
    """Drive the resolution of one issue through the workflow graph.

    One instance owns one ``WorkflowState``. Calls on the same instance must
    be serialized by the host; distinct instances are independent.

    Args:
        repository: Repository access collaborator
        model: Generative model collaborator
        state: Previously persisted state to continue from
        interactive: Stop for human review before publishing. Headless runs
            publish without stopping.
        research_loop_limit: Tool rounds allowed before planning is forced
        research_turn_limit: Model turns allowed before planning is forced
    """

    def __init__(
        self,
        repository: RepositoryProvider,
        model: ModelProvider,
        state: WorkflowState | None = None,
        interactive: bool = True,
        research_loop_limit: int = DEFAULT_RESEARCH_LOOP_LIMIT,
        research_turn_limit: int = DEFAULT_RESEARCH_TURN_LIMIT,
    ) -> None:
        self.nodes = WorkflowNodes(
            repository,
            model,
            research_loop_limit=research_loop_limit,
            research_turn_limit=research_turn_limit,
        )
        self.interactive = interactive
        self.state = state or WorkflowState()
        self._listeners: list[StateListener] = []
        self.graph = self._build_graph()

    def _build_graph(self) -> CompiledGraph:
        graph = StateGraph(merge_state)
        graph.add_node(WorkflowStatus.RESEARCH_DECISION, self.nodes.research_decision)
        graph.add_node(WorkflowStatus.RESEARCH_TOOL, self.nodes.research_tool)
        graph.add_node(WorkflowStatus.PLANNING, self.nodes.planning)
        graph.add_node(WorkflowStatus.GENERATING_FIX, self.nodes.generating_fix)
        graph.add_node(WorkflowStatus.AWAITING_HUMAN, self.nodes.awaiting_human)
        graph.add_node(WorkflowStatus.CREATING_PR, self.nodes.creating_pr)

        graph.set_entry_point(WorkflowStatus.RESEARCH_DECISION)
        graph.add_edge(WorkflowStatus.RESEARCH_DECISION, self.nodes.route_research)
        graph.add_edge(WorkflowStatus.RESEARCH_TOOL, WorkflowStatus.RESEARCH_DECISION)
        graph.add_edge(WorkflowStatus.PLANNING, WorkflowStatus.GENERATING_FIX)
        graph.add_edge(WorkflowStatus.GENERATING_FIX, WorkflowStatus.AWAITING_HUMAN)
        graph.add_edge(WorkflowStatus.AWAITING_HUMAN, WorkflowStatus.CREATING_PR)

        if self.interactive:
            graph.set_interrupt_before([WorkflowStatus.AWAITING_HUMAN])

        return graph.compile()

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener and deliver the current state to it immediately.

        Listeners are called synchronously, in registration order, with the
        same state object.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)
        listener(self.state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _broadcast(self, state: WorkflowState) -> None:
        self.state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                # A broken observer must not abort the run it is observing.
                log.exception("workflow_listener_failed", status=str(state.status))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, issue: Issue) -> WorkflowState:
        """Run a fresh workflow for an issue.

        Any previous progress on this instance is discarded.
        """
        log.info("workflow_started", issue=issue.number, interactive=self.interactive)
        initial = WorkflowState(
            status=WorkflowStatus.RESEARCH_DECISION.value,
            issue=issue,
            logs=[f"Starting Iterative Research for #{issue.number}..."],
            interactive=self.interactive,
        )
        self._broadcast(initial)
        return await self.graph.invoke(initial, self._broadcast)

    async def resume(self) -> WorkflowState:
        """Continue the current run.

        A quota-paused run retries the step that paused. A run stopped for
        review continues into publishing only when its status already names
        the review node. Completed and failed runs are left as they are.
        """
        state = self.state
        if state.issue is None:
            log.warning("workflow_resume_without_issue")
            return state
        if WorkflowStatus(state.status).is_terminal:
            log.warning("workflow_resume_terminal", issue=state.issue.number, status=state.status)
            return state

        if state.status == WorkflowStatus.PAUSED_QUOTA and state.pause_context:
            pause = state.pause_context
            log.info(
                "workflow_resumed",
                issue=state.issue.number,
                step=pause.step_name,
                attempt=pause.attempt_count + 1,
            )
            state = merge_state(
                state,
                {
                    "logs": append_log(
                        state,
                        f"[System] Resuming {pause.step_name} "
                        f"(attempt {pause.attempt_count + 1})...",
                    )
                },
            )
            self._broadcast(state)

        return await self.graph.invoke(state, self._broadcast)

    async def submit_decision(self, approved: bool, feedback: str | None = None) -> WorkflowState:
        """Record the human review of the generated patches.

        Rejection fails the run with the feedback as its error and contacts no
        collaborator. Approval goes straight to publishing, never re-running
        earlier steps.
        """
        state = self.state
        issue_number = state.issue.number if state.issue else None

        if not approved:
            log.info("workflow_rejected", issue=issue_number)
            self._broadcast(
                merge_state(
                    state,
                    {
                        "status": WorkflowStatus.FAILED.value,
                        "error": f"Feedback: {feedback}",
                        "logs": append_log(state, f"[Human] Changes requested: {feedback}"),
                        "pause_reason": None,
                        "pause_context": None,
                    },
                )
            )
            return self.state

        if state.status != WorkflowStatus.AWAITING_HUMAN:
            log.warning("workflow_approved_outside_review", issue=issue_number, status=state.status)
        log.info("workflow_approved", issue=issue_number)

        # Pause fields only describe a PAUSED_QUOTA status and the jump skips positioning.
        state = merge_state(
            state,
            {
                "logs": append_log(state, "[Human] Approved. Creating PR..."),
                "pause_reason": None,
                "pause_context": None,
            },
        )
        self._broadcast(state)
        return await self.graph.invoke(
            state, self._broadcast, start_at=WorkflowStatus.CREATING_PR.value
        )

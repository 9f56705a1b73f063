"""
Directed-graph executor for workflow runs.

A ``StateGraph`` is a set of named nodes, the edges between them, one entry
point and an optional set of interrupt points. Compiling it yields a
``CompiledGraph`` whose ``invoke`` walks the graph over a ``WorkflowState``,
emitting every intermediate state to a listener.

Run Loop:
    1. Resume positioning, when the state carries a checkpoint or pause
       context: re-enter at the paused step, or at the successor of the last
       completed step.
    2. Stop before an interrupt node unless ``status`` already names it.
    3. Announce the node (status = node name), run it, merge its update and
       stamp the checkpoint.
    4. Follow the node's edge; a missing edge ends the run as COMPLETED.

Node failures never propagate out of ``invoke``. Rate-limit failures pause
the run as PAUSED_QUOTA; all others mark it FAILED.

Example:
    >>> graph = StateGraph()
    >>> graph.add_node("FETCH", fetch).add_node("REPORT", report)
    >>> graph.add_edge("FETCH", "REPORT")
    >>> graph.set_entry_point("FETCH")
    >>> final = await graph.compile().invoke(state, on_change=print)
"""

from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime

import structlog

from issueres.engine.recovery import ErrorKind, classify_error
from issueres.engine.types import PauseContext, StateUpdate, WorkflowState, merge_state
from issueres.enums import PauseReason, WorkflowStatus
from issueres.exceptions import GraphError

log = structlog.get_logger(__name__)

END = "__end__"
"""Terminal marker; an edge pointing here completes the run."""

NodeAction = Callable[[WorkflowState], Awaitable[StateUpdate | None]]
EdgeDecision = Callable[[WorkflowState], str]
Reducer = Callable[[WorkflowState, StateUpdate], WorkflowState]
StateListener = Callable[[WorkflowState], None]


class StateGraph:
    """Builder for a workflow graph.

    Nothing is validated here: an edge or entry point that names a missing
    node fails when the engine reaches it.
    """

    def __init__(self, reducer: Reducer = merge_state) -> None:
        self._reducer = reducer
        self._nodes: dict[str, NodeAction] = {}
        self._edges: dict[str, str | EdgeDecision] = {}
        self._entry_point: str | None = None
        self._interrupt_before: frozenset[str] = frozenset()

    def add_node(self, name: str, action: NodeAction) -> "StateGraph":
        """Register a node body under a name."""
        self._nodes[str(name)] = action
        return self

    def add_edge(self, source: str, target: str | EdgeDecision) -> "StateGraph":
        """Connect a node to a fixed successor or to a decision function.

        Args:
            source: Node the edge leaves from
            target: Successor node name, ``END``, or a function of the
                post-update state returning one of those
        """
        self._edges[str(source)] = target if callable(target) else str(target)
        return self

    def set_entry_point(self, name: str) -> "StateGraph":
        self._entry_point = str(name)
        return self

    def set_interrupt_before(self, names: Iterable[str]) -> "StateGraph":
        """Mark nodes the engine must stop in front of on first arrival."""
        self._interrupt_before = frozenset(str(n) for n in names)
        return self

    def compile(self) -> "CompiledGraph":
        if self._entry_point is None:
            raise GraphError("Graph has no entry point")
        return CompiledGraph(
            nodes=dict(self._nodes),
            edges=dict(self._edges),
            entry_point=self._entry_point,
            interrupt_before=self._interrupt_before,
            reducer=self._reducer,
        )


class CompiledGraph:
    """Executable graph produced by ``StateGraph.compile``."""

    def __init__(
        self,
        nodes: dict[str, NodeAction],
        edges: dict[str, str | EdgeDecision],
        entry_point: str,
        interrupt_before: frozenset[str],
        reducer: Reducer,
    ) -> None:
        self.nodes = nodes
        self.edges = edges
        self.entry_point = entry_point
        self.interrupt_before = interrupt_before
        self._reducer = reducer

    async def invoke(
        self,
        state: WorkflowState,
        on_change: StateListener,
        start_at: str | None = None,
    ) -> WorkflowState:
        """Run the graph until it completes, pauses, fails or hits an interrupt.

        ``on_change`` is called synchronously with every new state, in the
        order the changes happen, before this coroutine returns.

        Args:
            state: State to run on
            on_change: Listener for every intermediate state
            start_at: Enter this node directly, skipping resume positioning.
                Used to jump past an interrupt without replaying earlier nodes.

        Returns:
            The final state
        """

        def apply(update: StateUpdate) -> None:
            nonlocal state
            state = self._reducer(state, update)
            on_change(state)

        prior_pause = state.pause_context

        if start_at is not None:
            current = str(start_at)
            if state.pause_reason or state.pause_context:
                apply({"pause_reason": None, "pause_context": None})
        elif state.last_completed_checkpoint or state.pause_context:
            try:
                current = self._resume_point(state)
            except Exception as e:
                apply(self._failure(state.status, e))
                return state
            log.info(
                "graph_resume_positioned",
                checkpoint=state.last_completed_checkpoint,
                resume_at=current,
            )
            apply({"pause_reason": None, "pause_context": None})
        else:
            current = self.entry_point

        while current != END:
            if current in self.interrupt_before and state.status != current:
                log.info("graph_interrupted", node=current)
                apply({"status": current})
                return state

            action = self.nodes.get(current)
            if action is None:
                apply(self._failure(current, GraphError(f"Node '{current}' not found in graph")))
                return state

            log.debug("graph_node_started", node=current)
            apply({"status": current})

            try:
                update = await action(state)
                state = self._reducer(state, update or {})
                apply({"last_completed_checkpoint": current})
                log.debug("graph_node_completed", node=current)
                next_node = self._successor(current, state)
            except Exception as e:
                if classify_error(e) is ErrorKind.RATE_LIMITED:
                    apply(self._pause(current, e, prior_pause))
                else:
                    apply(self._failure(current, e))
                return state

            prior_pause = None
            current = next_node

        log.info("graph_completed")
        apply({"status": WorkflowStatus.COMPLETED.value})
        return state

    def _successor(self, node: str, state: WorkflowState) -> str:
        edge = self.edges.get(node)
        if edge is None:
            return END
        if callable(edge):
            return str(edge(state))
        return edge

    def _resume_point(self, state: WorkflowState) -> str:
        """Pick the node a resumed run re-enters at.

        A paused step is retried from scratch. Otherwise the run continues
        after the last completed step, re-evaluating a decision edge against
        the stored state.
        """
        pause = state.pause_context
        if pause is not None and pause.step_name in self.nodes:
            return pause.step_name
        if state.last_completed_checkpoint:
            return self._successor(state.last_completed_checkpoint, state)
        return self.entry_point

    @staticmethod
    def _pause(node: str, error: BaseException, prior_pause: PauseContext | None) -> StateUpdate:
        # Consecutive pauses on the same step count up; anything else starts at 1.
        attempt = 1
        if prior_pause is not None and prior_pause.step_name == node:
            attempt = prior_pause.attempt_count + 1

        log.warning("graph_paused_quota", node=node, attempt=attempt, error=str(error))
        return {
            "status": WorkflowStatus.PAUSED_QUOTA.value,
            "pause_reason": PauseReason.QUOTA_EXHAUSTED.value,
            "pause_context": PauseContext(
                step_name=node,
                attempt_count=attempt,
                last_error=str(error),
                timestamp=datetime.now(UTC).isoformat(),
            ),
        }

    @staticmethod
    def _failure(node: str, error: BaseException) -> StateUpdate:
        message = str(error)
        log.error("graph_node_failed", node=node, error=message, error_type=type(error).__name__)
        return {"error": message, "status": WorkflowStatus.FAILED.value}

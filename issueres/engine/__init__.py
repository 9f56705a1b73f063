"""Workflow engine for issue resolution.

Key Components:
    - StateGraph / CompiledGraph: Generic directed-graph executor with
      conditional edges, interrupt points and quota pauses
    - WorkflowNodes: Node bodies of the issue-resolution graph
    - IssueWorkflow: Concrete graph plus the start/resume/decision lifecycle
    - SnapshotStore: Durable JSON snapshots fed by workflow broadcasts

Type Definitions:
    - WorkflowState: State threaded through a run
    - StateUpdate: Fields changed by one node
    - PauseContext: Where and why a run paused

Example:
    >>> from issueres.engine import IssueWorkflow
    >>> workflow = IssueWorkflow(repository, model)
    >>> state = await workflow.start(issue)
"""

from issueres.engine.graph import END, CompiledGraph, StateGraph
from issueres.engine.types import PauseContext, StateUpdate, WorkflowState, merge_state
from issueres.engine.workflow import IssueWorkflow

__all__ = [
    "END",
    "CompiledGraph",
    "IssueWorkflow",
    "PauseContext",
    "StateGraph",
    "StateUpdate",
    "WorkflowState",
    "merge_state",
]

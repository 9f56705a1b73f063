"""Type definitions for workflow state.

This module defines the single value threaded through a workflow run,
``WorkflowState``, the ``StateUpdate`` record that node bodies return, and
the reducer that merges one into the other. It also provides the plain-dict
conversion used by the snapshot store.

Example:
    Merging a node update::

        state = WorkflowState(status=WorkflowStatus.PLANNING, issue=issue)
        state = merge_state(state, {"plan": Plan(analysis="...", steps=[])})
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, TypedDict

from issueres.enums import TurnRole, WorkflowStatus
from issueres.models.domain import (
    ActionCall,
    Issue,
    IssueState,
    PatchCandidate,
    Plan,
    RelevantFile,
    ResearchTurn,
)


@dataclass
class PauseContext:
    """Where and why a run paused on a rate limit."""

    step_name: str
    """Node that raised the rate-limit error and will be retried on resume."""

    attempt_count: int
    """How many consecutive times this step hit the limit."""

    last_error: str
    """Message of the rate-limit error."""

    timestamp: str
    """ISO 8601 time the pause happened."""


@dataclass
class WorkflowState:
    """State of one issue-resolution run.

    Fields are replaced wholesale by ``merge_state``; sequences are never
    concatenated by the engine, so a node that appends to ``logs`` returns the
    complete new list.
    """

    status: str = WorkflowStatus.IDLE.value
    """Current node name, or COMPLETED / FAILED / PAUSED_QUOTA."""

    issue: Issue | None = None
    """Issue being resolved; fixed once the run starts."""

    logs: list[str] = field(default_factory=list)
    """Human-readable event log, oldest first."""

    relevant_files: list[RelevantFile] = field(default_factory=list)
    """Files read during research, unique by path."""

    plan: Plan | None = None
    patches: list[PatchCandidate] = field(default_factory=list)
    published_url: str | None = None

    error: str | None = None
    """Last fatal error; set only when status becomes FAILED."""

    research_history: list[ResearchTurn] = field(default_factory=list)
    research_loop_count: int = 0

    last_completed_checkpoint: str | None = None
    """Name of the last node that finished successfully."""

    pause_reason: str | None = None
    pause_context: PauseContext | None = None

    interactive: bool = True
    """Whether the run stops for human review before publishing."""


class StateUpdate(TypedDict, total=False):
    """Fields changed by one node or engine step.

    Any key present replaces the corresponding ``WorkflowState`` field.
    """

    status: str
    issue: Issue | None
    logs: list[str]
    relevant_files: list[RelevantFile]
    plan: Plan | None
    patches: list[PatchCandidate]
    published_url: str | None
    error: str | None
    research_history: list[ResearchTurn]
    research_loop_count: int
    last_completed_checkpoint: str | None
    pause_reason: str | None
    pause_context: PauseContext | None
    interactive: bool


_STATE_FIELDS = frozenset(f.name for f in fields(WorkflowState))


def merge_state(state: WorkflowState, update: StateUpdate) -> WorkflowState:
    """Merge a partial update onto a state, last write wins per field.

    The input state is left untouched; a new ``WorkflowState`` is returned.

    Args:
        state: Current state
        update: Fields to replace

    Returns:
        New state with every field in ``update`` replaced

    Raises:
        KeyError: If the update names a field WorkflowState does not have
    """
    unknown = set(update) - _STATE_FIELDS
    if unknown:
        raise KeyError(f"Unknown state fields: {', '.join(sorted(unknown))}")
    return replace(state, **update)


def append_log(state: WorkflowState, *entries: str) -> list[str]:
    """Return the state's log with entries appended, ready for an update."""
    return [*state.logs, *entries]


# -----------------------------------------------------------------------------
# Snapshot conversion
# -----------------------------------------------------------------------------


def _issue_to_dict(issue: Issue) -> dict[str, Any]:
    return {
        "id": issue.id,
        "number": issue.number,
        "title": issue.title,
        "body": issue.body,
        "state": issue.state.value,
        "labels": list(issue.labels),
        "created_at": issue.created_at.isoformat(),
        "updated_at": issue.updated_at.isoformat(),
        "author": issue.author,
        "url": issue.url,
    }


def _issue_from_dict(data: dict[str, Any]) -> Issue:
    return Issue(
        id=data["id"],
        number=data["number"],
        title=data["title"],
        body=data.get("body") or "",
        state=IssueState(data.get("state", "open")),
        labels=list(data.get("labels", [])),
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(data["updated_at"]),
        author=data.get("author", ""),
        url=data.get("url", ""),
    )


def _turn_to_dict(turn: ResearchTurn) -> dict[str, Any]:
    return {
        "role": turn.role.value,
        "text": turn.text,
        "action_calls": [
            {"id": call.id, "name": call.name, "arguments": call.arguments}
            for call in turn.action_calls
        ],
        "call_id": turn.call_id,
        "action_name": turn.action_name,
        "result": turn.result,
    }


def _turn_from_dict(data: dict[str, Any]) -> ResearchTurn:
    return ResearchTurn(
        role=TurnRole(data["role"]),
        text=data.get("text", ""),
        action_calls=[
            ActionCall(
                name=call["name"],
                arguments=dict(call.get("arguments") or {}),
                id=call.get("id", ""),
            )
            for call in data.get("action_calls", [])
        ],
        call_id=data.get("call_id", ""),
        action_name=data.get("action_name", ""),
        result=data.get("result", ""),
    )


def state_to_dict(state: WorkflowState) -> dict[str, Any]:
    """Convert a state into JSON-serializable primitives."""
    return {
        "status": str(state.status),
        "issue": _issue_to_dict(state.issue) if state.issue else None,
        "logs": list(state.logs),
        "relevant_files": [
            {"path": f.path, "reason": f.reason, "content": f.content}
            for f in state.relevant_files
        ],
        "plan": (
            {"analysis": state.plan.analysis, "steps": list(state.plan.steps)}
            if state.plan
            else None
        ),
        "patches": [
            {
                "file": p.file,
                "original_content": p.original_content,
                "new_content": p.new_content,
                "explanation": p.explanation,
            }
            for p in state.patches
        ],
        "published_url": state.published_url,
        "error": state.error,
        "research_history": [_turn_to_dict(t) for t in state.research_history],
        "research_loop_count": state.research_loop_count,
        "last_completed_checkpoint": state.last_completed_checkpoint,
        "pause_reason": state.pause_reason,
        "pause_context": (
            {
                "step_name": state.pause_context.step_name,
                "attempt_count": state.pause_context.attempt_count,
                "last_error": state.pause_context.last_error,
                "timestamp": state.pause_context.timestamp,
            }
            if state.pause_context
            else None
        ),
        "interactive": state.interactive,
    }


def state_from_dict(data: dict[str, Any]) -> WorkflowState:
    """Rebuild a state from the output of ``state_to_dict``."""
    plan = data.get("plan")
    pause = data.get("pause_context")
    return WorkflowState(
        status=data.get("status", WorkflowStatus.IDLE.value),
        issue=_issue_from_dict(data["issue"]) if data.get("issue") else None,
        logs=list(data.get("logs", [])),
        relevant_files=[RelevantFile(**f) for f in data.get("relevant_files", [])],
        plan=Plan(analysis=plan["analysis"], steps=list(plan.get("steps", []))) if plan else None,
        patches=[PatchCandidate(**p) for p in data.get("patches", [])],
        published_url=data.get("published_url"),
        error=data.get("error"),
        research_history=[_turn_from_dict(t) for t in data.get("research_history", [])],
        research_loop_count=data.get("research_loop_count", 0),
        last_completed_checkpoint=data.get("last_completed_checkpoint"),
        pause_reason=data.get("pause_reason"),
        pause_context=PauseContext(**pause) if pause else None,
        interactive=data.get("interactive", True),
    )

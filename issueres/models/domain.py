"""
Domain models for issue resolution.

This module contains the data classes exchanged between the workflow engine
and its collaborators: the tracked issue, the files gathered during
research, the fix plan, generated patch candidates, and the turns of the
research conversation. These models are the normalized internal
representation; adapters convert provider-specific payloads into them.

Example:
    Creating an issue from provider data::

        issue = Issue(
            id=12345,
            number=42,
            title="Fix login bug",
            body="Users cannot log in with SSO",
            state=IssueState.OPEN,
            labels=["bug"],
            created_at=datetime.now(),
            updated_at=datetime.now(),
            author="jdoe",
            url="https://github.com/org/repo/issues/42",
        )
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from issueres.enums import TurnRole


class IssueState(str, Enum):
    """Enumeration of possible issue states."""

    OPEN = "open"
    """Issue is active and awaiting resolution."""

    CLOSED = "closed"
    """Issue has been resolved or dismissed."""


@dataclass
class Issue:
    """Represents a tracked issue in the repository host.

    The workflow treats the issue as immutable once a run has started.
    """

    id: int
    """Unique identifier assigned by the provider's database."""

    number: int
    """Human-readable issue number (e.g., #42).

    This is the stable identifier used to key workflows and snapshots.
    """

    title: str
    """Issue title, typically a single line."""

    body: str
    """Full issue description in markdown. May be empty."""

    state: IssueState
    """Current state of the issue (open or closed)."""

    labels: list[str]
    """List of label names attached to the issue."""

    created_at: datetime
    """Timestamp when the issue was created."""

    updated_at: datetime
    """Timestamp of the most recent modification."""

    author: str
    """Username of the issue creator."""

    url: str
    """Web URL to view the issue."""


@dataclass
class RelevantFile:
    """A repository file the research loop decided was worth reading."""

    path: str
    """Repository-relative path; unique within ``WorkflowState.relevant_files``."""

    reason: str
    """Why the file was collected (e.g., "Read by research agent")."""

    content: str | None = None
    """File content at the time it was read, or None if it could not be read."""


@dataclass
class Plan:
    """Structured fix plan produced by the planning step."""

    analysis: str
    """Root-cause analysis and summary of the intended change."""

    steps: list[str] = field(default_factory=list)
    """Ordered implementation steps."""


@dataclass
class PatchCandidate:
    """A proposed full replacement of one file plus its rationale."""

    file: str
    """Repository-relative path of the file being replaced."""

    original_content: str
    """Content the fix was generated against."""

    new_content: str
    """Complete proposed content of the file."""

    explanation: str
    """Model-provided explanation of the change."""


@dataclass
class FileChange:
    """A file to write when publishing a change request."""

    path: str
    content: str


@dataclass
class DirectoryEntry:
    """One entry of a repository directory listing."""

    path: str
    """Path of the entry relative to the repository root."""

    kind: str
    """Entry type as reported by the provider ("file" or "dir")."""


@dataclass
class FixProposal:
    """Result of one fix-generation call."""

    new_content: str
    explanation: str


@dataclass
class ActionCall:
    """A structured action requested by the research model."""

    name: str
    """Action name, normally one of ``ResearchAction``."""

    arguments: dict[str, Any] = field(default_factory=dict)
    """Decoded action arguments (e.g., ``{"path": "src/app.py"}``)."""

    id: str = ""
    """Provider-assigned call identifier, echoed back in the tool turn."""


@dataclass
class ResearchTurn:
    """One turn of the research conversation.

    User turns carry ``text``; model turns carry ``text`` and/or
    ``action_calls``; tool turns carry the ``result`` of exactly one call,
    identified by ``call_id`` and ``action_name``.
    """

    role: TurnRole
    text: str = ""
    action_calls: list[ActionCall] = field(default_factory=list)
    call_id: str = ""
    action_name: str = ""
    result: str = ""

    @property
    def has_action_calls(self) -> bool:
        """Check if the turn requests at least one action."""
        return bool(self.action_calls)

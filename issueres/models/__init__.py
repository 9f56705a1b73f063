"""Core domain models for issue resolution.

Key Models:
    - Issue: Tracked issue being resolved
    - RelevantFile: File gathered during research
    - Plan: Structured fix plan
    - PatchCandidate: Proposed replacement of one file
    - ResearchTurn / ActionCall: Research conversation turns

Example:
    >>> from issueres.models import Issue, Plan
    >>> plan = Plan(analysis="Off-by-one in pager", steps=["Fix range bound"])
"""

from issueres.models.domain import (
    ActionCall,
    DirectoryEntry,
    FileChange,
    FixProposal,
    Issue,
    IssueState,
    PatchCandidate,
    Plan,
    RelevantFile,
    ResearchTurn,
)

__all__ = [
    "ActionCall",
    "DirectoryEntry",
    "FileChange",
    "FixProposal",
    "Issue",
    "IssueState",
    "PatchCandidate",
    "Plan",
    "RelevantFile",
    "ResearchTurn",
]

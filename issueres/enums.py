"""Enumerations shared by the workflow engine and its host surfaces."""

from enum import Enum


class WorkflowStatus(str, Enum):
    """Values of ``WorkflowState.status``.

    Every node of the issue workflow graph is named after the status it
    reports while running. ``COMPLETED``, ``FAILED`` and ``PAUSED_QUOTA``
    are the only statuses that are not node names.
    """

    IDLE = "IDLE"
    RESEARCH_DECISION = "RESEARCH_DECISION"
    RESEARCH_TOOL = "RESEARCH_TOOL"
    PLANNING = "PLANNING"
    GENERATING_FIX = "GENERATING_FIX"
    AWAITING_HUMAN = "AWAITING_HUMAN"
    CREATING_PR = "CREATING_PR"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PAUSED_QUOTA = "PAUSED_QUOTA"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """Check if a run that reached this status cannot be resumed."""
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class PauseReason(str, Enum):
    """Why a workflow stopped without failing."""

    QUOTA_EXHAUSTED = "QUOTA_EXHAUSTED"

    def __str__(self) -> str:
        return self.value


class ResearchAction(str, Enum):
    """Actions the research model may request during the research loop."""

    LIST_FILES = "list_files"
    READ_FILE = "read_file"
    SEARCH_CODE = "search_code"
    FINISH_RESEARCH = "finish_research"

    def __str__(self) -> str:
        return self.value


class TurnRole(str, Enum):
    """Author of a turn in the research conversation."""

    USER = "user"
    MODEL = "model"
    TOOL = "tool"

    def __str__(self) -> str:
        return self.value

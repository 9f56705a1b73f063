"""
Host-facing workflow service.

``WorkflowService`` is the single place where the CLI and the HTTP server
turn "start/resume/decide issue #N" into an ``IssueWorkflow`` run. Each call
rehydrates the latest snapshot, subscribes a recorder so every broadcast is
persisted, drives the workflow, and waits for the snapshots to be written.

The engine does not serialize calls for one issue; ``reserve``/``release``
give hosts that run work in the background a cheap per-issue guard.
"""

from collections.abc import Awaitable, Callable

import structlog

from issueres.config.settings import IssueResSettings
from issueres.engine.snapshot_store import SnapshotKey, SnapshotStore
from issueres.engine.types import WorkflowState
from issueres.engine.workflow import IssueWorkflow
from issueres.enums import WorkflowStatus
from issueres.exceptions import WorkflowError
from issueres.models.domain import Issue
from issueres.providers.base import ModelProvider, RepositoryProvider

log = structlog.get_logger(__name__)


def snapshot_key(settings: IssueResSettings, issue_number: int) -> SnapshotKey:
    """Snapshot identity of an issue in the configured repository."""
    repo = settings.repository
    return SnapshotKey(owner=repo.owner, repo=repo.name, issue_number=issue_number)


class WorkflowService:
    """Run issue workflows against persisted snapshots.

    Args:
        settings: Loaded settings
        repository: Connected repository provider
        model: Model provider
        store: Snapshot store for workflow state
    """

    def __init__(
        self,
        settings: IssueResSettings,
        repository: RepositoryProvider,
        model: ModelProvider,
        store: SnapshotStore,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.model = model
        self.store = store
        self._active: set[int] = set()

    def key(self, issue_number: int) -> SnapshotKey:
        return snapshot_key(self.settings, issue_number)

    def reserve(self, issue_number: int) -> bool:
        """Mark an issue as busy.

        Returns:
            False if a run for the issue is already in progress
        """
        if issue_number in self._active:
            return False
        self._active.add(issue_number)
        return True

    def release(self, issue_number: int) -> None:
        self._active.discard(issue_number)

    def is_busy(self, issue_number: int) -> bool:
        return issue_number in self._active

    def _workflow(self, state: WorkflowState | None, interactive: bool | None) -> IssueWorkflow:
        config = self.settings.workflow
        return IssueWorkflow(
            self.repository,
            self.model,
            state=state,
            interactive=config.interactive if interactive is None else interactive,
            research_loop_limit=config.research_loop_limit,
            research_turn_limit=config.research_turn_limit,
        )

    async def get_state(self, issue_number: int) -> WorkflowState | None:
        return await self.store.load_snapshot(self.key(issue_number))

    async def _require_state(self, issue_number: int) -> WorkflowState:
        state = await self.get_state(issue_number)
        if state is None:
            raise WorkflowError(f"No workflow found for issue #{issue_number}")
        return state

    async def list_issues(self) -> list[Issue]:
        return await self.repository.get_issues(state="open")

    async def recent(self, limit: int = 20) -> list[WorkflowState]:
        return await self.store.list_snapshots(limit=limit)

    async def start(
        self,
        issue_number: int,
        issue: Issue | None = None,
        interactive: bool | None = None,
    ) -> WorkflowState:
        """Start a fresh workflow for an issue, replacing any previous run.

        Args:
            issue_number: Issue to resolve
            issue: The issue itself, when the caller already has it
            interactive: Override the configured review behavior
        """
        if issue is None:
            issue = await self.repository.get_issue(issue_number)
        workflow = self._workflow(None, interactive)
        return await self._run(issue_number, workflow, lambda: workflow.start(issue))

    async def resume(self, issue_number: int) -> WorkflowState:
        """Resume a paused workflow from its latest snapshot.

        The run keeps the review mode it was started with.
        """
        state = await self._require_state(issue_number)
        workflow = self._workflow(state, state.interactive)
        return await self._run(issue_number, workflow, workflow.resume)

    async def decide(
        self, issue_number: int, approved: bool, feedback: str | None = None
    ) -> WorkflowState:
        """Submit the human review decision for a workflow.

        Raises:
            WorkflowError: If there is no workflow or it is not waiting for review
        """
        state = await self._require_state(issue_number)
        if state.status != WorkflowStatus.AWAITING_HUMAN:
            raise WorkflowError(
                f"Workflow for issue #{issue_number} is not awaiting review "
                f"(status: {state.status})"
            )
        workflow = self._workflow(state, state.interactive)
        return await self._run(
            issue_number, workflow, lambda: workflow.submit_decision(approved, feedback)
        )

    async def _run(
        self,
        issue_number: int,
        workflow: IssueWorkflow,
        operation: Callable[[], Awaitable[WorkflowState]],
    ) -> WorkflowState:
        recorder = self.store.recorder(self.key(issue_number))
        unsubscribe = workflow.subscribe(recorder)
        try:
            state: WorkflowState = await operation()
        finally:
            unsubscribe()
            await recorder.drain()

        log.info(
            "workflow_call_finished",
            issue=issue_number,
            status=str(state.status),
            error=state.error,
        )
        if state.status == WorkflowStatus.PAUSED_QUOTA:
            log.warning("workflow_paused_quota", issue=issue_number)
        return state

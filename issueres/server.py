"""HTTP API for driving issue workflows from a dashboard or other tools."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from pydantic import BaseModel

from issueres.engine.types import WorkflowState, state_to_dict
from issueres.enums import WorkflowStatus
from issueres.exceptions import IssueResError
from issueres.service import WorkflowService

log = structlog.get_logger(__name__)


class FeedbackRequest(BaseModel):
    """Human review decision."""

    approved: bool
    feedback: str | None = None


def _summary(state: WorkflowState) -> dict[str, Any]:
    return {
        "issue": state.issue.number if state.issue else None,
        "title": state.issue.title if state.issue else None,
        "status": str(state.status),
        "error": state.error,
        "published_url": state.published_url,
        "pause_reason": state.pause_reason,
    }


def create_app(service: WorkflowService, connect: bool = False) -> FastAPI:
    """Create the API application.

    Workflow operations are accepted immediately and run as background
    tasks; progress is observed by polling ``GET /api/workflow/{n}``. At most
    one operation per issue runs at a time; a second one is rejected with 409.

    Args:
        service: Workflow service backing the routes
        connect: Connect and disconnect the providers with the app lifecycle
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if connect:
            await service.repository.connect()
            await service.model.connect()
        log.info("api_server_started", repository=service.settings.repository.full_name)
        try:
            yield
        finally:
            if connect:
                await service.repository.disconnect()
                await service.model.disconnect()

    app = FastAPI(title="issueres", lifespan=lifespan)

    async def _run_reserved(issue_number: int, operation: str, **kwargs: Any) -> None:
        try:
            if operation == "start":
                await service.start(issue_number)
            elif operation == "resume":
                await service.resume(issue_number)
            else:
                await service.decide(issue_number, **kwargs)
        except IssueResError as e:
            log.error("background_operation_failed", issue=issue_number, op=operation, error=e.message)
        finally:
            service.release(issue_number)

    def _schedule(
        background: BackgroundTasks, issue_number: int, operation: str, **kwargs: Any
    ) -> dict[str, Any]:
        if not service.reserve(issue_number):
            raise HTTPException(
                status_code=409, detail=f"A workflow operation for issue #{issue_number} is running"
            )
        background.add_task(_run_reserved, issue_number, operation, **kwargs)
        log.info("workflow_operation_accepted", issue=issue_number, op=operation)
        return {"status": "accepted", "issue": issue_number, "operation": operation}

    async def _existing(issue_number: int) -> WorkflowState:
        state = await service.get_state(issue_number)
        if state is None:
            raise HTTPException(status_code=404, detail=f"No workflow for issue #{issue_number}")
        return state

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "issueres"}

    @app.get("/api/issues")
    async def list_issues() -> list[dict[str, Any]]:
        """Open issues with the status of their workflow, if any."""
        try:
            issues = await service.list_issues()
        except IssueResError as e:
            log.error("list_issues_failed", error=e.message)
            raise HTTPException(status_code=502, detail=e.message) from e

        result = []
        for issue in issues:
            state = await service.get_state(issue.number)
            result.append(
                {
                    "number": issue.number,
                    "title": issue.title,
                    "author": issue.author,
                    "labels": issue.labels,
                    "url": issue.url,
                    "created_at": issue.created_at.isoformat(),
                    "workflow_status": str(state.status) if state else WorkflowStatus.IDLE.value,
                }
            )
        return result

    @app.get("/api/workflows/recent")
    async def recent_workflows(limit: int = Query(default=20)) -> list[dict[str, Any]]:
        """Most recently updated workflows; limit is clamped to 1..100."""
        limit = max(1, min(limit, 100))
        return [_summary(state) for state in await service.recent(limit)]

    @app.get("/api/workflow/{issue_number}")
    async def get_workflow(issue_number: int) -> dict[str, Any]:
        state = await _existing(issue_number)
        data = state_to_dict(state)
        data["busy"] = service.is_busy(issue_number)
        return data

    @app.post("/api/workflow/{issue_number}/start", status_code=202)
    async def start_workflow(issue_number: int, background: BackgroundTasks) -> dict[str, Any]:
        return _schedule(background, issue_number, "start")

    @app.post("/api/workflow/{issue_number}/resume", status_code=202)
    async def resume_workflow(issue_number: int, background: BackgroundTasks) -> dict[str, Any]:
        state = await _existing(issue_number)
        if state.status not in (WorkflowStatus.PAUSED_QUOTA, WorkflowStatus.AWAITING_HUMAN):
            raise HTTPException(
                status_code=409, detail=f"Workflow is {state.status}; nothing to resume"
            )
        return _schedule(background, issue_number, "resume")

    @app.post("/api/workflow/{issue_number}/feedback", status_code=202)
    async def submit_feedback(
        issue_number: int, request: FeedbackRequest, background: BackgroundTasks
    ) -> dict[str, Any]:
        state = await _existing(issue_number)
        if state.status != WorkflowStatus.AWAITING_HUMAN:
            raise HTTPException(
                status_code=409, detail=f"Workflow is {state.status}; it is not awaiting review"
            )
        return _schedule(
            background,
            issue_number,
            "decide",
            approved=request.approved,
            feedback=request.feedback,
        )

    return app

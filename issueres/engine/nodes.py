"""
Node bodies of the issue-resolution graph.

Each node takes the current ``WorkflowState`` and returns a ``StateUpdate``
holding only the fields it changed. Nodes never mutate the state they are
given; list fields such as ``logs`` are returned in full.

Research Loop:
    RESEARCH_DECISION asks the model for its next turn. The ``route_research``
    decision then sends the run to RESEARCH_TOOL when the turn requested
    actions, to PLANNING when research is finished or a limit is reached, or
    back to RESEARCH_DECISION when the model only replied with text.
"""

import json
from typing import Any

import structlog

from issueres.engine.recovery import ErrorKind, classify_error
from issueres.engine.types import StateUpdate, WorkflowState, append_log
from issueres.enums import ResearchAction, TurnRole, WorkflowStatus
from issueres.exceptions import (
    ExternalServiceError,
    PermissionDeniedError,
    PreconditionError,
    WorkflowError,
)
from issueres.models.domain import (
    ActionCall,
    FileChange,
    Issue,
    PatchCandidate,
    Plan,
    RelevantFile,
    ResearchTurn,
)
from issueres.providers.base import ModelProvider, RepositoryProvider

log = structlog.get_logger(__name__)

DEFAULT_RESEARCH_LOOP_LIMIT = 15
DEFAULT_RESEARCH_TURN_LIMIT = 40

NO_FILES_ANALYSIS = "No files were read during research. Cannot plan fix."
PERMISSION_DENIED_MESSAGE = "Permission Denied: Check GitHub Token scopes."
READ_BY_RESEARCH = "Read by research agent"

RESEARCH_PROMPT = """\
You are a Senior Software Engineer investigating a GitHub issue.

Issue Title: {title}
Issue Description: {body}

Your goal is to walk the repository to locate the relevant files and understand the bug.
You have tools to:
1. List directories (list_files)
2. Read file contents (read_file)
3. Search code (search_code)

Start by exploring the repository structure or searching for keywords from the issue.
Read the code of files you suspect are involved.
Once you have read the code and understand the problem, call finish_research.

Do not guess file paths. List directories to see what exists.
"""


def build_research_prompt(issue: Issue) -> str:
    """Render the instruction turn that opens a research conversation."""
    return RESEARCH_PROMPT.format(title=issue.title, body=issue.body)


def count_model_turns(history: list[ResearchTurn]) -> int:
    return sum(1 for turn in history if turn.role == TurnRole.MODEL)


class WorkflowNodes:
    """Node bodies bound to the collaborators they call.

    Args:
        repository: Repository access used by research and publishing
        model: Generative model used by research, planning and fix generation
        research_loop_limit: Tool rounds after which research is cut short
        research_turn_limit: Model turns after which research is cut short,
            bounding runs where the model never requests an action
    """

    def __init__(
        self,
        repository: RepositoryProvider,
        model: ModelProvider,
        research_loop_limit: int = DEFAULT_RESEARCH_LOOP_LIMIT,
        research_turn_limit: int = DEFAULT_RESEARCH_TURN_LIMIT,
    ) -> None:
        self.repository = repository
        self.model = model
        self.research_loop_limit = research_loop_limit
        self.research_turn_limit = research_turn_limit

    def research_exhausted(self, state: WorkflowState) -> bool:
        """Check if the research loop has hit either of its limits."""
        return (
            state.research_loop_count > self.research_loop_limit
            or count_model_turns(state.research_history) > self.research_turn_limit
        )

    # -------------------------------------------------------------------------
    # Research
    # -------------------------------------------------------------------------

    async def research_decision(self, state: WorkflowState) -> StateUpdate:
        """Ask the research model for its next turn."""
        if state.issue is None:
            raise PreconditionError("No issue in context")

        if self.research_exhausted(state):
            log.info(
                "research_limit_reached",
                issue=state.issue.number,
                loop_count=state.research_loop_count,
            )
            return {"logs": append_log(state, "[System] Research loop limit reached. Forcing plan.")}

        history = list(state.research_history)
        if not history:
            history.append(
                ResearchTurn(role=TurnRole.USER, text=build_research_prompt(state.issue))
            )

        turn = await self.model.research_step(history)
        history.append(turn)

        text = turn.text.strip()
        if text:
            entry = "\n".join(f"[Agent] {line}" for line in text.splitlines() if line.strip())
        else:
            entry = "[Agent] (Thinking/Calling Tool...)"

        log.debug(
            "research_turn_received",
            issue=state.issue.number,
            actions=[call.name for call in turn.action_calls],
        )
        return {"research_history": history, "logs": append_log(state, entry)}

    def route_research(self, state: WorkflowState) -> str:
        """Pick the node that follows RESEARCH_DECISION.

        A finish request or an exhausted research budget leads to planning,
        any other action leads to tool execution, and a plain-text reply
        loops back for another turn.
        """
        last = state.research_history[-1] if state.research_history else None
        calls = last.action_calls if last is not None else []

        finished = any(call.name == ResearchAction.FINISH_RESEARCH for call in calls)
        if finished or self.research_exhausted(state):
            return WorkflowStatus.PLANNING.value
        if calls:
            return WorkflowStatus.RESEARCH_TOOL.value
        return WorkflowStatus.RESEARCH_DECISION.value

    async def research_tool(self, state: WorkflowState) -> StateUpdate:
        """Execute every action requested by the latest research turn."""
        last = state.research_history[-1] if state.research_history else None
        calls = last.action_calls if last is not None else []

        history = list(state.research_history)
        logs = list(state.logs)
        relevant = list(state.relevant_files)
        known_paths = {f.path for f in relevant}

        if not calls:
            logs.append("[System] No tool call found.")

        for call in calls:
            logs.append(f"[Tool] Executing {call.name}({json.dumps(call.arguments)})")
            try:
                result = await self._run_action(call, relevant, known_paths)
            except Exception as e:
                # Quota errors must reach the engine so the run pauses.
                if classify_error(e) is ErrorKind.RATE_LIMITED:
                    raise
                log.warning(
                    "research_action_failed",
                    action=call.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result = f"Error: {e}"

            history.append(
                ResearchTurn(
                    role=TurnRole.TOOL,
                    call_id=call.id,
                    action_name=call.name,
                    result=result,
                )
            )

        return {
            "research_history": history,
            "relevant_files": relevant,
            "logs": logs,
            "research_loop_count": state.research_loop_count + 1,
        }

    async def _run_action(
        self,
        call: ActionCall,
        relevant: list[RelevantFile],
        known_paths: set[str],
    ) -> str:
        args: dict[str, Any] = call.arguments

        if call.name == ResearchAction.LIST_FILES:
            entries = await self.repository.list_directory(str(args.get("path", "")))
            return json.dumps([f"{entry.path} ({entry.kind})" for entry in entries])

        if call.name == ResearchAction.READ_FILE:
            path = str(args.get("path", ""))
            content = await self.repository.read_file(path)
            if not content:
                return "File empty or not found."
            if path not in known_paths:
                relevant.append(RelevantFile(path=path, reason=READ_BY_RESEARCH, content=content))
                known_paths.add(path)
            return f"File Content ({len(content)} chars):\n{content}"

        if call.name == ResearchAction.SEARCH_CODE:
            paths = await self.repository.search_code(str(args.get("query", "")))
            return json.dumps(paths)

        if call.name == ResearchAction.FINISH_RESEARCH:
            return "Research Completed."

        return f"Error: Unknown tool '{call.name}'"

    # -------------------------------------------------------------------------
    # Planning and fix generation
    # -------------------------------------------------------------------------

    async def planning(self, state: WorkflowState) -> StateUpdate:
        """Draft the fix plan from the files gathered during research."""
        if state.issue is None:
            raise PreconditionError("No issue in context")

        files = [f for f in state.relevant_files if f.content]
        if not files:
            log.info("planning_without_files", issue=state.issue.number)
            return {
                "plan": Plan(analysis=NO_FILES_ANALYSIS, steps=[]),
                "logs": append_log(state, "[Agent] No relevant files found to fix."),
            }

        plan = await self.model.plan(state.issue.title, state.issue.body, files)
        log.info("plan_generated", issue=state.issue.number, steps=len(plan.steps))
        return {"plan": plan, "logs": append_log(state, f"[Agent] Plan generated: {plan.analysis}")}

    async def generating_fix(self, state: WorkflowState) -> StateUpdate:
        """Generate one patch candidate per file read during research."""
        if state.issue is None or state.plan is None:
            raise PreconditionError("Missing inputs for generation")

        patches: list[PatchCandidate] = []
        for file in state.relevant_files:
            if not file.content:
                continue
            fix = await self.model.generate_fix(
                state.issue.body, state.plan.analysis, file.path, file.content
            )
            patches.append(
                PatchCandidate(
                    file=file.path,
                    original_content=file.content,
                    new_content=fix.new_content,
                    explanation=fix.explanation,
                )
            )

        log.info("patches_generated", issue=state.issue.number, count=len(patches))
        return {
            "patches": patches,
            "logs": append_log(
                state, f"[Agent] Generated {len(patches)} patches. Waiting for review."
            ),
        }

    async def awaiting_human(self, state: WorkflowState) -> StateUpdate:
        return {"logs": append_log(state, "[System] Paused for Review.")}

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def creating_pr(self, state: WorkflowState) -> StateUpdate:
        """Publish the patches as a change request."""
        if state.issue is None or not state.patches:
            raise PreconditionError("Cannot create PR without patches")

        files = [FileChange(path=p.file, content=p.new_content) for p in state.patches]
        body = state.plan.analysis if state.plan else "Automated fix"

        try:
            url = await self.repository.publish_change(
                state.issue.number, files, state.issue.title, body
            )
        except ExternalServiceError as e:
            if classify_error(e) is ErrorKind.RATE_LIMITED:
                raise
            if (
                isinstance(e, PermissionDeniedError)
                or e.status_code == 403
                or "Resource not accessible" in str(e)
            ):
                raise WorkflowError(PERMISSION_DENIED_MESSAGE) from e
            raise

        log.info("change_published", issue=state.issue.number, url=url)
        return {"published_url": url, "logs": append_log(state, f"[GitHub] PR Created: {url}")}

"""OpenAI-compatible model provider (OpenAI, vLLM, LM Studio, OpenRouter, etc.)."""

import json
from typing import Any

import httpx
import structlog

from issueres.engine.recovery import QUOTA_MARKERS
from issueres.enums import ResearchAction, TurnRole
from issueres.exceptions import AgentError, ExternalServiceError, RateLimitError
from issueres.models.domain import ActionCall, FixProposal, Plan, RelevantFile, ResearchTurn
from issueres.providers.base import ModelProvider

log = structlog.get_logger(__name__)

RESEARCH_TOOLS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": ResearchAction.LIST_FILES.value,
            "description": "List files and directories in a specific path. Use '.' for root.",
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "The directory path (e.g. 'src/components' or '.')",
                    }
                },
                "required": ["path"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ResearchAction.READ_FILE.value,
            "description": "Read the full content of a specific file. Use this to examine code.",
            "parameters": {
                "type": "object",
                "properties": {"path": {"type": "string", "description": "The file path to read"}},
                "required": ["path"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ResearchAction.SEARCH_CODE.value,
            "description": (
                "Search for a specific code snippet, function name, or keyword across the repository."
            ),
            "parameters": {
                "type": "object",
                "properties": {"query": {"type": "string", "description": "The search query"}},
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ResearchAction.FINISH_RESEARCH.value,
            "description": (
                "Call this when you have gathered enough information to understand the issue "
                "and plan a fix. Do not call it before reading the relevant code files."
            ),
            "parameters": {"type": "object", "properties": {}},
        },
    },
]

PLAN_PROMPT = """\
You are a Senior Software Engineer.

Issue: {title}
{body}

Code Context:
{context}

Task:
1. Analyze the bug or feature request. Briefly explain the root cause or requirement.
2. Create a specific, step-by-step implementation plan to fix it.

Constraints:
- Focus only on the issue described.
- Do not plan refactoring, style improvements or modernization unless the issue asks for it.
- Keep the scope minimal.

Respond with a JSON object: {{"analysis": string, "steps": [string, ...]}}
"""

FIX_PROMPT = """\
You are a coding agent.

Task: Implement the fix for the issue described below, strictly following the provided plan.
Target File: {path}

Issue: {issue}
Plan: {plan}

Current File Content:
```
{content}
```

Constraints:
- Return the full new content of the file.
- Do not remove existing comments or code unless they are part of the bug.
- Do not change code style (indentation, quotes, etc.) unless necessary.
- Follow the plan strictly. Do not fix other things you see in the file.

Respond with a JSON object: {{"newContent": string, "explanation": string}}
"""

FAILED_PLAN = {"analysis": "Failed to analyze", "steps": []}
FAILED_FIX = {"newContent": "", "explanation": "Failed"}


def history_to_messages(history: list[ResearchTurn]) -> list[dict[str, Any]]:
    """Convert research turns into chat completion messages."""
    messages: list[dict[str, Any]] = []
    for turn in history:
        if turn.role == TurnRole.USER:
            messages.append({"role": "user", "content": turn.text})
        elif turn.role == TurnRole.MODEL:
            message: dict[str, Any] = {"role": "assistant", "content": turn.text or None}
            if turn.action_calls:
                message["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in turn.action_calls
                ]
            messages.append(message)
        else:
            messages.append({"role": "tool", "tool_call_id": turn.call_id, "content": turn.result})
    return messages


def _decode_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        log.warning("tool_arguments_unparsable", arguments=raw)
        return {}
    return decoded if isinstance(decoded, dict) else {}


def _is_quota_error(status_code: int, body: str) -> bool:
    text = body.lower()
    return status_code == 429 or any(marker in text for marker in QUOTA_MARKERS)


class OpenAICompatibleProvider(ModelProvider):
    """Model provider for OpenAI-compatible chat completion APIs.

    Research uses function calling; planning and fix generation request JSON
    object responses.
    """

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        timeout: float = 300.0,
        temperature: float = 0.2,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize OpenAI-compatible provider.

        Args:
            base_url: API base URL (e.g., http://localhost:8000/v1)
            model: Model identifier to use
            api_key: Optional API key for authentication
            timeout: Request timeout in seconds (default: 300)
            temperature: Sampling temperature
            transport: Custom httpx transport, mainly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    async def disconnect(self) -> None:
        await self.client.aclose()

    async def _chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Call the chat completions endpoint and return the first message.

        Raises:
            RateLimitError: On HTTP 429 or a quota message
            ExternalServiceError: On other HTTP or transport failures
            AgentError: If the response has no choices
        """
        body = {"model": self.model, "temperature": self.temperature, **payload}
        try:
            response = await self.client.post(f"{self.base_url}/chat/completions", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            text = e.response.text
            error_detail = text
            try:
                error_detail = e.response.json().get("error", {}).get("message", text)
            except (ValueError, AttributeError):
                pass

            log.error("model_request_failed", status_code=status, error=error_detail)
            if _is_quota_error(status, text):
                retry_after = e.response.headers.get("retry-after")
                raise RateLimitError(
                    f"Model quota exhausted: {error_detail}",
                    status_code=status,
                    response_text=text,
                    retry_after=float(retry_after) if retry_after else None,
                ) from e
            raise ExternalServiceError(
                f"Model API error: {error_detail}", status_code=status, response_text=text
            ) from e
        except httpx.RequestError as e:
            log.error("model_request_failed", error=str(e), url=self.base_url)
            raise ExternalServiceError(f"Cannot reach model API at {self.base_url}: {e}") from e

        result = response.json()
        choices = result.get("choices") or []
        if not choices:
            raise AgentError("No response from research model", agent_type=self.model)

        usage = result.get("usage", {})
        log.debug("model_response", model=self.model, tokens=usage.get("total_tokens"))
        message: dict[str, Any] = choices[0].get("message") or {}
        return message

    async def _json_completion(self, prompt: str, fallback: dict[str, Any]) -> dict[str, Any]:
        message = await self._chat(
            {
                "messages": [{"role": "user", "content": prompt}],
                "response_format": {"type": "json_object"},
            }
        )
        content = message.get("content") or ""
        if not content:
            log.warning("model_empty_json_response", model=self.model)
            return dict(fallback)
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            log.warning("model_unparsable_json_response", model=self.model, length=len(content))
            return dict(fallback)
        return data if isinstance(data, dict) else dict(fallback)

    async def research_step(self, history: list[ResearchTurn]) -> ResearchTurn:
        """Ask the model for its next research turn."""
        if not history:
            raise AgentError("Research history is empty; an instruction turn is required")

        message = await self._chat(
            {"messages": history_to_messages(history), "tools": RESEARCH_TOOLS}
        )

        calls = [
            ActionCall(
                name=call.get("function", {}).get("name", ""),
                arguments=_decode_arguments(call.get("function", {}).get("arguments")),
                id=call.get("id", ""),
            )
            for call in message.get("tool_calls") or []
        ]
        return ResearchTurn(role=TurnRole.MODEL, text=message.get("content") or "", action_calls=calls)

    async def plan(self, issue_title: str, issue_body: str, files: list[RelevantFile]) -> Plan:
        """Draft a fix plan."""
        context = "\n".join(f"--- {f.path} ---\n{f.content}\n" for f in files)
        data = await self._json_completion(
            PLAN_PROMPT.format(title=issue_title, body=issue_body, context=context), FAILED_PLAN
        )
        steps = data.get("steps") or []
        return Plan(
            analysis=str(data.get("analysis", FAILED_PLAN["analysis"])),
            steps=[str(step) for step in steps] if isinstance(steps, list) else [],
        )

    async def generate_fix(
        self,
        issue_body: str,
        plan_analysis: str,
        file_path: str,
        file_content: str,
    ) -> FixProposal:
        """Generate the full new content of one file."""
        data = await self._json_completion(
            FIX_PROMPT.format(
                path=file_path, issue=issue_body, plan=plan_analysis, content=file_content
            ),
            FAILED_FIX,
        )
        return FixProposal(
            new_content=str(data.get("newContent", "")),
            explanation=str(data.get("explanation", FAILED_FIX["explanation"])),
        )

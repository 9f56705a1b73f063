"""Tests for issueres/providers/openai_compatible.py."""

import json

import httpx
import pytest

from issueres.enums import TurnRole
from issueres.exceptions import AgentError, ExternalServiceError, RateLimitError
from issueres.models.domain import ActionCall, RelevantFile, ResearchTurn
from issueres.providers.openai_compatible import (
    FAILED_PLAN,
    RESEARCH_TOOLS,
    OpenAICompatibleProvider,
    history_to_messages,
)


class FakeChatApi:
    """Records requests and answers with queued responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def completion(message: dict) -> httpx.Response:
    return httpx.Response(
        200,
        json={"choices": [{"message": message}], "usage": {"total_tokens": 12}},
    )


def make_provider(api: FakeChatApi, api_key: str | None = "sk-test") -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        base_url="http://model.test/v1/",
        model="test-model",
        api_key=api_key,
        transport=httpx.MockTransport(api),
    )


OPENING = [ResearchTurn(role=TurnRole.USER, text="Investigate issue #42")]


class TestHistoryToMessages:
    """Tests for converting research turns to chat messages."""

    def test_roles_and_tool_calls(self):
        """Should map every turn kind to its chat message."""
        history = [
            ResearchTurn(role=TurnRole.USER, text="go"),
            ResearchTurn(
                role=TurnRole.MODEL,
                action_calls=[ActionCall(name="read_file", arguments={"path": "a.py"}, id="c1")],
            ),
            ResearchTurn(role=TurnRole.TOOL, call_id="c1", action_name="read_file", result="A"),
        ]

        messages = history_to_messages(history)

        assert messages[0] == {"role": "user", "content": "go"}
        assert messages[1]["role"] == "assistant"
        assert messages[1]["content"] is None
        assert messages[1]["tool_calls"] == [
            {
                "id": "c1",
                "type": "function",
                "function": {"name": "read_file", "arguments": '{"path": "a.py"}'},
            }
        ]
        assert messages[2] == {"role": "tool", "tool_call_id": "c1", "content": "A"}

    def test_text_only_model_turn(self):
        """Should omit tool_calls when the model only replied with text."""
        messages = history_to_messages([ResearchTurn(role=TurnRole.MODEL, text="Thinking")])

        assert messages == [{"role": "assistant", "content": "Thinking"}]


class TestResearchStep:
    """Tests for the function-calling research turn."""

    @pytest.mark.asyncio
    async def test_parses_tool_calls(self):
        """Should decode tool calls into action calls."""
        api = FakeChatApi(
            completion(
                {
                    "content": "Let me look at the pager.",
                    "tool_calls": [
                        {
                            "id": "call_1",
                            "type": "function",
                            "function": {
                                "name": "read_file",
                                "arguments": '{"path": "src/pager.py"}',
                            },
                        }
                    ],
                }
            )
        )
        provider = make_provider(api)

        turn = await provider.research_step(OPENING)

        assert turn.role == TurnRole.MODEL
        assert turn.text == "Let me look at the pager."
        assert turn.action_calls == [
            ActionCall(name="read_file", arguments={"path": "src/pager.py"}, id="call_1")
        ]
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_request_shape(self):
        """Should send the model, the tools and the converted history."""
        api = FakeChatApi(completion({"content": "ok"}))
        provider = make_provider(api)

        await provider.research_step(OPENING)

        request = api.requests[0]
        assert str(request.url) == "http://model.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = api.body()
        assert body["model"] == "test-model"
        assert body["temperature"] == 0.2
        assert body["tools"] == RESEARCH_TOOLS
        assert body["messages"] == [{"role": "user", "content": "Investigate issue #42"}]
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        """Should not send Authorization for keyless local endpoints."""
        api = FakeChatApi(completion({"content": "ok"}))
        provider = make_provider(api, api_key=None)

        await provider.research_step(OPENING)

        assert "Authorization" not in api.requests[0].headers
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_bad_arguments_become_empty(self):
        """Should tolerate tool arguments that are not valid JSON."""
        api = FakeChatApi(
            completion(
                {
                    "content": None,
                    "tool_calls": [
                        {"id": "x", "function": {"name": "list_files", "arguments": "{path: ."}}
                    ],
                }
            )
        )
        provider = make_provider(api)

        turn = await provider.research_step(OPENING)

        assert turn.text == ""
        assert turn.action_calls == [ActionCall(name="list_files", arguments={}, id="x")]
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_empty_history_rejected(self):
        """Should require an instruction turn."""
        provider = make_provider(FakeChatApi())

        with pytest.raises(AgentError):
            await provider.research_step([])
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_no_choices(self):
        """Should fail when the API returns no choices."""
        provider = make_provider(FakeChatApi(httpx.Response(200, json={"choices": []})))

        with pytest.raises(AgentError, match="No response from research model"):
            await provider.research_step(OPENING)
        await provider.disconnect()


class TestErrors:
    """Tests for HTTP failure translation."""

    @pytest.mark.asyncio
    async def test_429_raises_rate_limit(self):
        """Should report HTTP 429 as a rate limit."""
        api = FakeChatApi(
            httpx.Response(
                429,
                json={"error": {"message": "Rate limit reached"}},
                headers={"retry-after": "20"},
            )
        )
        provider = make_provider(api)

        with pytest.raises(RateLimitError) as exc_info:
            await provider.research_step(OPENING)

        assert exc_info.value.retry_after == 20.0
        assert "Rate limit reached" in exc_info.value.message
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_quota_message_raises_rate_limit(self):
        """Should report quota exhaustion even without a 429."""
        api = FakeChatApi(
            httpx.Response(400, json={"error": {"message": "RESOURCE_EXHAUSTED: quota exceeded"}})
        )
        provider = make_provider(api)

        with pytest.raises(RateLimitError):
            await provider.plan("t", "b", [])
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_server_error(self):
        """Should wrap other HTTP errors."""
        api = FakeChatApi(httpx.Response(500, text="upstream exploded"))
        provider = make_provider(api)

        with pytest.raises(ExternalServiceError) as exc_info:
            await provider.research_step(OPENING)

        assert not isinstance(exc_info.value, RateLimitError)
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Model API error: upstream exploded"
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Should wrap transport failures."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        provider = OpenAICompatibleProvider(
            base_url="http://model.test/v1", transport=httpx.MockTransport(refuse)
        )

        with pytest.raises(ExternalServiceError, match="Cannot reach model API"):
            await provider.research_step(OPENING)
        await provider.disconnect()


class TestPlan:
    """Tests for plan generation."""

    @pytest.mark.asyncio
    async def test_parses_json_plan(self):
        """Should build a Plan from the JSON response."""
        api = FakeChatApi(
            completion({"content": json.dumps({"analysis": "Off by one", "steps": ["Fix range"]})})
        )
        provider = make_provider(api)
        files = [RelevantFile(path="src/pager.py", reason="r", content="range(1, n)")]

        plan = await provider.plan("Pagination", "Last page missing", files)

        assert plan.analysis == "Off by one"
        assert plan.steps == ["Fix range"]
        body = api.body()
        assert body["response_format"] == {"type": "json_object"}
        prompt = body["messages"][0]["content"]
        assert "--- src/pager.py ---" in prompt
        assert "Last page missing" in prompt
        await provider.disconnect()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "not json", "[1, 2]"])
    async def test_unusable_response_gives_fallback(self, content):
        """Should fall back to a failed-analysis plan."""
        provider = make_provider(FakeChatApi(completion({"content": content})))

        plan = await provider.plan("t", "b", [])

        assert plan.analysis == FAILED_PLAN["analysis"]
        assert plan.steps == []
        await provider.disconnect()


class TestGenerateFix:
    """Tests for fix generation."""

    @pytest.mark.asyncio
    async def test_parses_fix(self):
        """Should read newContent and explanation."""
        api = FakeChatApi(
            completion(
                {"content": json.dumps({"newContent": "fixed\n", "explanation": "Off by one"})}
            )
        )
        provider = make_provider(api)

        fix = await provider.generate_fix("body", "analysis", "src/pager.py", "broken\n")

        assert fix.new_content == "fixed\n"
        assert fix.explanation == "Off by one"
        prompt = api.body()["messages"][0]["content"]
        assert "Target File: src/pager.py" in prompt
        assert "broken" in prompt
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_empty_response_gives_fallback(self):
        """Should return an empty fix marked as failed."""
        provider = make_provider(FakeChatApi(completion({"content": None})))

        fix = await provider.generate_fix("b", "a", "f.py", "x")

        assert fix.new_content == ""
        assert fix.explanation == "Failed"
        await provider.disconnect()

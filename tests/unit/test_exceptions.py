"""Tests for issueres/exceptions.py."""

import pytest

from issueres.exceptions import (
    AgentError,
    ConfigurationError,
    ExternalServiceError,
    GraphError,
    IssueResError,
    PermissionDeniedError,
    PreconditionError,
    RateLimitError,
    WorkflowError,
)


class TestHierarchy:
    """Tests for the exception hierarchy."""

    @pytest.mark.parametrize(
        "cls, parent",
        [
            (ConfigurationError, IssueResError),
            (WorkflowError, IssueResError),
            (PreconditionError, WorkflowError),
            (GraphError, WorkflowError),
            (ExternalServiceError, IssueResError),
            (RateLimitError, ExternalServiceError),
            (PermissionDeniedError, ExternalServiceError),
            (AgentError, IssueResError),
        ],
    )
    def test_subclassing(self, cls, parent):
        """Should place every error under its category."""
        assert issubclass(cls, parent)

    def test_base_keeps_message(self):
        """Should expose the message attribute."""
        error = IssueResError("something broke")

        assert error.message == "something broke"
        assert str(error) == "something broke"


class TestExternalServiceError:
    """Tests for ExternalServiceError."""

    def test_status_appended_to_str(self):
        """Should mention the HTTP status in the string form only."""
        error = ExternalServiceError("Not Found", status_code=404, response_text="{}")

        assert str(error) == "Not Found (HTTP 404)"
        assert error.message == "Not Found"
        assert error.status_code == 404
        assert error.response_text == "{}"

    def test_without_status(self):
        """Should leave the message alone without a status."""
        error = ExternalServiceError("Connection refused")

        assert str(error) == "Connection refused"
        assert error.status_code is None


class TestRateLimitError:
    """Tests for RateLimitError."""

    def test_defaults_to_429(self):
        """Should assume HTTP 429."""
        error = RateLimitError("slow down", retry_after=30.0)

        assert error.status_code == 429
        assert error.retry_after == 30.0
        assert str(error) == "slow down (HTTP 429)"


class TestAgentError:
    """Tests for AgentError."""

    def test_agent_type_in_str(self):
        """Should name the agent in the string form."""
        error = AgentError("No response", agent_type="gpt-4o-mini")

        assert str(error) == "No response (agent: gpt-4o-mini)"
        assert error.message == "No response"
        assert error.agent_type == "gpt-4o-mini"

"""Custom exception hierarchy for issueres.

This module defines a structured exception hierarchy that lets the
workflow engine, the collaborator adapters and the host surfaces agree on
what went wrong without inspecting library-specific error types.

Exception Hierarchy:
    IssueResError (base)
    ├── ConfigurationError
    ├── WorkflowError
    │   ├── PreconditionError
    │   └── GraphError
    ├── ExternalServiceError
    │   ├── RateLimitError
    │   └── PermissionDeniedError
    └── AgentError

Example Usage:
    >>> from issueres.exceptions import ConfigurationError
    >>> try:
    ...     load_config(path)
    ... except FileNotFoundError as e:
    ...     raise ConfigurationError(f"Config file not found: {path}") from e
"""


class IssueResError(Exception):
    """Base exception for all issueres errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(IssueResError):
    """Configuration-related errors.

    Examples:
        - Configuration file not found
        - Invalid YAML syntax
        - Environment variable referenced but not set
        - Invalid configuration values
    """

    pass


class WorkflowError(IssueResError):
    """Workflow execution errors raised by the engine or a node body."""

    pass


class PreconditionError(WorkflowError):
    """A node ran without the state it depends on.

    Examples:
        - No issue set when research starts
        - No plan before generating fixes
        - No patches before publishing
    """

    pass


class GraphError(WorkflowError):
    """A graph referenced a node that was never registered.

    Graphs are not validated at compile time, so this surfaces when the
    engine first tries to enter the missing node.
    """

    pass


class ExternalServiceError(IssueResError):
    """External service communication errors.

    Raised by the repository and model adapters when an HTTP call fails.

    Attributes:
        message: Error message without the status suffix
        status_code: HTTP status code (if applicable)
        response_text: Response body text (if applicable)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            status_code: HTTP status code (if applicable)
            response_text: Response body text (if applicable)
        """
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        self.message = message


class RateLimitError(ExternalServiceError):
    """The service rejected the call because of a rate limit or exhausted quota.

    The workflow engine pauses on this error instead of failing.

    Attributes:
        retry_after: Seconds the service asked us to wait, when it said so
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        response_text: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            status_code: HTTP status code, 429 unless the service used another
            response_text: Response body text (if applicable)
            retry_after: Value of the Retry-After header, in seconds
        """
        self.retry_after = retry_after
        super().__init__(message, status_code=status_code, response_text=response_text)


class PermissionDeniedError(ExternalServiceError):
    """The credentials lack the scope needed for the operation."""

    pass


class AgentError(IssueResError):
    """The generative model returned something unusable.

    Attributes:
        message: Human-readable error description
        agent_type: Model or provider that produced the response
    """

    def __init__(self, message: str, agent_type: str | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            agent_type: Model or provider that failed
        """
        self.agent_type = agent_type

        full_message = message
        if agent_type:
            full_message = f"{message} (agent: {agent_type})"

        super().__init__(full_message)
        self.message = message

"""
Abstract base classes for providers.

This module defines the collaborator interfaces consumed by the workflow
nodes: repository access (browse, read, search, publish a change request)
and the generative model (research steps, planning, fix generation).
"""

from abc import ABC, abstractmethod

from issueres.models.domain import (
    DirectoryEntry,
    FileChange,
    FixProposal,
    Issue,
    Plan,
    RelevantFile,
    ResearchTurn,
)


class RepositoryProvider(ABC):
    """Abstract base class for repository access.

    Implementations normalize a hosting service's API into the domain models
    of ``issueres.models.domain`` and translate its errors into
    ``ExternalServiceError`` subclasses, so the engine can tell rate limits
    from other failures.

    All methods are async to support non-blocking I/O; implementations
    backed by blocking clients push their calls onto a worker thread.
    """

    async def connect(self) -> None:
        """Initialize the provider connection. No-op by default."""

    async def disconnect(self) -> None:
        """Release provider resources. No-op by default."""

    @abstractmethod
    async def get_issues(self, state: str = "open", limit: int = 20) -> list[Issue]:
        """Retrieve issues from the repository.

        Args:
            state: Filter by state ("open", "closed" or "all")
            limit: Maximum number of issues to return

        Returns:
            Issues, newest first. Pull requests are excluded.

        Raises:
            ExternalServiceError: If the API request fails
        """
        pass

    @abstractmethod
    async def get_issue(self, issue_number: int) -> Issue:
        """Get a single issue by number.

        Raises:
            ExternalServiceError: If the issue cannot be fetched
        """
        pass

    @abstractmethod
    async def list_directory(self, path: str) -> list[DirectoryEntry]:
        """List the entries of a repository directory.

        Args:
            path: Directory path; "" or "." is the repository root

        Returns:
            Entries of the directory. Listing a file returns an empty list.

        Raises:
            ExternalServiceError: If the API request fails
        """
        pass

    @abstractmethod
    async def read_file(self, path: str) -> str | None:
        """Read a file from the default branch.

        Returns:
            Decoded file content, or None if the file does not exist

        Raises:
            ExternalServiceError: If the API request fails for another reason
        """
        pass

    @abstractmethod
    async def search_code(self, query: str) -> list[str]:
        """Search the repository's code.

        Returns:
            Paths of matching files, best match first
        """
        pass

    @abstractmethod
    async def publish_change(
        self,
        issue_number: int,
        files: list[FileChange],
        title: str,
        body: str,
    ) -> str:
        """Commit files to a new branch and open a change request for them.

        Args:
            issue_number: Issue the change resolves
            files: Complete new contents of every changed file
            title: Issue title, used for the commit and change request titles
            body: Change request description

        Returns:
            Web URL of the created change request

        Raises:
            PermissionDeniedError: If the credentials lack write scope
            ExternalServiceError: If any step of the publish fails
        """
        pass


class ModelProvider(ABC):
    """Abstract base class for the generative model.

    Implementations raise ``RateLimitError`` when the model service reports a
    rate limit or exhausted quota, ``AgentError`` when a response cannot be
    used, and ``ExternalServiceError`` for other transport failures.
    """

    async def connect(self) -> None:
        """Initialize the provider connection. No-op by default."""

    async def disconnect(self) -> None:
        """Release provider resources. No-op by default."""

    @abstractmethod
    async def research_step(self, history: list[ResearchTurn]) -> ResearchTurn:
        """Produce the next research turn.

        Args:
            history: The conversation so far, oldest first

        Returns:
            A model turn, possibly carrying action calls
        """
        pass

    @abstractmethod
    async def plan(self, issue_title: str, issue_body: str, files: list[RelevantFile]) -> Plan:
        """Draft a fix plan from the issue and the files gathered in research."""
        pass

    @abstractmethod
    async def generate_fix(
        self,
        issue_body: str,
        plan_analysis: str,
        file_path: str,
        file_content: str,
    ) -> FixProposal:
        """Produce the complete new content of one file.

        Args:
            issue_body: Issue description
            plan_analysis: Analysis part of the fix plan
            file_path: Path of the file being fixed
            file_content: Current content of the file

        Returns:
            New content and an explanation of the change
        """
        pass

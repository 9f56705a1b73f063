"""GitHub repository provider implementation using PyGithub and REST API."""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime
from itertools import islice
from typing import Any, TypeVar

import structlog
from github import (  # type: ignore[import-not-found]
    Github,
    GithubException,
    InputGitTreeElement,
    RateLimitExceededException,
)
from github.Issue import Issue as GHIssue  # type: ignore[import-not-found]
from github.Repository import Repository as GHRepository  # type: ignore[import-not-found]

from issueres.exceptions import ExternalServiceError, PermissionDeniedError, RateLimitError
from issueres.models.domain import DirectoryEntry, FileChange, Issue, IssueState
from issueres.providers.base import RepositoryProvider

log = structlog.get_logger(__name__)

T = TypeVar("T")


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a synchronous function in a thread pool.

    This prevents blocking the event loop when calling synchronous
    PyGithub methods.
    """
    return await asyncio.to_thread(func)


def _error_message(e: GithubException) -> str:
    data = e.data
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return str(data) if data else str(e)


def translate_github_error(e: GithubException, operation: str) -> ExternalServiceError:
    """Map a PyGithub exception onto the issueres error hierarchy.

    GitHub reports secondary rate limits as 403 with a "rate limit" message,
    so those become ``RateLimitError`` too. Any other 403 is a scope problem.
    """
    message = _error_message(e)
    status = e.status

    if (
        isinstance(e, RateLimitExceededException)
        or status == 429
        or (status == 403 and "rate limit" in message.lower())
    ):
        headers = e.headers or {}
        retry_after = headers.get("retry-after") or headers.get("Retry-After")
        return RateLimitError(
            f"GitHub {operation} rate limited: {message}",
            status_code=status,
            response_text=message,
            retry_after=float(retry_after) if retry_after else None,
        )
    if status == 403:
        return PermissionDeniedError(
            f"GitHub {operation} forbidden: {message}", status_code=status, response_text=message
        )
    return ExternalServiceError(
        f"GitHub {operation} failed: {message}", status_code=status, response_text=message
    )


class GitHubRestProvider(RepositoryProvider):
    """GitHub implementation using PyGithub library."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        base_url: str = "https://api.github.com",
        search_result_limit: int = 5,
    ):
        """Initialize GitHub provider.

        Args:
            token: GitHub personal access token or App token
            owner: Repository owner (user or organization)
            repo: Repository name
            base_url: GitHub API base URL (for GitHub Enterprise)
            search_result_limit: Maximum paths returned by ``search_code``
        """
        self.token = token.strip() if token else token
        self.owner = owner
        self.repo = repo
        # Normalize base_url by removing trailing slash (Pydantic HttpUrl adds it)
        self.base_url = base_url.rstrip("/")
        self.search_result_limit = search_result_limit
        self._client: Github | None = None
        self._repo: GHRepository | None = None

    async def connect(self) -> None:
        """Initialize GitHub client."""

        def _connect() -> tuple[Github, GHRepository]:
            client = Github(self.token, base_url=self.base_url)
            repo = client.get_repo(f"{self.owner}/{self.repo}")
            return client, repo

        try:
            self._client, self._repo = await _run_sync(_connect)
        except GithubException as e:
            log.error("github_connect_failed", owner=self.owner, repo=self.repo, error=str(e))
            raise translate_github_error(e, "connect") from e

        log.info("github_connected", base_url=self.base_url, owner=self.owner, repo=self.repo)

    async def disconnect(self) -> None:
        """Close GitHub client."""
        if self._client:
            await _run_sync(self._client.close)
            self._client = None
            self._repo = None

    def _repository(self) -> GHRepository:
        if self._repo is None:
            raise ExternalServiceError("GitHub provider is not connected")
        return self._repo

    async def get_issues(self, state: str = "open", limit: int = 20) -> list[Issue]:
        """Retrieve issues via GitHub API, skipping pull requests."""
        log.info("get_issues", state=state, limit=limit)
        repo = self._repository()
        gh_state = state if state in ("open", "closed", "all") else "open"

        def _get_issues() -> list[GHIssue]:
            issues = (i for i in repo.get_issues(state=gh_state) if i.pull_request is None)
            return list(islice(issues, limit))

        try:
            gh_issues = await _run_sync(_get_issues)
        except GithubException as e:
            log.error("github_get_issues_failed", error=str(e))
            raise translate_github_error(e, "list issues") from e

        return [self._convert_issue(gh_issue) for gh_issue in gh_issues]

    async def get_issue(self, issue_number: int) -> Issue:
        """Get single issue by number."""
        log.info("get_issue", number=issue_number)
        repo = self._repository()

        try:
            gh_issue = await _run_sync(lambda: repo.get_issue(issue_number))
        except GithubException as e:
            log.error("github_get_issue_failed", number=issue_number, error=str(e))
            raise translate_github_error(e, f"get issue #{issue_number}") from e

        return self._convert_issue(gh_issue)

    async def list_directory(self, path: str) -> list[DirectoryEntry]:
        """List a directory of the default branch."""
        repo = self._repository()
        gh_path = "" if path in (".", "/") else path.strip("/")

        try:
            contents = await _run_sync(lambda: repo.get_contents(gh_path))
        except GithubException as e:
            log.warning("github_list_directory_failed", path=path, error=str(e))
            raise translate_github_error(e, f"list {path or '/'}") from e

        if not isinstance(contents, list):
            return []
        return [DirectoryEntry(path=item.path, kind=item.type) for item in contents]

    async def read_file(self, path: str) -> str | None:
        """Read a file of the default branch; None if it does not exist."""
        repo = self._repository()

        def _read() -> str | None:
            contents = repo.get_contents(path.lstrip("/"))
            if isinstance(contents, list):
                return None
            return contents.decoded_content.decode("utf-8", errors="replace")

        try:
            return await _run_sync(_read)
        except GithubException as e:
            if e.status == 404:
                log.debug("github_file_not_found", path=path)
                return None
            log.warning("github_read_file_failed", path=path, error=str(e))
            raise translate_github_error(e, f"read {path}") from e

    async def search_code(self, query: str) -> list[str]:
        """Search code scoped to this repository."""
        self._repository()
        client = self._client
        q = f"{query} repo:{self.owner}/{self.repo}"

        try:
            results = await _run_sync(
                lambda: [item.path for item in islice(client.search_code(query=q), self.search_result_limit)]
            )
        except GithubException as e:
            log.warning("github_search_failed", query=query, error=str(e))
            raise translate_github_error(e, "code search") from e

        log.debug("github_search_completed", query=query, results=len(results))
        return results

    async def publish_change(
        self,
        issue_number: int,
        files: list[FileChange],
        title: str,
        body: str,
    ) -> str:
        """Commit files to a fresh branch and open a pull request.

        All files land in a single commit on ``fix/issue-<n>-<millis>``,
        branched from the default branch.
        """
        repo = self._repository()
        branch_name = f"fix/issue-{issue_number}-{int(time.time() * 1000)}"
        log.info("publish_change", number=issue_number, branch=branch_name, files=len(files))

        def _publish() -> str:
            base_branch = repo.default_branch
            base_ref = repo.get_git_ref(f"heads/{base_branch}")
            base_sha = base_ref.object.sha

            branch_ref = repo.create_git_ref(ref=f"refs/heads/{branch_name}", sha=base_sha)

            elements = []
            for change in files:
                blob = repo.create_git_blob(change.content, "utf-8")
                elements.append(
                    InputGitTreeElement(path=change.path, mode="100644", type="blob", sha=blob.sha)
                )

            base_commit = repo.get_git_commit(base_sha)
            tree = repo.create_git_tree(elements, base_tree=base_commit.tree)
            commit = repo.create_git_commit(
                message=f"Fix for issue #{issue_number}: {title}",
                tree=tree,
                parents=[base_commit],
            )
            branch_ref.edit(sha=commit.sha)

            pr = repo.create_pull(
                title=f"Fix: {title}",
                body=f"Resolves #{issue_number}\n\n{body}",
                head=branch_name,
                base=base_branch,
            )
            return str(pr.html_url)

        try:
            url = await _run_sync(_publish)
        except GithubException as e:
            log.error("github_publish_failed", number=issue_number, branch=branch_name, error=str(e))
            raise translate_github_error(e, "publish change") from e

        log.info("github_pr_created", number=issue_number, url=url)
        return url

    def _convert_issue(self, gh_issue: GHIssue) -> Issue:
        """Convert GitHub Issue to our Issue model."""
        state = IssueState.CLOSED if gh_issue.state == "closed" else IssueState.OPEN
        return Issue(
            id=gh_issue.id,
            number=gh_issue.number,
            title=gh_issue.title,
            body=gh_issue.body or "",
            state=state,
            labels=[label.name for label in gh_issue.labels],
            created_at=gh_issue.created_at,
            updated_at=gh_issue.updated_at,
            author=gh_issue.user.login if gh_issue.user else "unknown",
            url=gh_issue.html_url,
        )


def issue_from_event(payload: dict[str, Any]) -> Issue | None:
    """Build an Issue from a GitHub webhook or Actions event payload.

    Returns:
        The event's issue, or None if the event carries none
    """
    data = payload.get("issue")
    if not isinstance(data, dict):
        return None

    def _parse(value: str | None) -> datetime:
        if not value:
            return datetime.now()
        return datetime.fromisoformat(value.replace("Z", "+00:00"))

    return Issue(
        id=data.get("id", 0),
        number=data["number"],
        title=data.get("title", ""),
        body=data.get("body") or "",
        state=IssueState.CLOSED if data.get("state") == "closed" else IssueState.OPEN,
        labels=[label["name"] for label in data.get("labels", []) if isinstance(label, dict)],
        created_at=_parse(data.get("created_at")),
        updated_at=_parse(data.get("updated_at")),
        author=(data.get("user") or {}).get("login", "unknown"),
        url=data.get("html_url", ""),
    )

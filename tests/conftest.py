"""Pytest configuration and shared fixtures."""

from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from issueres.config.settings import IssueResSettings
from issueres.engine.snapshot_store import SnapshotStore
from issueres.enums import TurnRole
from issueres.models.domain import (
    ActionCall,
    DirectoryEntry,
    FixProposal,
    Issue,
    IssueState,
    Plan,
    ResearchTurn,
)
from issueres.providers.base import ModelProvider, RepositoryProvider


@pytest.fixture
def sample_issue() -> Issue:
    """Sample issue for testing."""
    return Issue(
        id=1,
        number=42,
        title="Pagination skips last page",
        body="The last page of results is never shown.",
        state=IssueState.OPEN,
        labels=["bug"],
        created_at=datetime(2024, 1, 15, 10, 30),
        updated_at=datetime(2024, 1, 15, 11, 0),
        author="testuser",
        url="https://github.com/test-owner/test-repo/issues/42",
    )


@pytest.fixture
def mock_repository() -> AsyncMock:
    """Repository provider double with a two-file repository."""
    repository = AsyncMock(spec=RepositoryProvider)
    repository.list_directory.return_value = [
        DirectoryEntry(path="src", kind="dir"),
        DirectoryEntry(path="README.md", kind="file"),
    ]
    files = {
        "src/pager.py": "def pages(n):\n    return range(1, n)\n",
        "src/util.py": "def clamp(x):\n    return x\n",
    }
    repository.read_file.side_effect = lambda path: files.get(path)
    repository.search_code.return_value = ["src/pager.py"]
    repository.publish_change.return_value = "https://github.com/test-owner/test-repo/pull/7"
    return repository


@pytest.fixture
def mock_model() -> AsyncMock:
    """Model provider double that reads one file and finishes."""
    model = AsyncMock(spec=ModelProvider)
    model.research_step.side_effect = [
        ResearchTurn(
            role=TurnRole.MODEL,
            text="Reading the pager",
            action_calls=[ActionCall(name="read_file", arguments={"path": "src/pager.py"}, id="c1")],
        ),
        ResearchTurn(
            role=TurnRole.MODEL,
            action_calls=[ActionCall(name="finish_research", id="c2")],
        ),
    ]
    model.plan.return_value = Plan(analysis="range() excludes n", steps=["Use range(1, n + 1)"])
    model.generate_fix.return_value = FixProposal(
        new_content="def pages(n):\n    return range(1, n + 1)\n",
        explanation="Include the last page",
    )
    return model


@pytest.fixture
def mock_settings(tmp_path: Path) -> IssueResSettings:
    """Settings for testing."""
    return IssueResSettings(
        git_provider={"provider_type": "github", "api_token": "test-token"},
        repository={"owner": "test-owner", "name": "test-repo"},
        model_provider={"base_url": "http://model.test/v1", "model": "test-model"},
        workflow={"snapshot_directory": str(tmp_path / "snapshots")},
    )


@pytest.fixture
def snapshot_store(tmp_path: Path) -> SnapshotStore:
    """SnapshotStore instance with temp directory."""
    return SnapshotStore(tmp_path / "snapshots")

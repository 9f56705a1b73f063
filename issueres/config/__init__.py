"""Configuration system for issueres.

Settings are pydantic models loaded from YAML (``IssueResSettings.from_yaml``)
or, for headless CI runs, from the job environment
(``IssueResSettings.from_environment``).
"""

from issueres.config.settings import (
    GitProviderConfig,
    IssueResSettings,
    ModelProviderConfig,
    RepositoryConfig,
    WorkflowConfig,
)

__all__ = [
    "GitProviderConfig",
    "IssueResSettings",
    "ModelProviderConfig",
    "RepositoryConfig",
    "WorkflowConfig",
]

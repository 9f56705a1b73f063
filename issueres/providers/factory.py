"""Build providers from settings."""

from issueres.config.settings import IssueResSettings
from issueres.providers.base import ModelProvider, RepositoryProvider
from issueres.providers.github_rest import GitHubRestProvider
from issueres.providers.openai_compatible import OpenAICompatibleProvider


def create_repository_provider(settings: IssueResSettings) -> RepositoryProvider:
    """Create the repository provider for the configured host.

    Only GitHub is supported; ``provider_type`` is validated by the settings
    model.
    """
    git = settings.git_provider
    return GitHubRestProvider(
        token=git.api_token.get_secret_value(),
        owner=settings.repository.owner,
        repo=settings.repository.name,
        base_url=str(git.base_url),
        search_result_limit=settings.workflow.search_result_limit,
    )


def create_model_provider(settings: IssueResSettings) -> ModelProvider:
    model = settings.model_provider
    return OpenAICompatibleProvider(
        base_url=model.base_url,
        model=model.model,
        api_key=model.api_key.get_secret_value() if model.api_key else None,
        timeout=model.timeout,
        temperature=model.temperature,
    )

"""
Configuration system using Pydantic for type-safe settings management.

This module provides configuration classes for the repository host, the
generative model endpoint and workflow behavior, loaded from YAML files with
environment variable interpolation or, for headless CI runs, straight from
the environment.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, HttpUrl, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from issueres.exceptions import ConfigurationError


class GitProviderConfig(BaseModel):
    """Repository host configuration.

    Secrets may be written as ``${ENV_VAR}`` references in YAML.
    """

    provider_type: Literal["github"] = Field(default="github", description="Type of Git provider")
    base_url: HttpUrl = Field(
        default=HttpUrl("https://api.github.com"), description="Base URL of the provider API"
    )
    api_token: SecretStr = Field(..., description="API token with contents and pull request scope")


class RepositoryConfig(BaseModel):
    """Repository configuration."""

    owner: str = Field(..., description="Repository owner/organization")
    name: str = Field(..., description="Repository name")
    default_branch: str = Field(default="main", description="Default branch name")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class ModelProviderConfig(BaseModel):
    """Generative model endpoint (any OpenAI-compatible chat completions API)."""

    base_url: str = Field(default="https://api.openai.com/v1", description="API base URL")
    model: str = Field(default="gpt-4o-mini", description="Model identifier")
    api_key: SecretStr | None = Field(default=None, description="API key, if the endpoint needs one")
    timeout: float = Field(default=300.0, gt=0, description="Request timeout in seconds")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Sampling temperature")


class WorkflowConfig(BaseModel):
    """Workflow behavior configuration."""

    snapshot_directory: str = Field(
        default=".issueres/snapshots", description="Directory for workflow snapshots"
    )
    interactive: bool = Field(
        default=True, description="Stop for human review before publishing a change"
    )
    research_loop_limit: int = Field(
        default=15, ge=1, description="Tool rounds allowed before planning is forced"
    )
    research_turn_limit: int = Field(
        default=40, ge=1, description="Model turns allowed before planning is forced"
    )
    search_result_limit: int = Field(
        default=5, ge=1, le=100, description="Maximum paths returned by a code search"
    )


class IssueResSettings(BaseSettings):
    """Main settings.

    Combines all configuration sections and provides constructors for YAML
    files and for the plain environment of a CI job.
    """

    model_config = SettingsConfigDict(
        env_prefix="ISSUERES_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    git_provider: GitProviderConfig
    repository: RepositoryConfig
    model_provider: ModelProviderConfig = Field(default_factory=ModelProviderConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)

    @property
    def snapshot_dir(self) -> Path:
        """Get snapshot directory as Path object."""
        return Path(self.workflow.snapshot_directory)

    @classmethod
    def from_yaml(cls, config_path: str) -> IssueResSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} syntax for environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            IssueResSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file) as f:
                yaml_content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @classmethod
    def from_environment(cls, environ: dict[str, str] | None = None) -> IssueResSettings:
        """Build headless settings from the variables a CI job provides.

        Reads ``GITHUB_TOKEN``, ``GITHUB_REPOSITORY`` (``owner/name``),
        ``ISSUERES_MODEL_API_KEY`` (or ``API_KEY``) and optionally ``ISSUERES_MODEL_BASE_URL``
        and ``ISSUERES_MODEL``. Review is disabled: the run publishes
        without stopping.

        Raises:
            ConfigurationError: If a required variable is missing or malformed
        """
        env = os.environ if environ is None else environ

        token = env.get("GITHUB_TOKEN")
        repository = env.get("GITHUB_REPOSITORY")
        if not token:
            raise ConfigurationError("GITHUB_TOKEN is not set")
        if not repository or "/" not in repository:
            raise ConfigurationError("GITHUB_REPOSITORY must be set as owner/name")
        owner, name = repository.split("/", 1)

        model: dict[str, object] = {}
        api_key = env.get("ISSUERES_MODEL_API_KEY") or env.get("API_KEY")
        if api_key:
            model["api_key"] = api_key
        if env.get("ISSUERES_MODEL_BASE_URL"):
            model["base_url"] = env["ISSUERES_MODEL_BASE_URL"]
        if env.get("ISSUERES_MODEL"):
            model["model"] = env["ISSUERES_MODEL"]

        try:
            return cls(
                git_provider=GitProviderConfig(api_token=SecretStr(token)),
                repository=RepositoryConfig(owner=owner, name=name),
                model_provider=ModelProviderConfig(**model),
                workflow=WorkflowConfig(interactive=False),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines are left unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))

"""Collaborator adapters for repository hosting and generative models."""

from issueres.providers.base import ModelProvider, RepositoryProvider

__all__ = ["ModelProvider", "RepositoryProvider"]

"""
VCS host providers.

This package provides the provider interface, the registry that dispatches
URLs and entities to providers, and the GitHub and Azure DevOps integrations.
"""

from scaffold_sync.providers.base import (
    FetchError,
    RateLimitError,
    ReadTreeResponse,
    SubmissionError,
    SyncError,
    TreeFile,
    VcsProvider,
)
from scaffold_sync.providers.registry import VcsProviderRegistry
from scaffold_sync.providers.github import GitHubProvider
from scaffold_sync.providers.azure_devops import AzureDevOpsProvider
from scaffold_sync.providers.factory import create_default_registry

__all__ = [
    'FetchError',
    'RateLimitError',
    'ReadTreeResponse',
    'SubmissionError',
    'SyncError',
    'TreeFile',
    'VcsProvider',
    'VcsProviderRegistry',
    'GitHubProvider',
    'AzureDevOpsProvider',
    'create_default_registry',
]

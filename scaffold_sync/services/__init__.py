"""Sync pipeline services package."""

from scaffold_sync.services.catalog import (
    CatalogClient,
    CatalogError,
    InMemoryCatalog,
)
from scaffold_sync.services.credentials import (
    CredentialsProvider,
    StaticCredentialsProvider,
)
from scaffold_sync.services.pr_composer import PullRequestComposer, sanitize_for_branch
from scaffold_sync.services.file_fetcher import (
    RegistryTreeReader,
    RepoFileFetcher,
    TreeReader,
)
from scaffold_sync.services.template_diff import TemplateDiffEngine
from scaffold_sync.services.template_source import extract_template_source_url
from scaffold_sync.services.sync_orchestrator import SyncOrchestrator

__all__ = [
    'CatalogClient',
    'CatalogError',
    'InMemoryCatalog',
    'CredentialsProvider',
    'StaticCredentialsProvider',
    'PullRequestComposer',
    'sanitize_for_branch',
    'RegistryTreeReader',
    'RepoFileFetcher',
    'TreeReader',
    'TemplateDiffEngine',
    'extract_template_source_url',
    'SyncOrchestrator',
]

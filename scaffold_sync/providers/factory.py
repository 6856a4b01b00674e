"""Construction of the provider registry from settings."""

from scaffold_sync.config import Settings
from scaffold_sync.providers.azure_devops import AzureDevOpsProvider
from scaffold_sync.providers.github import GitHubProvider
from scaffold_sync.providers.registry import VcsProviderRegistry
from scaffold_sync.services.catalog import CatalogClient
from scaffold_sync.services.credentials import CredentialsProvider


def create_default_registry(
    settings: Settings,
    catalog: CatalogClient,
    credentials: CredentialsProvider
) -> VcsProviderRegistry:
    """
    Build the registry with every supported host provider.

    GitHub is registered first, so it wins for any host configured for both.
    """
    return VcsProviderRegistry([
        GitHubProvider(
            catalog=catalog,
            credentials=credentials,
            hosts=settings.github_hosts,
            api_base_url=settings.github_api_base_url,
            timeout=settings.http_timeout_seconds,
        ),
        AzureDevOpsProvider(
            catalog=catalog,
            credentials=credentials,
            hosts=settings.azure_devops_hosts,
        ),
    ])

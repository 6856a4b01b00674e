"""
VCS provider registry.

Holds the configured host providers and dispatches URLs and entities to the
first provider, in registration order, that recognizes them.
"""

from typing import List, Optional

from scaffold_sync.models import Entity
from scaffold_sync.providers.base import VcsProvider
from scaffold_sync.utils.logging import get_logger

logger = get_logger(__name__)


class VcsProviderRegistry:
    """Ordered collection of VCS providers with first-match dispatch."""

    def __init__(self, providers: Optional[List[VcsProvider]] = None):
        self._providers: List[VcsProvider] = []
        for provider in providers or []:
            self.register_provider(provider)

    def register_provider(self, provider: VcsProvider) -> None:
        """
        Register a provider. Earlier registrations win on overlapping hosts.

        Args:
            provider: VcsProvider instance to register
        """
        if any(existing.name == provider.name for existing in self._providers):
            logger.warning(f"Provider '{provider.name}' already registered, adding another instance")

        self._providers.append(provider)
        logger.info(f"Registered VCS provider '{provider.name}'")

    def get_providers(self) -> List[VcsProvider]:
        return list(self._providers)

    def get_provider_for_url(self, url: str) -> Optional[VcsProvider]:
        """
        Get the first provider that can parse the URL.

        Args:
            url: Repository URL

        Returns:
            VcsProvider instance if found, None otherwise
        """
        for provider in self._providers:
            if provider.can_handle(url) and provider.parse_url(url) is not None:
                return provider

        logger.debug(f"No VCS provider found for URL '{url}'")
        return None

    def get_provider_for_entity(self, entity: Entity) -> Optional[VcsProvider]:
        """
        Get the first provider that can extract a repository URL from the entity.

        Args:
            entity: Catalog entity

        Returns:
            VcsProvider instance if found, None otherwise
        """
        for provider in self._providers:
            if provider.extract_repo_url(entity) is not None:
                return provider

        logger.debug(f"No VCS provider found for entity '{entity.ref}'")
        return None


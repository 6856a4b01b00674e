"""
Base interface for VCS host providers.

This module defines the abstract base class every host integration implements,
the tree-read types shared with the file fetcher, and the error hierarchy used
across the sync pipeline.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Union

from scaffold_sync.models import (
    Entity,
    EntityRefError,
    FileChangeSet,
    Identity,
    PullRequestResult,
    RepositoryLocation,
    TemplateInfo,
    normalize_entity_ref,
)
from scaffold_sync.utils.logging import get_logger

if TYPE_CHECKING:
    from scaffold_sync.services.catalog import CatalogClient

logger = get_logger(__name__)

# Attempts per host API call on rate limiting: the first try plus three retries
HOST_CALL_ATTEMPTS = 4


class SyncError(Exception):
    """Base exception for sync pipeline errors."""
    pass


class FetchError(SyncError):
    """A repository tree could not be listed at all."""
    pass


class SubmissionError(SyncError):
    """The host rejected a pull request submission."""
    pass


class RateLimitError(SubmissionError):
    """The host throttled the request; safe to retry after a delay."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


def strip_location_prefix(url: str) -> str:
    """Remove the ``url:`` type prefix used by catalog location annotations."""
    url = url.strip()
    if url.startswith("url:"):
        return url[len("url:"):]
    return url


async def resolve_owner_user(
    catalog: "CatalogClient",
    entity: Entity,
    token: Optional[str] = None
) -> Optional[Entity]:
    """
    Look up the entity's owner and return it only if it is a User.

    Owner references without a kind default to ``group``, so bare names never
    resolve to a user. Lookup failures are logged and yield None.
    """
    owner_ref = entity.owner_ref
    if not owner_ref:
        return None

    try:
        ref = normalize_entity_ref(
            owner_ref,
            default_kind="group",
            default_namespace=entity.metadata.namespace
        )
        owner = await catalog.get_entity_by_ref(ref, token)
    except EntityRefError as e:
        logger.debug(f"Invalid owner reference on {entity.ref}: {e}")
        return None
    except Exception as e:
        logger.warning(f"Failed to look up owner '{owner_ref}' of {entity.ref}: {e}")
        return None

    if owner is None or owner.kind.lower() != "user":
        return None
    return owner


class TreeFile:
    """One file of a repository tree, with lazily loaded content."""

    def __init__(self, path: str, loader: Callable[[], Awaitable[bytes]]):
        self.path = path
        self._loader = loader

    async def content(self) -> bytes:
        return await self._loader()

    def __repr__(self) -> str:
        return f"TreeFile({self.path!r})"


class ReadTreeResponse:
    """Listing of a repository tree; ``close()`` releases the underlying client."""

    def __init__(
        self,
        files: List[TreeFile],
        close: Optional[Callable[[], Awaitable[None]]] = None
    ):
        self._files = files
        self._close = close

    def files(self) -> List[TreeFile]:
        return list(self._files)

    async def close(self) -> None:
        if self._close is not None:
            close, self._close = self._close, None
            await close()


class VcsProvider(ABC):
    """Base interface for VCS host integrations."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name (e.g., 'github', 'azure-devops')."""
        pass

    @abstractmethod
    def can_handle(self, target: Union[str, Entity]) -> bool:
        """
        Cheap host recognition for a URL or an entity. Performs no I/O.
        """
        pass

    @abstractmethod
    def parse_url(self, url: str) -> Optional[RepositoryLocation]:
        """
        Decompose a host URL into a normalized location.

        Returns:
            RepositoryLocation, or None for any URL this provider does not accept
        """
        pass

    @abstractmethod
    def build_url(self, location: RepositoryLocation) -> str:
        """Render a location as a URL that ``parse_url`` maps back to it."""
        pass

    @abstractmethod
    def extract_repo_url(self, entity: Entity) -> Optional[str]:
        """
        Reconstruct the repository URL of an entity from its annotations.

        Returns:
            Repository URL, or None if no annotation for this host is present
        """
        pass

    @abstractmethod
    async def read_tree(self, location: RepositoryLocation) -> ReadTreeResponse:
        """
        List every file below the location, recursively.

        Paths in the response are relative to ``location.path``.

        Raises:
            FetchError: If the tree cannot be listed
        """
        pass

    @abstractmethod
    async def get_reviewer_from_owner(
        self,
        entity: Entity,
        token: Optional[str] = None
    ) -> Optional[Identity]:
        """
        Resolve the entity's owner to a reviewer on this host.

        Only owners that are individual users resolve. Never raises.
        """
        pass

    @abstractmethod
    async def create_pull_request(
        self,
        target_url: str,
        changes: FileChangeSet,
        info: TemplateInfo,
        reviewer: Optional[Identity] = None
    ) -> PullRequestResult:
        """
        Submit a branch, a commit and a pull request with the given changes.

        Raises:
            SubmissionError: If the host rejects the submission
        """
        pass

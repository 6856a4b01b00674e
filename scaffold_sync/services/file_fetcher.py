"""
Repository file fetcher.

Reads every text file below a repository URL into an immutable FileSnapshot.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from scaffold_sync.models import FileSnapshot
from scaffold_sync.providers.base import FetchError, ReadTreeResponse, TreeFile
from scaffold_sync.providers.registry import VcsProviderRegistry
from scaffold_sync.utils.logging import get_logger

logger = get_logger(__name__)

BINARY_EXTENSIONS = frozenset({
    '.png', '.jpg', '.jpeg', '.gif', '.bmp', '.ico', '.webp',
    '.pdf', '.zip', '.tar', '.gz', '.tgz', '.rar', '.7z',
    '.exe', '.dll', '.so', '.dylib',
    '.class', '.jar', '.war',
    '.woff', '.woff2', '.ttf', '.eot', '.otf',
})


def is_binary_path(file_path: str) -> bool:
    """Check if a file is binary based on its extension."""
    lowered = file_path.lower()
    return any(lowered.endswith(ext) for ext in BINARY_EXTENSIONS)


class TreeReader(ABC):
    """Lists the files below a repository URL."""

    @abstractmethod
    async def read_tree(self, url: str) -> ReadTreeResponse:
        """
        Raises:
            FetchError: If the URL cannot be read
        """
        pass


class RegistryTreeReader(TreeReader):
    """Tree reader that dispatches to the provider recognizing the URL."""

    def __init__(self, registry: VcsProviderRegistry):
        self.registry = registry

    async def read_tree(self, url: str) -> ReadTreeResponse:
        provider = self.registry.get_provider_for_url(url)
        if provider is None:
            raise FetchError(f"No VCS provider can read '{url}'")

        location = provider.parse_url(url)
        if location is None:
            raise FetchError(f"Provider '{provider.name}' could not parse '{url}'")

        return await provider.read_tree(location)


class RepoFileFetcher:
    """
    Fetches all text files of a repository tree.

    Unreadable files, binary files and files that are not valid UTF-8 are
    left out of the snapshot; only a failure to list the tree is fatal.
    """

    def __init__(self, tree_reader: TreeReader, concurrency: int = 8):
        """
        Initialize the fetcher.

        Args:
            tree_reader: Source of repository tree listings
            concurrency: Maximum number of file contents read at once
        """
        self.tree_reader = tree_reader
        self.concurrency = max(1, concurrency)

    async def fetch_files(self, url: str) -> FileSnapshot:
        """
        Read every file below the URL.

        Args:
            url: Repository URL, optionally pointing into a subdirectory

        Returns:
            FileSnapshot of path -> text content

        Raises:
            FetchError: If the tree cannot be listed
        """
        try:
            response = await self.tree_reader.read_tree(url)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(f"Failed to read repository tree at {url}: {e}") from e

        try:
            tree_files = [f for f in response.files() if not self._skip_binary(f)]
            semaphore = asyncio.Semaphore(self.concurrency)

            async def read(tree_file: TreeFile) -> Optional[Tuple[str, str]]:
                async with semaphore:
                    return await self._read_file(tree_file, url)

            results = await asyncio.gather(*(read(f) for f in tree_files))
        finally:
            await response.close()

        files = dict(result for result in results if result is not None)
        logger.info(
            f"Fetched {len(files)} files from {url}",
            extra={"url": url, "file_count": len(files), "listed_count": len(tree_files)}
        )
        return FileSnapshot(files, source_url=url)

    @staticmethod
    def _skip_binary(tree_file: TreeFile) -> bool:
        if is_binary_path(tree_file.path):
            logger.debug(f"Skipping binary file: {tree_file.path}")
            return True
        return False

    async def _read_file(self, tree_file: TreeFile, url: str) -> Optional[Tuple[str, str]]:
        try:
            raw = await tree_file.content()
        except Exception as e:
            logger.warning(f"Could not read {tree_file.path} from {url}: {e}")
            return None

        try:
            return tree_file.path, raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug(f"Skipping non UTF-8 file: {tree_file.path}")
            return None

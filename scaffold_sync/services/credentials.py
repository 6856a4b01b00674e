"""Credentials lookup for VCS hosts."""

from abc import ABC, abstractmethod
from typing import Dict, Optional
from urllib.parse import urlparse

from scaffold_sync.config import Settings


class CredentialsProvider(ABC):
    """Resolves an API token for a repository URL."""

    @abstractmethod
    async def get_token(self, url: str) -> Optional[str]:
        """Return a token for the URL's host, or None when none is configured."""
        pass


class StaticCredentialsProvider(CredentialsProvider):
    """Host -> token mapping, typically built from settings."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self._tokens = {host.lower(): token for host, token in (tokens or {}).items() if token}

    async def get_token(self, url: str) -> Optional[str]:
        host = _host_of(url)
        if not host:
            return None
        if host in self._tokens:
            return self._tokens[host]
        # <org>.visualstudio.com shares the dev.azure.com token
        if host.endswith(".visualstudio.com"):
            return self._tokens.get("dev.azure.com")
        return None

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticCredentialsProvider":
        tokens: Dict[str, str] = {}
        if settings.github_token:
            for host in settings.github_hosts:
                tokens[host] = settings.github_token
        if settings.azure_devops_pat:
            for host in settings.azure_devops_hosts:
                tokens[host] = settings.azure_devops_pat
        return cls(tokens)


def _host_of(url: str) -> Optional[str]:
    url = url.strip()
    if url.startswith("url:"):
        url = url[len("url:"):]
    if url.startswith("git@"):
        return url[len("git@"):].split(":", 1)[0].lower()
    hostname = urlparse(url).hostname
    return hostname.lower() if hostname else None

"""
GitHub provider.

This module reads repository trees and opens template upgrade pull requests
through the GitHub REST API (github.com and GitHub Enterprise Server hosts).
"""

import base64
import functools
import re
import time
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import quote, unquote, urlparse

import httpx
from pydantic import ValidationError

from scaffold_sync.models import (
    SOURCE_LOCATION_ANNOTATION,
    ChangeType,
    Entity,
    FileChangeSet,
    Identity,
    PullRequestContent,
    PullRequestResult,
    RepositoryLocation,
    TemplateInfo,
)
from scaffold_sync.providers.base import (
    HOST_CALL_ATTEMPTS,
    FetchError,
    RateLimitError,
    ReadTreeResponse,
    SubmissionError,
    SyncError,
    TreeFile,
    VcsProvider,
    resolve_owner_user,
    strip_location_prefix,
)
from scaffold_sync.services.catalog import CatalogClient
from scaffold_sync.services.credentials import CredentialsProvider
from scaffold_sync.services.pr_composer import PullRequestComposer
from scaffold_sync.utils.logging import get_logger, log_api_call
from scaffold_sync.utils.resilience import retry_with_backoff

logger = get_logger(__name__, provider="github")

PROJECT_SLUG_ANNOTATION = "github.com/project-slug"
USER_LOGIN_ANNOTATION = "github.com/user-login"

GITHUB_API_VERSION = "2022-11-28"
# Ref GitHub resolves to the repository's default branch in tree URLs
DEFAULT_BRANCH_REF = "HEAD"

_SSH_URL = re.compile(
    r"^(?:ssh://)?git@(?P<host>[^:/]+)[:/](?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$"
)


class GitHubProvider(VcsProvider):
    """
    VCS provider for GitHub and GitHub Enterprise Server.

    Pull requests are built with the git data API: the new commit's tree is
    derived from the base branch tree, so a single commit carries every
    change, including deletions.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        credentials: CredentialsProvider,
        hosts: Optional[Sequence[str]] = None,
        api_base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        composer: Optional[PullRequestComposer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the GitHub provider.

        Args:
            catalog: Catalog used to resolve owners to reviewers
            credentials: Token lookup per repository URL
            hosts: Recognized hostnames (default: github.com)
            api_base_url: REST API base URL for github.com
            timeout: HTTP timeout in seconds
            composer: Pull request text composer
            transport: Optional httpx transport (used by tests)
        """
        self.catalog = catalog
        self.credentials = credentials
        self.hosts = [host.lower() for host in (hosts or ["github.com"])]
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout
        self.composer = composer or PullRequestComposer()
        self._transport = transport

    @property
    def name(self) -> str:
        return "github"

    def can_handle(self, target: Union[str, Entity]) -> bool:
        if isinstance(target, Entity):
            return self.extract_repo_url(target) is not None
        return self.parse_url(target) is not None

    def parse_url(self, url: str) -> Optional[RepositoryLocation]:
        """
        Parse a GitHub repository URL.

        Supported formats:
        - https://github.com/owner/repo(.git)
        - https://github.com/owner/repo/tree/<branch>/<path>
        - https://github.com/owner/repo/blob/<branch>/<path>
        - https://github.com/owner/repo/tree/HEAD/<path> (default branch)
        - git@github.com:owner/repo.git
        """
        if not isinstance(url, str) or not url.strip():
            return None
        url = strip_location_prefix(url)

        ssh = _SSH_URL.match(url)
        if ssh:
            host = ssh.group("host").lower()
            if host not in self.hosts:
                return None
            return self._location(host, ssh.group("owner"), ssh.group("repo"))

        try:
            parsed = urlparse(url)
            host = (parsed.hostname or "").lower()
        except ValueError:
            return None

        if parsed.scheme not in ("http", "https") or host not in self.hosts:
            return None

        parts = [unquote(part) for part in parsed.path.split("/") if part]
        if len(parts) < 2:
            return None

        owner, repo = parts[0], parts[1]
        if repo.endswith(".git"):
            repo = repo[:-len(".git")]

        branch = None
        path = None
        if len(parts) > 2:
            # anything past owner/repo must be a tree or blob view
            if parts[2] not in ("tree", "blob") or len(parts) < 4:
                return None
            branch = None if parts[3] == DEFAULT_BRANCH_REF else parts[3]
            path = "/".join(parts[4:]) or None

        return self._location(host, owner, repo, branch, path)

    def _location(
        self,
        host: str,
        owner: str,
        repo: str,
        branch: Optional[str] = None,
        path: Optional[str] = None
    ) -> Optional[RepositoryLocation]:
        try:
            return RepositoryLocation(host=host, owner=owner, repo=repo, branch=branch, path=path)
        except ValidationError:
            return None

    def build_url(self, location: RepositoryLocation) -> str:
        url = f"https://{location.host}/{location.owner}/{location.repo}"
        if location.branch or location.path:
            url += f"/tree/{location.branch or DEFAULT_BRANCH_REF}"
            if location.path:
                url += f"/{location.path.strip('/')}"
        return url

    def extract_repo_url(self, entity: Entity) -> Optional[str]:
        source_location = entity.annotation(SOURCE_LOCATION_ANNOTATION)
        if source_location:
            url = strip_location_prefix(source_location)
            if self.parse_url(url) is not None:
                return url

        slug = entity.annotation(PROJECT_SLUG_ANNOTATION)
        if slug:
            owner, _, repo = slug.strip().partition("/")
            if owner and repo and "/" not in repo:
                return f"https://{self.hosts[0]}/{owner}/{repo}"

        return None

    def _api_base_url(self, host: str) -> str:
        if host == "github.com":
            return self.api_base_url
        return f"https://{host}/api/v3"

    def _client(self, host: str, token: Optional[str]) -> httpx.AsyncClient:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": "scaffold-sync",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        return httpx.AsyncClient(
            base_url=self._api_base_url(host),
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    @staticmethod
    def _message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return response.text[:200]

    def _rate_limit_error(self, response: httpx.Response) -> Optional[RateLimitError]:
        """Return a RateLimitError if the response signals throttling."""
        if response.status_code == 429:
            limited = True
        elif response.status_code == 403:
            limited = (
                response.headers.get("x-ratelimit-remaining") == "0"
                or "rate limit" in self._message(response).lower()
            )
        else:
            limited = False

        if not limited:
            return None

        retry_after: Optional[float] = None
        if response.headers.get("retry-after"):
            try:
                retry_after = float(response.headers["retry-after"])
            except ValueError:
                retry_after = None
        elif response.headers.get("x-ratelimit-reset"):
            try:
                retry_after = max(0.0, float(response.headers["x-ratelimit-reset"]) - time.time())
            except ValueError:
                retry_after = None

        return RateLimitError(
            f"GitHub rate limit exceeded: {self._message(response)}",
            retry_after=retry_after
        )

    @retry_with_backoff(
        max_retries=HOST_CALL_ATTEMPTS, base_delay=2.0, max_delay=60.0, exceptions=(RateLimitError,)
    )
    async def _call(
        self,
        client: httpx.AsyncClient,
        method: str,
        endpoint: str,
        **kwargs: Any
    ) -> httpx.Response:
        """Send one API request; throttled responses raise RateLimitError."""
        start_time = time.time()
        try:
            response = await client.request(method, endpoint, **kwargs)
        except httpx.HTTPError as e:
            log_api_call(
                logger,
                service=self.name,
                endpoint=endpoint,
                method=method,
                duration_ms=(time.time() - start_time) * 1000,
                error=str(e)
            )
            raise

        log_api_call(
            logger,
            service=self.name,
            endpoint=endpoint,
            method=method,
            status_code=response.status_code,
            duration_ms=(time.time() - start_time) * 1000
        )

        rate_limit_error = self._rate_limit_error(response)
        if rate_limit_error is not None:
            raise rate_limit_error
        return response

    def _expect(
        self,
        response: httpx.Response,
        action: str,
        expected: Sequence[int] = (200,),
        error_cls: type = SubmissionError
    ) -> Any:
        if response.status_code not in expected:
            raise error_cls(
                f"{action} failed with HTTP {response.status_code}: {self._message(response)}"
            )
        return response.json()

    @staticmethod
    def _repo_endpoint(location: RepositoryLocation) -> str:
        return f"/repos/{quote(location.owner, safe='')}/{quote(location.repo, safe='')}"

    async def _default_branch(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        error_cls: type = SubmissionError
    ) -> str:
        response = await self._call(client, "GET", self._repo_endpoint(location))
        payload = self._expect(response, f"Looking up repository {location.slug}", error_cls=error_cls)
        return payload.get("default_branch") or "main"

    async def read_tree(self, location: RepositoryLocation) -> ReadTreeResponse:
        """
        List all blobs below the location using the recursive trees API.

        The returned response owns an open HTTP client; callers must close it.
        """
        token = await self.credentials.get_token(self.build_url(location))
        client = self._client(location.host, token)
        repo_endpoint = self._repo_endpoint(location)

        try:
            branch = location.branch or await self._default_branch(client, location, FetchError)
            response = await self._call(
                client,
                "GET",
                f"{repo_endpoint}/git/trees/{quote(branch, safe='')}",
                params={"recursive": "1"}
            )
            payload = self._expect(
                response,
                f"Listing tree of {location.slug}@{branch}",
                error_cls=FetchError
            )
        except FetchError:
            await client.aclose()
            raise
        except (httpx.HTTPError, SyncError, ValueError) as e:
            await client.aclose()
            raise FetchError(f"Failed to list tree of {location.slug}: {e}") from e

        if payload.get("truncated"):
            logger.warning(
                f"Tree listing of {location.slug}@{branch} was truncated by GitHub",
                extra={"repository": location.slug}
            )

        prefix = (location.path or "").strip("/")
        files: List[TreeFile] = []
        for entry in payload.get("tree", []):
            if entry.get("type") != "blob":
                continue
            path = entry.get("path", "")
            if prefix:
                if not path.startswith(prefix + "/"):
                    continue
                path = path[len(prefix) + 1:]
            loader = functools.partial(self._read_blob, client, location, entry["sha"])
            files.append(TreeFile(path, loader))

        if prefix and not files:
            await client.aclose()
            raise FetchError(f"Path '{prefix}' not found in {location.slug}@{branch}")

        logger.debug(
            f"Listed {len(files)} files in {location.slug}@{branch}",
            extra={"repository": location.slug, "file_count": len(files)}
        )
        return ReadTreeResponse(files, close=client.aclose)

    async def _read_blob(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        sha: str
    ) -> bytes:
        response = await self._call(client, "GET", f"{self._repo_endpoint(location)}/git/blobs/{sha}")
        payload = self._expect(response, f"Reading blob {sha}", error_cls=FetchError)

        content = payload.get("content") or ""
        if payload.get("encoding") == "base64":
            return base64.b64decode(content)
        return content.encode("utf-8")

    async def get_reviewer_from_owner(
        self,
        entity: Entity,
        token: Optional[str] = None
    ) -> Optional[Identity]:
        owner = await resolve_owner_user(self.catalog, entity, token)
        if owner is None:
            return None

        login = owner.annotation(USER_LOGIN_ANNOTATION)
        if not login:
            logger.debug(f"Owner {owner.ref} has no {USER_LOGIN_ANNOTATION} annotation")
            return None
        return Identity(id=login.strip(), display_name=owner.display_name)

    async def create_pull_request(
        self,
        target_url: str,
        changes: FileChangeSet,
        info: TemplateInfo,
        reviewer: Optional[Identity] = None
    ) -> PullRequestResult:
        location = self.parse_url(target_url)
        if location is None:
            raise SubmissionError(f"Not a GitHub repository URL: {target_url}")
        if changes.is_empty():
            raise SubmissionError(f"No file changes to submit for {location.slug}")

        token = await self.credentials.get_token(target_url)
        if not token:
            raise SubmissionError(f"No GitHub credentials configured for {location.host}")

        content = self.composer.compose(info, len(changes))

        async with self._client(location.host, token) as client:
            try:
                base_branch = location.branch or await self._default_branch(client, location)

                existing = await self._find_open_pull_request(client, location, content.branch_name)
                if existing is not None:
                    logger.info(
                        f"Pull request already open for {location.slug} branch {content.branch_name}",
                        extra={"repository": location.slug, "pull_request_url": existing.url}
                    )
                    return existing

                base_sha = await self._get_branch_sha(client, location, base_branch)
                base_tree = await self._get_commit_tree(client, location, base_sha)
                tree_sha = await self._create_tree(client, location, base_tree, changes)
                commit_sha = await self._create_commit(
                    client, location, content.commit_message, tree_sha, base_sha
                )
                await self._create_branch(client, location, content.branch_name, commit_sha)
                result = await self._open_pull_request(client, location, content, base_branch)
            except httpx.HTTPError as e:
                raise SubmissionError(f"GitHub request failed for {location.slug}: {e}") from e

            logger.info(
                f"Created pull request #{result.number} in {location.slug}",
                extra={"repository": location.slug, "pull_request_url": result.url}
            )

            if reviewer is not None:
                requested = await self._request_review(client, location, result.number, reviewer)
                result = result.model_copy(update={"reviewer_requested": requested})

        return result

    async def _find_open_pull_request(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        branch: str
    ) -> Optional[PullRequestResult]:
        response = await self._call(
            client,
            "GET",
            f"{self._repo_endpoint(location)}/pulls",
            params={"head": f"{location.owner}:{branch}", "state": "open"}
        )
        pulls = self._expect(response, f"Listing pull requests of {location.slug}")
        if not pulls:
            return None

        pull = pulls[0]
        return PullRequestResult(
            number=pull["number"],
            url=pull["html_url"],
            branch=branch,
            existing=True
        )

    async def _get_branch_sha(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        branch: str
    ) -> str:
        response = await self._call(
            client, "GET", f"{self._repo_endpoint(location)}/git/ref/heads/{quote(branch, safe='/')}"
        )
        payload = self._expect(response, f"Resolving branch {branch} of {location.slug}")
        return payload["object"]["sha"]

    async def _get_commit_tree(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        commit_sha: str
    ) -> str:
        response = await self._call(
            client, "GET", f"{self._repo_endpoint(location)}/git/commits/{commit_sha}"
        )
        payload = self._expect(response, f"Reading commit {commit_sha}")
        return payload["tree"]["sha"]

    async def _create_tree(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        base_tree: str,
        changes: FileChangeSet
    ) -> str:
        entries: List[Dict[str, Any]] = []
        for path, change in changes.changes.items():
            entry: Dict[str, Any] = {
                "path": location.qualify(path),
                "mode": "100644",
                "type": "blob",
            }
            if change.change_type == ChangeType.DELETE:
                entry["sha"] = None
            else:
                entry["content"] = change.content
            entries.append(entry)

        response = await self._call(
            client,
            "POST",
            f"{self._repo_endpoint(location)}/git/trees",
            json={"base_tree": base_tree, "tree": entries}
        )
        payload = self._expect(response, f"Creating tree in {location.slug}", expected=(201,))
        return payload["sha"]

    async def _create_commit(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        message: str,
        tree_sha: str,
        parent_sha: str
    ) -> str:
        response = await self._call(
            client,
            "POST",
            f"{self._repo_endpoint(location)}/git/commits",
            json={"message": message, "tree": tree_sha, "parents": [parent_sha]}
        )
        payload = self._expect(response, f"Creating commit in {location.slug}", expected=(201,))
        return payload["sha"]

    async def _create_branch(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        branch: str,
        commit_sha: str
    ) -> None:
        response = await self._call(
            client,
            "POST",
            f"{self._repo_endpoint(location)}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": commit_sha}
        )
        if response.status_code == 422:
            raise SubmissionError(
                f"Branch {branch} already exists in {location.slug}: {self._message(response)}"
            )
        self._expect(response, f"Creating branch {branch} in {location.slug}", expected=(201,))

    async def _open_pull_request(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        content: PullRequestContent,
        base_branch: str
    ) -> PullRequestResult:
        response = await self._call(
            client,
            "POST",
            f"{self._repo_endpoint(location)}/pulls",
            json={
                "title": content.title,
                "body": content.body,
                "head": content.branch_name,
                "base": base_branch,
            }
        )
        payload = self._expect(response, f"Opening pull request in {location.slug}", expected=(201,))
        return PullRequestResult(
            number=payload["number"],
            url=payload["html_url"],
            branch=content.branch_name
        )

    async def _request_review(
        self,
        client: httpx.AsyncClient,
        location: RepositoryLocation,
        number: int,
        reviewer: Identity
    ) -> bool:
        try:
            response = await self._call(
                client,
                "POST",
                f"{self._repo_endpoint(location)}/pulls/{number}/requested_reviewers",
                json={"reviewers": [reviewer.id]}
            )
            self._expect(response, f"Requesting review from {reviewer.id}", expected=(200, 201))
        except (SyncError, httpx.HTTPError) as e:
            logger.warning(
                f"Failed to request review from {reviewer.id} on {location.slug}#{number}: {e}",
                extra={"repository": location.slug, "reviewer": reviewer.id}
            )
            return False

        return True

"""
Azure DevOps provider.

This module reads repository trees and opens template upgrade pull requests
using the Azure DevOps Python SDK. The SDK is synchronous, so every call runs
in a worker thread.
"""

import asyncio
import functools
import time
from typing import Any, Callable, List, Optional, Sequence, Union
from urllib.parse import parse_qs, quote, unquote, urlencode, urlparse

from azure.devops.connection import Connection
from azure.devops.v7_1.git import GitClient
from azure.devops.v7_1.git.models import (
    Change,
    GitCommitRef,
    GitItem,
    GitPullRequest,
    GitPullRequestSearchCriteria,
    GitPush,
    GitRefUpdate,
    GitVersionDescriptor,
    IdentityRefWithVote,
    ItemContent,
)
from msrest.authentication import BasicAuthentication
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

logger = get_logger(__name__, provider="azure-devops")

PROJECT_REPO_ANNOTATION = "dev.azure.com/project-repo"
HOST_ORG_ANNOTATION = "dev.azure.com/host-org"
EMAIL_ANNOTATION = "microsoft.com/email"

VISUALSTUDIO_SUFFIX = ".visualstudio.com"

_CHANGE_TYPES = {
    ChangeType.ADD: "add",
    ChangeType.EDIT: "edit",
    ChangeType.DELETE: "delete",
}

_RATE_LIMIT_KEYWORDS = ("rate limit", "too many requests", "429")


def _is_rate_limited(error: Exception) -> bool:
    if getattr(error, "status_code", None) == 429:
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in _RATE_LIMIT_KEYWORDS)


def _download_item(git_client: GitClient, **kwargs: Any) -> bytes:
    # get_item_content streams lazily, so the chunks must be read in the worker thread
    return b"".join(git_client.get_item_content(**kwargs))


def _strip_heads(ref_name: Optional[str]) -> Optional[str]:
    if ref_name and ref_name.startswith("refs/heads/"):
        return ref_name[len("refs/heads/"):]
    return ref_name


class AzureDevOpsProvider(VcsProvider):
    """VCS provider for Azure DevOps Services (dev.azure.com and *.visualstudio.com)."""

    def __init__(
        self,
        catalog: CatalogClient,
        credentials: CredentialsProvider,
        hosts: Optional[Sequence[str]] = None,
        composer: Optional[PullRequestComposer] = None,
        connection_factory: Optional[Callable[[str, str], Connection]] = None,
    ):
        """
        Initialize the Azure DevOps provider.

        Args:
            catalog: Catalog used to resolve owners to reviewers
            credentials: Token lookup per repository URL
            hosts: Recognized hostnames (default: dev.azure.com);
                <org>.visualstudio.com hosts are always recognized
            composer: Pull request text composer
            connection_factory: Builds a Connection from (organization_url, token)
        """
        self.catalog = catalog
        self.credentials = credentials
        self.hosts = [host.lower() for host in (hosts or ["dev.azure.com"])]
        self.composer = composer or PullRequestComposer()
        self._connection_factory = connection_factory or self._create_connection

    @property
    def name(self) -> str:
        return "azure-devops"

    @staticmethod
    def _create_connection(organization_url: str, token: str) -> Connection:
        credentials = BasicAuthentication('', token)
        return Connection(base_url=organization_url, creds=credentials)

    def _recognizes_host(self, host: str) -> bool:
        return host in self.hosts or host.endswith(VISUALSTUDIO_SUFFIX)

    def can_handle(self, target: Union[str, Entity]) -> bool:
        if isinstance(target, Entity):
            return self.extract_repo_url(target) is not None
        return self.parse_url(target) is not None

    def parse_url(self, url: str) -> Optional[RepositoryLocation]:
        """
        Parse an Azure DevOps repository URL.

        Supported formats:
        - https://dev.azure.com/<org>/<project>/_git/<repo>
        - https://<org>.visualstudio.com/<project>/_git/<repo>
        - either of the above with ?path=<dir>&version=GB<branch>
        """
        if not isinstance(url, str) or not url.strip():
            return None
        url = strip_location_prefix(url)

        try:
            parsed = urlparse(url)
            host = (parsed.hostname or "").lower()
        except ValueError:
            return None

        if parsed.scheme not in ("http", "https") or not self._recognizes_host(host):
            return None

        parts = [unquote(part) for part in parsed.path.split("/") if part]
        if "_git" not in parts:
            return None
        git_index = parts.index("_git")
        if git_index + 1 >= len(parts):
            return None

        repo = parts[git_index + 1]
        if host.endswith(VISUALSTUDIO_SUFFIX):
            organization = host[:-len(VISUALSTUDIO_SUFFIX)]
            if git_index < 1:
                return None
        else:
            if git_index != 2:
                return None
            organization = parts[0]
        project = parts[git_index - 1]

        query = parse_qs(parsed.query)
        path = (query.get("path") or [""])[0].strip("/") or None
        branch = None
        version = (query.get("version") or [""])[0]
        if version.startswith("GB") and len(version) > 2:
            branch = version[2:]

        try:
            return RepositoryLocation(
                host=host,
                owner=organization,
                project=project,
                repo=repo,
                branch=branch,
                path=path
            )
        except ValidationError:
            return None

    def _organization_url(self, location: RepositoryLocation) -> str:
        if location.host.endswith(VISUALSTUDIO_SUFFIX):
            return f"https://{location.host}"
        return f"https://{location.host}/{quote(location.owner)}"

    def build_url(self, location: RepositoryLocation) -> str:
        url = (
            f"{self._organization_url(location)}/{quote(location.project or location.repo)}"
            f"/_git/{quote(location.repo)}"
        )
        query = {}
        if location.path:
            query["path"] = "/" + location.path.strip("/")
        if location.branch:
            query["version"] = f"GB{location.branch}"
        if query:
            url += "?" + urlencode(query)
        return url

    def extract_repo_url(self, entity: Entity) -> Optional[str]:
        source_location = entity.annotation(SOURCE_LOCATION_ANNOTATION)
        if source_location:
            url = strip_location_prefix(source_location)
            if self.parse_url(url) is not None:
                return url

        project_repo = entity.annotation(PROJECT_REPO_ANNOTATION)
        host_org = entity.annotation(HOST_ORG_ANNOTATION)
        if project_repo and host_org:
            project, _, repo = project_repo.strip().partition("/")
            host, _, organization = host_org.strip().partition("/")
            if project and repo and host and organization:
                url = f"https://{host}/{organization}/{project}/_git/{repo}"
                if self.parse_url(url) is not None:
                    return url

        return None

    @retry_with_backoff(
        max_retries=HOST_CALL_ATTEMPTS, base_delay=2.0, max_delay=60.0, exceptions=(RateLimitError,)
    )
    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run one SDK call in a worker thread; throttling raises RateLimitError."""
        operation = getattr(func, "__name__", "sdk_call")
        start_time = time.time()
        try:
            result = await asyncio.to_thread(func, *args, **kwargs)
        except Exception as e:
            log_api_call(
                logger,
                service=self.name,
                endpoint=operation,
                method="SDK",
                duration_ms=(time.time() - start_time) * 1000,
                error=str(e)
            )
            if _is_rate_limited(e):
                raise RateLimitError(f"Azure DevOps rate limit exceeded: {e}") from e
            raise

        log_api_call(
            logger,
            service=self.name,
            endpoint=operation,
            method="SDK",
            duration_ms=(time.time() - start_time) * 1000
        )
        return result

    def _git_client(self, location: RepositoryLocation, token: str) -> GitClient:
        connection = self._connection_factory(self._organization_url(location), token)
        return connection.clients.get_git_client()

    async def read_tree(self, location: RepositoryLocation) -> ReadTreeResponse:
        token = await self.credentials.get_token(self.build_url(location))
        if not token:
            raise FetchError(f"No Azure DevOps credentials configured for {location.host}")

        scope = "/" + (location.path or "").strip("/")
        version = None
        if location.branch:
            version = GitVersionDescriptor(version=location.branch, version_type="branch")

        try:
            git_client = self._git_client(location, token)
            items = await self._call(
                git_client.get_items,
                repository_id=location.repo,
                project=location.project,
                scope_path=scope,
                recursion_level="Full",
                version_descriptor=version
            )
        except Exception as e:
            raise FetchError(f"Failed to list tree of {location.slug}: {e}") from e

        prefix = scope.rstrip("/") + "/"
        files: List[TreeFile] = []
        for item in items or []:
            if item.is_folder or not item.path or not item.path.startswith(prefix):
                continue
            loader = functools.partial(self._read_item, git_client, location, item.path, version)
            files.append(TreeFile(item.path[len(prefix):], loader))

        logger.debug(
            f"Listed {len(files)} files in {location.slug}",
            extra={"repository": location.slug, "file_count": len(files)}
        )
        return ReadTreeResponse(files)

    async def _read_item(
        self,
        git_client: GitClient,
        location: RepositoryLocation,
        path: str,
        version: Optional[GitVersionDescriptor]
    ) -> bytes:
        return await self._call(
            _download_item,
            git_client,
            repository_id=location.repo,
            path=path,
            project=location.project,
            download=True,
            version_descriptor=version
        )

    async def get_reviewer_from_owner(
        self,
        entity: Entity,
        token: Optional[str] = None
    ) -> Optional[Identity]:
        owner = await resolve_owner_user(self.catalog, entity, token)
        if owner is None:
            return None

        email = owner.annotation(EMAIL_ANNOTATION)
        if not email:
            logger.debug(f"Owner {owner.ref} has no {EMAIL_ANNOTATION} annotation")
            return None

        repo_url = self.extract_repo_url(entity)
        location = self.parse_url(repo_url) if repo_url else None
        if location is None:
            return None

        try:
            host_token = await self.credentials.get_token(repo_url)
            if not host_token:
                return None
            connection = self._connection_factory(self._organization_url(location), host_token)
            identity_client = connection.clients.get_identity_client()
            identities = await self._call(
                identity_client.read_identities,
                search_filter="General",
                filter_value=email.strip()
            )
        except Exception as e:
            logger.warning(f"Failed to resolve Azure DevOps identity for {email}: {e}")
            return None

        if not identities:
            logger.debug(f"No Azure DevOps identity found for {email}")
            return None

        identity = identities[0]
        return Identity(
            id=str(identity.id),
            display_name=identity.provider_display_name or owner.display_name
        )

    async def create_pull_request(
        self,
        target_url: str,
        changes: FileChangeSet,
        info: TemplateInfo,
        reviewer: Optional[Identity] = None
    ) -> PullRequestResult:
        location = self.parse_url(target_url)
        if location is None:
            raise SubmissionError(f"Not an Azure DevOps repository URL: {target_url}")
        if changes.is_empty():
            raise SubmissionError(f"No file changes to submit for {location.slug}")

        token = await self.credentials.get_token(target_url)
        if not token:
            raise SubmissionError(f"No Azure DevOps credentials configured for {location.host}")

        content = self.composer.compose(info, len(changes))

        try:
            git_client = self._git_client(location, token)
            repository = await self._call(
                git_client.get_repository, location.repo, project=location.project
            )
            base_branch = location.branch or _strip_heads(repository.default_branch) or "main"

            existing = await self._find_open_pull_request(
                git_client, location, repository.id, content.branch_name
            )
            if existing is not None:
                logger.info(
                    f"Pull request already open for {location.slug} branch {content.branch_name}",
                    extra={"repository": location.slug, "pull_request_url": existing.url}
                )
                return existing

            base_commit = await self._get_branch_commit(git_client, location, repository.id, base_branch)
            await self._push_changes(git_client, location, repository.id, content, base_commit, changes)
            result = await self._open_pull_request(
                git_client, location, repository.id, content, base_branch
            )
        except SubmissionError:
            raise
        except Exception as e:
            raise SubmissionError(f"Azure DevOps request failed for {location.slug}: {e}") from e

        logger.info(
            f"Created pull request {result.number} in {location.slug}",
            extra={"repository": location.slug, "pull_request_url": result.url}
        )

        if reviewer is not None:
            requested = await self._request_review(git_client, location, repository.id, result.number, reviewer)
            result = result.model_copy(update={"reviewer_requested": requested})

        return result

    def _pull_request_url(self, location: RepositoryLocation, number: int) -> str:
        return (
            f"{self._organization_url(location)}/{quote(location.project or location.repo)}"
            f"/_git/{quote(location.repo)}/pullrequest/{number}"
        )

    async def _find_open_pull_request(
        self,
        git_client: GitClient,
        location: RepositoryLocation,
        repository_id: str,
        branch: str
    ) -> Optional[PullRequestResult]:
        criteria = GitPullRequestSearchCriteria(
            source_ref_name=f"refs/heads/{branch}",
            status="active"
        )
        pulls = await self._call(
            git_client.get_pull_requests,
            repository_id,
            criteria,
            project=location.project
        )
        if not pulls:
            return None

        number = pulls[0].pull_request_id
        return PullRequestResult(
            number=number,
            url=self._pull_request_url(location, number),
            branch=branch,
            existing=True
        )

    async def _get_branch_commit(
        self,
        git_client: GitClient,
        location: RepositoryLocation,
        repository_id: str,
        branch: str
    ) -> str:
        response = await self._call(
            git_client.get_refs,
            repository_id,
            project=location.project,
            filter=f"heads/{branch}"
        )
        # Recent SDK versions wrap the ref list in a response object
        refs = getattr(response, "value", response) or []

        for ref in refs:
            if ref.name == f"refs/heads/{branch}":
                return ref.object_id

        raise SubmissionError(f"Base branch {branch} not found in {location.slug}")

    async def _push_changes(
        self,
        git_client: GitClient,
        location: RepositoryLocation,
        repository_id: str,
        content: PullRequestContent,
        base_commit: str,
        changes: FileChangeSet
    ) -> None:
        git_changes = []
        for path, change in changes.changes.items():
            item = GitItem(path="/" + location.qualify(path).lstrip("/"))
            if change.change_type == ChangeType.DELETE:
                git_changes.append(Change(change_type="delete", item=item))
            else:
                git_changes.append(Change(
                    change_type=_CHANGE_TYPES[change.change_type],
                    item=item,
                    new_content=ItemContent(content=change.content, content_type="rawtext")
                ))

        push = GitPush(
            ref_updates=[GitRefUpdate(
                name=f"refs/heads/{content.branch_name}",
                old_object_id=base_commit
            )],
            commits=[GitCommitRef(comment=content.commit_message, changes=git_changes)]
        )

        try:
            await self._call(git_client.create_push, push, repository_id, project=location.project)
        except RateLimitError:
            raise
        except Exception as e:
            raise SubmissionError(
                f"Pushing branch {content.branch_name} to {location.slug} failed: {e}"
            ) from e

    async def _open_pull_request(
        self,
        git_client: GitClient,
        location: RepositoryLocation,
        repository_id: str,
        content: PullRequestContent,
        base_branch: str
    ) -> PullRequestResult:
        pull_request = GitPullRequest(
            source_ref_name=f"refs/heads/{content.branch_name}",
            target_ref_name=f"refs/heads/{base_branch}",
            title=content.title,
            description=content.body
        )
        created = await self._call(
            git_client.create_pull_request,
            pull_request,
            repository_id,
            project=location.project
        )

        number = created.pull_request_id
        return PullRequestResult(
            number=number,
            url=self._pull_request_url(location, number),
            branch=content.branch_name
        )

    async def _request_review(
        self,
        git_client: GitClient,
        location: RepositoryLocation,
        repository_id: str,
        number: int,
        reviewer: Identity
    ) -> bool:
        try:
            await self._call(
                git_client.create_pull_request_reviewer,
                IdentityRefWithVote(id=reviewer.id, vote=0),
                repository_id,
                number,
                reviewer.id,
                project=location.project
            )
        except Exception as e:
            logger.warning(
                f"Failed to add reviewer {reviewer.id} to {location.slug} pull request {number}: {e}",
                extra={"repository": location.slug, "reviewer": reviewer.id}
            )
            return False

        return True

"""Unit tests for AzureDevOpsProvider."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from azure.devops.v7_1.git.models import Change, GitItem, GitPullRequest, GitRef, GitRepository

from scaffold_sync.models import (
    ChangeType,
    Entity,
    FileChange,
    FileChangeSet,
    Identity,
    RepositoryLocation,
    TemplateInfo,
)
from scaffold_sync.providers.azure_devops import AzureDevOpsProvider
from scaffold_sync.providers.base import FetchError, SubmissionError
from scaffold_sync.services.catalog import InMemoryCatalog
from scaffold_sync.services.credentials import StaticCredentialsProvider

REPO_URL = "https://dev.azure.com/contoso/platform/_git/payments"


@pytest.fixture
def mock_git_client():
    """Create a mock GitClient."""
    client = Mock()
    client.get_repository.return_value = GitRepository(id="repo-id", default_branch="refs/heads/main")
    client.get_pull_requests.return_value = []
    client.get_refs.return_value = [
        GitRef(name="refs/heads/main-old", object_id="wrong"),
        GitRef(name="refs/heads/main", object_id="base-commit"),
    ]
    client.create_pull_request.return_value = GitPullRequest(pull_request_id=42)
    return client


@pytest.fixture
def mock_identity_client():
    client = Mock()
    identity = Mock()
    identity.id = "identity-guid"
    identity.provider_display_name = "Jane Doe"
    client.read_identities.return_value = [identity]
    return client


@pytest.fixture
def mock_connection(mock_git_client, mock_identity_client):
    connection = Mock()
    connection.clients.get_git_client.return_value = mock_git_client
    connection.clients.get_identity_client.return_value = mock_identity_client
    return connection


@pytest.fixture
def catalog():
    return InMemoryCatalog([
        Entity(kind="User", metadata={"name": "jdoe", "annotations": {"microsoft.com/email": "jdoe@contoso.com"}}),
        Entity(kind="User", metadata={"name": "nomail"}),
    ])


@pytest.fixture
def connection_factory(mock_connection):
    return Mock(return_value=mock_connection)


@pytest.fixture
def provider(catalog, connection_factory):
    return AzureDevOpsProvider(
        catalog=catalog,
        credentials=StaticCredentialsProvider({"dev.azure.com": "pat"}),
        connection_factory=connection_factory,
    )


@pytest.fixture
def info():
    return TemplateInfo(
        owner="contoso",
        repo="templates",
        display_name="Service Template",
        previous_version="1",
        current_version="2",
        component_name="payments",
    )


@pytest.fixture
def changes():
    change_set = FileChangeSet()
    change_set.add(FileChange(file_path="README.md", change_type=ChangeType.EDIT, content="# payments\n"))
    change_set.add(FileChange(file_path="docs/new.md", change_type=ChangeType.ADD, content="new\n"))
    change_set.add(FileChange(file_path="old.cfg", change_type=ChangeType.DELETE))
    return change_set


def _component(owner="user:jdoe", **annotations) -> Entity:
    annotations.setdefault("dev.azure.com/project-repo", "platform/payments")
    annotations.setdefault("dev.azure.com/host-org", "dev.azure.com/contoso")
    return Entity(kind="Component", metadata={"name": "payments", "annotations": annotations}, spec={"owner": owner})


class TestParseUrl:
    """Test Azure DevOps URL parsing."""

    def test_dev_azure_url(self, provider):
        location = provider.parse_url(REPO_URL)

        assert location == RepositoryLocation(
            host="dev.azure.com", owner="contoso", project="platform", repo="payments"
        )

    def test_visualstudio_url(self, provider):
        location = provider.parse_url("https://contoso.visualstudio.com/platform/_git/payments")

        assert (location.owner, location.project, location.repo) == ("contoso", "platform", "payments")

    def test_path_and_version_query(self, provider):
        location = provider.parse_url(f"url:{REPO_URL}?path=/templates/python&version=GBrelease/2")

        assert location.path == "templates/python"
        assert location.branch == "release/2"

    @pytest.mark.parametrize("url", [
        "",
        "https://github.com/org/svc",
        "https://dev.azure.com/contoso/platform",
        "https://dev.azure.com/contoso/_git/payments",
        "https://dev.azure.com/contoso/platform/_git/",
    ])
    def test_invalid_urls(self, provider, url):
        assert provider.parse_url(url) is None

    def test_build_url_round_trip(self, provider):
        url = f"{REPO_URL}?path=%2Ftemplates&version=GBmain"
        location = provider.parse_url(url)

        assert provider.parse_url(provider.build_url(location)) == location


class TestExtractRepoUrl:
    """Test repository URL extraction from entities."""

    def test_from_project_repo_annotations(self, provider):
        assert provider.extract_repo_url(_component()) == REPO_URL

    def test_prefers_source_location(self, provider):
        entity = _component(**{"backstage.io/source-location": "url:https://contoso.visualstudio.com/p/_git/r"})

        assert provider.extract_repo_url(entity) == "https://contoso.visualstudio.com/p/_git/r"

    def test_missing_host_org(self, provider):
        entity = Entity(
            kind="Component",
            metadata={"name": "x", "annotations": {"dev.azure.com/project-repo": "platform/payments"}},
        )

        assert provider.extract_repo_url(entity) is None


class TestReadTree:
    """Test tree reading."""

    @pytest.mark.asyncio
    async def test_lists_files_relative_to_path(self, provider, mock_git_client, connection_factory):
        mock_git_client.get_items.return_value = [
            GitItem(path="/templates", is_folder=True),
            GitItem(path="/templates/README.md", is_folder=False),
            GitItem(path="/templates/src/app.py", is_folder=False),
        ]
        mock_git_client.get_item_content.return_value = iter([b"# {{ name }}", b"\n"])

        location = provider.parse_url(f"{REPO_URL}?path=/templates&version=GBmain")
        response = await provider.read_tree(location)
        files = response.files()

        assert [f.path for f in files] == ["README.md", "src/app.py"]
        assert await files[0].content() == b"# {{ name }}\n"
        connection_factory.assert_called_with("https://dev.azure.com/contoso", "pat")

        kwargs = mock_git_client.get_items.call_args.kwargs
        assert kwargs["scope_path"] == "/templates"
        assert kwargs["recursion_level"] == "Full"
        assert kwargs["version_descriptor"].version == "main"

    @pytest.mark.asyncio
    async def test_listing_failure_raises_fetch_error(self, provider, mock_git_client):
        mock_git_client.get_items.side_effect = Exception("TF401019: repository does not exist")

        with pytest.raises(FetchError):
            await provider.read_tree(provider.parse_url(REPO_URL))

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_fetch_error(self, catalog, connection_factory):
        provider = AzureDevOpsProvider(catalog, StaticCredentialsProvider({}), connection_factory=connection_factory)

        with pytest.raises(FetchError):
            await provider.read_tree(provider.parse_url(REPO_URL))

    @pytest.mark.asyncio
    async def test_default_connection_uses_basic_auth(self, catalog, mock_connection, mock_git_client):
        mock_git_client.get_items.return_value = []

        with patch("scaffold_sync.providers.azure_devops.Connection") as mock_conn, \
                patch("scaffold_sync.providers.azure_devops.BasicAuthentication") as mock_auth:
            mock_conn.return_value = mock_connection
            provider = AzureDevOpsProvider(catalog, StaticCredentialsProvider({"dev.azure.com": "pat"}))
            await provider.read_tree(provider.parse_url(REPO_URL))

        mock_auth.assert_called_once_with('', "pat")
        assert mock_conn.call_args.kwargs["base_url"] == "https://dev.azure.com/contoso"


class TestReviewer:
    """Test reviewer resolution."""

    @pytest.mark.asyncio
    async def test_resolves_identity_from_email(self, provider, mock_identity_client):
        reviewer = await provider.get_reviewer_from_owner(_component())

        assert reviewer == Identity(id="identity-guid", display_name="Jane Doe")
        mock_identity_client.read_identities.assert_called_once_with(
            search_filter="General", filter_value="jdoe@contoso.com"
        )

    @pytest.mark.asyncio
    async def test_user_without_email(self, provider):
        assert await provider.get_reviewer_from_owner(_component(owner="user:nomail")) is None

    @pytest.mark.asyncio
    async def test_identity_lookup_failure(self, provider, mock_identity_client):
        mock_identity_client.read_identities.side_effect = Exception("boom")

        assert await provider.get_reviewer_from_owner(_component()) is None

    @pytest.mark.asyncio
    async def test_no_identity_found(self, provider, mock_identity_client):
        mock_identity_client.read_identities.return_value = []

        assert await provider.get_reviewer_from_owner(_component()) is None


class TestCreatePullRequest:
    """Test pull request submission."""

    @pytest.mark.asyncio
    async def test_push_and_pull_request(self, provider, mock_git_client, changes, info):
        result = await provider.create_pull_request(REPO_URL, changes, info, Identity(id="identity-guid"))

        assert result.number == 42
        assert result.url == "https://dev.azure.com/contoso/platform/_git/payments/pullrequest/42"
        assert result.branch == "payments/template-upgrade-v2"
        assert result.reviewer_requested is True

        push = mock_git_client.create_push.call_args.args[0]
        assert push.ref_updates[0].name == "refs/heads/payments/template-upgrade-v2"
        assert push.ref_updates[0].old_object_id == "base-commit"
        assert all(isinstance(c, Change) for c in push.commits[0].changes)
        git_changes = {c.item.path: c for c in push.commits[0].changes}
        assert git_changes["/README.md"].change_type == "edit"
        assert git_changes["/README.md"].new_content.content == "# payments\n"
        assert git_changes["/docs/new.md"].change_type == "add"
        assert git_changes["/old.cfg"].change_type == "delete"
        assert git_changes["/old.cfg"].new_content is None

        pull_request = mock_git_client.create_pull_request.call_args.args[0]
        assert pull_request.target_ref_name == "refs/heads/main"
        assert pull_request.title == "Template Upgrade: Update Service Template from 1 to 2"

        reviewer_args = mock_git_client.create_pull_request_reviewer.call_args.args
        assert reviewer_args[1:] == ("repo-id", 42, "identity-guid")

    @pytest.mark.asyncio
    async def test_returns_existing_pull_request(self, provider, mock_git_client, changes, info):
        mock_git_client.get_pull_requests.return_value = [GitPullRequest(pull_request_id=5)]

        result = await provider.create_pull_request(REPO_URL, changes, info)

        assert result.existing is True
        assert result.number == 5
        mock_git_client.create_push.assert_not_called()

    @pytest.mark.asyncio
    async def test_push_rejection_raises_submission_error(self, provider, mock_git_client, changes, info):
        mock_git_client.create_push.side_effect = Exception("TF401028: The reference has already been updated")

        with pytest.raises(SubmissionError):
            await provider.create_pull_request(REPO_URL, changes, info)

        mock_git_client.create_pull_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_base_branch(self, provider, mock_git_client, changes, info):
        mock_git_client.get_refs.return_value = []

        with pytest.raises(SubmissionError, match="not found"):
            await provider.create_pull_request(REPO_URL, changes, info)

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, provider, mock_git_client, changes, info):
        mock_git_client.create_pull_request.side_effect = [
            Exception("Too Many Requests"),
            GitPullRequest(pull_request_id=43),
        ]

        with patch("scaffold_sync.utils.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await provider.create_pull_request(REPO_URL, changes, info)

        assert result.number == 43
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rate_limit_gives_up_after_four_attempts(self, provider, mock_git_client, changes, info):
        mock_git_client.create_pull_request.side_effect = Exception("Too Many Requests")

        with patch("scaffold_sync.utils.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(SubmissionError, match="rate limit"):
                await provider.create_pull_request(REPO_URL, changes, info)

        assert mock_git_client.create_pull_request.call_count == 4
        assert sleep.await_count == 3

    @pytest.mark.asyncio
    async def test_reviewer_failure_is_not_fatal(self, provider, mock_git_client, changes, info):
        mock_git_client.create_pull_request_reviewer.side_effect = Exception("Identity not found")

        result = await provider.create_pull_request(REPO_URL, changes, info, Identity(id="ghost"))

        assert result.number == 42
        assert result.reviewer_requested is False

    @pytest.mark.asyncio
    async def test_paths_are_qualified_for_subdirectory_targets(self, provider, mock_git_client, changes, info):
        await provider.create_pull_request(f"{REPO_URL}?path=/services/payments", changes, info)

        push = mock_git_client.create_push.call_args.args[0]
        assert sorted(c.item.path for c in push.commits[0].changes) == [
            "/services/payments/README.md",
            "/services/payments/docs/new.md",
            "/services/payments/old.cfg",
        ]

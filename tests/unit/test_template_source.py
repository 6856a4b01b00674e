"""Unit tests for template source URL resolution."""

import pytest

from scaffold_sync.models import Entity
from scaffold_sync.providers import GitHubProvider, VcsProviderRegistry
from scaffold_sync.services.catalog import InMemoryCatalog
from scaffold_sync.services.credentials import StaticCredentialsProvider
from scaffold_sync.services.template_source import extract_template_source_url, is_relative_url


@pytest.fixture
def registry():
    return VcsProviderRegistry([GitHubProvider(InMemoryCatalog(), StaticCredentialsProvider())])


def _template(steps, source_location="url:https://github.com/platform/templates/tree/main/python/") -> Entity:
    annotations = {"backstage.io/source-location": source_location} if source_location else {}
    return Entity(
        apiVersion="scaffolder.backstage.io/v1beta3",
        kind="Template",
        metadata={"name": "python-service", "annotations": annotations},
        spec={"steps": steps},
    )


def _fetch(url, action="fetch:template"):
    return {"id": "fetch", "action": action, "input": {"url": url}}


@pytest.mark.parametrize("url, expected", [
    ("./skeleton", True),
    ("skeleton", True),
    ("https://github.com/org/repo", False),
    ("git@github.com:org/repo.git", False),
])
def test_is_relative_url(url, expected):
    assert is_relative_url(url) is expected


def test_absolute_url_is_returned_unchanged(registry):
    template = _template([_fetch("https://github.com/platform/skeletons/tree/main/python")])

    assert extract_template_source_url(template, registry) == \
        "https://github.com/platform/skeletons/tree/main/python"


def test_relative_url_is_joined_to_template_location(registry):
    template = _template([_fetch("./skeleton")])

    assert extract_template_source_url(template, registry) == \
        "https://github.com/platform/templates/tree/main/python/skeleton"


def test_relative_url_without_dot_prefix(registry):
    template = _template(
        [_fetch("skeleton")],
        source_location="url:https://github.com/platform/templates/tree/main/python"
    )

    assert extract_template_source_url(template, registry) == \
        "https://github.com/platform/templates/tree/main/python/skeleton"


def test_first_fetch_template_step_wins(registry):
    template = _template([
        {"id": "log", "action": "debug:log", "input": {"message": "hi"}},
        _fetch("https://github.com/org/plain", action="fetch:plain"),
        {"id": "broken", "action": "fetch:template", "input": {"values": {}}},
        _fetch("https://github.com/org/first"),
        _fetch("https://github.com/org/second"),
    ])

    assert extract_template_source_url(template, registry) == "https://github.com/org/first"


def test_no_fetch_template_step(registry):
    template = _template([{"id": "publish", "action": "publish:github", "input": {}}])

    assert extract_template_source_url(template, registry) is None


def test_missing_steps(registry):
    template = Entity(kind="Template", metadata={"name": "empty"})

    assert extract_template_source_url(template, registry) is None


def test_relative_url_without_template_location(registry):
    template = _template([_fetch("./skeleton")], source_location=None)

    assert extract_template_source_url(template, registry) is None


def test_relative_url_against_project_slug_uses_default_branch(registry):
    template = _template([_fetch("./skeleton")], source_location=None)
    template.metadata.annotations["github.com/project-slug"] = "platform/templates"

    url = extract_template_source_url(template, registry)

    assert url == "https://github.com/platform/templates/tree/HEAD/skeleton"
    location = registry.get_provider_for_url(url).parse_url(url)
    assert (location.repo, location.branch, location.path) == ("templates", None, "skeleton")


@pytest.mark.parametrize("relative, expected", [
    ("../shared", "https://github.com/platform/templates/tree/main/shared"),
    (".", "https://github.com/platform/templates/tree/main/python"),
    ("./nested/./skeleton/", "https://github.com/platform/templates/tree/main/python/nested/skeleton"),
])
def test_relative_url_is_normalized(registry, relative, expected):
    assert extract_template_source_url(_template([_fetch(relative)]), registry) == expected


def test_relative_url_outside_repository_is_rejected(registry):
    template = _template([_fetch("../../elsewhere")])

    assert extract_template_source_url(template, registry) is None

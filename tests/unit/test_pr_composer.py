"""
Unit tests for pull request composition.
"""

import re

import pytest

from scaffold_sync.models import TemplateInfo
from scaffold_sync.services.pr_composer import PullRequestComposer, sanitize_for_branch


@pytest.fixture
def composer():
    return PullRequestComposer()


@pytest.fixture
def info():
    return TemplateInfo(
        owner="platform",
        repo="templates",
        display_name="Python Service",
        previous_version="1.0.0",
        current_version="1.1.0",
        component_name="payments-api",
    )


class TestSanitizeForBranch:
    """Test branch segment sanitization."""

    def test_mixed_input(self):
        result = sanitize_for_branch("My Component!! v1.0..0")

        assert re.fullmatch(r"[a-z0-9._-]+", result)
        assert ".." not in result
        assert not result.startswith((".", "-"))
        assert not result.endswith((".", "-"))
        assert result == "my-component---v1.0.0"

    @pytest.mark.parametrize("value,expected", [
        ("Payments_API", "payments_api"),
        ("..hidden..", "hidden"),
        ("--dash--", "dash"),
        ("a...b", "a.b"),
        ("!!!", ""),
    ])
    def test_cases(self, value, expected):
        assert sanitize_for_branch(value) == expected


class TestPullRequestComposer:
    """Test composed texts."""

    def test_branch_name(self, composer, info):
        assert composer.branch_name(info) == "payments-api/template-upgrade-v1.1.0"

    def test_branch_name_is_deterministic(self, composer, info):
        assert composer.branch_name(info) == composer.branch_name(info.model_copy())

    def test_branch_name_fallbacks(self, composer):
        info = TemplateInfo(owner="o", repo="r", display_name="T", component_name="!!")

        assert composer.branch_name(info) == "component/template-upgrade-vlatest"

    def test_title_with_both_versions(self, composer, info):
        assert composer.title(info) == "Template Upgrade: Update Python Service from 1.0.0 to 1.1.0"

    def test_title_without_previous_version(self, composer, info):
        info = info.model_copy(update={"previous_version": None})

        assert composer.title(info) == "Template Upgrade: Update Python Service to 1.1.0"

    def test_title_without_versions(self, composer, info):
        info = info.model_copy(update={"previous_version": None, "current_version": None})

        assert composer.title(info) == "Template Upgrade: Update Python Service to new version"

    def test_commit_message_and_body_mention_source_and_count(self, composer, info):
        message = composer.commit_message(info, 3)
        body = composer.body(info, 3)

        for text in (message, body):
            assert "platform/templates" in text
            assert "3 file(s)" in text

    def test_compose(self, composer, info):
        content = composer.compose(info, 2)

        assert content.branch_name == "payments-api/template-upgrade-v1.1.0"
        assert content.title.startswith("Template Upgrade:")
        assert "2 file(s)" in content.body

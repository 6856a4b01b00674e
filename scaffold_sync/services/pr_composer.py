"""
Pull request text composition for template upgrades.

Every builder is a pure function of the TemplateInfo and the number of files,
so re-running a sync for the same template version yields the same branch.
"""

import re

from scaffold_sync.models import PullRequestContent, TemplateInfo

PROJECT_NAME = "scaffold-sync"

_INVALID_BRANCH_CHARS = re.compile(r"[^a-z0-9._-]")
_REPEATED_DOTS = re.compile(r"\.{2,}")
_EDGE_PUNCTUATION = re.compile(r"^[.-]+|[.-]+$")


def sanitize_for_branch(value: str) -> str:
    """
    Sanitize a string for use as a git branch name segment.

    Lowercases, replaces characters outside ``[a-z0-9._-]`` with ``-``,
    collapses repeated dots and trims leading/trailing dots and dashes.
    """
    value = _INVALID_BRANCH_CHARS.sub("-", value.lower())
    value = _REPEATED_DOTS.sub(".", value)
    return _EDGE_PUNCTUATION.sub("", value)


class PullRequestComposer:
    """Builds branch name, commit message, title and body for a template upgrade."""

    def branch_name(self, info: TemplateInfo) -> str:
        """Branch in the format ``<component>/template-upgrade-v<version>``."""
        component = sanitize_for_branch(info.component_name) or "component"
        version = sanitize_for_branch(info.current_version or "") or "latest"
        return f"{component}/template-upgrade-v{version}"

    def commit_message(self, info: TemplateInfo, files_count: int) -> str:
        return (
            "Update template to new version\n"
            "\n"
            f"This commit was automatically created by {PROJECT_NAME}.\n"
            "\n"
            f"Template source: {info.owner}/{info.repo}\n"
            f"Updated {files_count} file(s) to match the latest template version.\n"
            "\n"
            "Please manually review the changes to ensure they are correct before merging."
        )

    def title(self, info: TemplateInfo) -> str:
        if info.previous_version and info.current_version:
            return (
                f"Template Upgrade: Update {info.display_name} "
                f"from {info.previous_version} to {info.current_version}"
            )
        return f"Template Upgrade: Update {info.display_name} to {info.current_version or 'new version'}"

    def body(self, info: TemplateInfo, files_count: int) -> str:
        return "\n".join([
            f"This pull request was automatically created by {PROJECT_NAME} in order to keep "
            "the scaffolded repository in sync with its template.",
            "",
            f"**Template Source:** {info.owner}/{info.repo}",
            "",
            f"**Updated Files:** {files_count} file(s) have been updated to match the latest template version.",
            "",
            "⚠️ **Please manually review the changes to ensure they are correct before merging.**",
        ])

    def compose(self, info: TemplateInfo, files_count: int) -> PullRequestContent:
        return PullRequestContent(
            branch_name=self.branch_name(info),
            commit_message=self.commit_message(info, files_count),
            title=self.title(info),
            body=self.body(info, files_count),
        )

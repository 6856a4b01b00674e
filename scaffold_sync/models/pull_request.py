"""Pull request submission data models."""

from typing import Optional

from pydantic import BaseModel


class Identity(BaseModel):
    """Host-specific reviewer identity (GitHub login, Azure DevOps identity id)."""

    id: str
    display_name: Optional[str] = None


class PullRequestContent(BaseModel):
    """Branch, commit and pull request texts for a template upgrade."""

    branch_name: str
    commit_message: str
    title: str
    body: str


class PullRequestResult(BaseModel):
    """Outcome of a pull request submission."""

    number: int
    url: str
    branch: str
    reviewer_requested: bool = False
    existing: bool = False

"""Repository location data models."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RepositoryLocation(BaseModel):
    """Normalized location of a repository (or a directory inside it) on a VCS host."""

    model_config = ConfigDict(frozen=True)

    host: str
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    branch: Optional[str] = None
    path: Optional[str] = None
    # Azure DevOps nests repositories under a project inside the organization (owner)
    project: Optional[str] = None

    @property
    def slug(self) -> str:
        """Human-readable owner/repo identifier."""
        if self.project:
            return f"{self.owner}/{self.project}/{self.repo}"
        return f"{self.owner}/{self.repo}"

    def qualify(self, file_path: str) -> str:
        """Prefix a path relative to this location with the location's own path."""
        prefix = (self.path or "").strip("/")
        if not prefix:
            return file_path
        return f"{prefix}/{file_path}"

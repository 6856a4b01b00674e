"""File snapshot and file change data models."""

from enum import Enum
from typing import Dict, Iterator, Mapping, Optional

from pydantic import BaseModel, model_validator


class ChangeType(str, Enum):
    """Type of file change."""

    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"


class FileChange(BaseModel):
    """Replacement content for one file, or its deletion."""

    file_path: str
    change_type: ChangeType
    content: Optional[str] = None

    @model_validator(mode="after")
    def _content_matches_change_type(self) -> "FileChange":
        if self.change_type == ChangeType.DELETE and self.content is not None:
            raise ValueError("Deleted files carry no content")
        if self.change_type != ChangeType.DELETE and self.content is None:
            raise ValueError(f"{self.change_type.value} change requires content")
        return self


class FileChangeSet(BaseModel):
    """Set of file changes keyed by repository-relative path."""

    changes: Dict[str, FileChange] = {}

    def add(self, change: FileChange) -> None:
        self.changes[change.file_path] = change

    def files(self) -> Dict[str, Optional[str]]:
        """Return path -> new content, with None marking a deletion."""
        return {path: change.content for path, change in self.changes.items()}

    def is_empty(self) -> bool:
        return not self.changes

    def __len__(self) -> int:
        return len(self.changes)

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __contains__(self, path: object) -> bool:
        return path in self.changes

    def __getitem__(self, path: str) -> FileChange:
        return self.changes[path]

    def __iter__(self) -> Iterator[str]:  # type: ignore[override]
        return iter(self.changes)


class FileSnapshot(Mapping[str, str]):
    """
    Immutable point-in-time read of a repository tree.

    Maps forward-slash separated, repository-relative paths to text content.
    """

    def __init__(self, files: Optional[Mapping[str, str]] = None, source_url: Optional[str] = None):
        self._files: Dict[str, str] = dict(files or {})
        self.source_url = source_url

    def __getitem__(self, path: str) -> str:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def __repr__(self) -> str:
        return f"FileSnapshot(source_url={self.source_url!r}, files={len(self._files)})"

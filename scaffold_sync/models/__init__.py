"""Data models for scaffold-sync."""

from .entity import (
    DEFAULT_NAMESPACE,
    SOURCE_LOCATION_ANNOTATION,
    Entity,
    EntityMetadata,
    EntityRefError,
    normalize_entity_ref,
    parse_entity_ref,
    stringify_entity_ref,
)
from .error import ErrorRecord
from .file_change import ChangeType, FileChange, FileChangeSet, FileSnapshot
from .pull_request import Identity, PullRequestContent, PullRequestResult
from .repository import RepositoryLocation
from .sync_result import SyncReport, SyncResult, SyncStatus
from .template import TemplateInfo

__all__ = [
    # Catalog models
    "DEFAULT_NAMESPACE",
    "SOURCE_LOCATION_ANNOTATION",
    "Entity",
    "EntityMetadata",
    "EntityRefError",
    "normalize_entity_ref",
    "parse_entity_ref",
    "stringify_entity_ref",
    # Repository models
    "RepositoryLocation",
    # File models
    "ChangeType",
    "FileChange",
    "FileChangeSet",
    "FileSnapshot",
    # Template models
    "TemplateInfo",
    # Pull request models
    "Identity",
    "PullRequestContent",
    "PullRequestResult",
    # Sync outcome models
    "SyncStatus",
    "SyncResult",
    "SyncReport",
    # Error models
    "ErrorRecord",
]

"""Sync outcome data models."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from .error import ErrorRecord


class SyncStatus(str, Enum):
    """Outcome of syncing one target repository."""

    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncResult(BaseModel):
    """Per-target sync outcome."""

    entity_ref: str
    status: SyncStatus
    pull_request_url: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[ErrorRecord] = None

    @classmethod
    def created(cls, entity_ref: str, pull_request_url: str, reason: Optional[str] = None) -> "SyncResult":
        return cls(
            entity_ref=entity_ref,
            status=SyncStatus.CREATED,
            pull_request_url=pull_request_url,
            reason=reason,
        )

    @classmethod
    def skipped(cls, entity_ref: str, reason: str) -> "SyncResult":
        return cls(entity_ref=entity_ref, status=SyncStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, entity_ref: str, error: ErrorRecord) -> "SyncResult":
        return cls(
            entity_ref=entity_ref,
            status=SyncStatus.FAILED,
            reason=error.message,
            error=error,
        )


class SyncReport(BaseModel):
    """Results of one template sync run, keyed by target entity reference."""

    run_id: str
    template_ref: str
    results: Dict[str, SyncResult] = {}

    def record(self, result: SyncResult) -> None:
        self.results[result.entity_ref] = result

    def _with_status(self, status: SyncStatus) -> List[SyncResult]:
        return [result for result in self.results.values() if result.status == status]

    @property
    def created(self) -> List[SyncResult]:
        return self._with_status(SyncStatus.CREATED)

    @property
    def skipped(self) -> List[SyncResult]:
        return self._with_status(SyncStatus.SKIPPED)

    @property
    def failed(self) -> List[SyncResult]:
        return self._with_status(SyncStatus.FAILED)

    def pull_request_urls(self) -> Dict[str, str]:
        """Map of target entity reference to created pull request URL."""
        return {
            ref: result.pull_request_url
            for ref, result in self.results.items()
            if result.pull_request_url
        }

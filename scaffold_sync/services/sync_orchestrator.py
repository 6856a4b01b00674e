"""
Template sync orchestration.

This module coordinates one sync run: it resolves the template's skeleton
source, fetches the template files once, then for every scaffolded target
resolves its provider and repository, fetches and diffs its files and opens a
pull request when the target has drifted. Each target is isolated: whatever
happens to one is recorded in the report and never stops the others.
"""

import asyncio
import uuid
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from scaffold_sync.models import (
    Entity,
    FileSnapshot,
    RepositoryLocation,
    SyncReport,
    SyncResult,
    TemplateInfo,
)
from scaffold_sync.providers.base import FetchError
from scaffold_sync.providers.registry import VcsProviderRegistry
from scaffold_sync.services.catalog import CatalogClient
from scaffold_sync.services.file_fetcher import RepoFileFetcher
from scaffold_sync.services.template_diff import TemplateDiffEngine
from scaffold_sync.services.template_source import extract_template_source_url
from scaffold_sync.utils.logging import (
    ContextLoggerAdapter,
    get_logger,
    log_error_with_context,
    log_sync_stage,
)
from scaffold_sync.utils.metrics import SyncMetrics, emit_metric, track_api_call
from scaffold_sync.utils.resilience import ErrorRecoveryManager

logger = get_logger(__name__)

CANCELLED_PHASE = "cancelled"


class TemplateContext(NamedTuple):
    """Template state shared read-only by every target of a run."""

    entity: Entity
    source_url: str
    location: RepositoryLocation
    files: FileSnapshot


class RunCancelled(Exception):
    """Recorded for targets still unfinished when the run deadline fires."""
    pass


def template_values_for(entity: Entity) -> Dict[str, str]:
    """
    Template variable values known from a scaffolded entity.

    Args:
        entity: Scaffolded entity

    Returns:
        Variable name -> value
    """
    values = {
        "name": entity.metadata.name,
        "component_id": entity.metadata.name,
    }
    if entity.metadata.title:
        values["title"] = entity.metadata.title
    if entity.metadata.description:
        values["description"] = entity.metadata.description
    for key in ("owner", "system", "lifecycle"):
        if entity.spec.get(key):
            values[key] = str(entity.spec[key])
    return values


class SyncOrchestrator:
    """
    Runs template syncs across scaffolded repositories.

    Targets run under a semaphore of ``max_concurrent_targets`` (1 processes
    them one at a time), each bounded by ``target_timeout_seconds``. An
    optional ``run_timeout_seconds`` bounds the whole batch; targets still
    running when it fires are recorded as failed in the ``cancelled`` phase.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        registry: VcsProviderRegistry,
        file_fetcher: RepoFileFetcher,
        diff_engine: Optional[TemplateDiffEngine] = None,
        target_timeout_seconds: Optional[float] = 300,
        max_concurrent_targets: int = 1,
        run_timeout_seconds: Optional[float] = None,
    ):
        self.catalog = catalog
        self.registry = registry
        self.file_fetcher = file_fetcher
        self.diff_engine = diff_engine or TemplateDiffEngine()
        self.target_timeout_seconds = target_timeout_seconds
        self.max_concurrent_targets = max(1, max_concurrent_targets)
        self.run_timeout_seconds = run_timeout_seconds

    async def sync_template(
        self,
        template_ref: str,
        target_entities: Sequence[Entity],
        previous_version: Optional[str] = None,
        current_version: Optional[str] = None,
        token: Optional[str] = None,
        report: Optional[SyncReport] = None,
    ) -> SyncReport:
        """
        Sync every target with the template's current version.

        Args:
            template_ref: Template entity reference
            target_entities: Entities scaffolded from the template
            previous_version: Template version the targets were created from
            current_version: Template version to sync to
            token: Catalog token passed through to entity lookups
            report: Report to fill in; results are recorded as soon as each
                target finishes, so the caller keeps them if the run is cancelled

        Returns:
            SyncReport keyed by target entity reference; empty if the template
            cannot be resolved or fetched
        """
        if report is None:
            report = SyncReport(run_id=f"sync_{uuid.uuid4().hex[:12]}", template_ref=template_ref)
        run_id = report.run_id

        run_logger = logger.with_context(run_id=run_id, template_ref=template_ref)
        metrics = SyncMetrics(run_id, template_ref)
        metrics.start()

        template = await self._prepare_template(template_ref, token, run_id, run_logger, metrics)
        if template is None:
            metrics.complete("aborted")
            return report

        status = await self._sync_targets(
            template,
            list(target_entities),
            previous_version,
            current_version,
            token,
            report,
            run_logger,
            metrics,
        )

        failed = report.failed
        ErrorRecoveryManager.handle_partial_failure(
            operation_name="sync_template",
            total_items=len(report.results),
            successful_items=len(report.results) - len(failed),
            errors=[f"{result.entity_ref}: {result.reason}" for result in failed],
            context={"run_id": run_id, "template_ref": template_ref}
        )
        emit_metric("sync.pull_requests_created", len(report.created), template_ref=template_ref)
        metrics.complete(status)
        return report

    async def _prepare_template(
        self,
        template_ref: str,
        token: Optional[str],
        run_id: str,
        run_logger: ContextLoggerAdapter,
        metrics: SyncMetrics
    ) -> Optional[TemplateContext]:
        log_sync_stage(run_logger, run_id, template_ref, "resolve_template", "started")

        try:
            template_entity = await self.catalog.get_entity_by_ref(template_ref, token)
        except Exception as e:
            log_error_with_context(
                run_logger, f"Failed to look up template {template_ref}", e, stage="resolve_template"
            )
            return None

        if template_entity is None:
            log_sync_stage(
                run_logger, run_id, template_ref, "resolve_template", "failed",
                reason="template not found"
            )
            return None

        source_url = extract_template_source_url(template_entity, self.registry)
        if not source_url:
            log_sync_stage(
                run_logger, run_id, template_ref, "resolve_template", "failed",
                reason="no fetch:template source URL"
            )
            return None

        provider = self.registry.get_provider_for_url(source_url)
        location = provider.parse_url(source_url) if provider else None
        if provider is None or location is None:
            log_sync_stage(
                run_logger, run_id, template_ref, "resolve_template", "failed",
                reason="no provider for template source", source_url=source_url
            )
            return None

        log_sync_stage(
            run_logger, run_id, template_ref, "fetch_template_files", "started",
            source_url=source_url, provider=provider.name
        )
        try:
            async with track_api_call(metrics, provider.name, run_logger, endpoint=source_url, method="read_tree"):
                files = await self.file_fetcher.fetch_files(source_url)
        except FetchError as e:
            log_error_with_context(
                run_logger, f"Failed to fetch template files for {template_ref}", e,
                stage="fetch_template_files"
            )
            return None

        log_sync_stage(
            run_logger, run_id, template_ref, "fetch_template_files", "completed",
            file_count=len(files)
        )
        return TemplateContext(template_entity, source_url, location, files)

    async def _sync_targets(
        self,
        template: TemplateContext,
        targets: List[Entity],
        previous_version: Optional[str],
        current_version: Optional[str],
        token: Optional[str],
        report: SyncReport,
        run_logger: ContextLoggerAdapter,
        metrics: SyncMetrics
    ) -> str:
        if not targets:
            return "completed"

        semaphore = asyncio.Semaphore(self.max_concurrent_targets)
        tasks = [
            asyncio.create_task(self._run_target(
                target, template, previous_version, current_version, token,
                semaphore, report, run_logger, metrics
            ))
            for target in targets
        ]

        try:
            _, pending = await asyncio.wait(tasks, timeout=self.run_timeout_seconds)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        if not pending:
            return "completed"

        await asyncio.gather(*pending, return_exceptions=True)
        run_logger.warning(
            f"Run deadline of {self.run_timeout_seconds}s exceeded, "
            f"cancelled {len(pending)} unfinished target(s)"
        )
        error = RunCancelled(f"Run deadline of {self.run_timeout_seconds}s exceeded")
        for target in targets:
            if target.ref not in report.results:
                result = SyncResult.failed(
                    target.ref, ErrorRecoveryManager.build_error_record(error, CANCELLED_PHASE)
                )
                report.record(result)
                metrics.record_outcome(result.status.value)
        return "timeout"

    async def _run_target(
        self,
        target: Entity,
        template: TemplateContext,
        previous_version: Optional[str],
        current_version: Optional[str],
        token: Optional[str],
        semaphore: asyncio.Semaphore,
        report: SyncReport,
        run_logger: ContextLoggerAdapter,
        metrics: SyncMetrics
    ) -> None:
        async with semaphore:
            target_logger = run_logger.with_context(entity_ref=target.ref)
            progress = {"stage": "resolve_provider"}
            try:
                result = await asyncio.wait_for(
                    self._process_target(
                        target, template, previous_version, current_version, token,
                        progress, target_logger, metrics
                    ),
                    timeout=self.target_timeout_seconds
                )
            except asyncio.TimeoutError:
                error = TimeoutError(
                    f"Target deadline of {self.target_timeout_seconds}s exceeded "
                    f"during {progress['stage']}"
                )
                target_logger.warning(str(error), extra={"stage": progress["stage"]})
                result = SyncResult.failed(
                    target.ref, ErrorRecoveryManager.build_error_record(error, progress["stage"])
                )

        report.record(result)
        metrics.record_outcome(result.status.value)
        log_sync_stage(
            target_logger,
            report.run_id,
            target.ref,
            "done",
            result.status.value,
            reason=result.reason,
            pull_request_url=result.pull_request_url
        )

    async def _process_target(
        self,
        target: Entity,
        template: TemplateContext,
        previous_version: Optional[str],
        current_version: Optional[str],
        token: Optional[str],
        progress: Dict[str, Any],
        target_logger: ContextLoggerAdapter,
        metrics: SyncMetrics
    ) -> SyncResult:
        entity_ref = target.ref
        try:
            provider = self.registry.get_provider_for_entity(target)
            if provider is None:
                return SyncResult.skipped(entity_ref, "no VCS provider recognizes the entity")

            progress["stage"] = "resolve_target_url"
            target_url = provider.extract_repo_url(target)
            if not target_url:
                return SyncResult.skipped(entity_ref, "no repository URL on the entity")

            progress["stage"] = "fetch_target_files"
            async with track_api_call(
                metrics, provider.name, target_logger, endpoint=target_url, method="read_tree"
            ):
                target_files = await self.file_fetcher.fetch_files(target_url)

            progress["stage"] = "diff"
            changes = await asyncio.to_thread(
                self.diff_engine.compute_changes, template.files, target_files, template_values_for(target)
            )
            metrics.record_comparison(
                len(self.diff_engine.find_common_files(template.files, target_files)),
                len(changes)
            )
            if changes.is_empty():
                target_logger.info(f"No drift from template for {entity_ref}")
                return SyncResult.skipped(entity_ref, "no drift from template")

            progress["stage"] = "submit_pull_request"
            info = TemplateInfo(
                owner=template.location.owner,
                repo=template.location.repo,
                branch=template.location.branch,
                display_name=template.entity.display_name,
                previous_version=previous_version,
                current_version=current_version,
                component_name=target.metadata.name,
            )
            reviewer = await provider.get_reviewer_from_owner(target, token)

            async with track_api_call(
                metrics, provider.name, target_logger, endpoint=target_url, method="create_pull_request"
            ):
                pull_request = await provider.create_pull_request(target_url, changes, info, reviewer)

            reason = "pull request already open" if pull_request.existing else None
            return SyncResult.created(entity_ref, pull_request.url, reason=reason)

        except Exception as e:
            log_error_with_context(
                target_logger,
                f"Sync failed for {entity_ref} during {progress['stage']}",
                e,
                stage=progress["stage"]
            )
            return SyncResult.failed(
                entity_ref, ErrorRecoveryManager.build_error_record(e, progress["stage"])
            )


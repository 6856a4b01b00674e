"""
Template sync REST API endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from scaffold_sync.config import settings
from scaffold_sync.models import Entity, EntityRefError, SyncReport, normalize_entity_ref
from scaffold_sync.providers import create_default_registry
from scaffold_sync.services.catalog import CatalogError, InMemoryCatalog
from scaffold_sync.services.credentials import StaticCredentialsProvider
from scaffold_sync.services.file_fetcher import RegistryTreeReader, RepoFileFetcher
from scaffold_sync.services.sync_orchestrator import SyncOrchestrator
from scaffold_sync.services.template_diff import TemplateDiffEngine
from scaffold_sync.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

_catalog: Optional[InMemoryCatalog] = None
_orchestrator: Optional[SyncOrchestrator] = None


class SyncRequest(BaseModel):
    """Request to sync the repositories scaffolded from a template."""

    template_ref: str
    target_refs: Optional[List[str]] = None
    previous_version: Optional[str] = None
    current_version: Optional[str] = None


async def verify_api_key(x_api_key: str = Header(None)) -> None:
    """
    Verify the API key when one is configured.

    Raises:
        HTTPException: If the API key is invalid or missing
    """
    if not settings.admin_api_key:
        return

    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")

    if x_api_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_catalog() -> InMemoryCatalog:
    """Get the catalog loaded from the configured catalog path."""
    global _catalog
    if _catalog is None:
        if settings.catalog_path:
            try:
                _catalog = InMemoryCatalog.from_yaml(settings.catalog_path)
            except CatalogError as e:
                logger.error(f"Failed to load catalog: {e}")
                raise HTTPException(status_code=503, detail="Catalog unavailable")
        else:
            logger.warning("No catalog path configured, using an empty catalog")
            _catalog = InMemoryCatalog()
    return _catalog


def get_orchestrator(catalog: InMemoryCatalog = Depends(get_catalog)) -> SyncOrchestrator:
    """Get the sync orchestrator, wiring providers from settings on first use."""
    global _orchestrator
    if _orchestrator is None:
        credentials = StaticCredentialsProvider.from_settings(settings)
        registry = create_default_registry(settings, catalog, credentials)
        _orchestrator = SyncOrchestrator(
            catalog=catalog,
            registry=registry,
            file_fetcher=RepoFileFetcher(
                RegistryTreeReader(registry),
                concurrency=settings.fetch_concurrency
            ),
            diff_engine=TemplateDiffEngine(include_new_files=settings.include_new_files),
            target_timeout_seconds=settings.target_timeout_seconds,
            max_concurrent_targets=settings.max_concurrent_targets,
            run_timeout_seconds=settings.run_timeout_seconds,
        )
    return _orchestrator


async def _resolve_targets(catalog: InMemoryCatalog, template_ref: str, target_refs: Optional[List[str]]) -> List[Entity]:
    if target_refs is None:
        return catalog.find_scaffolded_from(template_ref)

    targets = []
    missing = []
    for ref in target_refs:
        entity = await catalog.get_entity_by_ref(ref, settings.catalog_token)
        if entity is None:
            missing.append(ref)
        else:
            targets.append(entity)

    if missing:
        raise HTTPException(status_code=404, detail=f"Entities not found: {', '.join(missing)}")
    return targets


@router.post("", response_model=SyncReport, dependencies=[Depends(verify_api_key)])
async def trigger_sync(
    request: SyncRequest,
    catalog: InMemoryCatalog = Depends(get_catalog),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> SyncReport:
    """
    Sync the template's scaffolded repositories and open pull requests.

    When ``target_refs`` is omitted, every catalog entity whose
    ``spec.scaffoldedFrom`` names the template is synced.

    Raises:
        HTTPException: If a reference is malformed or a target is not found
    """
    try:
        template_ref = normalize_entity_ref(request.template_ref, default_kind="template")
    except EntityRefError as e:
        raise HTTPException(status_code=400, detail=str(e))

    targets = await _resolve_targets(catalog, template_ref, request.target_refs)
    logger.info(
        f"Sync requested for {template_ref} with {len(targets)} target(s)",
        extra={"template_ref": template_ref}
    )

    return await orchestrator.sync_template(
        template_ref,
        targets,
        previous_version=request.previous_version,
        current_version=request.current_version,
        token=settings.catalog_token,
    )

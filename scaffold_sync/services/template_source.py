"""Resolution of a template entity's skeleton source URL."""

import posixpath
from typing import Optional

from scaffold_sync.models import Entity
from scaffold_sync.providers.registry import VcsProviderRegistry
from scaffold_sync.utils.logging import get_logger

logger = get_logger(__name__)

FETCH_TEMPLATE_ACTION = "fetch:template"


def is_relative_url(url: str) -> bool:
    return "://" not in url and not url.startswith("git@")


def extract_template_source_url(entity: Entity, registry: VcsProviderRegistry) -> Optional[str]:
    """
    Find the source URL of the template's first ``fetch:template`` step.

    Relative URLs (``./skeleton`` or ``skeleton``) are resolved against the
    template entity's own repository location and rendered by the same
    provider, so the result keeps the template's branch (or the default
    branch when the location has none). Paths that climb above the repository
    root are rejected.

    Args:
        entity: Template entity
        registry: Provider registry used to resolve the entity's repository URL

    Returns:
        Absolute source URL, or None if the template has no usable fetch step
    """
    steps = entity.spec.get("steps")
    if not isinstance(steps, list):
        return None

    for step in steps:
        if not isinstance(step, dict) or step.get("action") != FETCH_TEMPLATE_ACTION:
            continue
        inputs = step.get("input")
        url = inputs.get("url") if isinstance(inputs, dict) else None
        if not url or not isinstance(url, str):
            continue

        if not is_relative_url(url):
            return url

        provider = registry.get_provider_for_entity(entity)
        base_url = provider.extract_repo_url(entity) if provider else None
        location = provider.parse_url(base_url) if base_url else None
        if location is None:
            logger.warning(
                f"Template {entity.ref} uses relative source '{url}' but has no repository URL",
                extra={"template_ref": entity.ref}
            )
            return None

        path = posixpath.normpath(posixpath.join(location.path or "", url.strip()))
        if path == ".." or path.startswith("../"):
            logger.warning(
                f"Template {entity.ref} source '{url}' points outside its repository",
                extra={"template_ref": entity.ref}
            )
            return None

        path = "" if path == "." else path.strip("/")
        return provider.build_url(location.model_copy(update={"path": path or None}))

    return None

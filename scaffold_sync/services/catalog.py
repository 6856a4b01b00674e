"""
Software catalog access.

The sync pipeline only needs entity lookup by reference. ``InMemoryCatalog``
serves entities loaded from catalog-info style YAML documents.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import yaml
from pydantic import ValidationError

from scaffold_sync.models import Entity, EntityRefError, normalize_entity_ref
from scaffold_sync.utils.logging import get_logger

logger = get_logger(__name__)


class CatalogError(Exception):
    """Raised when catalog documents cannot be loaded."""
    pass


class CatalogClient(ABC):
    """Entity lookup interface."""

    @abstractmethod
    async def get_entity_by_ref(self, ref: str, token: Optional[str] = None) -> Optional[Entity]:
        """
        Look up an entity by its full ``kind:namespace/name`` reference.

        Returns:
            Entity if found, None otherwise
        """
        pass


class InMemoryCatalog(CatalogClient):
    """Catalog backed by a dictionary of entities keyed by reference."""

    def __init__(self, entities: Optional[Iterable[Entity]] = None):
        self._entities: Dict[str, Entity] = {}
        for entity in entities or []:
            self.add_entity(entity)

    def add_entity(self, entity: Entity) -> None:
        self._entities[entity.ref] = entity

    def list_entities(self) -> List[Entity]:
        return list(self._entities.values())

    async def get_entity_by_ref(self, ref: str, token: Optional[str] = None) -> Optional[Entity]:
        try:
            key = normalize_entity_ref(ref)
        except EntityRefError as e:
            logger.debug(f"Invalid entity reference '{ref}': {e}")
            return None
        return self._entities.get(key)

    def find_scaffolded_from(self, template_ref: str) -> List[Entity]:
        """
        Find the entities scaffolded from a template.

        Args:
            template_ref: Template entity reference

        Returns:
            Entities whose ``spec.scaffoldedFrom`` resolves to the template
        """
        target = normalize_entity_ref(template_ref, default_kind="template")
        matches = []
        for entity in self._entities.values():
            scaffolded_from = entity.spec.get("scaffoldedFrom")
            if not scaffolded_from:
                continue
            try:
                if normalize_entity_ref(str(scaffolded_from), default_kind="template") == target:
                    matches.append(entity)
            except EntityRefError:
                logger.debug(f"Ignoring malformed scaffoldedFrom on {entity.ref}")
        return matches

    @classmethod
    def from_yaml(cls, source: Union[str, Path]) -> "InMemoryCatalog":
        """
        Load entities from a multi-document YAML file or a directory of them.

        Args:
            source: Path to a YAML file, or a directory scanned for *.yaml / *.yml

        Raises:
            CatalogError: If a document is malformed
        """
        path = Path(source)
        if path.is_dir():
            files = sorted([*path.rglob("*.yaml"), *path.rglob("*.yml")])
        else:
            files = [path]

        catalog = cls()
        for file_path in files:
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    documents = list(yaml.safe_load_all(f))
            except (OSError, yaml.YAMLError) as e:
                raise CatalogError(f"Failed to read catalog file {file_path}: {e}") from e

            for document in documents:
                if not document:
                    continue
                try:
                    catalog.add_entity(Entity.model_validate(document))
                except ValidationError as e:
                    raise CatalogError(f"Invalid entity in {file_path}: {e}") from e

        logger.info(f"Loaded {len(catalog._entities)} entities from {path}")
        return catalog

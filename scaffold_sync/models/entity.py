"""Software catalog entity models."""

from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_NAMESPACE = "default"

SOURCE_LOCATION_ANNOTATION = "backstage.io/source-location"


class EntityRefError(ValueError):
    """Raised when an entity reference cannot be parsed."""
    pass


def parse_entity_ref(
    ref: str,
    default_kind: Optional[str] = None,
    default_namespace: str = DEFAULT_NAMESPACE
) -> Tuple[str, str, str]:
    """
    Parse an entity reference of the form ``[kind:][namespace/]name``.

    Args:
        ref: Entity reference string
        default_kind: Kind to use when the reference has none
        default_namespace: Namespace to use when the reference has none

    Returns:
        Tuple of (kind, namespace, name); kind is lowercased

    Raises:
        EntityRefError: If the reference is empty or has no kind and no default
    """
    if not ref or not ref.strip():
        raise EntityRefError("Entity reference is empty")

    rest = ref.strip()
    kind = default_kind
    if ":" in rest:
        kind, rest = rest.split(":", 1)

    namespace = default_namespace
    if "/" in rest:
        namespace, rest = rest.split("/", 1)

    if not kind:
        raise EntityRefError(f"Entity reference '{ref}' has no kind")
    if not namespace or not rest:
        raise EntityRefError(f"Malformed entity reference '{ref}'")

    return kind.lower(), namespace, rest


def stringify_entity_ref(kind: str, namespace: str, name: str) -> str:
    return f"{kind.lower()}:{namespace}/{name}"


def normalize_entity_ref(
    ref: str,
    default_kind: Optional[str] = None,
    default_namespace: str = DEFAULT_NAMESPACE
) -> str:
    """Return the canonical ``kind:namespace/name`` form of a reference."""
    return stringify_entity_ref(*parse_entity_ref(ref, default_kind, default_namespace))


class EntityMetadata(BaseModel):
    """Entity metadata block."""

    model_config = ConfigDict(extra="allow")

    name: str
    namespace: str = DEFAULT_NAMESPACE
    title: Optional[str] = None
    description: Optional[str] = None
    annotations: Dict[str, str] = {}


class Entity(BaseModel):
    """Catalog entity (Component, Template, User, Group, ...)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: str = Field(default="backstage.io/v1alpha1", alias="apiVersion")
    kind: str
    metadata: EntityMetadata
    spec: Dict[str, Any] = {}

    @property
    def ref(self) -> str:
        return stringify_entity_ref(self.kind, self.metadata.namespace, self.metadata.name)

    @property
    def display_name(self) -> str:
        return self.metadata.title or self.metadata.name

    @property
    def owner_ref(self) -> Optional[str]:
        owner = self.spec.get("owner")
        return str(owner) if owner else None

    def annotation(self, key: str) -> Optional[str]:
        value = self.metadata.annotations.get(key)
        return value or None

"""
Mapping Declarations - Per-Entity-Type, Per-Backend Configuration

🗺️ Declarative Mapping Registry:
Each entity module declares, for every backend it supports, how its fields map
to stored columns, which table it lives in, how fixed queries are translated
and so on. Declarations are validated when they are registered, so a missing
field mapping fails at startup instead of on the first write.

The registry is an explicit object: it is built once, frozen, and handed to
every backend and provider that needs it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import ConfigurationError
from .records import EntityMetadataType, MetadataEntity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappingDefinition:
    """Key of one mapping dimension, optionally scoped to a backend"""
    name: str
    backend: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.backend}.{self.name}" if self.backend else self.name


class MetadataMappingDefinition:
    """Backend-independent dimensions"""
    ENTITY_ID_FIELD_NAME = MappingDefinition("EntityIdFieldName")
    ENTITY_INSTANTIATE = MappingDefinition("EntityInstantiate")


class MemorySettings:
    """Dimensions read by the memory backend"""
    MAPPING = MappingDefinition("Mapping", "memory")
    QUERIES = MappingDefinition("Queries", "memory")


class PostgresSettings:
    """Dimensions read by the Postgres backend"""
    MAPPING = MappingDefinition("Mapping", "postgres")
    DEFAULT_TABLE_NAME = MappingDefinition("DefaultTableName", "postgres")
    TYPE_COLUMN_VALUE = MappingDefinition("TypeColumnValue", "postgres")
    QUERIES = MappingDefinition("Queries", "postgres")


class TableSettings:
    """Dimensions read by the table backend"""
    MAPPING = MappingDefinition("Mapping", "table")
    DEFAULT_TABLE_NAME = MappingDefinition("DefaultTableName", "table")
    FIXED_PARTITION_KEY = MappingDefinition("FixedPartitionKey", "table")
    ROW_KEY_PREFIX = MappingDefinition("RowKeyPrefix", "table")
    TYPE_DISCRIMINATOR = MappingDefinition("TypeDiscriminator", "table")
    NO_POINT_QUERIES = MappingDefinition("NoPointQueries", "table")
    ALTERNATE_ID_COLUMN = MappingDefinition("AlternateIdColumn", "table")
    FIELD_CODECS = MappingDefinition("FieldCodecs", "table")
    QUERIES = MappingDefinition("Queries", "table")


class EntityMetadataMappings:
    """
    Write-once registry of mapping values keyed by entity type and dimension.

    Populate it with ``register`` during startup, then call ``freeze``; after
    that it only answers lookups.
    """

    def __init__(self):
        self._values: Dict[EntityMetadataType, Dict[MappingDefinition, Any]] = {}
        self._frozen = False

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True
        logger.info(f"Mapping registry frozen with {len(self._values)} entity types")

    def register(self, entity_type: EntityMetadataType, definition: MappingDefinition, value: Any) -> None:
        """
        Store a mapping value.

        Raises:
            ConfigurationError: if the registry is frozen or the same
                (entity type, dimension) pair was already registered
        """
        if self._frozen:
            raise ConfigurationError(f"Cannot register {definition} for {entity_type}: registry is frozen")
        values = self._values.setdefault(entity_type, {})
        if definition in values:
            raise ConfigurationError(f"{definition} is already registered for {entity_type}")
        values[definition] = value

    def lookup(self, entity_type: EntityMetadataType, definition: MappingDefinition, required: bool = False) -> Any:
        """
        Return the registered value, or None.

        Raises:
            ConfigurationError: if ``required`` and nothing is registered
        """
        value = self._values.get(entity_type, {}).get(definition)
        if value is None and required:
            raise ConfigurationError(f"No {definition} registered for {entity_type}")
        return value

    def has(self, entity_type: EntityMetadataType, definition: MappingDefinition) -> bool:
        return definition in self._values.get(entity_type, {})

    def registered_types(self) -> List[EntityMetadataType]:
        return list(self._values.keys())

    def instantiate(self, entity_type: EntityMetadataType) -> MetadataEntity:
        """Build an empty entity through the registered factory"""
        factory: Callable[[], MetadataEntity] = self.lookup(
            entity_type, MetadataMappingDefinition.ENTITY_INSTANTIATE, required=True)
        return factory()

    def validate_mappings(
        self,
        entity_type: EntityMetadataType,
        definition: MappingDefinition,
        declared_field_names: Iterable[str],
        exempt_field_names: Iterable[str] = (),
        codecs_definition: Optional[MappingDefinition] = None,
    ) -> None:
        """
        Check that a registered field map covers exactly the declared fields.

        Args:
            entity_type: Entity type the map belongs to
            definition: The backend's mapping dimension
            declared_field_names: Persisted fields of the entity
            exempt_field_names: Fields handled outside the map, usually the id
            codecs_definition: Dimension holding field codecs for fields
                mapped to None

        Raises:
            ConfigurationError: on a declared field without a mapping, a mapped
                name that is not a declared field, or a None mapping without a
                codec
        """
        mapping: Dict[str, Optional[str]] = self.lookup(entity_type, definition, required=True)
        exempt = set(exempt_field_names)
        declared = [name for name in declared_field_names if name not in exempt]

        missing = [name for name in declared if name not in mapping]
        if missing:
            raise ConfigurationError(
                f"{definition} for {entity_type} is missing fields: {', '.join(missing)}")

        unvisited = [name for name in mapping if name not in declared and name not in exempt]
        if unvisited:
            raise ConfigurationError(
                f"{definition} for {entity_type} maps unknown fields: {', '.join(unvisited)}")

        codecs = self.lookup(entity_type, codecs_definition) if codecs_definition else None
        for name, column in mapping.items():
            if column is None and not (codecs and name in codecs):
                raise ConfigurationError(
                    f"{definition} for {entity_type} maps '{name}' to no column and no codec is registered")


__all__ = [
    'MappingDefinition',
    'MetadataMappingDefinition',
    'MemorySettings',
    'PostgresSettings',
    'TableSettings',
    'EntityMetadataMappings',
]

"""
Entity Metadata Provider - Typed Entities Over Any Backend

🏗️ Shared Provider Foundation:
Concrete providers (one per entity type) inherit serialization, point lookup
with query fallback, and CRUD orchestration from this base. The backend is
injected; the provider never knows which store it talks to.
"""

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Generic, List, Optional, TypeVar

from .backends.interface import EntityMetadataBackend
from .codecs import FieldCodec
from .declarations import MetadataMappingDefinition
from .errors import (
    AmbiguousEntityError, ConfigurationError, EntityAlreadyExistsError, EntityNotFoundError,
)
from .queries import FixedQuery
from .records import EntityMetadata, EntityMetadataType, MetadataEntity

EntityType = TypeVar('EntityType', bound=MetadataEntity)


@dataclass(frozen=True)
class SerializationPlan:
    """Resolved mapping for one entity type on one backend"""
    id_field: str
    mapping: Dict[str, Optional[str]]
    codecs: Dict[str, FieldCodec]


class EntityMetadataProvider(Generic[EntityType]):
    """
    Base class for per-entity-type providers.

    Subclasses set ``entity_type`` and, when the backend may lack point
    queries for the type, override ``point_query_fallback``.
    """

    entity_type: ClassVar[EntityMetadataType]

    def __init__(self, backend: EntityMetadataBackend):
        self.backend = backend
        self.registry = backend.registry
        self._logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._plan: Optional[SerializationPlan] = None
        self._supports_point_query = True
        self._is_initialized = False

    async def initialize(self) -> None:
        """
        Resolve the mapping and point query capability for the active backend.

        Raises:
            ConfigurationError: if the entity type is not mapped for the
                backend, or the backend cannot point query it and the provider
                has no fallback query
        """
        if self._is_initialized:
            return
        self.backend.validate_entity_type(self.entity_type)
        self._plan = self._resolve_plan()
        self._supports_point_query = self.backend.supports_point_query_for_type(self.entity_type)
        if not self._supports_point_query and not self.has_point_query_fallback():
            raise ConfigurationError(
                f"{self.entity_type} has no point queries on the {self.backend.name} backend "
                f"and {self.__class__.__name__} defines no fallback query")
        self._is_initialized = True
        self._logger.info(f"Initialized {self.entity_type} provider on the {self.backend.name} backend")

    def _resolve_plan(self) -> SerializationPlan:
        id_field = self.registry.lookup(self.entity_type, MetadataMappingDefinition.ENTITY_ID_FIELD_NAME, required=True)
        mapping = self.registry.lookup(self.entity_type, self.backend.mapping_definition, required=True)
        codecs: Dict[str, FieldCodec] = {}
        if self.backend.codecs_definition is not None:
            codecs = self.registry.lookup(self.entity_type, self.backend.codecs_definition) or {}
        return SerializationPlan(id_field, dict(mapping), dict(codecs))

    @property
    def plan(self) -> SerializationPlan:
        if self._plan is None:
            self._plan = self._resolve_plan()
        return self._plan

    @property
    def supports_point_query(self) -> bool:
        return self._supports_point_query

    def point_query_fallback(self, entity_id: str) -> Optional[FixedQuery]:
        """Fixed query that finds an entity by id when point queries are unavailable"""
        return None

    def has_point_query_fallback(self) -> bool:
        return type(self).point_query_fallback is not EntityMetadataProvider.point_query_fallback

    # Serialization

    def serialize(self, entity: EntityType) -> EntityMetadata:
        """
        Convert a typed entity into a generic record for the active backend.

        Raises:
            ValueError: if the identifier field is empty
            ConfigurationError: if a persisted field has no mapping
        """
        plan = self.plan
        entity_id = getattr(entity, plan.id_field, None)
        if entity_id in (None, ""):
            raise ValueError(f"{self.entity_type} entity has no value for {plan.id_field}")

        values: Dict[str, Any] = entity.model_dump(mode=self.backend.dump_mode)
        fields: Dict[str, Any] = {}
        for name in entity.declared_field_names():
            if name == plan.id_field:
                continue
            if name not in plan.mapping:
                raise ConfigurationError(f"No {self.backend.name} mapping for {self.entity_type}.{name}")
            value = values.get(name)
            if value is None:
                continue
            column = plan.mapping[name]
            if column is None:
                plan.codecs[name].encode(value, fields)
            else:
                fields[column] = value
        return EntityMetadata(self.entity_type, str(entity_id), fields)

    def deserialize(self, metadata: EntityMetadata) -> EntityType:
        """Rebuild a typed entity from a generic record"""
        plan = self.plan
        entity = self.registry.instantiate(self.entity_type)
        setattr(entity, plan.id_field, metadata.entity_id)
        for name, column in plan.mapping.items():
            if column is None:
                value = plan.codecs[name].decode(metadata.fields, metadata.entity_id)
            else:
                value = metadata.fields.get(column)
            if value is not None:
                setattr(entity, name, value)
        return entity

    def deserialize_array(self, records: List[EntityMetadata]) -> List[EntityType]:
        return [self.deserialize(record) for record in records]

    # Operations

    async def _ensure_initialized(self) -> None:
        if not self._is_initialized:
            await self.initialize()

    async def get_entity(self, entity_id: str) -> EntityType:
        """
        Load one entity by identifier.

        Raises:
            EntityNotFoundError: if nothing matches
            AmbiguousEntityError: if the fallback query matches several records
        """
        await self._ensure_initialized()
        if self._supports_point_query:
            record = await self.backend.get_metadata(self.entity_type, entity_id)
            if record is None:
                raise EntityNotFoundError(f"{self.entity_type} {entity_id} not found")
            return self.deserialize(record)

        records = await self.backend.fixed_query_metadata(self.entity_type, self.point_query_fallback(entity_id))
        if not records:
            raise EntityNotFoundError(f"{self.entity_type} {entity_id} not found")
        if len(records) > 1:
            raise AmbiguousEntityError(f"{len(records)} {self.entity_type} records found for {entity_id}")
        return self.deserialize(records[0])

    async def create_entity(self, entity: EntityType) -> str:
        """Insert a new entity and return its identifier"""
        await self._ensure_initialized()
        record = self.serialize(entity)
        uniqueness_verified = False
        if not self._supports_point_query:
            try:
                await self.get_entity(record.entity_id)
                exists = True
            except EntityNotFoundError:
                exists = False
            except AmbiguousEntityError:
                exists = True
            if exists:
                raise EntityAlreadyExistsError(f"{self.entity_type} {record.entity_id} already exists")
            uniqueness_verified = True
        await self.backend.set_metadata(record, uniqueness_verified=uniqueness_verified)
        self._logger.debug(f"Created {self.entity_type} {record.entity_id}")
        return record.entity_id

    async def update_entity(self, entity: EntityType) -> None:
        await self._ensure_initialized()
        await self.backend.update_metadata(self.serialize(entity))

    async def delete_entity(self, entity: EntityType) -> None:
        await self._ensure_initialized()
        await self.backend.delete_metadata(self.serialize(entity))
        self._logger.debug(f"Deleted {self.entity_type} {getattr(entity, self.plan.id_field)}")

    async def fixed_query(self, query: FixedQuery) -> List[EntityType]:
        await self._ensure_initialized()
        return self.deserialize_array(await self.backend.fixed_query_metadata(self.entity_type, query))

    async def clear_all(self) -> None:
        await self._ensure_initialized()
        await self.backend.clear_metadata_store(self.entity_type)


__all__ = ['EntityMetadataProvider', 'SerializationPlan']

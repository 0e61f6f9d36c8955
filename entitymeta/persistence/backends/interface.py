"""
Backend Interface - Entity Metadata Storage Contract

🔌 One Contract, Several Stores:
Every physical store implements this abstract base. Providers talk only to it,
so the store behind an entity type can change without touching business code.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Set

from ..declarations import EntityMetadataMappings, MappingDefinition
from ..errors import ConfigurationError
from ..queries import FixedQuery
from ..records import EntityMetadata, EntityMetadataType

logger = logging.getLogger(__name__)


class EntityMetadataBackend(ABC):
    """
    Abstract entity metadata store.

    Class attributes describe how providers should shape records for the
    backend:

    - ``name``: backend name used in configuration
    - ``mapping_definition``: registry dimension holding field to column maps
    - ``codecs_definition``: registry dimension holding field codecs, if any
    - ``dump_mode``: pydantic dump mode used when serializing entities
    """

    name: str = ""
    mapping_definition: MappingDefinition
    codecs_definition: Optional[MappingDefinition] = None
    dump_mode: str = "python"

    def __init__(self, registry: EntityMetadataMappings):
        self.registry = registry
        self._no_point_query_types: Set[EntityMetadataType] = set()
        self._is_initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    async def initialize(self) -> None:
        """Prepare the backend; safe to call more than once"""
        if self._is_initialized:
            return
        self._no_point_query_types = {
            entity_type for entity_type in self.registry.registered_types()
            if self.registry.has(entity_type, self.mapping_definition)
            and not self._type_supports_point_query(entity_type)
        }
        await self._do_initialize()
        self._is_initialized = True
        logger.info(f"Initialized {self.name} entity metadata backend")

    async def shutdown(self) -> None:
        if not self._is_initialized:
            return
        await self._do_shutdown()
        self._is_initialized = False
        logger.info(f"Shut down {self.name} entity metadata backend")

    async def _do_initialize(self) -> None:
        pass

    async def _do_shutdown(self) -> None:
        pass

    def _type_supports_point_query(self, entity_type: EntityMetadataType) -> bool:
        return True

    def supports_entity_type(self, entity_type: EntityMetadataType) -> bool:
        return self.registry.has(entity_type, self.mapping_definition)

    def validate_entity_type(self, entity_type: EntityMetadataType) -> None:
        """
        Raises:
            ConfigurationError: if the entity type has no mapping for this backend
        """
        if not self.supports_entity_type(entity_type):
            raise ConfigurationError(f"{entity_type} is not mapped for the {self.name} backend")

    def supports_point_query_for_type(self, entity_type: EntityMetadataType) -> bool:
        """Whether ``get_metadata`` can look the type up by identifier"""
        if not self._is_initialized:
            return self._type_supports_point_query(entity_type)
        return entity_type not in self._no_point_query_types

    @abstractmethod
    async def get_metadata(self, entity_type: EntityMetadataType, entity_id: str) -> Optional[EntityMetadata]:
        """
        Point lookup by identifier.

        Returns:
            The stored record, or None when nothing matches
        """
        pass

    @abstractmethod
    async def set_metadata(self, metadata: EntityMetadata, uniqueness_verified: bool = False) -> None:
        """
        Insert a new record.

        Args:
            metadata: Record to insert
            uniqueness_verified: Caller has already checked that no record
                with this identifier exists; required for types without
                point queries
        """
        pass

    @abstractmethod
    async def update_metadata(self, metadata: EntityMetadata) -> None:
        """Replace an existing record; raises EntityNotFoundError when missing"""
        pass

    @abstractmethod
    async def delete_metadata(self, metadata: EntityMetadata) -> None:
        """Delete an existing record; raises EntityNotFoundError when missing"""
        pass

    @abstractmethod
    async def fixed_query_metadata(self, entity_type: EntityMetadataType, query: FixedQuery) -> List[EntityMetadata]:
        """Run a fixed query and return matching records"""
        pass

    @abstractmethod
    async def clear_metadata_store(self, entity_type: EntityMetadataType) -> None:
        """Remove every record of the given type"""
        pass

    def _query_translator(self, entity_type: EntityMetadataType, definition: MappingDefinition):
        return self.registry.lookup(entity_type, definition, required=True)


__all__ = ['EntityMetadataBackend']

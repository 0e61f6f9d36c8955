"""
Persistence Layer

🗄️ Entity Metadata Persistence:
One storage contract in front of interchangeable backends, a declarative
mapping registry, a closed fixed-query language and the generic provider
base that turns typed entities into stored records and back.
"""

from .declarations import (
    EntityMetadataMappings, MappingDefinition, MemorySettings,
    MetadataMappingDefinition, PostgresSettings, TableSettings,
)
from .errors import (
    AmbiguousEntityError, BackendError, ConfigurationError, DataIntegrityError,
    EntityAlreadyExistsError, EntityMetadataError, EntityNotFoundError,
)
from .manager import PersistenceManager
from .provider import EntityMetadataProvider
from .queries import FixedQuery, FixedQueryType
from .records import EntityMetadata, EntityMetadataType, MetadataEntity

__all__ = [
    'EntityMetadataMappings', 'MappingDefinition', 'MemorySettings',
    'MetadataMappingDefinition', 'PostgresSettings', 'TableSettings',
    'AmbiguousEntityError', 'BackendError', 'ConfigurationError', 'DataIntegrityError',
    'EntityAlreadyExistsError', 'EntityMetadataError', 'EntityNotFoundError',
    'PersistenceManager', 'EntityMetadataProvider',
    'FixedQuery', 'FixedQueryType',
    'EntityMetadata', 'EntityMetadataType', 'MetadataEntity',
]

"""
entitymeta - Entity Metadata Persistence

Typed business records stored through one contract on a table store,
Postgres or memory, chosen per deployment or per entity type.

Quick start:

    from entitymeta import ApplicationConfig, PersistenceManager, build_registry, create_providers

    config = ApplicationConfig.from_environment()
    manager = PersistenceManager(config.persistence, build_registry())
    providers = await create_providers(manager)
    metadata = await providers.repository_metadata.get_repository_metadata("123")
"""

from .config import ApplicationConfig, Environment, LoggingConfig, PersistenceConfig, configure_logging
from .entities import EntityProviders, build_registry, create_providers
from .persistence import (
    AmbiguousEntityError, BackendError, ConfigurationError, DataIntegrityError,
    EntityAlreadyExistsError, EntityMetadataError, EntityNotFoundError, PersistenceManager,
)

__version__ = "0.1.0"

__all__ = [
    'ApplicationConfig', 'Environment', 'LoggingConfig', 'PersistenceConfig', 'configure_logging',
    'EntityProviders', 'build_registry', 'create_providers', 'PersistenceManager',
    'AmbiguousEntityError', 'BackendError', 'ConfigurationError', 'DataIntegrityError',
    'EntityAlreadyExistsError', 'EntityMetadataError', 'EntityNotFoundError',
]

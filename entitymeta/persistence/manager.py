"""
Persistence Manager - Backend Factory and Lifecycle

🏭 Backend Selection:
Creates one backend instance per configured store, routes each entity type to
its backend, and owns their startup and shutdown.
"""

import logging
from typing import Dict, Optional

from ..config import PersistenceConfig
from .backends.interface import EntityMetadataBackend
from .backends.memory import MemoryEntityMetadataBackend
from .backends.postgres import PostgresEntityMetadataBackend
from .backends.table import TableEntityMetadataBackend
from .declarations import EntityMetadataMappings
from .errors import ConfigurationError
from .records import EntityMetadataType

logger = logging.getLogger(__name__)


class PersistenceManager:
    """
    Central coordinator for entity metadata backends.

    Backends may be passed in ready-made (tests do this with fakes); any
    backend in use that was not supplied is built from configuration.
    """

    def __init__(
        self,
        config: PersistenceConfig,
        registry: EntityMetadataMappings,
        backends: Optional[Dict[str, EntityMetadataBackend]] = None,
    ):
        self.config = config
        self.registry = registry
        self._backends: Dict[str, EntityMetadataBackend] = dict(backends or {})
        self._is_initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    def _create_backend(self, name: str) -> EntityMetadataBackend:
        if name == "memory":
            return MemoryEntityMetadataBackend(self.registry)
        if name == "postgres":
            return PostgresEntityMetadataBackend.from_config(self.registry, self.config.postgres)
        if name == "table":
            return TableEntityMetadataBackend.from_config(self.registry, self.config.table)
        raise ConfigurationError(f"Unknown backend: {name}")

    async def initialize(self) -> None:
        """
        Build and initialize every backend in use.

        Raises:
            ConfigurationError: if an entity type is routed to a backend it
                has no mapping for
        """
        if self._is_initialized:
            return

        for name in self.config.backends_in_use():
            if name not in self._backends:
                self._backends[name] = self._create_backend(name)

        for value in self.config.entity_backends:
            entity_type = EntityMetadataType(value)
            self.backend_for(entity_type).validate_entity_type(entity_type)

        for name, backend in self._backends.items():
            await backend.initialize()
            logger.info(f"Backend {name} ready")

        self._is_initialized = True

    async def shutdown(self) -> None:
        for name, backend in self._backends.items():
            try:
                await backend.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down backend {name}: {e}")
        self._is_initialized = False

    def backend_for(self, entity_type: EntityMetadataType) -> EntityMetadataBackend:
        name = self.config.backend_for(entity_type.value)
        backend = self._backends.get(name)
        if backend is None:
            raise ConfigurationError(f"Backend {name} for {entity_type} is not available")
        return backend


__all__ = ['PersistenceManager']

"""
Persistence Backends

Storage adapters behind the entity metadata contract:
- MemoryEntityMetadataBackend: process-local dictionaries
- PostgresEntityMetadataBackend: jsonb documents via SQLAlchemy and asyncpg
- TableEntityMetadataBackend: Azure Table Storage
"""

from .interface import EntityMetadataBackend
from .memory import MemoryEntityMetadataBackend
from .postgres import PostgresEntityMetadataBackend
from .table import TableEntityMetadataBackend

__all__ = [
    'EntityMetadataBackend',
    'MemoryEntityMetadataBackend',
    'PostgresEntityMetadataBackend',
    'TableEntityMetadataBackend',
]

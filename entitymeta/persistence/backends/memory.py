"""
Memory Backend - In-Process Entity Metadata Store

🧠 Process-Local Storage:
Keeps records in a per-instance dictionary keyed by entity type, then by
identifier, preserving insertion order. Used for tests and single-process
development; nothing survives a restart.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..declarations import MemorySettings
from ..errors import EntityAlreadyExistsError, EntityNotFoundError
from ..queries import FixedQuery
from ..records import EntityMetadata, EntityMetadataType
from .interface import EntityMetadataBackend

logger = logging.getLogger(__name__)

MemoryQueryFunction = Callable[[FixedQuery, List[EntityMetadata]], List[EntityMetadata]]


def memory_filter(records: Iterable[EntityMetadata], **equals: Any) -> List[EntityMetadata]:
    """Records whose columns equal every given value"""
    return [
        record for record in records
        if all(record.fields.get(column) == value for column, value in equals.items())
    ]


def _sort_key(value: Any) -> Any:
    # naive timestamps are stored as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def memory_sort_descending(records: List[EntityMetadata], column: str) -> List[EntityMetadata]:
    """Sort by a column, newest or largest first, records without it last"""
    present = [record for record in records if record.fields.get(column) is not None]
    missing = [record for record in records if record.fields.get(column) is None]
    return sorted(present, key=lambda record: _sort_key(record.fields[column]), reverse=True) + missing


class MemoryEntityMetadataBackend(EntityMetadataBackend):
    """
    In-memory backend.

    Two instances never share data. Records are copied on the way in and on
    the way out so callers cannot mutate stored state.
    """

    name = "memory"
    mapping_definition = MemorySettings.MAPPING
    dump_mode = "python"

    def __init__(self, registry):
        super().__init__(registry)
        self._store: Dict[EntityMetadataType, Dict[str, EntityMetadata]] = {}

    def _records(self, entity_type: EntityMetadataType) -> Dict[str, EntityMetadata]:
        return self._store.setdefault(entity_type, {})

    async def get_metadata(self, entity_type: EntityMetadataType, entity_id: str) -> Optional[EntityMetadata]:
        record = self._records(entity_type).get(entity_id)
        return copy.deepcopy(record) if record is not None else None

    async def set_metadata(self, metadata: EntityMetadata, uniqueness_verified: bool = False) -> None:
        records = self._records(metadata.entity_type)
        if metadata.entity_id in records:
            raise EntityAlreadyExistsError(
                f"{metadata.entity_type} {metadata.entity_id} already exists")
        stored = copy.deepcopy(metadata)
        if stored.created is None:
            stored.created = datetime.now(timezone.utc)
        records[metadata.entity_id] = stored
        logger.debug(f"Stored {metadata.entity_type} {metadata.entity_id} in memory")

    async def update_metadata(self, metadata: EntityMetadata) -> None:
        records = self._records(metadata.entity_type)
        existing = records.get(metadata.entity_id)
        if existing is None:
            raise EntityNotFoundError(f"{metadata.entity_type} {metadata.entity_id} not found")
        stored = copy.deepcopy(metadata)
        stored.created = existing.created
        records[metadata.entity_id] = stored

    async def delete_metadata(self, metadata: EntityMetadata) -> None:
        records = self._records(metadata.entity_type)
        if records.pop(metadata.entity_id, None) is None:
            raise EntityNotFoundError(f"{metadata.entity_type} {metadata.entity_id} not found")
        logger.debug(f"Deleted {metadata.entity_type} {metadata.entity_id} from memory")

    async def fixed_query_metadata(self, entity_type: EntityMetadataType, query: FixedQuery) -> List[EntityMetadata]:
        run_query: MemoryQueryFunction = self._query_translator(entity_type, MemorySettings.QUERIES)
        snapshot = [copy.deepcopy(record) for record in self._records(entity_type).values()]
        return run_query(query, snapshot)

    async def clear_metadata_store(self, entity_type: EntityMetadataType) -> None:
        self._store.pop(entity_type, None)


__all__ = ['MemoryEntityMetadataBackend', 'MemoryQueryFunction', 'memory_filter', 'memory_sort_descending']
